"""
Scanner input parsing.

Operators type, scan or paste free text into the scan console. A single
read can hold several tokens, a label URL, or a whole row of serials
copied from the spreadsheet.
"""

import re
from typing import List, NamedTuple

ASSET_ID_PARAM = re.compile(r"AssetID=(\d+)", re.IGNORECASE | re.ASCII)
TRAILING_DIGITS = re.compile(r"([0-9]+)\s*$")
TOKEN_SEPARATORS = re.compile(r"[\s,.;|]+")
SERIAL_SEPARATORS = re.compile(r"[\s,.;]+")
ASSET_ID_TOKEN = re.compile(r"^\d{4,}$", re.ASCII)
SERIAL_TOKEN = re.compile(r"^[a-z0-9]+$", re.IGNORECASE | re.ASCII)


class ExtractedTokens(NamedTuple):
    asset_ids: List[str]
    serials: List[str]


def _is_url(value: str) -> bool:
    return value.startswith("http://") or value.startswith("https://")


def _unique(values: List[str]) -> List[str]:
    return list(dict.fromkeys(values))


def extract_tokens(text: str) -> ExtractedTokens:
    """
    Split raw scanner input into candidate asset IDs and serial numbers.

    - ``AssetID=<digits>`` anywhere in the text is an asset ID
    - a URL ending in digits contributes that trailing digit run
    - remaining tokens: 4+ digits is an asset ID, other alphanumerics are serials

    Both lists are de-duplicated, first occurrence wins.
    """
    raw = (text or "").strip()
    if not raw:
        return ExtractedTokens([], [])

    asset_ids: List[str] = []
    serials: List[str] = []

    asset_ids.extend(ASSET_ID_PARAM.findall(raw))

    if _is_url(raw):
        match = TRAILING_DIGITS.search(raw)
        if match:
            asset_ids.append(match.group(1))

    for part in TOKEN_SEPARATORS.split(raw):
        part = part.strip()
        if not part or _is_url(part):
            continue
        if ASSET_ID_TOKEN.match(part):
            asset_ids.append(part)
        elif SERIAL_TOKEN.match(part):
            serials.append(part)

    return ExtractedTokens(_unique(asset_ids), _unique(serials))


def split_serials(value) -> List[str]:
    """Split a "Serial/Lot Numbers" cell into distinct serials."""
    if value is None:
        return []
    text = str(value).strip()
    if not text:
        return []
    return _unique([p for p in SERIAL_SEPARATORS.split(text) if p.strip()])
