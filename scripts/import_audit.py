"""Create an audit and load its rows from a spreadsheet, without the web UI.

Usage:
  python scripts/import_audit.py inventory.xlsx --name "Main warehouse Q3" --notes "Aisles 1-12"

The database comes from DATABASE_URL, as for the API.
"""
import argparse
import logging
import sys
from pathlib import Path

from audit_core.app.db import SessionLocal, create_db_and_tables
from audit_core.app import models
from audit_core.app.excel import read_first_sheet, import_rows
from audit_core.app.services import SpreadsheetError

logger = logging.getLogger("import_audit")


def main():
    parser = argparse.ArgumentParser(description="Import an audit spreadsheet")
    parser.add_argument('file', help='.xlsx or .csv file; only the first sheet is read')
    parser.add_argument('--name', help='audit name (defaults to the file name)')
    parser.add_argument('--notes')
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    path = Path(args.file)
    name = (args.name or path.stem).strip()
    if not name:
        parser.error('audit name is required')

    create_db_and_tables()
    db = SessionLocal()
    try:
        df = read_first_sheet(path.read_bytes(), path.name)
        audit = models.Audit(name=name, notes=(args.notes or '').strip() or None)
        db.add(audit)
        db.flush()
        created = import_rows(db, audit.id, df)
        db.commit()
        logger.info('Created audit %s (%s) with %d row(s)', audit.id, audit.name, created)
    except SpreadsheetError as e:
        db.rollback()
        logger.error('%s', e)
        sys.exit(1)
    finally:
        db.close()


if __name__ == '__main__':
    main()
