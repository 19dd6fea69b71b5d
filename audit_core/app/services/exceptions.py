class AuditError(Exception):
    """Base exception for audit operations"""
    pass


class AuditNotFoundError(AuditError):
    """Raised when the requested audit does not exist"""
    pass


class AuditItemNotFoundError(AuditError):
    """Raised when the requested audit row does not exist"""
    pass


class SpreadsheetError(AuditError):
    """Raised when an uploaded spreadsheet cannot be imported"""
    pass


class InvalidScanError(AuditError):
    """Raised when a scan request carries nothing that can be matched"""
    pass
