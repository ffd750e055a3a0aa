"""
Error taxonomy for the EPG pipeline

Every error carries a stable machine-readable code and a human-readable message
that can be rendered directly by callers (progress dialogs, API responses).
"""


class EpgError(Exception):
    """Base class for all EPG pipeline errors"""
    code = "EPG_ERROR"

    def __init__(self, message: str, *, context: dict | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ValidationError(EpgError):
    """Invalid input for a registry or settings operation"""
    code = "VALIDATION_ERROR"


class NotFoundError(EpgError):
    """Unknown EPG source id"""
    code = "NOT_FOUND"


class FetchError(EpgError):
    """Network or HTTP failure while downloading a source"""
    code = "FETCH_FAILED"

    def __init__(self, message: str, *, status_code: int | None = None, context: dict | None = None):
        super().__init__(message, context=context)
        self.status_code = status_code
        if status_code is not None:
            self.context.setdefault("status_code", status_code)


class DecompressionError(EpgError):
    """Downloaded payload is not a valid gzip stream"""
    code = "DECOMPRESSION_FAILED"


class ParseError(EpgError):
    """Document is not well-formed XMLTV"""
    code = "PARSE_FAILED"
