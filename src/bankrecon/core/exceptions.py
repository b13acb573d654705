"""
Custom exceptions for bankrecon.

All bankrecon-specific exceptions inherit from BankReconError for easy catching.
"""


class BankReconError(Exception):
    """Base exception for all bankrecon errors."""

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        self.code = code


class DatabaseError(BankReconError):
    """Database operation errors."""

    def __init__(self, message: str, code: str = "DB_ERROR"):
        super().__init__(message, code)


class ParseError(BankReconError):
    """
    Raised when a statement file cannot be turned into a ParsedStatement.

    Covers malformed or unreadable files as well as structurally valid files
    that yield zero usable transactions.
    """

    def __init__(self, file_format: str, reason: str, code: str = "PARSE_ERROR"):
        super().__init__(f"Failed to parse {file_format} file: {reason}", code)
        self.format = file_format
        self.reason = reason


class UnsupportedFormatError(BankReconError):
    """Raised when no parser is registered for a file extension."""

    def __init__(self, extension: str, supported: list = None, code: str = "UNSUPPORTED_FORMAT"):
        supported = sorted(supported or [])
        super().__init__(
            f"Unsupported file extension '{extension}'. Accepted: {', '.join(supported)}",
            code
        )
        self.extension = extension
        self.supported = supported


class CommitError(BankReconError):
    """
    Raised when an import commit fails and is rolled back.

    The caller sees no partial counts and must re-run the preview before
    retrying, since stored state may have changed.
    """

    def __init__(self, message: str, code: str = "COMMIT_FAILED"):
        super().__init__(message, code)


class AccountNotFoundError(BankReconError):
    """Raised when a bank or account id does not exist."""

    def __init__(self, account_id, kind: str = "account", code: str = "ACCOUNT_NOT_FOUND"):
        super().__init__(f"{kind.capitalize()} not found: {account_id}", code)
        self.account_id = account_id
        self.kind = kind


class ValidationError(BankReconError):
    """Data validation errors."""

    def __init__(self, message: str, field: str = None, code: str = "VALIDATION_ERROR"):
        super().__init__(message, code)
        self.field = field


class UserContextError(BankReconError):
    """Raised when user context is missing or invalid."""

    def __init__(self, message: str = "User context required", code: str = "USER_CONTEXT_ERROR"):
        super().__init__(message, code)
