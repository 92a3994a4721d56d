"""
Ledger Error Taxonomy

Every failure the engine surfaces to a caller is a LedgerError subclass
carrying a stable ``code``. The presentation layer maps codes to external
status codes; nothing below it needs to know about HTTP.
"""

from typing import Optional


class LedgerError(Exception):
    """Base class for all ledger failures"""
    code = "ledger_error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class InvalidAmount(LedgerError, ValueError):
    """Malformed monetary amount"""
    code = "invalid_amount"


class NonPositiveAmount(InvalidAmount):
    """Amount must be greater than zero"""
    code = "non_positive_amount"


class Underflow(LedgerError, ValueError):
    """Subtraction would produce a negative amount"""
    code = "underflow"


class ValidationError(LedgerError, ValueError):
    """Invalid request field"""
    code = "validation_error"


class AccountNotFound(LedgerError):
    """Account not found"""
    code = "account_not_found"


class ApplicationNotFound(LedgerError):
    """Application not found"""
    code = "application_not_found"


class Forbidden(LedgerError):
    """Actor lacks ownership or elevated privilege"""
    code = "forbidden"


class InsufficientFunds(LedgerError):
    """Insufficient funds"""
    code = "insufficient_funds"


class SameAccount(LedgerError):
    """Cannot transfer to same account"""
    code = "same_account"


class AlreadyProcessed(LedgerError):
    """Application is no longer pending"""
    code = "already_processed"


class TransientError(LedgerError):
    """Unit of work could not complete; safe to retry"""
    code = "transient"

    def __init__(self, message: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
