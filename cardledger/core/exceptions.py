"""
cardledger exception hierarchy.

All exceptions inherit from CardLedgerError for easy catching.
"""


class CardLedgerError(Exception):
    """Base exception for all cardledger errors"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ValidationError(CardLedgerError):
    """Raised when an identity or argument is malformed"""
    pass


class AuthorizationError(CardLedgerError):
    """Raised when a principal may not perform an operation"""
    pass


class Unauthorized(AuthorizationError):
    """Raised when a mutating call does not come from the ledger owner"""
    pass


class RegistrationError(CardLedgerError):
    """Raised when a participant's registration state forbids the call"""
    pass


class AlreadyRegistered(RegistrationError):
    """Raised when registering a participant that is already registered"""
    pass


class NotRegistered(RegistrationError):
    """Raised when a call targets a participant with no registration"""
    pass


class JournalError(CardLedgerError):
    """Raised when the journal cannot be written or read"""
    pass


class LedgerIntegrityError(CardLedgerError):
    """Raised when a journal fails verification while being opened"""

    def __init__(self, message: str, details: dict = None, violations: list = None):
        super().__init__(message, details)
        self.violations = violations or []


class ConfigError(CardLedgerError):
    """Raised when configuration cannot be loaded"""
    pass
