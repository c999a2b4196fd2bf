"""Error types raised by the catalog, auth, favorites and loan services.

Every error carries a human-readable message meant to be shown to the user
as-is. The HTTP layer maps each class to a status code.
"""


class LibraryError(Exception):
    """Base class for domain errors"""
    pass


class ValidationError(LibraryError, ValueError):
    """Input failed a domain validation rule"""
    pass


class AuthenticationError(LibraryError):
    """Credentials or token were rejected"""
    pass


class BookNotFoundError(LibraryError, LookupError):
    pass


class UserNotFoundError(LibraryError, LookupError):
    pass


class LoanNotFoundError(LibraryError, LookupError):
    pass


class DuplicateUserError(LibraryError):
    pass


class BookUnavailableError(LibraryError):
    """The book is flagged unavailable or every copy is already out"""
    pass


class DuplicateLoanError(LibraryError):
    pass


class LoanLimitExceeded(LibraryError):
    pass


class InvalidLoanTransition(LibraryError):
    """A status change that the loan lifecycle does not allow"""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot change a loan from '{current.value}' to '{target.value}'.")


class ExternalServiceError(LibraryError):
    """An external collaborator is disabled or unreachable"""
    pass
