"""
Exception hierarchy for the bank management system.

Domain errors carry an ``ErrorKind`` and a message suitable for direct
display; the transaction engine converts them into failed OperationResults.
Storage errors are raised by the persistence backends.
"""

from typing import Optional

from .results import ErrorKind


class BankingError(Exception):
    """Base class for all bank management errors"""

    kind: Optional[ErrorKind] = None

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidAmountError(BankingError):
    kind = ErrorKind.INVALID_AMOUNT


class SameAccountError(BankingError):
    kind = ErrorKind.SAME_ACCOUNT


class AccountNotFoundError(BankingError):
    kind = ErrorKind.ACCOUNT_NOT_FOUND


class InsufficientFundsError(BankingError):
    kind = ErrorKind.INSUFFICIENT_FUNDS


class ValidationError(BankingError, ValueError):
    """Invalid account profile, PIN or opening balance"""


class StorageError(BankingError):
    """Base class for persistence failures"""


class UniqueConstraintError(StorageError):
    """A record would duplicate a value in a uniquely constrained field"""

    def __init__(self, table: str, field: str, value):
        super().__init__(f"Duplicate value for {table}.{field}: {value}")
        self.table = table
        self.field = field
        self.value = value


class PersistenceUnavailableError(StorageError):
    """The storage backend is unreachable, locked past its timeout or closed"""

    kind = ErrorKind.PERSISTENCE_UNAVAILABLE
