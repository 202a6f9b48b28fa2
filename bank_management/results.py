"""
Operation Results Module

Structured results returned by every money-movement and authentication
operation. Callers display ``message`` verbatim and use ``success`` to decide
whether to refresh any account state they hold.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorKind(Enum):
    """Failure categories reported in operation results"""
    INVALID_AMOUNT = "invalid_amount"
    SAME_ACCOUNT = "same_account"
    ACCOUNT_NOT_FOUND = "account_not_found"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    TRANSFER_FAILED = "transfer_failed"
    TRANSACTION_FAILED = "transaction_failed"
    INVALID_CREDENTIALS = "invalid_credentials"
    PERSISTENCE_UNAVAILABLE = "persistence_unavailable"


@dataclass(frozen=True)
class OperationResult:
    """
    Outcome of a core operation.

    ``data`` holds the produced record(s): an Account for authentication, a
    Transaction for deposits and withdrawals, and a TransferRecords pair for
    transfers.
    """
    success: bool
    message: str
    data: Any = None
    error: Optional[ErrorKind] = None

    @classmethod
    def ok(cls, message: str, data: Any = None) -> 'OperationResult':
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, error: ErrorKind, message: str) -> 'OperationResult':
        return cls(success=False, message=message, error=error)
