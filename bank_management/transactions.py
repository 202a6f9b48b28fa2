"""
Transaction Processing Module

Deposits, withdrawals, transfers and interest credits. Every operation reads
the current balance, validates, mutates the balance and writes its
transaction record(s) as one atomic unit of work; a transfer either posts both
of its records and both balance changes or nothing at all.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, NamedTuple, Optional
from enum import Enum
import uuid

from .accounts import Account, AccountDirectory
from .audit import AuditTrail, AuditEventType
from .exceptions import (
    AccountNotFoundError, BankingError, InsufficientFundsError, InvalidAmountError,
    PersistenceUnavailableError, SameAccountError
)
from .identifiers import IdentifierGenerator, number_sequence
from .logging_config import get_logger, log_action
from .money import ZERO, AmountLike, format_amount, to_amount
from .results import ErrorKind, OperationResult
from .storage import StorageInterface, StorageRecord


ACCOUNT_NOT_FOUND_MESSAGE = "Account not found or inactive."
TRANSFER_FAILED_MESSAGE = "Transfer failed. Please try again."
UNAVAILABLE_MESSAGE = "Service temporarily unavailable. Please try again later."


class TransactionType(Enum):
    """Types of banking transactions"""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"
    INTEREST_CREDIT = "interest_credit"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


class EntryDirection(Enum):
    """Effect of a transaction on its owning account's balance"""
    CREDIT = "credit"  # Balance increases
    DEBIT = "debit"    # Balance decreases


@dataclass
class Transaction(StorageRecord):
    """
    Immutable record of one balance change on one account
    """
    transaction_number: str
    account_id: str
    account_number: str
    transaction_type: TransactionType
    direction: EntryDirection
    amount: Decimal
    balance_after: Decimal  # Snapshot at commit time, never recomputed
    transaction_date: datetime
    description: Optional[str] = None
    to_account_number: Optional[str] = None  # Counterparty, transfers only

    def __post_init__(self):
        if self.amount <= ZERO:
            raise ValueError("Transaction amount must be positive")

    @property
    def signed_amount(self) -> Decimal:
        """Amount with the sign of its effect on the balance"""
        return self.amount if self.direction == EntryDirection.CREDIT else -self.amount

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['transaction_type'] = self.transaction_type.value
        result['direction'] = self.direction.value
        result['transaction_date'] = self.transaction_date.isoformat()
        result['sequence'] = number_sequence(self.transaction_number)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        """Convert a stored dictionary to a Transaction"""
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            transaction_number=data['transaction_number'],
            account_id=data['account_id'],
            account_number=data['account_number'],
            transaction_type=TransactionType(data['transaction_type']),
            direction=EntryDirection(data['direction']),
            amount=Decimal(data['amount']),
            balance_after=Decimal(data['balance_after']),
            transaction_date=datetime.fromisoformat(data['transaction_date']),
            description=data.get('description'),
            to_account_number=data.get('to_account_number')
        )


@dataclass(frozen=True)
class TransferRecords:
    """The matched pair of records produced by one transfer"""
    outgoing: Transaction
    incoming: Transaction


class _Posting(NamedTuple):
    """How a single-account operation is described and applied"""
    direction: EntryDirection
    default_description: str
    invalid_amount_message: str
    verb: str
    failure_label: str
    audit_event: AuditEventType


_POSTINGS = {
    TransactionType.DEPOSIT: _Posting(
        EntryDirection.CREDIT, "Cash deposit",
        "Deposit amount must be greater than zero.", "deposited", "Deposit",
        AuditEventType.DEPOSIT_POSTED
    ),
    TransactionType.WITHDRAWAL: _Posting(
        EntryDirection.DEBIT, "Cash withdrawal",
        "Withdrawal amount must be greater than zero.", "withdrew", "Withdrawal",
        AuditEventType.WITHDRAWAL_POSTED
    ),
    TransactionType.INTEREST_CREDIT: _Posting(
        EntryDirection.CREDIT, "Interest credit",
        "Interest amount must be greater than zero.", "credited interest of", "Interest credit",
        AuditEventType.INTEREST_POSTED
    ),
}


class TransactionEngine:
    """
    Applies money movements to accounts and records them
    """

    def __init__(
        self,
        storage: StorageInterface,
        directory: AccountDirectory,
        identifiers: IdentifierGenerator,
        audit_trail: AuditTrail
    ):
        self.storage = storage
        self.directory = directory
        self.identifiers = identifiers
        self.audit_trail = audit_trail
        self.table_name = "transactions"
        self.logger = get_logger("bank.transactions")

        self.storage.add_unique_constraint(self.table_name, "transaction_number")
        self.directory.set_opening_deposit_handler(self._record_opening_deposit)

    def deposit(self, account_number: str, amount: AmountLike, description: Optional[str] = None) -> OperationResult:
        """Credit cash to an active account"""
        return self._post(TransactionType.DEPOSIT, account_number, amount, description)

    def withdraw(self, account_number: str, amount: AmountLike, description: Optional[str] = None) -> OperationResult:
        """Debit cash from an active account; the balance may not go below zero"""
        return self._post(TransactionType.WITHDRAWAL, account_number, amount, description)

    def credit_interest(
        self, account_number: str, amount: AmountLike, description: Optional[str] = None
    ) -> OperationResult:
        """Post an externally computed interest amount to an active account"""
        return self._post(TransactionType.INTEREST_CREDIT, account_number, amount, description)

    def transfer(
        self,
        from_account_number: str,
        to_account_number: str,
        amount: AmountLike,
        description: Optional[str] = None
    ) -> OperationResult:
        """
        Move money between two active accounts

        Both accounts are re-read inside the unit of work. On success the
        result carries a TransferRecords pair whose records cross-reference
        each other's account through ``to_account_number``.
        """
        try:
            value = self._validated_amount(amount, "Transfer amount must be greater than zero.")
            if from_account_number == to_account_number:
                raise SameAccountError("Cannot transfer to the same account.")
        except BankingError as e:
            return self._failure(e, "transfer", from_account_number)

        try:
            with self.storage.atomic():
                source = self._load_for_update(from_account_number, "Source account not found or inactive.")
                destination = self._load_for_update(
                    to_account_number, "Destination account not found or inactive."
                )
                if source.balance < value:
                    raise InsufficientFundsError("Insufficient funds in source account.")

                now = datetime.now(timezone.utc)
                outgoing = self._apply(
                    source, value, EntryDirection.DEBIT, TransactionType.TRANSFER,
                    description or f"Transfer to {destination.account_holder_name}",
                    now, counterparty=to_account_number
                )
                incoming = self._apply(
                    destination, value, EntryDirection.CREDIT, TransactionType.TRANSFER,
                    description or f"Transfer from {source.account_holder_name}",
                    now, counterparty=from_account_number
                )

                self.audit_trail.log_event(
                    event_type=AuditEventType.TRANSFER_POSTED,
                    entity_type="transaction",
                    entity_id=outgoing.id,
                    metadata={
                        "from_account": from_account_number,
                        "to_account": to_account_number,
                        "amount": value,
                        "outgoing_transaction": outgoing.transaction_number,
                        "incoming_transaction": incoming.transaction_number
                    }
                )
        except (AccountNotFoundError, InsufficientFundsError, PersistenceUnavailableError) as e:
            return self._failure(e, "transfer", from_account_number)
        except Exception:
            self.logger.exception(
                "Transfer %s -> %s of %s failed and was rolled back",
                from_account_number, to_account_number, value
            )
            return OperationResult.fail(ErrorKind.TRANSFER_FAILED, TRANSFER_FAILED_MESSAGE)

        log_action(
            self.logger, "info", "Transfer posted",
            account_number=from_account_number, action="transfer",
            resource=f"transaction:{outgoing.transaction_number}",
            extra={"to_account": to_account_number, "amount": str(value)}
        )
        return OperationResult.ok(
            f"Successfully transferred {format_amount(value)} from {from_account_number} to {to_account_number}.",
            TransferRecords(outgoing=outgoing, incoming=incoming)
        )

    def _post(
        self,
        transaction_type: TransactionType,
        account_number: str,
        amount: AmountLike,
        description: Optional[str]
    ) -> OperationResult:
        """Single-account credit or debit"""
        posting = _POSTINGS[transaction_type]
        action = transaction_type.value

        try:
            value = self._validated_amount(amount, posting.invalid_amount_message)
            if self.directory.get_account_by_number(account_number) is None:
                raise AccountNotFoundError(ACCOUNT_NOT_FOUND_MESSAGE)
        except BankingError as e:
            return self._failure(e, action, account_number)

        try:
            with self.storage.atomic():
                account = self._load_for_update(account_number, ACCOUNT_NOT_FOUND_MESSAGE)
                if posting.direction == EntryDirection.DEBIT and account.balance < value:
                    raise InsufficientFundsError("Insufficient funds.")

                transaction = self._apply(
                    account, value, posting.direction, transaction_type,
                    description or posting.default_description,
                    datetime.now(timezone.utc)
                )
                self._audit_posting(posting.audit_event, transaction)
        except (AccountNotFoundError, InsufficientFundsError, PersistenceUnavailableError) as e:
            return self._failure(e, action, account_number)
        except Exception:
            self.logger.exception("%s on %s failed and was rolled back", posting.failure_label, account_number)
            return OperationResult.fail(
                ErrorKind.TRANSACTION_FAILED, f"{posting.failure_label} failed. Please try again."
            )

        log_action(
            self.logger, "info", f"{posting.failure_label} posted",
            account_number=account_number, action=action,
            resource=f"transaction:{transaction.transaction_number}",
            extra={"amount": str(value), "balance_after": str(transaction.balance_after)}
        )
        return OperationResult.ok(
            f"Successfully {posting.verb} {format_amount(value)}. "
            f"New balance: {format_amount(transaction.balance_after)}",
            transaction
        )

    def _record_opening_deposit(self, account: Account, amount: Decimal) -> Account:
        """Record an opening balance; runs inside create_account's unit of work"""
        transaction = self._apply(
            account, amount, EntryDirection.CREDIT, TransactionType.DEPOSIT,
            "Initial deposit", datetime.now(timezone.utc)
        )
        self._audit_posting(AuditEventType.DEPOSIT_POSTED, transaction)
        return account

    @staticmethod
    def _validated_amount(amount: AmountLike, message: str) -> Decimal:
        try:
            value = to_amount(amount)
        except InvalidAmountError:
            raise InvalidAmountError(message)
        if value <= ZERO:
            raise InvalidAmountError(message)
        return value

    def _load_for_update(self, account_number: str, not_found_message: str) -> Account:
        """Fresh read of an active account inside the current unit of work"""
        account = self.directory.get_account_by_number(account_number)
        if account is None:
            raise AccountNotFoundError(not_found_message)
        return account

    def _apply(
        self,
        account: Account,
        amount: Decimal,
        direction: EntryDirection,
        transaction_type: TransactionType,
        description: str,
        now: datetime,
        counterparty: Optional[str] = None
    ) -> Transaction:
        """Mutate the balance and write the matching record; caller owns the unit of work"""
        if direction == EntryDirection.CREDIT:
            new_balance = account.balance + amount
        else:
            new_balance = account.balance - amount
        if new_balance < ZERO:
            raise InsufficientFundsError("Insufficient funds.")

        account.balance = new_balance
        account.updated_at = now

        transaction = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            transaction_number=self.identifiers.next_transaction_number(),
            account_id=account.id,
            account_number=account.account_number,
            transaction_type=transaction_type,
            direction=direction,
            amount=amount,
            balance_after=new_balance,
            transaction_date=now,
            description=description,
            to_account_number=counterparty
        )

        self.storage.save(self.directory.accounts_table, account.id, account.to_dict())
        self.storage.save(self.table_name, transaction.id, transaction.to_dict())
        return transaction

    def _audit_posting(self, event_type: AuditEventType, transaction: Transaction) -> None:
        self.audit_trail.log_event(
            event_type=event_type,
            entity_type="transaction",
            entity_id=transaction.id,
            metadata={
                "transaction_number": transaction.transaction_number,
                "account_number": transaction.account_number,
                "amount": transaction.amount,
                "balance_after": transaction.balance_after
            }
        )

    def _failure(self, error: BankingError, action: str, account_number: str) -> OperationResult:
        """Convert a domain or availability error into a failed result"""
        if isinstance(error, PersistenceUnavailableError):
            self.logger.error("%s on %s failed: storage unavailable (%s)", action, account_number, error)
            return OperationResult.fail(ErrorKind.PERSISTENCE_UNAVAILABLE, UNAVAILABLE_MESSAGE)

        log_action(
            self.logger, "warning", error.message,
            account_number=account_number, action=action,
            extra={"error": error.kind.value if error.kind else None}
        )
        if error.kind is None:
            return OperationResult.fail(ErrorKind.TRANSACTION_FAILED, error.message)
        return OperationResult.fail(error.kind, error.message)
