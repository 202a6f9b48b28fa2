"""
Reporting Module

Read-only history and aggregate queries over accounts and transactions.
Transaction lists are ordered newest first (ties broken by transaction
number) and optionally capped to the newest ``limit`` records.
"""

from decimal import Decimal
from datetime import date, datetime, time, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from .accounts import AccountDirectory, AccountType
from .money import ZERO
from .storage import StorageInterface
from .transactions import Transaction, TransactionType


DateBound = Union[datetime, date, None]

_NEWEST_FIRST = ["transaction_date", "sequence"]


@dataclass
class AccountStatistics:
    """Aggregate figures over active accounts"""
    total_accounts: int = 0
    total_balance: Decimal = ZERO
    accounts_by_type: Dict[AccountType, int] = field(default_factory=dict)


def _bound(value: DateBound, end_of_day: bool = False) -> Optional[str]:
    """Stored-form (UTC ISO-8601) bound for a date range predicate"""
    if value is None:
        return None
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.max if end_of_day else time.min)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class ReportingService:
    """
    Queries used by the account and admin menus
    """

    def __init__(self, storage: StorageInterface, directory: AccountDirectory,
                 transactions_table: str = "transactions"):
        self.storage = storage
        self.directory = directory
        self.transactions_table = transactions_table

    def transaction_history(
        self,
        account_number: str,
        limit: Optional[int] = None,
        from_date: DateBound = None,
        to_date: DateBound = None
    ) -> List[Transaction]:
        """
        Transactions owned by one account, newest first

        Args:
            account_number: Owning account
            limit: Keep only the newest ``limit`` records
            from_date: Inclusive lower bound; a plain date means start of day (UTC)
            to_date: Inclusive upper bound; a plain date means end of day (UTC)
        """
        ranges = {}
        if from_date is not None or to_date is not None:
            ranges["transaction_date"] = (_bound(from_date), _bound(to_date, end_of_day=True))
        return self._query({"account_number": account_number}, ranges, limit)

    def all_transactions(self, limit: Optional[int] = None) -> List[Transaction]:
        """Every transaction in the bank, newest first"""
        return self._query({}, None, limit)

    def transactions_by_type(self, transaction_type: TransactionType,
                             limit: Optional[int] = None) -> List[Transaction]:
        return self._query({"transaction_type": transaction_type.value}, None, limit)

    def account_balance(self, account_number: str) -> Optional[Decimal]:
        """Current balance of an active account, None if not found"""
        account = self.directory.get_account_by_number(account_number)
        return account.balance if account else None

    def account_statistics(self) -> AccountStatistics:
        """Count, total balance and per-type counts over all active accounts"""
        stats = AccountStatistics()
        for account in self.directory.list_accounts():
            stats.total_accounts += 1
            stats.total_balance += account.balance
            stats.accounts_by_type[account.account_type] = (
                stats.accounts_by_type.get(account.account_type, 0) + 1
            )
        return stats

    def _query(self, filters, ranges, limit: Optional[int]) -> List[Transaction]:
        if limit is not None and limit <= 0:
            return []
        rows = self.storage.find(
            self.transactions_table,
            filters,
            ranges=ranges or None,
            order_by=_NEWEST_FIRST,
            descending=True,
            limit=limit
        )
        return [Transaction.from_dict(row) for row in rows]
