"""
Identifier generation for account and transaction numbers.

Numbers come from storage-level atomic counters (``next_sequence``) floored at
the highest numeric suffix already persisted, so records created outside the
generator (imports, fixtures) are never collided with. The numbered fields are
also unique-constrained in storage.
"""

import re
from typing import Dict, Iterable

from .storage import StorageInterface


_SUFFIX = re.compile(r"(\d+)$")


def number_sequence(number: str) -> int:
    """Numeric suffix of an identifier, used as its sort key (ACC1000 -> 1000)"""
    match = _SUFFIX.search(number or "")
    return int(match.group(1)) if match else 0


class IdentifierGenerator:
    """Produces monotonically increasing ACCnnn / TXNnnnnnn numbers"""

    def __init__(
        self,
        storage: StorageInterface,
        accounts_table: str = "accounts",
        transactions_table: str = "transactions",
        account_prefix: str = "ACC",
        account_width: int = 3,
        transaction_prefix: str = "TXN",
        transaction_width: int = 6
    ):
        self.storage = storage
        self.accounts_table = accounts_table
        self.transactions_table = transactions_table
        self.account_prefix = account_prefix
        self.account_width = account_width
        self.transaction_prefix = transaction_prefix
        self.transaction_width = transaction_width
        # Persisted maximum per counter, scanned once; the counter carries it afterwards
        self._floors: Dict[str, int] = {}

    def next_account_number(self) -> str:
        """Next account number, e.g. ACC004"""
        return self._next(self.accounts_table, "account_number", self.account_prefix, self.account_width)

    def next_transaction_number(self) -> str:
        """Next transaction number, e.g. TXN000042"""
        return self._next(
            self.transactions_table, "transaction_number", self.transaction_prefix, self.transaction_width
        )

    def _next(self, table: str, field: str, prefix: str, width: int) -> str:
        name = f"{table}.{field}"
        with self.storage.atomic():
            if name not in self._floors:
                self._floors[name] = self._max_suffix(
                    (record.get(field) for record in self.storage.load_all(table)), prefix
                )
            value = self.storage.next_sequence(name, self._floors[name])
        return f"{prefix}{value:0{width}d}"

    @staticmethod
    def _max_suffix(numbers: Iterable[str], prefix: str) -> int:
        """Highest numeric suffix among numbers carrying ``prefix`` (0 if none)"""
        pattern = re.compile(rf"^{re.escape(prefix)}(\d+)$")
        highest = 0
        for number in numbers:
            match = pattern.match(number or "")
            if match:
                highest = max(highest, int(match.group(1)))
        return highest
