"""
Demo data seeding.

Creates the three demo accounts through the account directory, so their PINs
are hashed and their opening balances are recorded as deposits. Seeding only
happens when the store holds no accounts at all.
"""

from decimal import Decimal
from typing import List

from .accounts import Account, AccountDirectory, AccountProfile, AccountType
from .logging_config import get_logger


logger = get_logger("bank.seed")


DEMO_ACCOUNTS = [
    (
        AccountProfile("John Doe", "john.doe@email.com", "555-0101", "123 Main St, City, State 12345"),
        "1234", Decimal("5000.00"), AccountType.SAVINGS
    ),
    (
        AccountProfile("Jane Smith", "jane.smith@email.com", "555-0102", "456 Oak Ave, City, State 12345"),
        "5678", Decimal("2500.50"), AccountType.CHECKING
    ),
    (
        AccountProfile("Bob Johnson", "bob.johnson@email.com", "555-0103", "789 Pine Rd, City, State 12345"),
        "9876", Decimal("10000.00"), AccountType.BUSINESS
    ),
]


def seed_demo_accounts(directory: AccountDirectory) -> List[Account]:
    """
    Create the demo accounts on an empty store

    Returns:
        The accounts created; empty if any account already existed
    """
    storage = directory.storage
    with storage.atomic():
        if storage.count(directory.accounts_table) > 0:
            logger.debug("Accounts present, skipping demo data")
            return []

        created = [
            directory.create_account(profile, pin, balance, account_type)
            for profile, pin, balance, account_type in DEMO_ACCOUNTS
        ]

    logger.info("Seeded %d demo accounts", len(created))
    return created
