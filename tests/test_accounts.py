"""
Test suite for the account directory

Tests account opening, PIN authentication, profile updates, soft
deactivation and lookups.
"""

import pytest
from decimal import Decimal

from bank_management.accounts import AccountProfile, AccountType, INVALID_CREDENTIALS_MESSAGE
from bank_management.audit import AuditEventType
from bank_management.config import BankConfig
from bank_management.exceptions import ValidationError
from bank_management.results import ErrorKind
from bank_management.security import SecretHasher
from bank_management.storage import InMemoryStorage
from bank_management.system import BankingSystem
from bank_management.transactions import TransactionType


def make_profile(name="John Doe", email="john.doe@example.com"):
    return AccountProfile(name, email, "555-0101", "123 Main St")


class TestAccountDirectory:
    """Test account directory functionality"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.system = BankingSystem(
            BankConfig(database_url="memory://"), storage=self.storage, hasher=SecretHasher(n=16)
        )
        self.directory = self.system.directory

    def test_create_account(self):
        """Test opening an account with an opening balance"""
        account = self.directory.create_account(
            make_profile(), "1234", Decimal("500.00"), AccountType.CHECKING
        )

        assert account.account_number == "ACC001"
        assert account.account_type == AccountType.CHECKING
        assert account.balance == Decimal("500.00")
        assert account.is_active
        assert account.pin_hash != "1234"
        stored_data = self.storage.load("accounts", account.id)
        assert "pin" not in stored_data
        assert stored_data["pin_hash"].startswith("scrypt$")

        stored = self.directory.get_account_by_number("ACC001")
        assert stored.id == account.id
        assert stored.balance == Decimal("500.00")

    def test_opening_balance_is_recorded_as_deposit(self):
        account = self.directory.create_account(make_profile(), "1234", "250.75")

        history = self.system.reporting.transaction_history(account.account_number)
        assert len(history) == 1
        assert history[0].transaction_type == TransactionType.DEPOSIT
        assert history[0].amount == Decimal("250.75")
        assert history[0].balance_after == Decimal("250.75")
        assert history[0].description == "Initial deposit"

    def test_zero_opening_balance_records_nothing(self):
        account = self.directory.create_account(make_profile(), "1234")

        assert account.balance == Decimal("0.00")
        assert self.storage.count("transactions") == 0

    def test_account_numbers_increase(self):
        numbers = [
            self.directory.create_account(make_profile(email=f"user{i}@example.com"), "1234").account_number
            for i in range(3)
        ]
        assert numbers == ["ACC001", "ACC002", "ACC003"]

    @pytest.mark.parametrize("profile,pin,balance", [
        (make_profile(name=""), "1234", "0"),
        (make_profile(name="   "), "1234", "0"),
        (make_profile(email="not-an-email"), "1234", "0"),
        (make_profile(), "123", "0"),
        (make_profile(), "12345", "0"),
        (make_profile(), "12a4", "0"),
        (make_profile(), "", "0"),
        (make_profile(), "1234", "-1.00"),
        (make_profile(), "1234", "lots"),
        (make_profile(), "1234", "1e30"),
    ])
    def test_create_account_validation(self, profile, pin, balance):
        with pytest.raises(ValidationError):
            self.directory.create_account(profile, pin, balance)
        assert self.storage.count("accounts") == 0

    def test_authenticate_success(self):
        account = self.directory.create_account(make_profile(), "1234", "10")

        result = self.directory.authenticate(account.account_number, "1234")

        assert result.success
        assert result.message == "Welcome, John Doe!"
        assert result.data.id == account.id

    def test_authentication_failures_are_indistinguishable(self):
        """Unknown account, wrong PIN and inactive account look the same"""
        self.directory.create_account(make_profile(), "1234")
        inactive = self.directory.create_account(make_profile(email="b@example.com"), "5678")
        self.directory.deactivate_account(inactive.account_number)

        attempts = [
            self.directory.authenticate("ACC001", "9999"),
            self.directory.authenticate("ACC999", "1234"),
            self.directory.authenticate(inactive.account_number, "5678"),
            self.directory.authenticate("ACC001", ""),
        ]

        for result in attempts:
            assert not result.success
            assert result.error == ErrorKind.INVALID_CREDENTIALS
            assert result.message == INVALID_CREDENTIALS_MESSAGE
            assert result.data is None

    def test_authentication_is_audited(self):
        account = self.directory.create_account(make_profile(), "1234")
        self.directory.authenticate(account.account_number, "1234")
        self.directory.authenticate(account.account_number, "0000")

        events = self.system.audit_trail.get_events_for_entity("account", account.id)
        types = [event.event_type for event in events]
        assert types == [
            AuditEventType.ACCOUNT_CREATED,
            AuditEventType.LOGIN_SUCCESS,
            AuditEventType.LOGIN_FAILED,
        ]

    def test_update_profile(self):
        account = self.directory.create_account(make_profile(), "1234", "100")

        updated = self.directory.update_profile(
            account.account_number,
            {"account_holder_name": "Johnny Doe", "email": "", "phone_number": "  ", "address": "9 New Rd"}
        )

        assert updated.account_holder_name == "Johnny Doe"
        assert updated.email == "john.doe@example.com"  # blank keeps current value
        assert updated.phone_number == "555-0101"
        assert updated.address == "9 New Rd"
        assert updated.balance == Decimal("100.00")
        assert updated.account_number == account.account_number

    def test_update_profile_changes_pin(self):
        account = self.directory.create_account(make_profile(), "1234")

        self.directory.update_profile(account.account_number, {}, new_plain_pin="4321")

        assert not self.directory.authenticate(account.account_number, "1234").success
        assert self.directory.authenticate(account.account_number, "4321").success

    def test_update_profile_rejects_bad_input(self):
        account = self.directory.create_account(make_profile(), "1234")

        with pytest.raises(ValidationError):
            self.directory.update_profile(account.account_number, {"balance": "1000000"})
        with pytest.raises(ValidationError):
            self.directory.update_profile(account.account_number, {}, new_plain_pin="12")
        with pytest.raises(ValidationError):
            self.directory.update_profile(account.account_number, {"email": "broken"})

        # A rejected update leaves the stored profile untouched
        assert self.directory.get_account_by_number(account.account_number).email == "john.doe@example.com"

    def test_update_profile_unknown_account(self):
        assert self.directory.update_profile("ACC404", {"address": "Nowhere"}) is None

    def test_deactivate_account(self):
        account = self.directory.create_account(make_profile(), "1234")

        assert self.directory.deactivate_account(account.account_number)
        assert self.directory.deactivate_account(account.account_number)  # idempotent
        assert not self.directory.deactivate_account("ACC404")

        assert self.directory.get_account_by_number(account.account_number) is None
        assert self.directory.get_account(account.id).is_active is False
        assert self.directory.list_accounts() == []

    def test_search_accounts(self):
        self.directory.create_account(make_profile("John Doe", "john@example.com"), "1234")
        self.directory.create_account(make_profile("Jane Smith", "jane@example.com"), "1234")
        gone = self.directory.create_account(make_profile("Joan Gone", "joan@example.com"), "1234")
        self.directory.deactivate_account(gone.account_number)

        assert [a.account_holder_name for a in self.directory.search_accounts("J")] == ["John Doe", "Jane Smith"]
        assert [a.account_number for a in self.directory.search_accounts("ACC002")] == ["ACC002"]
        assert len(self.directory.search_accounts("jane@")) == 1
        # Case-sensitive
        assert self.directory.search_accounts("john doe") == []

    def test_list_accounts_by_type(self):
        self.directory.create_account(make_profile(email="a@example.com"), "1234", account_type=AccountType.SAVINGS)
        self.directory.create_account(make_profile(email="b@example.com"), "1234", account_type=AccountType.BUSINESS)
        self.directory.create_account(make_profile(email="c@example.com"), "1234", account_type=AccountType.SAVINGS)

        savings = self.directory.list_accounts_by_type(AccountType.SAVINGS)
        assert [a.account_number for a in savings] == ["ACC001", "ACC003"]
        assert self.directory.list_accounts_by_type(AccountType.FIXED_DEPOSIT) == []
        assert [a.account_number for a in self.directory.list_accounts()] == ["ACC001", "ACC002", "ACC003"]

    def test_listings_order_numbers_numerically(self):
        # ACC1000 lists after ACC999 even though it sorts first as text
        self.storage.save("accounts", "imported", {"id": "imported", "account_number": "ACC998"})
        for email in ("a@example.com", "b@example.com"):
            self.directory.create_account(make_profile(email=email), "1234")
        self.storage.delete("accounts", "imported")

        assert [a.account_number for a in self.directory.list_accounts()] == ["ACC999", "ACC1000"]
        assert [a.account_number for a in self.directory.list_accounts_by_type(AccountType.SAVINGS)] == [
            "ACC999", "ACC1000"
        ]

    def test_account_type_labels(self):
        assert AccountType.FIXED_DEPOSIT.label == "Fixed Deposit"
        assert AccountType.SAVINGS.label == "Savings"
