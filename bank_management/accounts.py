"""
Account Management Module

The account directory: opening accounts, PIN authentication, profile updates,
soft deactivation and account lookups. Balances are read here but only ever
changed by the transaction engine.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from enum import Enum
import re
import uuid

from .audit import AuditTrail, AuditEventType
from .exceptions import ValidationError, InvalidAmountError
from .identifiers import IdentifierGenerator, number_sequence
from .logging_config import get_logger, log_action
from .money import ZERO, AmountLike, to_amount
from .results import ErrorKind, OperationResult
from .security import SecretHasher
from .storage import StorageInterface, StorageRecord


INVALID_CREDENTIALS_MESSAGE = "Invalid account number or PIN."

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class AccountType(Enum):
    """Banking product types"""
    SAVINGS = "savings"
    CHECKING = "checking"
    BUSINESS = "business"
    FIXED_DEPOSIT = "fixed_deposit"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


@dataclass
class AccountProfile:
    """Mutable holder details"""
    account_holder_name: str
    email: str
    phone_number: str
    address: str

    PROFILE_FIELDS = ("account_holder_name", "email", "phone_number", "address")

    def validate(self) -> None:
        """Presence and basic format checks"""
        for name in self.PROFILE_FIELDS:
            value = getattr(self, name)
            if not value or not value.strip():
                raise ValidationError(f"{name.replace('_', ' ').capitalize()} is required.")
        if not _EMAIL.match(self.email.strip()):
            raise ValidationError("Email address is not valid.")


@dataclass
class Account(StorageRecord):
    """
    Bank account. ``created_at`` is the account's creation date.
    """
    account_number: str
    account_holder_name: str
    email: str
    phone_number: str
    address: str
    account_type: AccountType
    pin_hash: str
    balance: Decimal = ZERO
    is_active: bool = True

    @property
    def profile(self) -> AccountProfile:
        return AccountProfile(
            account_holder_name=self.account_holder_name,
            email=self.email,
            phone_number=self.phone_number,
            address=self.address
        )

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['account_type'] = self.account_type.value
        result['sequence'] = number_sequence(self.account_number)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        """Convert a stored dictionary to an Account"""
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_number=data['account_number'],
            account_holder_name=data['account_holder_name'],
            email=data['email'],
            phone_number=data['phone_number'],
            address=data['address'],
            account_type=AccountType(data['account_type']),
            pin_hash=data['pin_hash'],
            balance=Decimal(data['balance']),
            is_active=data['is_active']
        )


class AccountDirectory:
    """
    Manages account lifecycle, authentication and lookups
    """

    def __init__(
        self,
        storage: StorageInterface,
        identifiers: IdentifierGenerator,
        hasher: SecretHasher,
        audit_trail: AuditTrail,
        pin_length: int = 4
    ):
        self.storage = storage
        self.identifiers = identifiers
        self.hasher = hasher
        self.audit_trail = audit_trail
        self.pin_length = pin_length
        self.accounts_table = "accounts"
        self.logger = get_logger("bank.accounts")

        self.storage.add_unique_constraint(self.accounts_table, "account_number")

        # Set by the transaction engine; records opening balances as deposits
        self._opening_deposit: Optional[Callable[[Account, Decimal], Account]] = None

    def set_opening_deposit_handler(self, handler: Callable[[Account, Decimal], Account]) -> None:
        """Register the callable that records an opening deposit inside create_account"""
        self._opening_deposit = handler

    def _validate_pin(self, pin: Optional[str]) -> None:
        if not pin or len(pin) != self.pin_length or not pin.isdigit():
            raise ValidationError(f"PIN must be {self.pin_length} digits.")

    def create_account(
        self,
        profile: AccountProfile,
        plain_pin: str,
        initial_balance: AmountLike = ZERO,
        account_type: AccountType = AccountType.SAVINGS
    ) -> Account:
        """
        Open a new account

        Args:
            profile: Holder details
            plain_pin: Cleartext PIN; only its hash is stored
            initial_balance: Opening balance, recorded as an "Initial deposit" transaction
            account_type: Product type, fixed for the account's lifetime

        Returns:
            The stored Account including its generated account number

        Raises:
            ValidationError: missing profile fields, malformed PIN or negative opening balance
        """
        profile.validate()
        self._validate_pin(plain_pin)
        try:
            opening = to_amount(initial_balance)
        except InvalidAmountError:
            raise ValidationError("Invalid initial deposit amount.")
        if opening < ZERO:
            raise ValidationError("Invalid initial deposit amount.")

        pin_hash = self.hasher.hash_secret(plain_pin)

        with self.storage.atomic():
            now = datetime.now(timezone.utc)
            account = Account(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                account_number=self.identifiers.next_account_number(),
                account_holder_name=profile.account_holder_name.strip(),
                email=profile.email.strip(),
                phone_number=profile.phone_number.strip(),
                address=profile.address.strip(),
                account_type=account_type,
                pin_hash=pin_hash
            )
            self._save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_CREATED,
                entity_type="account",
                entity_id=account.id,
                metadata={
                    "account_number": account.account_number,
                    "account_type": account_type.value,
                    "initial_balance": opening
                }
            )

            if opening > ZERO:
                if self._opening_deposit is None:
                    raise RuntimeError("No opening deposit handler registered")
                account = self._opening_deposit(account, opening)

        log_action(
            self.logger, "info", f"Account created: {account.account_number}",
            account_number=account.account_number, action="create_account",
            resource=f"account:{account.id}",
            extra={"account_type": account_type.value, "initial_balance": str(opening)}
        )
        return account

    def authenticate(self, account_number: str, plain_pin: str) -> OperationResult:
        """
        Authenticate an account holder

        Unknown, inactive and wrong-PIN attempts all fail with the same
        error kind and message.
        """
        account = self.get_account_by_number(account_number)
        if account is None or not self.hasher.verify_secret(plain_pin or "", account.pin_hash):
            reason = "unknown_or_inactive" if account is None else "wrong_pin"
            self.logger.info("Login failed for %s (%s)", account_number, reason)
            if account is not None:
                self.audit_trail.log_event(
                    event_type=AuditEventType.LOGIN_FAILED,
                    entity_type="account",
                    entity_id=account.id,
                    metadata={"account_number": account_number}
                )
            return OperationResult.fail(ErrorKind.INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE)

        self.audit_trail.log_event(
            event_type=AuditEventType.LOGIN_SUCCESS,
            entity_type="account",
            entity_id=account.id,
            metadata={"account_number": account_number}
        )
        log_action(
            self.logger, "info", "Login succeeded",
            account_number=account_number, action="authenticate"
        )
        return OperationResult.ok(f"Welcome, {account.account_holder_name}!", account)

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by internal id, active or not"""
        account_dict = self.storage.load(self.accounts_table, account_id)
        if account_dict:
            return Account.from_dict(account_dict)
        return None

    def get_account_by_number(self, account_number: str) -> Optional[Account]:
        """Get active account by account number"""
        accounts = self.storage.find(
            self.accounts_table, {"account_number": account_number, "is_active": True}
        )
        if accounts:
            return Account.from_dict(accounts[0])
        return None

    def update_profile(
        self,
        account_number: str,
        profile_updates: Dict[str, Optional[str]],
        new_plain_pin: Optional[str] = None
    ) -> Optional[Account]:
        """
        Overwrite profile fields of an active account

        Blank or missing values keep the current value. Balance and account
        number are never touched.

        Returns:
            Updated account, or None if no active account has that number
        """
        unknown = set(profile_updates) - set(AccountProfile.PROFILE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")
        if new_plain_pin:
            self._validate_pin(new_plain_pin)

        with self.storage.atomic():
            account = self.get_account_by_number(account_number)
            if account is None:
                return None

            changed = []
            for name, value in profile_updates.items():
                if value and value.strip() and value.strip() != getattr(account, name):
                    setattr(account, name, value.strip())
                    changed.append(name)
            account.profile.validate()

            if new_plain_pin:
                account.pin_hash = self.hasher.hash_secret(new_plain_pin)
                changed.append("pin")

            account.updated_at = datetime.now(timezone.utc)
            self._save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_UPDATED,
                entity_type="account",
                entity_id=account.id,
                metadata={"account_number": account_number, "changed_fields": changed}
            )

        log_action(
            self.logger, "info", "Profile updated",
            account_number=account_number, action="update_profile",
            extra={"changed_fields": changed}
        )
        return account

    def deactivate_account(self, account_number: str) -> bool:
        """
        Soft-delete an account

        Returns:
            True if an account with this number exists (already inactive included)
        """
        with self.storage.atomic():
            matches = self.storage.find(self.accounts_table, {"account_number": account_number})
            if not matches:
                return False

            account = Account.from_dict(matches[0])
            if not account.is_active:
                return True

            account.is_active = False
            account.updated_at = datetime.now(timezone.utc)
            self._save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_DEACTIVATED,
                entity_type="account",
                entity_id=account.id,
                metadata={"account_number": account_number, "balance": account.balance}
            )

        log_action(self.logger, "info", "Account deactivated",
                   account_number=account_number, action="deactivate_account")
        return True

    def search_accounts(self, term: str) -> List[Account]:
        """Case-sensitive substring match on name, email or account number"""
        return [
            account for account in self.list_accounts()
            if term in account.account_holder_name
            or term in account.email
            or term in account.account_number
        ]

    def list_accounts_by_type(self, account_type: AccountType) -> List[Account]:
        """Active accounts of one product type"""
        accounts_data = self.storage.find(
            self.accounts_table,
            {"account_type": account_type.value, "is_active": True},
            order_by="sequence"
        )
        return [Account.from_dict(data) for data in accounts_data]

    def list_accounts(self) -> List[Account]:
        """All active accounts"""
        accounts_data = self.storage.find(
            self.accounts_table, {"is_active": True}, order_by="sequence"
        )
        return [Account.from_dict(data) for data in accounts_data]

    def _save_account(self, account: Account) -> None:
        """Save account to storage"""
        self.storage.save(self.accounts_table, account.id, account.to_dict())
