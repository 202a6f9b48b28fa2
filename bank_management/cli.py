"""
Console Menu Module

Interactive menus for account holders and administrators. The console only
gathers input and prints results; every rule lives in the directory, the
transaction engine and the reporting service. Input and output functions are
injectable so the menus can be driven from tests.
"""

import argparse
import getpass
import sys
from decimal import Decimal
from typing import Callable, List, Optional

from .accounts import Account, AccountProfile, AccountType
from .config import BankConfig, get_config
from .exceptions import InvalidAmountError, PersistenceUnavailableError, ValidationError
from .logging_config import get_logger, setup_logging
from .money import ZERO, format_amount, to_amount
from .seed import seed_demo_accounts
from .session import AccountSession, open_admin_session
from .system import BankingSystem
from .transactions import Transaction


logger = get_logger("bank.cli")

UNAVAILABLE = "Service temporarily unavailable. Please try again later."

ACCOUNT_TYPE_CHOICES = {
    "1": AccountType.SAVINGS,
    "2": AccountType.CHECKING,
    "3": AccountType.BUSINESS,
    "4": AccountType.FIXED_DEPOSIT,
}


class BankConsole:
    """Menu driver for one console session"""

    def __init__(
        self,
        system: BankingSystem,
        input_fn: Callable[[str], str] = input,
        output_fn: Callable[[str], None] = print,
        secret_fn: Callable[[str], str] = getpass.getpass
    ):
        self.system = system
        self.config = system.config
        self._input = input_fn
        self._output = output_fn
        self._secret = secret_fn

    def say(self, text: str = "") -> None:
        self._output(text)

    def ask(self, prompt: str) -> str:
        return (self._input(prompt) or "").strip()

    def run(self) -> None:
        """Main menu loop; returns when the user exits or input ends"""
        self.say("=== Welcome to ABC Bank Management System ===")
        try:
            while True:
                self.say()
                self.say("=== Main Menu ===")
                self.say("1. Account Login")
                self.say("2. Create New Account")
                self.say("3. Admin Panel")
                self.say("4. Exit")
                choice = self.ask("\nEnter your choice (1-4): ")

                if choice == "4":
                    break
                action = {"1": self.login, "2": self.create_account, "3": self.admin_panel}.get(choice)
                if action is None:
                    self.say("Invalid choice. Please try again.")
                    continue
                self._guarded(action)
        except (EOFError, KeyboardInterrupt):
            self.say()
        self.say("Thank you for using ABC Bank Management System!")

    def _guarded(self, action: Callable[[], None]) -> None:
        """Run one menu action; storage outages are reported, never fatal"""
        try:
            action()
        except PersistenceUnavailableError as e:
            logger.error("Menu action failed: %s", e)
            self.say(UNAVAILABLE)

    # Account holder flows

    def login(self) -> None:
        self.say()
        self.say("=== Account Login ===")
        account_number = self.ask("Enter Account Number: ")
        pin = self._secret("Enter PIN: ")
        if not account_number or not pin:
            self.say("Account number and PIN are required.")
            return

        result = self.system.directory.authenticate(account_number, pin)
        self.say()
        self.say(result.message)
        if result.success:
            self.account_menu(AccountSession(result.data))

    def create_account(self) -> None:
        self.say()
        self.say("=== Create New Account ===")
        name = self.ask("Enter Full Name: ")
        email = self.ask("Enter Email: ")
        phone = self.ask("Enter Phone Number: ")
        address = self.ask("Enter Address: ")
        self.say()
        self.say("Select Account Type:")
        for key, account_type in ACCOUNT_TYPE_CHOICES.items():
            self.say(f"{key}. {account_type.label}")
        account_type = ACCOUNT_TYPE_CHOICES.get(self.ask("Enter choice (1-4): "), AccountType.SAVINGS)
        pin = self._secret(f"Set {self.config.pin_length}-digit PIN: ")
        initial = self.ask("Initial Deposit Amount: $")

        try:
            opening = to_amount(initial or "0")
        except InvalidAmountError:
            self.say("Invalid initial deposit amount.")
            return

        try:
            account = self.system.directory.create_account(
                AccountProfile(name, email, phone, address), pin, opening, account_type
            )
        except ValidationError as e:
            self.say(e.message)
            return

        self.say()
        self.say("Account created successfully!")
        self.say(f"Account Number: {account.account_number}")
        self.say(f"Initial Balance: {format_amount(account.balance)}")

    def account_menu(self, session: AccountSession) -> None:
        actions = {
            "1": self.check_balance,
            "2": self.deposit,
            "3": self.withdraw,
            "4": self.transfer,
            "5": self.transaction_history,
            "6": self.update_profile,
        }
        while True:
            account = session.account
            self.say()
            self.say(f"=== Account Menu - {account.account_holder_name} ===")
            self.say(f"Account: {account.account_number} | Balance: {format_amount(account.balance)}")
            self.say()
            self.say("1. Check Balance")
            self.say("2. Deposit Money")
            self.say("3. Withdraw Money")
            self.say("4. Transfer Money")
            self.say("5. Transaction History")
            self.say("6. Update Profile")
            self.say("7. Logout")
            choice = self.ask("\nEnter your choice (1-7): ")

            if choice == "7":
                self.say("Logged out successfully.")
                return
            action = actions.get(choice)
            if action is None:
                self.say("Invalid choice. Please try again.")
                continue
            self._guarded(lambda: action(session))
            if not session.account.is_active:
                self.say("This account is no longer active. Logging out.")
                return

    def check_balance(self, session: AccountSession) -> None:
        self._refresh(session)
        self.say()
        self.say(f"Current Balance: {format_amount(session.account.balance)}")

    def deposit(self, session: AccountSession) -> None:
        amount = self._read_amount("\nEnter deposit amount: $")
        if amount is None:
            return
        description = self.ask("Enter description (optional): ")
        result = self.system.engine.deposit(session.account_number, amount, description or None)
        self._report(session, result)

    def withdraw(self, session: AccountSession) -> None:
        amount = self._read_amount("\nEnter withdrawal amount: $")
        if amount is None:
            return
        description = self.ask("Enter description (optional): ")
        result = self.system.engine.withdraw(session.account_number, amount, description or None)
        self._report(session, result)

    def transfer(self, session: AccountSession) -> None:
        destination = self.ask("\nEnter destination account number: ")
        amount = self._read_amount("Enter transfer amount: $")
        if amount is None:
            return
        description = self.ask("Enter description (optional): ")
        if not destination:
            self.say("Destination account number is required.")
            return
        result = self.system.engine.transfer(
            session.account_number, destination, amount, description or None
        )
        self._report(session, result)

    def transaction_history(self, session: AccountSession) -> None:
        self.say()
        self.say("=== Transaction History ===")
        limit = self._read_limit(
            f"Enter number of recent transactions to show (default {self.config.default_history_limit}): ",
            self.config.default_history_limit
        )
        self._display_transactions(
            self.system.reporting.transaction_history(session.account_number, limit=limit)
        )

    def update_profile(self, session: AccountSession) -> None:
        account = session.account
        self.say()
        self.say("=== Update Profile ===")
        self.say("Enter new details (press Enter to keep current value):")
        updates = {
            "account_holder_name": self.ask(f"Name [{account.account_holder_name}]: "),
            "email": self.ask(f"Email [{account.email}]: "),
            "phone_number": self.ask(f"Phone [{account.phone_number}]: "),
            "address": self.ask(f"Address [{account.address}]: "),
        }
        new_pin = self._secret("New PIN (leave blank to keep current): ").strip()

        try:
            updated = self.system.directory.update_profile(
                account.account_number, updates, new_pin or None
            )
        except ValidationError as e:
            self.say(e.message)
            return

        if updated is None:
            self.say("Failed to update profile.")
            session.account.is_active = False
            return
        session.account = updated
        self.say("Profile updated successfully!")

    # Admin flows

    def admin_panel(self) -> None:
        self.say()
        self.say("=== Admin Panel ===")
        password = self._secret("Enter Admin Password: ")
        if open_admin_session(password, self.config.admin_password) is None:
            self.say("Invalid admin password.")
            return

        actions = {
            "1": self.show_all_accounts,
            "2": self.search_accounts,
            "3": self.show_all_transactions,
            "4": self.show_statistics,
        }
        while True:
            self.say()
            self.say("=== Admin Menu ===")
            self.say("1. View All Accounts")
            self.say("2. Search Account")
            self.say("3. View All Transactions")
            self.say("4. Account Statistics")
            self.say("5. Back to Main Menu")
            choice = self.ask("\nEnter your choice (1-5): ")

            if choice == "5":
                return
            action = actions.get(choice)
            if action is None:
                self.say("Invalid choice. Please try again.")
                continue
            self._guarded(action)

    def show_all_accounts(self) -> None:
        self.say()
        self.say("=== All Accounts ===")
        self._display_accounts(self.system.directory.list_accounts())

    def search_accounts(self) -> None:
        term = self.ask("\nEnter search term (name, email, or account number): ")
        if not term:
            self.say("Search term cannot be empty.")
            return
        self.say()
        self.say(f"=== Search Results for '{term}' ===")
        self._display_accounts(self.system.directory.search_accounts(term))

    def show_all_transactions(self) -> None:
        self.say()
        self.say("=== All Transactions ===")
        limit = self._read_limit(
            "Enter number of recent transactions to show "
            f"(default {self.config.default_admin_history_limit}): ",
            self.config.default_admin_history_limit
        )
        self._display_transactions(self.system.reporting.all_transactions(limit=limit))

    def show_statistics(self) -> None:
        stats = self.system.reporting.account_statistics()
        self.say()
        self.say("=== Account Statistics ===")
        self.say(f"Total Accounts: {stats.total_accounts}")
        self.say(f"Total Bank Balance: {format_amount(stats.total_balance)}")
        for account_type in AccountType:
            self.say(f"{account_type.label} Accounts: {stats.accounts_by_type.get(account_type, 0)}")

    # Helpers

    def _refresh(self, session: AccountSession) -> None:
        if not session.refresh(self.system.directory):
            session.account.is_active = False

    def _report(self, session: AccountSession, result) -> None:
        self.say()
        self.say(result.message)
        if result.success:
            self._refresh(session)

    def _read_amount(self, prompt: str) -> Optional[Decimal]:
        try:
            return to_amount(self.ask(prompt))
        except InvalidAmountError:
            self.say("Invalid amount.")
            return None

    def _read_limit(self, prompt: str, default: int) -> int:
        text = self.ask(prompt)
        try:
            return int(text) if text else default
        except ValueError:
            return default

    def _display_accounts(self, accounts: List[Account]) -> None:
        if not accounts:
            self.say("No accounts found.")
            return
        self.say("-" * 120)
        self.say(f"{'Account#':<10} {'Name':<20} {'Email':<25} {'Type':<14} {'Balance':<15} {'Created':<12}")
        self.say("-" * 120)
        for account in accounts:
            self.say(
                f"{account.account_number:<10} {account.account_holder_name:<20} {account.email:<25} "
                f"{account.account_type.label:<14} {format_amount(account.balance):<15} "
                f"{account.created_at:%Y-%m-%d}"
            )

    def _display_transactions(self, transactions: List[Transaction]) -> None:
        if not transactions:
            self.say("No transactions found.")
            return
        self.say("-" * 120)
        self.say(
            f"{'TXN#':<10} {'Account':<10} {'Type':<16} {'Amount':<13} {'Balance':<13} "
            f"{'Date':<12} {'Description':<20}"
        )
        self.say("-" * 120)
        for txn in transactions:
            amount = format_amount(txn.amount)
            if txn.signed_amount < ZERO:
                amount = f"-{amount}"
            self.say(
                f"{txn.transaction_number:<10} {txn.account_number:<10} {txn.transaction_type.label:<16} "
                f"{amount:<13} {format_amount(txn.balance_after):<13} "
                f"{txn.transaction_date:%Y-%m-%d}   {txn.description or '':<20}"
            )


def build_config(args: argparse.Namespace) -> BankConfig:
    """Apply command line overrides to the environment configuration"""
    updates = {}
    if args.database_url:
        updates["database_url"] = args.database_url
    if args.log_level:
        updates["log_level"] = args.log_level
    if args.no_seed:
        updates["seed_demo_data"] = False
    return get_config().model_copy(update=updates)


def main(argv: Optional[List[str]] = None) -> int:
    """Console entry point"""
    parser = argparse.ArgumentParser(
        prog="bank-management",
        description="ABC Bank Management System console"
    )
    parser.add_argument(
        "--database-url",
        help="memory://, sqlite:///path/to.db or postgresql://... (default: BANK_DATABASE_URL or sqlite:///bank.db)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (default: BANK_LOG_LEVEL or WARNING)"
    )
    parser.add_argument("--no-seed", action="store_true", help="Do not create the demo accounts")
    args = parser.parse_args(argv)

    config = build_config(args)
    setup_logging(config.log_level, config.log_format, config.log_file)

    try:
        system = BankingSystem(config)
    except PersistenceUnavailableError as e:
        logger.error("Cannot open storage: %s", e)
        print(f"Cannot open database: {e}", file=sys.stderr)
        return 1

    with system:
        if config.seed_demo_data:
            seed_demo_accounts(system.directory)
        BankConsole(system).run()
    return 0
