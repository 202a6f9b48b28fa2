"""
Console sessions.

The logged-in account and the admin login are explicit values owned by the
console driver; nothing here is global.
"""

import hmac
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .accounts import Account, AccountDirectory
from .logging_config import get_logger, log_action


logger = get_logger("bank.session")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AccountSession:
    """A holder logged in to one account"""
    account: Account
    started_at: datetime = field(default_factory=_utcnow)

    @property
    def account_number(self) -> str:
        return self.account.account_number

    def refresh(self, directory: AccountDirectory) -> bool:
        """
        Reload the cached account after a successful operation

        Returns:
            False if the account is no longer active, True otherwise
        """
        account = directory.get_account_by_number(self.account_number)
        if account is None:
            return False
        self.account = account
        return True


@dataclass
class AdminSession:
    """An administrator logged in to the admin panel"""
    started_at: datetime = field(default_factory=_utcnow)


def open_admin_session(password: str, admin_password: str) -> Optional[AdminSession]:
    """Check the admin password in constant time"""
    if not hmac.compare_digest((password or "").encode(), admin_password.encode()):
        logger.warning("Admin login failed")
        return None
    log_action(logger, "info", "Admin login succeeded", action="admin_login")
    return AdminSession()
