"""
Banking system context: every component wired to one storage backend.
"""

from typing import Optional

from .accounts import AccountDirectory
from .audit import AuditTrail
from .config import BankConfig, get_config
from .identifiers import IdentifierGenerator
from .logging_config import get_logger
from .reporting import ReportingService
from .security import SecretHasher
from .storage import StorageInterface, create_storage
from .transactions import TransactionEngine


logger = get_logger("bank.system")


class BankingSystem:
    """Bank management system with all components initialized"""

    def __init__(
        self,
        config: Optional[BankConfig] = None,
        storage: Optional[StorageInterface] = None,
        hasher: Optional[SecretHasher] = None
    ):
        self.config = config or get_config()

        # Initialize storage
        if storage is None:
            storage = create_storage(self.config.database_url, timeout=self.config.database_timeout)
            logger.info("Storage opened: %s", type(storage).__name__)
        self.storage = storage

        # Initialize core components
        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.identifiers = IdentifierGenerator(
            self.storage,
            account_prefix=self.config.account_number_prefix,
            account_width=self.config.account_number_width,
            transaction_prefix=self.config.transaction_number_prefix,
            transaction_width=self.config.transaction_number_width
        )
        self.directory = AccountDirectory(
            self.storage, self.identifiers, hasher or SecretHasher(), self.audit_trail,
            pin_length=self.config.pin_length
        )
        self.engine = TransactionEngine(self.storage, self.directory, self.identifiers, self.audit_trail)
        self.reporting = ReportingService(self.storage, self.directory)

    def close(self) -> None:
        """Release the storage connection"""
        self.storage.close()
        logger.info("Storage closed")

    def __enter__(self) -> 'BankingSystem':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
