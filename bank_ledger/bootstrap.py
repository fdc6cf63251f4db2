"""
Engine Wiring

Builds a ready-to-use TransactionEngine from LedgerSettings: storage backend
from the database URL, repositories, unit of work and the configured fee
policy.
"""

from typing import Optional

from .accounts import AccountRepository
from .config import LedgerSettings, get_config
from .engine import TransactionEngine
from .errors import ConfigurationError
from .fees import ConfiguredFeePolicy, FeePolicy
from .logging_config import setup_logging
from .statements import StatementRepository
from .storage import InMemoryStorage, SQLiteStorage, StorageInterface
from .unit_of_work import StorageUnitOfWork


def create_storage(database_url: str, lock_timeout: Optional[float] = None) -> StorageInterface:
    """
    Create a storage backend from a database URL

    Supported URLs:
        memory://                 in-process dictionaries
        sqlite:// or sqlite:///:memory:   in-memory SQLite database
        sqlite:///ledger.db               SQLite file relative to the working directory
        sqlite:////var/lib/ledger.db      SQLite file at an absolute path

    Raises:
        ConfigurationError: For any other URL
    """
    if database_url == "memory://":
        return InMemoryStorage(lock_timeout=lock_timeout)

    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
        return SQLiteStorage(path or ":memory:", lock_timeout=lock_timeout)

    raise ConfigurationError(f"Unsupported database URL: {database_url!r}")


def build_engine(
    settings: Optional[LedgerSettings] = None,
    storage: Optional[StorageInterface] = None,
    fee_policy: Optional[FeePolicy] = None,
    configure_logging: bool = False
) -> TransactionEngine:
    """
    Wire a TransactionEngine

    Args:
        settings: Settings to use (defaults to the global configuration)
        storage: Existing storage backend; created from settings.database_url when omitted
        fee_policy: Fee policy; defaults to reading fees from the environment on every call
        configure_logging: Install the structured log handler from settings
    """
    settings = settings or get_config()

    if configure_logging:
        setup_logging(settings.log_level, fmt=settings.log_format)

    if storage is None:
        storage = create_storage(settings.database_url, settings.lock_timeout_seconds)

    return TransactionEngine(
        accounts=AccountRepository(storage),
        statements=StatementRepository(storage),
        unit_of_work=StorageUnitOfWork(storage, lock_timeout=settings.lock_timeout_seconds),
        fee_policy=fee_policy or ConfiguredFeePolicy(),
        amount_precision=settings.amount_precision
    )
