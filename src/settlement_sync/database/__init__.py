"""Database module for the per-region collection ledgers."""

from .models import (
    Base,
    CollectionRecord,
    SyncAuditEntry,
    AuditKind,
)
from .session import (
    get_database_url,
    normalize_database_url,
    create_async_engine,
    get_async_session_factory,
    DatabaseManager,
    RegionDatabaseRegistry,
)
from .repository import (
    CollectionRecordRepository,
    AuditRepository,
)

__all__ = [
    # Models
    "Base",
    "CollectionRecord",
    "SyncAuditEntry",
    "AuditKind",
    # Session management
    "get_database_url",
    "normalize_database_url",
    "create_async_engine",
    "get_async_session_factory",
    "DatabaseManager",
    "RegionDatabaseRegistry",
    # Repositories
    "CollectionRecordRepository",
    "AuditRepository",
]
