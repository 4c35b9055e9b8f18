"""Database module for sync state persistence."""

from .models import (
    Base,
    SyncState,
    SyncedPayment,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    get_async_session_factory,
    get_db_context,
)
from .repository import (
    SyncStateRepository,
    SyncedPaymentRepository,
)

__all__ = [
    # Models
    "Base",
    "SyncState",
    "SyncedPayment",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "get_async_session_factory",
    "get_db_context",
    # Repositories
    "SyncStateRepository",
    "SyncedPaymentRepository",
]
