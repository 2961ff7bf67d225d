"""SQLAlchemy models and database configuration for the sync engine."""

from .db_base import JSON, TimestampMixin, UUIDMixin, as_utc, utc_now
from .db_config import (
    Base,
    DatabaseConfig,
    DatabaseManager,
    close_db,
    get_db_manager,
    get_development_config,
    get_production_config,
    import_all_models,
    initialize_db,
    set_db_manager,
)
from .db_coordination_models import KeyedCounter, SyncLock
from .db_integration_models import Integration, IntegrationMapping
from .db_sync_log_models import SyncLog

__all__ = [
    # Base definitions
    "Base",
    "JSON",
    "TimestampMixin",
    "UUIDMixin",
    "as_utc",
    "utc_now",
    # Configuration
    "DatabaseConfig",
    "DatabaseManager",
    "close_db",
    "get_db_manager",
    "get_development_config",
    "get_production_config",
    "import_all_models",
    "initialize_db",
    "set_db_manager",
    # Models
    "Integration",
    "IntegrationMapping",
    "KeyedCounter",
    "SyncLock",
    "SyncLog",
]
