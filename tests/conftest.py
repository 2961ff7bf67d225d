"""
Shared test fixtures.

Provides the in-memory SQLite database, a test configuration with a known
encryption key and OAuth clients for every provider, and common identifiers.
"""

import pytest
from sqlalchemy.orm import Session

from ats_sync_core.config import (
    AppConfig,
    OAuthClientConfig,
    ProvidersConfig,
    QueueConfig,
    SecurityConfig,
    SyncConfig,
    WhatsAppConfig,
    reset_config,
    set_config,
)
from ats_sync_core.context.tenant_context import TenantContext
from ats_sync_core.db import DatabaseConfig, DatabaseManager, import_all_models
from ats_sync_core.db.db_config import Base, initialize_db
from ats_sync_core.exceptions import clear_correlation_id
from ats_sync_core.utils.logger import reset_logging
from tests.fixtures.factories import set_factory_session

TEST_TENANT_ID = "tenant-1"
TEST_ENCRYPTION_KEY = "test-encryption-key-0123456789"
TEST_STATE_SECRET = "test-oauth-state-secret"


def oauth_client(provider: str) -> OAuthClientConfig:
    return OAuthClientConfig(
        client_id=f"{provider}-client-id",
        client_secret=f"{provider}-client-secret",
        redirect_uri=f"https://app.example.com/integrations/{provider}/callback",
    )


@pytest.fixture(autouse=True)
def test_config() -> AppConfig:
    """
    Install a deterministic global configuration for each test.

    Environment variables of the machine running the tests never leak in:
    every value the sync engine reads is set explicitly.
    """
    config = AppConfig(
        environment="test",
        queue=QueueConfig(connection_string="UseDevelopmentStorage=true"),
        sync=SyncConfig(base_delay=0.01, max_jitter=0.0, lock_wait=1.0),
        security=SecurityConfig(
            encryption_key=TEST_ENCRYPTION_KEY, oauth_state_secret=TEST_STATE_SECRET
        ),
        providers=ProvidersConfig(
            hubspot=oauth_client("hubspot"),
            lever=oauth_client("lever"),
            workday=oauth_client("workday"),
            bamboohr=oauth_client("bamboohr"),
            workday_tenant_url=None,
            bamboohr_company_domain=None,
        ),
        whatsapp=WhatsAppConfig(phone_number_id=None, access_token=None),
    )
    set_config(config)

    yield config

    reset_config()
    reset_logging()
    clear_correlation_id()
    TenantContext.clear_current_tenant()


@pytest.fixture(scope="session")
def db_config() -> DatabaseConfig:
    """Create SQLite in-memory database configuration for testing."""
    return DatabaseConfig(
        db_type="sqlite",
        database=":memory:",
        echo=False,
        development_mode=True,
    )


@pytest.fixture(scope="session")
def db_manager(db_config: DatabaseConfig) -> DatabaseManager:
    """Create and initialize database manager with all models."""
    import_all_models()
    return initialize_db(db_config)


@pytest.fixture(scope="function")
def db_session(db_manager: DatabaseManager) -> Session:
    """
    Create a database session for each test.

    Tables are created before and dropped after every test so that each
    test starts from an empty database.
    """
    session = db_manager.get_session()
    Base.metadata.create_all(db_manager.engine)
    set_factory_session(session)

    yield session

    session.rollback()
    session.close()
    Base.metadata.drop_all(db_manager.engine)


@pytest.fixture
def tenant_id() -> str:
    """Standard tenant ID for testing."""
    return TEST_TENANT_ID
