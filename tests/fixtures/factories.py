"""
Factory Boy factories for the sync engine models.

Integration tokens are stored the way the credential service stores them:
as an encrypted JSON credential set. Use ``credentials_blob`` to build one.
"""

from datetime import timedelta

import factory

from ats_sync_core.constants import IntegrationStatus, Provider, SyncDirection, SyncStatus
from ats_sync_core.db import Integration, IntegrationMapping, KeyedCounter, SyncLock, SyncLog
from ats_sync_core.db.db_base import utc_now
from ats_sync_core.utils.crypto_utils import encrypt_object


def credentials_blob(**fields) -> str:
    """Encrypt a credential set with the configured test key."""
    return encrypt_object(fields)


def oauth_blob(access_token="access-token", refresh_token="refresh-token", expires_in=3600, **extra):
    """Encrypted OAuth credentials that expire ``expires_in`` seconds from now."""
    return credentials_blob(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=(utc_now() + timedelta(seconds=expires_in)).isoformat(),
        **extra,
    )


# ==================== BASE FACTORIES ====================


class BaseFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Base factory with common patterns."""

    class Meta:
        abstract = True
        sqlalchemy_session_persistence = "commit"


# ==================== INTEGRATION FACTORIES ====================


class IntegrationFactory(BaseFactory):
    """A connected HubSpot integration with valid OAuth tokens."""

    class Meta:
        model = Integration

    tenant_id = "tenant-1"
    provider = Provider.HUBSPOT.value
    tokens = factory.LazyFunction(oauth_blob)
    status = IntegrationStatus.CONNECTED.value
    last_error = None
    settings = factory.LazyFunction(dict)


class IntegrationMappingFactory(BaseFactory):
    class Meta:
        model = IntegrationMapping

    tenant_id = "tenant-1"
    provider = Provider.HUBSPOT.value
    entity_type = "candidate"
    entity_id = factory.Sequence(lambda n: f"cand-{n}")
    external_id = factory.Sequence(lambda n: f"ext-{n}")


# ==================== SYNC LOG FACTORIES ====================


class SyncLogFactory(BaseFactory):
    """A completed outbound candidate sync."""

    class Meta:
        model = SyncLog

    tenant_id = "tenant-1"
    provider = Provider.HUBSPOT.value
    event_type = "CANDIDATE_CREATED"
    direction = SyncDirection.OUTBOUND.value
    entity_type = "candidate"
    entity_id = factory.Sequence(lambda n: f"cand-{n}")
    status = SyncStatus.SUCCESS.value
    error_message = None
    retry_count = 0
    skipped = False
    created_at = factory.LazyFunction(utc_now)


class FailedSyncLogFactory(SyncLogFactory):
    status = SyncStatus.FAILED.value
    error_message = "HubSpot API error: Property values were not valid"


class SkippedSyncLogFactory(SyncLogFactory):
    skipped = True
    response = factory.LazyFunction(lambda: {"skipped": True, "reason": "Not connected"})


# ==================== COORDINATION FACTORIES ====================


class SyncLockFactory(BaseFactory):
    """A lease held by another worker."""

    class Meta:
        model = SyncLock

    lock_key = factory.Sequence(lambda n: f"sync:tenant-1:hubspot:candidate:cand-{n}")
    owner = "other-worker"
    expires_at = factory.LazyFunction(lambda: utc_now() + timedelta(minutes=5))


class KeyedCounterFactory(BaseFactory):
    class Meta:
        model = KeyedCounter

    counter_key = factory.Sequence(lambda n: f"counter-{n}")
    count = 1
    window_started_at = factory.LazyFunction(utc_now)
    expires_at = factory.LazyFunction(lambda: utc_now() + timedelta(hours=1))


def set_factory_session(session):
    """Bind every factory to the test session."""
    factories = [
        IntegrationFactory,
        IntegrationMappingFactory,
        SyncLogFactory,
        FailedSyncLogFactory,
        SkippedSyncLogFactory,
        SyncLockFactory,
        KeyedCounterFactory,
    ]

    for factory_class in factories:
        factory_class._meta.sqlalchemy_session = session
