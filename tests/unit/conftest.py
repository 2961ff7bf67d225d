"""
Unit test conftest.py - Component-specific fixtures.

This module provides fixtures specific to unit testing:
- Internal candidate and interview records
- A scripted HTTP transport and a recording sleep
- Services and the provider registry bound to the test session
"""

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from ats_sync_core.config import QueueConfig
from ats_sync_core.providers.registry import build_default_registry
from ats_sync_core.schemas.record_schemas import CandidateRecord, InterviewRecord
from ats_sync_core.services.integration_events_service import IntegrationEventsService
from ats_sync_core.services.keyed_counter_service import KeyedCounterService
from ats_sync_core.services.mapping_service import MappingService
from ats_sync_core.services.record_source import InMemoryRecordSource
from ats_sync_core.services.sync_lock_service import SyncLockService
from ats_sync_core.services.sync_log_service import SyncLogService
from tests.fixtures.http import ScriptedHTTP

# ==================== RECORD FIXTURES ====================


@pytest.fixture(scope="function")
def candidate(tenant_id):
    return CandidateRecord(
        id="cand-1",
        tenant_id=tenant_id,
        name="Ada Lovelace",
        email="ada@example.com",
        phone="+15550100",
        stage="screening",
        source="Referral",
        current_company="Analytical Engines",
        job_title="Engineer",
    )


@pytest.fixture(scope="function")
def interview(tenant_id):
    return InterviewRecord(
        id="int-1",
        tenant_id=tenant_id,
        candidate_id="cand-1",
        date=datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc),
        duration_mins=45,
        stage="Technical",
        notes="Bring a laptop",
        interviewer_names=["Grace Hopper"],
    )


@pytest.fixture(scope="function")
def record_source(candidate, interview):
    """In-memory records with one candidate and one interview of that candidate."""
    source = InMemoryRecordSource()
    source.add_candidate(candidate)
    source.add_interview(interview)
    return source


# ==================== TRANSPORT FIXTURES ====================


@pytest.fixture(scope="function")
def http():
    """Scripted HTTP transport; also usable as an http_factory."""
    return ScriptedHTTP()


@pytest.fixture(scope="function")
def sleeps():
    """Backoff delays requested by the code under test, in order."""
    return []


# ==================== SERVICE FIXTURES ====================


@pytest.fixture(scope="function")
def sync_log_service(db_session):
    return SyncLogService(session=db_session)


@pytest.fixture(scope="function")
def mapping_service(db_session):
    return MappingService(session=db_session)


@pytest.fixture(scope="function")
def counter_service(db_session):
    return KeyedCounterService(session=db_session)


@pytest.fixture(scope="function")
def lock_service(db_session):
    return SyncLockService(session=db_session)


@pytest.fixture(scope="function")
def registry(db_session, record_source, http, sleeps):
    """Every built-in provider wired to the scripted transport."""
    return build_default_registry(db_session, record_source, http_factory=http, sleep=sleeps.append)


@pytest.fixture(scope="function")
def queue_sender():
    """Stands in for send_message_to_queue_direct."""
    return Mock()


@pytest.fixture(scope="function")
def events_service(db_session, queue_sender):
    return IntegrationEventsService(
        db_session,
        queue_config=QueueConfig(connection_string="UseDevelopmentStorage=true"),
        sender=queue_sender,
    )


# ==================== MOCK FIXTURES (ONLY WHEN NECESSARY) ====================


@pytest.fixture(scope="function")
def mock_azure_queue_client():
    """
    Mock Azure Queue Client for testing queue operations.

    Only use this when testing queue-dependent functionality
    without requiring actual Azure infrastructure.
    """
    mock_client = Mock()
    mock_client.send_message.return_value = Mock(id="test_message_id")
    mock_client.receive_messages.return_value = []
    return mock_client
