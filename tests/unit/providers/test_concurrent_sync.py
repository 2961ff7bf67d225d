"""
Concurrent delivery of events for the same candidate.

Two workers with their own database sessions on one file-backed SQLite
database race the same stage change; the per-entity lock must let exactly
one of them create the remote contact.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from ats_sync_core.constants import IntegrationStatus, SyncStatus
from ats_sync_core.db import DatabaseConfig, DatabaseManager, Integration, IntegrationMapping, SyncLog
from ats_sync_core.providers.registry import build_default_registry
from tests.fixtures.factories import oauth_blob

CONTACTS = "/crm/v3/objects/contacts"
SEARCH = "/crm/v3/objects/contacts/search"


@pytest.fixture
def file_db(tmp_path):
    manager = DatabaseManager(
        DatabaseConfig(db_type="sqlite", database=str(tmp_path / "sync.db"), development_mode=True)
    )
    manager.create_tables()
    yield manager
    manager.close()


@pytest.fixture
def connected_hubspot(file_db, tenant_id):
    session = file_db.session_factory()
    session.add(
        Integration(
            tenant_id=tenant_id,
            provider="hubspot",
            tokens=oauth_blob(),
            status=IntegrationStatus.CONNECTED.value,
            settings={},
        )
    )
    session.commit()
    session.close()


class TestConcurrentStageChange:
    def test_one_contact_is_created(self, file_db, connected_hubspot, record_source, http, test_config, tenant_id):
        test_config.sync.lock_wait = 10.0
        http.add("POST", SEARCH, {"results": []})
        http.add("POST", CONTACTS, {"id": "501"})
        http.add("PATCH", f"{CONTACTS}/501", {"id": "501"})

        sessions = [file_db.session_factory() for _ in range(2)]
        handlers = [
            build_default_registry(session, record_source, http_factory=http, sleep=lambda _: None).get("hubspot")
            for session in sessions
        ]
        start = threading.Barrier(2)

        def stage_changed(handler):
            start.wait()
            return handler.sync_candidate(tenant_id, "cand-1", "stage_changed", {"newStage": "Hired"})

        try:
            with ThreadPoolExecutor(max_workers=2) as pool:
                results = list(pool.map(stage_changed, handlers))
        finally:
            for session in sessions:
                session.close()

        assert [result["externalId"] for result in results] == ["501", "501"]
        assert len(http.calls("POST", CONTACTS)) == 1
        assert len(http.calls("PATCH", f"{CONTACTS}/501")) == 2

        check = file_db.session_factory()
        try:
            assert check.query(IntegrationMapping).filter_by(entity_type="candidate").count() == 1
            statuses = [log.status for log in check.query(SyncLog).all()]
            assert statuses == [SyncStatus.SUCCESS.value] * 2
        finally:
            check.close()
