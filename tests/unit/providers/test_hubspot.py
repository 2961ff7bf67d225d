"""
Tests for the HubSpot adapter.

HubSpot is the reference push provider, so these tests also cover the
generic SyncHandler state machine: mapping lookups, link-or-create,
interview scheduling and the sync log lifecycle.
"""

from unittest.mock import Mock

import pytest

from ats_sync_core.constants import SyncStatus
from ats_sync_core.db import Integration, IntegrationMapping, SyncLog
from ats_sync_core.exceptions import (
    EntityNotFoundError,
    ProviderAPIError,
    ProviderRetryExhaustedError,
    ValidationError,
)
from ats_sync_core.providers.hubspot import contact_properties
from tests.fixtures.factories import IntegrationFactory, IntegrationMappingFactory
from tests.fixtures.http import make_response

CONTACTS = "/crm/v3/objects/contacts"
SEARCH = "/crm/v3/objects/contacts/search"
MEETINGS = "/crm/v3/objects/meetings"


@pytest.fixture
def handler(registry):
    return registry.get("hubspot")


@pytest.fixture
def connected(db_session):
    return IntegrationFactory(provider="hubspot")


@pytest.fixture
def mapped_candidate(connected):
    return IntegrationMappingFactory(entity_type="candidate", entity_id="cand-1", external_id="501")


def _only_log(db_session):
    return db_session.query(SyncLog).one()


def _mapping(db_session, entity_type, entity_id):
    return (
        db_session.query(IntegrationMapping)
        .filter_by(provider="hubspot", entity_type=entity_type, entity_id=entity_id)
        .one_or_none()
    )


def test_contact_properties(candidate):
    assert contact_properties(candidate) == {
        "firstname": "Ada",
        "lastname": "Lovelace",
        "email": "ada@example.com",
        "phone": "+15550100",
        "company": "Analytical Engines",
        "jobtitle": "Engineer",
        "hs_lead_status": "OPEN",
    }


class TestCandidateCreated:
    def test_creates_contact(self, handler, http, db_session, connected, tenant_id):
        http.add("POST", SEARCH, {"results": []})
        http.add("POST", CONTACTS, {"id": "501"})

        result = handler.sync_candidate(tenant_id, "cand-1", "created")

        assert result == {"externalId": "501", "action": "created"}
        search = http.calls("POST", SEARCH)[0].json
        assert search["filterGroups"][0]["filters"][0] == {
            "propertyName": "email",
            "operator": "EQ",
            "value": "ada@example.com",
        }
        assert http.calls("POST", CONTACTS)[0].json["properties"]["hs_lead_status"] == "OPEN"
        assert _mapping(db_session, "candidate", "cand-1").external_id == "501"

        log = _only_log(db_session)
        assert log.status == SyncStatus.SUCCESS.value
        assert log.event_type == "CANDIDATE_CREATED"
        assert log.external_id == "501"
        assert log.response == result
        assert log.completed_at is not None
        assert db_session.get(Integration, connected.id).last_synced_at is not None

    def test_links_existing_contact(self, handler, http, db_session, connected, tenant_id):
        http.add("POST", SEARCH, {"results": [{"id": "77"}]})
        http.add("PATCH", f"{CONTACTS}/77", {"id": "77"})

        result = handler.sync_candidate(tenant_id, "cand-1", "created")

        assert result == {"externalId": "77", "action": "linked"}
        assert http.calls("POST", CONTACTS) == []
        assert http.calls("PATCH", f"{CONTACTS}/77")[0].json["properties"]["email"] == "ada@example.com"
        assert _mapping(db_session, "candidate", "cand-1").external_id == "77"

    def test_created_twice_keeps_one_mapping(self, handler, http, db_session, connected, tenant_id):
        http.add("POST", SEARCH, {"results": []})
        http.add("POST", CONTACTS, {"id": "501"})

        first = handler.sync_candidate(tenant_id, "cand-1", "created")
        second = handler.sync_candidate(tenant_id, "cand-1", "created")

        assert first == {"externalId": "501", "action": "created"}
        assert second == {"skipped": True, "reason": "Already synced", "externalId": "501"}
        assert len(http.calls("POST", CONTACTS)) == 1
        assert (
            db_session.query(IntegrationMapping)
            .filter_by(provider="hubspot", entity_type="candidate", entity_id="cand-1")
            .count()
            == 1
        )
        logs = db_session.query(SyncLog).all()
        assert sorted(bool(log.response.get("skipped")) for log in logs) == [False, True]
        assert all(log.status == SyncStatus.SUCCESS.value for log in logs)

    def test_already_synced(self, handler, http, db_session, mapped_candidate, tenant_id):
        result = handler.sync_candidate(tenant_id, "cand-1", "created")

        assert result == {"skipped": True, "reason": "Already synced", "externalId": "501"}
        assert http.requests == []
        assert _only_log(db_session).status == SyncStatus.SUCCESS.value

    def test_candidate_without_email_skips_search(self, handler, http, record_source, candidate, connected, tenant_id):
        candidate.email = None
        record_source.add_candidate(candidate)
        http.add("POST", CONTACTS, {"id": "502"})

        assert handler.sync_candidate(tenant_id, "cand-1", "created")["action"] == "created"
        assert http.calls("POST", SEARCH) == []


class TestCandidateUpdated:
    def test_updates_mapped_contact(self, handler, http, db_session, mapped_candidate, tenant_id):
        http.add("PATCH", f"{CONTACTS}/501", {"id": "501"})

        result = handler.sync_candidate(tenant_id, "cand-1", "updated")

        assert result == {"externalId": "501", "action": "updated"}
        assert _only_log(db_session).event_type == "CANDIDATE_UPDATED"

    def test_unmapped_candidate_is_created_instead(self, handler, http, db_session, connected, tenant_id):
        http.add("POST", SEARCH, {"results": []})
        http.add("POST", CONTACTS, {"id": "501"})

        result = handler.sync_candidate(tenant_id, "cand-1", "updated")

        assert result == {"externalId": "501", "action": "created", "createdInstead": True}


class TestStageChanged:
    def test_pushes_mapped_stage(self, handler, http, db_session, mapped_candidate, tenant_id):
        http.add("PATCH", f"{CONTACTS}/501", {"id": "501"})

        result = handler.sync_candidate(tenant_id, "cand-1", "stage_changed", {"newStage": "Hired"})

        assert result == {"externalId": "501", "newStage": "Hired", "mappedStage": "CUSTOMER"}
        assert http.calls("PATCH")[0].json == {"properties": {"hs_lead_status": "CUSTOMER"}}
        assert _only_log(db_session).payload == {"newStage": "Hired"}

    def test_unknown_stage_uses_default(self, handler, http, mapped_candidate, tenant_id):
        http.add("PATCH", f"{CONTACTS}/501", {"id": "501"})
        result = handler.sync_candidate(tenant_id, "cand-1", "stage_changed", {"newStage": "talent pool"})
        assert result["mappedStage"] == "NEW"

    def test_no_stage(self, handler, http, mapped_candidate, tenant_id):
        result = handler.sync_candidate(tenant_id, "cand-1", "stage_changed", {})
        assert result == {"skipped": True, "reason": "No stage provided"}
        assert http.requests == []


class TestInterviews:
    def test_scheduled(self, handler, http, db_session, mapped_candidate, tenant_id):
        http.add("POST", MEETINGS, {"id": "m-1"})
        http.add("PUT", "/meeting_to_contact", {})

        result = handler.sync_interview(tenant_id, "int-1", "scheduled")

        assert result == {"externalId": "m-1", "candidateExternalId": "501"}
        properties = http.calls("POST", MEETINGS)[0].json["properties"]
        assert properties["hs_meeting_title"] == "Interview: Ada Lovelace - Technical"
        assert properties["hs_meeting_start_time"] == "2026-03-02T15:00:00+00:00"
        assert properties["hs_meeting_end_time"] == "2026-03-02T15:45:00+00:00"
        assert properties["hs_meeting_outcome"] == "SCHEDULED"
        association = http.calls("PUT")[0]
        assert association.path.endswith("/meetings/m-1/associations/contacts/501/meeting_to_contact")
        assert _mapping(db_session, "interview", "int-1").external_id == "m-1"

        log = _only_log(db_session)
        assert log.event_type == "INTERVIEW_SCHEDULED"
        assert log.entity_type == "interview"

    def test_association_retry_keeps_one_meeting(self, handler, http, sleeps, db_session, mapped_candidate, tenant_id):
        http.add("POST", MEETINGS, {"id": "m-1"})
        http.add("PUT", "/meeting_to_contact", make_response(503, {"message": "Service unavailable"}), {})

        result = handler.sync_interview(tenant_id, "int-1", "scheduled")

        assert result == {"externalId": "m-1", "candidateExternalId": "501"}
        assert len(http.calls("POST", MEETINGS)) == 1
        assert len(http.calls("PUT", "/meeting_to_contact")) == 2
        assert len(sleeps) == 1
        assert _mapping(db_session, "interview", "int-1").external_id == "m-1"

        log = _only_log(db_session)
        assert log.status == SyncStatus.SUCCESS.value
        assert log.retry_count == 1

    def test_meeting_without_id_fails(self, handler, http, db_session, mapped_candidate, tenant_id):
        http.add("POST", MEETINGS, {})

        with pytest.raises(ValidationError, match="Failed to create interview in HubSpot"):
            handler.sync_interview(tenant_id, "int-1", "scheduled")

        assert http.calls("PUT") == []
        assert _mapping(db_session, "interview", "int-1") is None
        assert _only_log(db_session).status == SyncStatus.FAILED.value

    def test_scheduled_creates_candidate_first(self, handler, http, db_session, connected, tenant_id):
        http.add("POST", SEARCH, {"results": []})
        http.add("POST", CONTACTS, {"id": "501"})
        http.add("POST", MEETINGS, {"id": "m-1"})
        http.add("PUT", "/meeting_to_contact", {})

        assert handler.sync_interview(tenant_id, "int-1", "scheduled")["candidateExternalId"] == "501"
        assert _mapping(db_session, "candidate", "cand-1").external_id == "501"

    def test_scheduled_twice(self, handler, http, mapped_candidate, tenant_id):
        IntegrationMappingFactory(entity_type="interview", entity_id="int-1", external_id="m-1")
        result = handler.sync_interview(tenant_id, "int-1", "scheduled")
        assert result == {"skipped": True, "reason": "Already synced", "externalId": "m-1"}

    def test_rescheduled(self, handler, http, mapped_candidate, tenant_id):
        IntegrationMappingFactory(entity_type="interview", entity_id="int-1", external_id="m-1")
        http.add("PATCH", f"{MEETINGS}/m-1", {"id": "m-1"})

        result = handler.sync_interview(tenant_id, "int-1", "rescheduled")

        assert result == {"externalId": "m-1", "status": "RESCHEDULED"}
        assert http.calls("PATCH")[0].json["properties"] == {
            "hs_meeting_outcome": "RESCHEDULED",
            "hs_meeting_start_time": "2026-03-02T15:00:00+00:00",
            "hs_meeting_end_time": "2026-03-02T15:45:00+00:00",
        }

    def test_rescheduled_before_scheduling(self, handler, http, db_session, mapped_candidate, tenant_id):
        http.add("POST", MEETINGS, {"id": "m-1"})
        http.add("PUT", "/meeting_to_contact", {})
        http.add("PATCH", f"{MEETINGS}/m-1", {"id": "m-1"})

        result = handler.sync_interview(tenant_id, "int-1", "rescheduled")

        assert result == {"externalId": "m-1", "status": "RESCHEDULED", "scheduledFirst": True}
        assert len(http.calls("POST", MEETINGS)) == 1
        assert len(http.calls("PATCH")) == 1

    def test_cancelled_never_synced(self, handler, http, mapped_candidate, tenant_id):
        result = handler.sync_interview(tenant_id, "int-1", "cancelled")
        assert result == {"skipped": True, "reason": "Interview was never synced"}
        assert http.requests == []

    def test_cancelled(self, handler, http, mapped_candidate, tenant_id):
        IntegrationMappingFactory(entity_type="interview", entity_id="int-1", external_id="m-1")
        http.add("PATCH", f"{MEETINGS}/m-1", {"id": "m-1"})

        handler.sync_interview(tenant_id, "int-1", "cancelled")

        assert http.calls("PATCH")[0].json == {"properties": {"hs_meeting_outcome": "CANCELED"}}

    def test_completed(self, handler, http, db_session, mapped_candidate, tenant_id):
        IntegrationMappingFactory(entity_type="interview", entity_id="int-1", external_id="m-1")
        http.add("PATCH", f"{MEETINGS}/m-1", {"id": "m-1"})

        assert handler.sync_interview(tenant_id, "int-1", "completed")["status"] == "COMPLETED"
        assert _only_log(db_session).event_type == "INTERVIEW_COMPLETED"


class TestFailures:
    def test_not_connected_is_skipped(self, handler, http, db_session, tenant_id):
        IntegrationFactory(provider="hubspot", status="disconnected")

        result = handler.sync_candidate(tenant_id, "cand-1", "created")

        assert result == {"skipped": True, "reason": "Not connected"}
        assert http.requests == []
        log = _only_log(db_session)
        assert log.status == SyncStatus.SUCCESS.value
        assert log.skipped is True

    def test_no_integration_is_skipped(self, handler, db_session, tenant_id):
        assert handler.sync_interview(tenant_id, "int-1", "scheduled")["skipped"] is True

    def test_retry_exhaustion_fails_the_log(self, handler, http, sleeps, db_session, connected, tenant_id):
        http.add("POST", SEARCH, {"results": []})
        http.add("POST", CONTACTS, make_response(503, {"message": "Service unavailable"}))

        with pytest.raises(ProviderRetryExhaustedError):
            handler.sync_candidate(tenant_id, "cand-1", "created")

        log = _only_log(db_session)
        assert log.status == SyncStatus.FAILED.value
        assert log.retry_count == 2
        assert log.error_message == "HubSpot API failed after 3 attempts: Service unavailable"
        assert len(sleeps) == 2
        assert _mapping(db_session, "candidate", "cand-1") is None

    def test_permanent_failure(self, handler, http, db_session, mapped_candidate, tenant_id):
        http.add("PATCH", f"{CONTACTS}/501", make_response(400, {"message": "Property values were not valid"}))

        with pytest.raises(ProviderAPIError):
            handler.sync_candidate(tenant_id, "cand-1", "updated")

        log = _only_log(db_session)
        assert log.status == SyncStatus.FAILED.value
        assert log.retry_count == 0
        assert log.error_message == "HubSpot API error: Property values were not valid"

    def test_missing_candidate_fails(self, handler, db_session, connected, tenant_id):
        with pytest.raises(EntityNotFoundError):
            handler.sync_candidate(tenant_id, "cand-404", "created")
        assert _only_log(db_session).status == SyncStatus.FAILED.value

    def test_unknown_event_type(self, handler, db_session, connected, tenant_id):
        with pytest.raises(ValidationError, match="Unknown event type: merged"):
            handler.sync_candidate(tenant_id, "cand-1", "merged")
        assert db_session.query(SyncLog).count() == 0


def _contact(contact_id, email, first="Grace", last="Hopper", **properties):
    return {
        "id": contact_id,
        "properties": {"email": email, "firstname": first, "lastname": last, **properties},
    }


class TestCandidateImport:
    def test_imports_new_contacts(self, handler, http, db_session, record_source, connected, tenant_id):
        http.add(
            "POST",
            SEARCH,
            {
                "results": [_contact("901", "grace@example.com", jobtitle="Rear Admiral", company="US Navy")],
                "paging": {"next": {"after": "100"}},
            },
            {"results": [_contact("902", "alan@example.com", "Alan", "Turing")]},
        )

        result = handler.import_candidates(tenant_id)

        assert result == {"imported": 2, "updated": 0, "errors": 0, "pages": 2}
        first_page, second_page = [call.json for call in http.calls("POST", SEARCH)]
        assert "filterGroups" not in first_page
        assert first_page["limit"] == 100
        assert first_page["sorts"] == [{"propertyName": "createdate", "direction": "ASCENDING"}]
        assert second_page["after"] == "100"

        grace = record_source.find_candidate(tenant_id, "hubspot-901")
        assert grace.name == "Grace Hopper"
        assert grace.job_title == "Rear Admiral"
        assert grace.current_company == "US Navy"
        assert grace.source == "hubspot"
        assert _mapping(db_session, "candidate", "hubspot-901").external_id == "901"
        assert _mapping(db_session, "candidate", "hubspot-902").external_id == "902"

        log = _only_log(db_session)
        assert log.event_type == "CANDIDATE_IMPORT"
        assert log.direction == "INBOUND"
        assert log.status == SyncStatus.SUCCESS.value
        assert log.response == result
        assert db_session.get(Integration, connected.id).settings["lastImportAt"]

    def test_mapped_contact_updates_its_candidate(self, handler, http, db_session, record_source, mapped_candidate, tenant_id):
        http.add(
            "POST",
            SEARCH,
            {"results": [_contact("501", "ada@lovelace.dev", "Ada", "Lovelace", phone="+15550199")]},
        )

        result = handler.import_candidates(tenant_id)

        assert result == {"imported": 0, "updated": 1, "errors": 0, "pages": 1}
        ada = record_source.find_candidate(tenant_id, "cand-1")
        assert ada.email == "ada@lovelace.dev"
        assert ada.phone == "+15550199"
        assert ada.stage == "screening"
        assert db_session.query(IntegrationMapping).count() == 1

    def test_incremental_since_last_import(self, handler, http, db_session, tenant_id):
        IntegrationFactory(provider="hubspot", settings={"lastImportAt": "2026-03-01T00:00:00+00:00"})
        http.add("POST", SEARCH, {"results": []})

        result = handler.import_candidates(tenant_id)

        assert result["pages"] == 1
        assert http.calls("POST", SEARCH)[0].json["filterGroups"] == [
            {
                "filters": [
                    {"propertyName": "lastmodifieddate", "operator": "GTE", "value": "1772323200000"}
                ]
            }
        ]

    def test_failed_record_is_counted(self, handler, http, db_session, connected, tenant_id):
        http.add(
            "POST",
            SEARCH,
            {"results": [_contact("901", "grace@example.com"), _contact("902", "alan@example.com")]},
        )
        sink = Mock()
        sink.save_imported_candidate.side_effect = [ValidationError("Candidate rejected"), "cand-9"]

        result = handler.import_candidates(tenant_id, sink=sink)

        assert result == {"imported": 1, "updated": 0, "errors": 1, "pages": 1}
        assert _mapping(db_session, "candidate", "cand-9").external_id == "902"
        assert _only_log(db_session).status == SyncStatus.SUCCESS.value

    def test_page_failure_fails_the_log(self, handler, http, db_session, connected, tenant_id):
        http.add("POST", SEARCH, make_response(400, {"message": "Invalid filter"}))

        with pytest.raises(ProviderAPIError):
            handler.import_candidates(tenant_id)

        assert _only_log(db_session).status == SyncStatus.FAILED.value
        assert "lastImportAt" not in db_session.get(Integration, connected.id).settings

    def test_not_connected_is_skipped(self, handler, http, db_session, tenant_id):
        IntegrationFactory(provider="hubspot", status="error")

        assert handler.import_candidates(tenant_id) == {"skipped": True, "reason": "Not connected"}
        assert http.requests == []
        assert _only_log(db_session).skipped is True

    def test_provider_without_import(self, registry, db_session, tenant_id):
        with pytest.raises(ValidationError, match="Greenhouse does not support candidate import"):
            registry.get("greenhouse").import_candidates(tenant_id)
        assert db_session.query(SyncLog).count() == 0
