"""
HubSpot CRM adapter.

Candidates become Contacts (stage pushed as ``hs_lead_status``) and
interviews become Meetings associated with the contact. Contacts can also be
imported as candidates, paging through the CRM search API.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..constants import Limits, Provider, SyncMode
from ..schemas.integration_schemas import ProviderCapabilities
from ..schemas.record_schemas import CandidateRecord, ImportedCandidate, InterviewRecord
from .api_client import ProviderAPIClient, ProviderSession
from .oauth import HubSpotOAuth
from .stage_mapping import (
    HUBSPOT_LEAD_STATUS,
    HUBSPOT_MEETING_OUTCOME,
    format_interview_body,
    format_interview_title,
    split_name,
)
from .sync_handler import SyncHandler

IMPORT_PROPERTIES = [
    "email",
    "firstname",
    "lastname",
    "phone",
    "jobtitle",
    "company",
    "createdate",
    "lastmodifieddate",
]


def contact_properties(candidate: CandidateRecord) -> Dict[str, str]:
    first_name, last_name = split_name(candidate.name)
    return {
        "firstname": first_name,
        "lastname": last_name,
        "email": candidate.email or "",
        "phone": candidate.phone or "",
        "company": candidate.current_company or "",
        "jobtitle": candidate.job_title or "",
        "hs_lead_status": HUBSPOT_LEAD_STATUS.map(candidate.stage),
    }


class HubSpotClient(ProviderAPIClient):
    provider = Provider.HUBSPOT
    base_url = "https://api.hubapi.com"

    def connection_check(self, api: ProviderSession) -> Dict[str, Any]:
        return api.get_json("/crm/v3/objects/contacts", params={"limit": 1})

    def connection_message(self, result: Dict[str, Any]) -> str:
        return "Connected to HubSpot CRM"

    # ==================== CONTACTS ====================

    @staticmethod
    def search_contact_by_email(api: ProviderSession, email: str) -> Optional[str]:
        body = api.post_json(
            "/crm/v3/objects/contacts/search",
            {
                "filterGroups": [
                    {"filters": [{"propertyName": "email", "operator": "EQ", "value": email}]}
                ],
                "properties": ["email", "firstname", "lastname"],
                "limit": 1,
            },
        )
        results = body.get("results") or []
        return str(results[0]["id"]) if results else None

    @staticmethod
    def create_contact(api: ProviderSession, properties: Dict[str, str]) -> str:
        return str(api.post_json("/crm/v3/objects/contacts", {"properties": properties})["id"])

    @staticmethod
    def update_contact(api: ProviderSession, contact_id: str, properties: Dict[str, Any]) -> None:
        api.patch_json(f"/crm/v3/objects/contacts/{contact_id}", {"properties": properties})

    @staticmethod
    def search_contacts(
        api: ProviderSession,
        since: Optional[datetime] = None,
        after: Optional[str] = None,
        limit: int = Limits.IMPORT_PAGE_SIZE,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """One page of contacts, oldest first, optionally modified since ``since``."""
        body: Dict[str, Any] = {
            "properties": IMPORT_PROPERTIES,
            "limit": limit,
            "sorts": [{"propertyName": "createdate", "direction": "ASCENDING"}],
        }
        if since is not None:
            body["filterGroups"] = [
                {
                    "filters": [
                        {
                            "propertyName": "lastmodifieddate",
                            "operator": "GTE",
                            "value": str(int(since.timestamp() * 1000)),
                        }
                    ]
                }
            ]
        if after:
            body["after"] = after

        page = api.post_json("/crm/v3/objects/contacts/search", body)
        next_page = (page.get("paging") or {}).get("next") or {}
        return page.get("results") or [], next_page.get("after")

    # ==================== ACTIVITIES ====================

    @staticmethod
    def create_meeting(api: ProviderSession, properties: Dict[str, str]) -> Optional[str]:
        created = api.post_json("/crm/v3/objects/meetings", {"properties": properties}).get("id")
        return str(created) if created else None

    @staticmethod
    def associate_meeting(api: ProviderSession, meeting_id: str, contact_id: str) -> None:
        api.put_json(
            f"/crm/v3/objects/meetings/{meeting_id}/associations/contacts/{contact_id}/meeting_to_contact",
            {},
        )

    @staticmethod
    def update_meeting(api: ProviderSession, meeting_id: str, properties: Dict[str, Any]) -> None:
        api.patch_json(f"/crm/v3/objects/meetings/{meeting_id}", {"properties": properties})


def imported_contact(contact: Dict[str, Any]) -> ImportedCandidate:
    properties = contact.get("properties") or {}
    name = " ".join(
        part for part in (properties.get("firstname"), properties.get("lastname")) if part
    )
    return ImportedCandidate(
        external_id=str(contact["id"]),
        name=name or properties.get("email") or "",
        email=properties.get("email") or None,
        phone=properties.get("phone") or None,
        job_title=properties.get("jobtitle") or None,
        current_company=properties.get("company") or None,
        created_at=properties.get("createdate") or None,
        updated_at=properties.get("lastmodifieddate") or None,
    )


class HubSpotSyncHandler(SyncHandler):
    provider = Provider.HUBSPOT
    capabilities = ProviderCapabilities(
        candidate_sync=SyncMode.PUSH,
        job_sync=SyncMode.NONE,
        interview_sync=SyncMode.PUSH,
        supports_webhooks=False,
        supports_import=True,
    )
    stage_mapping = HUBSPOT_LEAD_STATUS
    associates_interviews = True
    client_class = HubSpotClient
    oauth_class = HubSpotOAuth

    def search_candidate_by_email(self, api, email):
        return HubSpotClient.search_contact_by_email(api, email)

    def create_candidate(self, api, candidate):
        return HubSpotClient.create_contact(api, contact_properties(candidate))

    def update_candidate(self, api, external_id, candidate):
        HubSpotClient.update_contact(api, external_id, contact_properties(candidate))

    def push_stage(self, api, external_id, mapped_stage, internal_stage):
        HubSpotClient.update_contact(api, external_id, {"hs_lead_status": mapped_stage})

    def create_interview(self, api, interview: InterviewRecord, candidate_external_id):
        return HubSpotClient.create_meeting(
            api,
            {
                "hs_meeting_title": format_interview_title(interview),
                "hs_meeting_start_time": interview.date.isoformat(),
                "hs_meeting_end_time": interview.end_time.isoformat(),
                "hs_meeting_body": format_interview_body(interview),
                "hs_meeting_outcome": HUBSPOT_MEETING_OUTCOME.map("SCHEDULED"),
            },
        )

    def update_interview(self, api, interview, external_interview_id, candidate_external_id, status):
        properties = {"hs_meeting_outcome": HUBSPOT_MEETING_OUTCOME.map(status)}
        if status == "RESCHEDULED":
            properties.update(
                hs_meeting_start_time=interview.date.isoformat(),
                hs_meeting_end_time=interview.end_time.isoformat(),
            )
        HubSpotClient.update_meeting(api, external_interview_id, properties)

    def associate_interview(self, api, external_interview_id, candidate_external_id):
        HubSpotClient.associate_meeting(api, external_interview_id, candidate_external_id)

    def fetch_candidate_page(self, api, since, cursor):
        contacts, after = HubSpotClient.search_contacts(api, since=since, after=cursor)
        return [imported_contact(contact) for contact in contacts], after
