"""
Greenhouse Harvest adapter.

Authenticates with an API key sent as the HTTP Basic username. Write
calls carry the ``On-Behalf-Of`` user when one is configured. Interviews and
stage changes are recorded as candidate activity-feed notes.
"""

from typing import Any, Dict, Optional

import requests

from ..constants import Provider, SyncMode
from ..schemas.credential_schemas import ProviderCredentials
from ..schemas.integration_schemas import ProviderCapabilities
from ..schemas.record_schemas import CandidateRecord
from .api_client import ProviderAPIClient, ProviderSession
from .stage_mapping import GREENHOUSE_STAGE, format_interview_note, split_name
from .sync_handler import SyncHandler


class GreenhouseClient(ProviderAPIClient):
    provider = Provider.GREENHOUSE
    base_url = "https://harvest.greenhouse.io/v1"

    def authenticate(self, http: requests.Session, credentials: ProviderCredentials) -> None:
        http.auth = (credentials.api_key or "", "")
        if credentials.on_behalf_of_user_id:
            http.headers["On-Behalf-Of"] = credentials.on_behalf_of_user_id

    def connection_check(self, api: ProviderSession) -> Any:
        return api.get_json("/users")

    @staticmethod
    def search_candidate(api: ProviderSession, email: str) -> Optional[str]:
        candidates = api.get_json("/candidates", params={"email": email}) or []
        return str(candidates[0]["id"]) if candidates else None

    @staticmethod
    def create_candidate(api: ProviderSession, payload: Dict[str, Any]) -> str:
        return str(api.post_json("/candidates", payload)["id"])

    @staticmethod
    def update_candidate(api: ProviderSession, candidate_id: str, payload: Dict[str, Any]) -> None:
        api.patch_json(f"/candidates/{candidate_id}", payload)

    @staticmethod
    def add_note(api: ProviderSession, candidate_id: str, body: str, visibility: str = "public") -> str:
        note = api.post_json(
            f"/candidates/{candidate_id}/activity_feed/notes",
            {"body": body, "visibility": visibility},
        )
        note_id = note.get("id") if isinstance(note, dict) else None
        return str(note_id) if note_id is not None else "note"


def candidate_payload(candidate: CandidateRecord) -> Dict[str, Any]:
    first_name, last_name = split_name(candidate.name)
    return {
        "first_name": first_name,
        "last_name": last_name,
        "email_addresses": (
            [{"value": candidate.email, "type": "personal"}] if candidate.email else []
        ),
        "phone_numbers": [{"value": candidate.phone, "type": "mobile"}] if candidate.phone else [],
    }


class GreenhouseSyncHandler(SyncHandler):
    provider = Provider.GREENHOUSE
    capabilities = ProviderCapabilities(
        candidate_sync=SyncMode.PUSH,
        job_sync=SyncMode.NONE,
        interview_sync=SyncMode.PUSH,
        supports_webhooks=False,
    )
    stage_mapping = GREENHOUSE_STAGE
    schedule_before_update = False
    client_class = GreenhouseClient

    def search_candidate_by_email(self, api, email):
        return GreenhouseClient.search_candidate(api, email)

    def create_candidate(self, api, candidate):
        return GreenhouseClient.create_candidate(api, candidate_payload(candidate))

    def update_candidate(self, api, external_id, candidate):
        first_name, last_name = split_name(candidate.name)
        GreenhouseClient.update_candidate(
            api, external_id, {"first_name": first_name, "last_name": last_name}
        )

    def push_stage(self, api, external_id, mapped_stage, internal_stage):
        GreenhouseClient.add_note(
            api, external_id, f"Stage changed to: {mapped_stage} (internal stage: {internal_stage})"
        )

    def create_interview(self, api, interview, candidate_external_id):
        return GreenhouseClient.add_note(api, candidate_external_id, format_interview_note(interview))

    def update_interview(self, api, interview, external_interview_id, candidate_external_id, status):
        stage = interview.stage or "Interview"
        if status == "COMPLETED":
            body = f"Interview Completed: {stage}"
        elif status == "CANCELLED":
            body = f"Interview Cancelled: {stage}"
        else:
            body = format_interview_note(interview).replace(
                "Interview Scheduled", "Interview Rescheduled", 1
            )
        GreenhouseClient.add_note(api, candidate_external_id, body)
