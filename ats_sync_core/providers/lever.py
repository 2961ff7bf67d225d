"""
Lever adapter.

Candidates become Opportunities. Lever wraps every response in a ``data``
envelope, so created ids live at ``data.id`` of the body. Interviews and
stage changes are recorded as opportunity notes.
"""

from typing import Any, Dict, Optional

from ..constants import Provider, SyncMode
from ..schemas.integration_schemas import ProviderCapabilities
from ..schemas.record_schemas import CandidateRecord
from .api_client import ProviderAPIClient, ProviderSession
from .oauth import LeverOAuth
from .stage_mapping import LEVER_STAGE, format_interview_note
from .sync_handler import SyncHandler

DEFAULT_ORIGIN = "sourced"


def _data(body: Any) -> Any:
    return body.get("data") if isinstance(body, dict) else None


class LeverClient(ProviderAPIClient):
    provider = Provider.LEVER
    base_url = "https://api.lever.co/v1"

    def connection_check(self, api: ProviderSession) -> Dict[str, Any]:
        return api.get_json("/users/me")

    @staticmethod
    def search_opportunity(api: ProviderSession, email: str) -> Optional[str]:
        opportunities = _data(api.get_json("/opportunities", params={"email": email})) or []
        return str(opportunities[0]["id"]) if opportunities else None

    @staticmethod
    def create_opportunity(api: ProviderSession, payload: Dict[str, Any]) -> str:
        return str(_data(api.post_json("/opportunities", payload))["id"])

    @staticmethod
    def update_opportunity(api: ProviderSession, opportunity_id: str, payload: Dict[str, Any]) -> None:
        api.put_json(f"/opportunities/{opportunity_id}", payload)

    @staticmethod
    def add_note(api: ProviderSession, opportunity_id: str, value: str, secret: bool = False) -> str:
        body = api.post_json(
            f"/opportunities/{opportunity_id}/notes", {"value": value, "secret": secret}
        )
        return str(_data(body)["id"])


def contact_fields(candidate: CandidateRecord) -> Dict[str, Any]:
    return {
        "name": candidate.name,
        "emails": [candidate.email] if candidate.email else [],
        "phones": [{"value": candidate.phone}] if candidate.phone else [],
    }


class LeverSyncHandler(SyncHandler):
    provider = Provider.LEVER
    capabilities = ProviderCapabilities(
        candidate_sync=SyncMode.PUSH,
        job_sync=SyncMode.NONE,
        interview_sync=SyncMode.PUSH,
        supports_webhooks=False,
    )
    stage_mapping = LEVER_STAGE
    schedule_before_update = False
    client_class = LeverClient
    oauth_class = LeverOAuth

    def search_candidate_by_email(self, api, email):
        return LeverClient.search_opportunity(api, email)

    def create_candidate(self, api, candidate):
        payload = contact_fields(candidate)
        payload["origin"] = DEFAULT_ORIGIN
        payload["postings"] = []
        if candidate.source:
            payload["sources"] = [candidate.source]
        if candidate.stage:
            payload["stage"] = LEVER_STAGE.map(candidate.stage)
        return LeverClient.create_opportunity(api, payload)

    def update_candidate(self, api, external_id, candidate):
        LeverClient.update_opportunity(api, external_id, contact_fields(candidate))

    def push_stage(self, api, external_id, mapped_stage, internal_stage):
        LeverClient.add_note(
            api,
            external_id,
            f"Stage changed to: {mapped_stage} (from internal stage: {internal_stage})",
        )

    def create_interview(self, api, interview, candidate_external_id):
        return LeverClient.add_note(api, candidate_external_id, format_interview_note(interview))

    def update_interview(self, api, interview, external_interview_id, candidate_external_id, status):
        stage = interview.stage or "Interview"
        if status == "COMPLETED":
            value = f"Interview Completed: {stage}\nStatus: {interview.status}"
        elif status == "CANCELLED":
            value = f"Interview Cancelled: {stage}"
        else:
            value = format_interview_note(interview).replace(
                "Interview Scheduled", "Interview Rescheduled", 1
            )
        LeverClient.add_note(api, candidate_external_id, value)
