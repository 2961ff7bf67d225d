"""
Workday Recruiting adapter.

Every tenant has its own Workday host, so the base URL is derived from the
``tenant_url`` stored with the credentials:
``{tenant_url}/ccx/api/recruiting/v1``.
"""

from typing import Any, Dict, Optional

from ..constants import Provider, SyncMode
from ..exceptions import ConfigurationError
from ..schemas.credential_schemas import ProviderCredentials
from ..schemas.integration_schemas import ProviderCapabilities
from ..schemas.record_schemas import CandidateRecord, InterviewRecord
from .api_client import ProviderAPIClient, ProviderSession
from .oauth import WorkdayOAuth
from .stage_mapping import (
    WORKDAY_INTERVIEW_STATUS,
    WORKDAY_RECRUITING_STAGE,
    format_interview_body,
    format_interview_title,
    split_name,
)
from .sync_handler import SyncHandler


class WorkdayClient(ProviderAPIClient):
    provider = Provider.WORKDAY

    def get_base_url(self, credentials: ProviderCredentials) -> str:
        if not credentials.tenant_url:
            raise ConfigurationError(
                "Workday tenant URL not configured", provider=self.provider.value
            )
        return f"{credentials.tenant_url.rstrip('/')}/ccx/api/recruiting/v1"

    def connection_check(self, api: ProviderSession) -> Dict[str, Any]:
        return api.get_json("/me")

    def connection_message(self, result: Dict[str, Any]) -> str:
        return "Connected to Workday Recruiting"

    @staticmethod
    def search_candidate(api: ProviderSession, email: str) -> Optional[str]:
        body = api.get_json("/candidates", params={"emailAddress": email, "limit": 1})
        candidates = body.get("data") or []
        return str(candidates[0]["id"]) if candidates else None

    @staticmethod
    def create_candidate(api: ProviderSession, candidate_data: Dict[str, Any]) -> Optional[str]:
        body = api.post_json("/candidates", {"candidateData": candidate_data})
        created = body.get("id") or body.get("candidateId")
        return str(created) if created else None

    @staticmethod
    def update_candidate(api: ProviderSession, candidate_id: str, candidate_data: Dict[str, Any]) -> None:
        api.patch_json(f"/candidates/{candidate_id}", {"candidateData": candidate_data})

    @staticmethod
    def move_stage(api: ProviderSession, candidate_id: str, stage: str) -> None:
        api.post_json(f"/jobApplications/{candidate_id}/move", {"targetStage": {"descriptor": stage}})

    @staticmethod
    def create_interview_event(
        api: ProviderSession, candidate_id: str, interview_data: Dict[str, Any]
    ) -> Optional[str]:
        body = api.post_json(
            f"/jobApplications/{candidate_id}/interviews", {"interviewData": interview_data}
        )
        created = body.get("id") or body.get("interviewId")
        return str(created) if created else None

    @staticmethod
    def update_interview_status(
        api: ProviderSession, interview_id: str, status: str, notes: Optional[str] = None
    ) -> None:
        payload: Dict[str, Any] = {"status": {"descriptor": status}}
        if notes:
            payload["notes"] = notes
        api.patch_json(f"/interviews/{interview_id}", payload)


def candidate_name(candidate: CandidateRecord) -> Dict[str, str]:
    first_name, last_name = split_name(candidate.name)
    return {"legalFirstName": first_name, "legalLastName": last_name}


def candidate_data(candidate: CandidateRecord) -> Dict[str, Any]:
    contact: Dict[str, Any] = {
        "emailAddresses": [
            {"emailAddress": candidate.email, "usageType": {"id": "Work"}, "primary": True}
        ]
        if candidate.email
        else [],
        "phoneNumbers": [
            {"phoneNumber": candidate.phone, "usageType": {"id": "Work"}, "primary": True}
        ]
        if candidate.phone
        else [],
    }
    data: Dict[str, Any] = {"name": candidate_name(candidate), "contactInformation": contact}
    if candidate.source:
        data["source"] = {"descriptor": candidate.source}
    return data


def interview_data(interview: InterviewRecord) -> Dict[str, Any]:
    return {
        "interviewTitle": format_interview_title(interview),
        "scheduledDateTime": interview.date.isoformat(),
        "endDateTime": interview.end_time.isoformat(),
        "interviewers": [],
        "notes": format_interview_body(interview, notes_inline=True),
        "status": {"descriptor": WORKDAY_INTERVIEW_STATUS.map(interview.status)},
    }


class WorkdaySyncHandler(SyncHandler):
    provider = Provider.WORKDAY
    capabilities = ProviderCapabilities(
        candidate_sync=SyncMode.PUSH,
        job_sync=SyncMode.NONE,
        interview_sync=SyncMode.PUSH,
        supports_webhooks=False,
    )
    stage_mapping = WORKDAY_RECRUITING_STAGE
    client_class = WorkdayClient
    oauth_class = WorkdayOAuth

    def search_candidate_by_email(self, api, email):
        return WorkdayClient.search_candidate(api, email)

    def create_candidate(self, api, candidate):
        return WorkdayClient.create_candidate(api, candidate_data(candidate))

    def update_candidate(self, api, external_id, candidate):
        WorkdayClient.update_candidate(api, external_id, {"name": candidate_name(candidate)})

    def push_stage(self, api, external_id, mapped_stage, internal_stage):
        WorkdayClient.move_stage(api, external_id, mapped_stage)

    def create_interview(self, api, interview, candidate_external_id):
        return WorkdayClient.create_interview_event(api, candidate_external_id, interview_data(interview))

    def update_interview(self, api, interview, external_interview_id, candidate_external_id, status):
        notes = None
        if status == "RESCHEDULED":
            notes = f"Rescheduled to {interview.date.isoformat()}"
        WorkdayClient.update_interview_status(
            api, external_interview_id, WORKDAY_INTERVIEW_STATUS.map(status), notes
        )
