"""
BambooHR employee handoff.

This is not a sync: when a candidate is hired (or accepts an offer) an
employee record is created in BambooHR once and never updated afterwards.
The ``employee`` mapping keeps repeated hire events from creating duplicates.
"""

import mimetypes
import time
from datetime import date
from typing import Any, Callable, Dict, Optional, Union

import requests
from sqlalchemy.orm import Session

from ..config import get_config
from ..constants import (
    EntityType,
    HandoffTrigger,
    IntegrationStatus,
    Provider,
    SyncEventType,
    SyncMode,
)
from ..context.tenant_context import tenant_context
from ..exceptions import BaseError, ConfigurationError
from ..schemas.credential_schemas import ProviderCredentials
from ..schemas.integration_schemas import HandoffResult, ProviderCapabilities
from ..schemas.record_schemas import CandidateRecord
from ..services.credential_service import CredentialService
from ..services.keyed_counter_service import KeyedCounterService
from ..services.mapping_service import MappingService
from ..services.record_source import RecordSource, load_candidate
from ..services.sync_lock_service import SyncLockService, entity_lock_key
from ..services.sync_log_service import SyncLogService
from ..utils.logger import get_logger
from .api_client import ProviderAPIClient, ProviderSession
from .oauth import BambooHROAuth
from .sync_handler import NOT_CONNECTED, SyncRun, SyncRunRecorder

GATEWAY_URL = "https://api.bamboohr.com/api/gateway.php"
UNKNOWN_EMPLOYEE_ID = "unknown"
PHOTO_UPLOAD_TIMEOUT = 60


class BambooHRClient(ProviderAPIClient):
    provider = Provider.BAMBOOHR

    def get_base_url(self, credentials: ProviderCredentials) -> str:
        if not credentials.company_domain:
            raise ConfigurationError(
                "BambooHR company domain not configured", provider=self.provider.value
            )
        return f"{GATEWAY_URL}/{credentials.company_domain}/v1"

    def auth_failure_message(self, refresh_error: BaseError) -> str:
        return "BambooHR authentication failed"

    def connection_check(self, api: ProviderSession) -> Dict[str, Any]:
        return api.get_json("/employees/directory")

    @staticmethod
    def create_employee(api: ProviderSession, payload: Dict[str, str]) -> str:
        """Create an employee; BambooHR answers with the new id in the Location header."""
        response = api.post("/employees", json=payload)
        location = response.headers.get("Location")
        if not location:
            return UNKNOWN_EMPLOYEE_ID
        return location.rstrip("/").rsplit("/", 1)[-1] or UNKNOWN_EMPLOYEE_ID

    @staticmethod
    def upload_photo(
        api: ProviderSession, employee_id: str, content: bytes, filename: str, mime_type: str
    ) -> None:
        # Drop the JSON content type so requests writes the multipart boundary
        api.post(
            f"/employees/{employee_id}/photo",
            files={"file": (filename, content, mime_type)},
            headers={"Content-Type": None},
            timeout=PHOTO_UPLOAD_TIMEOUT,
        )


def employee_payload(
    candidate: CandidateRecord,
    hire_date: Optional[date] = None,
    department: Optional[str] = None,
) -> Dict[str, str]:
    parts = (candidate.name or "").split()
    payload = {
        "firstName": parts[0] if parts else "Unknown",
        "lastName": " ".join(parts[1:]) or "Unknown",
        "hireDate": (hire_date or date.today()).isoformat(),
    }
    optional = {
        "workEmail": candidate.email,
        "mobilePhone": candidate.phone,
        "jobTitle": candidate.job_title,
        "department": department,
    }
    payload.update({k: v for k, v in optional.items() if v})
    return payload


class BambooHRHandoffHandler(SyncRunRecorder):
    """Creates BambooHR employees from hired candidates."""

    provider = Provider.BAMBOOHR
    capabilities = ProviderCapabilities(
        candidate_sync=SyncMode.WRITE,
        job_sync=SyncMode.NONE,
        interview_sync=SyncMode.NONE,
        supports_webhooks=True,
    )
    client_class = BambooHRClient
    oauth_class = BambooHROAuth

    def __init__(
        self,
        session: Session,
        record_source: RecordSource,
        client: BambooHRClient,
        credentials: Optional[CredentialService] = None,
        sync_logs: Optional[SyncLogService] = None,
        mappings: Optional[MappingService] = None,
        locks: Optional[SyncLockService] = None,
        http_factory: Callable[[], requests.Session] = requests.Session,
    ):
        self.session = session
        self.records = record_source
        self.client = client
        self.credentials = credentials or client.credentials
        self.sync_logs = sync_logs or SyncLogService(session)
        self.mappings = mappings or MappingService(session)
        self.locks = locks or SyncLockService(session)
        self.http_factory = http_factory
        self.logger = get_logger()

    @classmethod
    def build(
        cls,
        session: Session,
        record_source: RecordSource,
        http_factory: Callable[[], requests.Session] = requests.Session,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "BambooHRHandoffHandler":
        credentials = CredentialService(
            session, cls.provider.value, oauth=cls.oauth_class(), http=http_factory()
        )
        client = cls.client_class(
            credentials,
            http_factory=http_factory,
            sleep=sleep,
            counters=KeyedCounterService(session),
        )
        return cls(session, record_source, client, credentials=credentials, http_factory=http_factory)

    @property
    def display_name(self) -> str:
        return self.provider.display_name

    def handle_candidate_hired(
        self,
        tenant_id: str,
        candidate_id: str,
        hire_date: Optional[date] = None,
        department: Optional[str] = None,
        trigger_source: Union[HandoffTrigger, str] = HandoffTrigger.MANUAL,
    ) -> HandoffResult:
        """
        Create the candidate's employee record in BambooHR.

        Skips (successfully) when BambooHR is not connected, when employee
        creation is disabled in the integration settings, or when the employee
        was already created. Never raises: failures are recorded on the sync
        log and returned as ``HandoffResult(success=False, error=...)``.
        """
        trigger = HandoffTrigger(getattr(trigger_source, "value", trigger_source))

        with tenant_context(tenant_id):
            log = self.sync_logs.create_log(
                tenant_id,
                self.provider.value,
                SyncEventType.EMPLOYEE_CREATED,
                EntityType.CANDIDATE.value,
                candidate_id,
                payload={"triggerSource": trigger.value},
            )
            self.sync_logs.mark_in_progress(log.id)
            run = SyncRun(tenant_id, log.id)

            try:
                return self._handoff(run, candidate_id, hire_date, department)
            except Exception as e:
                self._fail(run, e)
                message = e.message if isinstance(e, BaseError) else str(e)
                return HandoffResult(success=False, error=message)

    def handle_offer_accepted(
        self,
        tenant_id: str,
        candidate_id: str,
        start_date: Optional[date] = None,
        department: Optional[str] = None,
    ) -> HandoffResult:
        return self.handle_candidate_hired(
            tenant_id,
            candidate_id,
            hire_date=start_date,
            department=department,
            trigger_source=HandoffTrigger.OFFER_ACCEPTED,
        )

    def _skip(self, run: SyncRun, reason: str, **response: Any) -> HandoffResult:
        snapshot = {"skipped": True, "reason": reason, **response}
        if reason == NOT_CONNECTED:
            self.sync_logs.mark_skipped(run.log_id, snapshot)
        else:
            self.sync_logs.mark_success(run.log_id, snapshot)
        self.logger.info(
            f"BambooHR handoff skipped: {reason}",
            extra={"tenant_id": run.tenant_id, "log_id": run.log_id},
        )
        return HandoffResult(
            success=True, skipped=True, reason=reason, employee_id=response.get("existingEmployeeId")
        )

    def _handoff(
        self,
        run: SyncRun,
        candidate_id: str,
        hire_date: Optional[date],
        department: Optional[str],
    ) -> HandoffResult:
        tenant_id = run.tenant_id
        integration = self.credentials.get_integration(tenant_id)
        if integration is None or integration.status != IntegrationStatus.CONNECTED.value:
            return self._skip(run, NOT_CONNECTED)

        settings = integration.settings or {}
        if settings.get("enableEmployeeCreation") is False:
            return self._skip(run, "Employee creation disabled")

        key = entity_lock_key(tenant_id, self.provider.value, EntityType.EMPLOYEE.value, candidate_id)
        with self.locks.lock(key):
            existing = self.mappings.get_external_id(
                tenant_id, self.provider.value, EntityType.EMPLOYEE.value, candidate_id
            )
            if existing:
                return self._skip(run, "Employee already created", existingEmployeeId=existing)

            candidate = load_candidate(self.records, tenant_id, candidate_id)
            payload = employee_payload(candidate, hire_date, department)
            employee_id = self._remote(
                run, "create_employee", lambda api: BambooHRClient.create_employee(api, payload)
            )
            self.mappings.store_mapping(
                tenant_id, self.provider.value, EntityType.EMPLOYEE.value, candidate_id, employee_id
            )

        self._upload_photo(run, employee_id, candidate)

        self._resume(run)
        self.sync_logs.mark_success(run.log_id, {"employeeId": employee_id}, employee_id)
        self.credentials.mark_synced(tenant_id)
        self.logger.info(
            f"Created BambooHR employee {employee_id}",
            extra={"tenant_id": tenant_id, "candidate_id": candidate_id, "employee_id": employee_id},
        )
        return HandoffResult(success=True, employee_id=employee_id)

    def _upload_photo(self, run: SyncRun, employee_id: str, candidate: CandidateRecord) -> bool:
        """Copy the candidate photo to the employee record; failures are only logged."""
        if not candidate.photo_url or employee_id == UNKNOWN_EMPLOYEE_ID:
            return False

        context = {"tenant_id": run.tenant_id, "employee_id": employee_id}
        try:
            with self.http_factory() as http:
                response = http.get(candidate.photo_url, timeout=get_config().sync.request_timeout)
                response.raise_for_status()
            filename = candidate.photo_url.rstrip("/").rsplit("/", 1)[-1] or "photo.jpg"
            mime_type = (
                response.headers.get("Content-Type")
                or mimetypes.guess_type(filename)[0]
                or "image/jpeg"
            )
            api = self.client.build_session(run.tenant_id)
            BambooHRClient.upload_photo(api, employee_id, response.content, filename, mime_type)
        except (requests.RequestException, BaseError) as e:
            self.logger.warning(f"Failed to upload photo for employee {employee_id}: {e}", extra=context)
            return False

        self.logger.info("Uploaded employee photo", extra=context)
        return True
