"""
Generic sync handler.

Owns the per-event state machine shared by every push provider:

1. create a sync log entry (PENDING) and mark it IN_PROGRESS
2. consult the mapping store for the entity's external id
3. created: skip when mapped; otherwise search the provider by email, update
   and link a match or create a new record, then store the mapping
4. updated: fall back to the created path when there is no mapping
5. stage changed: ensure a mapping exists, translate the stage through the
   provider StageMapping and push it
6. interviews: ensure the candidate is mapped before creating or updating the
   remote interview artifact
7. any exception marks the log FAILED and is re-raised

Provider adapters subclass SyncHandler and implement the remote operations;
each remote operation runs through ProviderAPIClient.execute and renews the
sync leases the worker holds before it starts.

Providers that advertise ``supports_import`` also pull candidates: pages of
provider records are saved through a CandidateSink and deduplicated by
external id against the same mapping store the push path writes.

Integrations that are not connected are skipped: the log is marked SUCCESS
with ``{"skipped": true, "reason": "Not connected"}``, flagged as skipped so it
stays out of the success rate, and nothing is raised.
Missing internal records always fail with EntityNotFoundError.
"""

import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

import requests
from sqlalchemy.orm import Session

from ..constants import (
    CandidateEvent,
    EntityType,
    InterviewEvent,
    Limits,
    Provider,
    SyncDirection,
    SyncEventType,
    SyncStatus,
)
from ..context.tenant_context import tenant_context
from ..db.db_base import utc_now
from ..exceptions import BaseError, ConfigurationError, ErrorCode, ValidationError
from ..schemas.integration_schemas import ImportResult, ProviderCapabilities
from ..schemas.record_schemas import CandidateRecord, ImportedCandidate, InterviewRecord
from ..services.credential_service import CredentialService
from ..services.keyed_counter_service import KeyedCounterService
from ..services.mapping_service import MappingService
from ..services.record_source import CandidateSink, RecordSource, load_candidate, load_interview
from ..services.sync_lock_service import SyncLockService, entity_lock_key, renew_held_leases
from ..services.sync_log_service import SyncLogService
from ..utils.logger import get_logger
from .api_client import ProviderAPIClient, ProviderSession
from .oauth import OAuthProvider
from .stage_mapping import StageMapping

T = TypeVar("T")

NOT_CONNECTED = "Not connected"

CANDIDATE_LOG_EVENTS = {
    CandidateEvent.CREATED: SyncEventType.CANDIDATE_CREATED,
    CandidateEvent.UPDATED: SyncEventType.CANDIDATE_UPDATED,
    CandidateEvent.STAGE_CHANGED: SyncEventType.CANDIDATE_STAGE_CHANGED,
}

INTERVIEW_LOG_EVENTS = {
    InterviewEvent.SCHEDULED: SyncEventType.INTERVIEW_SCHEDULED,
    InterviewEvent.RESCHEDULED: SyncEventType.INTERVIEW_RESCHEDULED,
    InterviewEvent.CANCELLED: SyncEventType.INTERVIEW_CANCELLED,
    InterviewEvent.COMPLETED: SyncEventType.INTERVIEW_COMPLETED,
}

INTERVIEW_EVENT_STATUS = {
    InterviewEvent.RESCHEDULED: "RESCHEDULED",
    InterviewEvent.CANCELLED: "CANCELLED",
    InterviewEvent.COMPLETED: "COMPLETED",
}


class SyncRun:
    """Bookkeeping for one sync log entry while its event is processed."""

    def __init__(self, tenant_id: str, log_id: str):
        self.tenant_id = tenant_id
        self.log_id = log_id
        self.retry_count = 0
        self.retrying = False


class SyncRunRecorder:
    """
    Sync log bookkeeping shared by the handlers.

    Expects ``session``, ``client``, ``sync_logs``, ``logger`` and
    ``display_name`` on the host class.
    """

    def _fail(self, run: SyncRun, error: Exception) -> None:
        message = error.message if isinstance(error, BaseError) else str(error)
        attempts = getattr(error, "attempts", None)
        retry_count = max(run.retry_count, (attempts - 1) if attempts else 0)

        self.session.rollback()
        log = self.sync_logs.get_log(run.log_id)
        if log.status not in (SyncStatus.SUCCESS.value, SyncStatus.FAILED.value):
            self.sync_logs.mark_failed(run.log_id, message or type(error).__name__, retry_count)
        self.logger.error(
            f"{self.display_name} sync failed: {message}",
            extra={"tenant_id": run.tenant_id, "log_id": run.log_id, "retry_count": retry_count},
        )

    def _resume(self, run: SyncRun) -> None:
        if run.retrying:
            self.sync_logs.mark_in_progress(run.log_id)
            run.retrying = False

    def _remote(self, run: SyncRun, description: str, operation: Callable[[ProviderSession], T]) -> T:
        """Run one remote operation, recording retries on the sync log."""

        def on_retry(attempt, kind, delay) -> None:
            run.retry_count += 1
            self._resume(run)
            self.sync_logs.mark_retrying(run.log_id, run.retry_count)
            run.retrying = True

        def attempt(api: ProviderSession) -> T:
            self._resume(run)
            renew_held_leases()
            return operation(api)

        return self.client.execute(run.tenant_id, attempt, on_retry=on_retry, description=description)


class SyncHandler(SyncRunRecorder):
    """
    Base class of push-provider adapters.

    Class attributes:
        provider: Provider identifier
        capabilities: Static capability descriptor
        stage_mapping: Translation of internal stages to provider stages
        schedule_before_update: Create the remote interview artifact before
            updating it when it was never synced. Providers that record
            interviews as candidate notes set this to False.
        associates_interviews: The created interview artifact must be linked
            to the candidate by a separate call to associate_interview().
    """

    provider: Provider
    capabilities: ProviderCapabilities = ProviderCapabilities()
    stage_mapping: StageMapping
    schedule_before_update = True
    associates_interviews = False
    client_class: Type[ProviderAPIClient] = ProviderAPIClient
    oauth_class: Optional[Type[OAuthProvider]] = None

    def __init__(
        self,
        session: Session,
        record_source: RecordSource,
        client: ProviderAPIClient,
        credentials: Optional[CredentialService] = None,
        sync_logs: Optional[SyncLogService] = None,
        mappings: Optional[MappingService] = None,
        locks: Optional[SyncLockService] = None,
    ):
        self.session = session
        self.records = record_source
        self.client = client
        self.credentials = credentials or client.credentials
        self.sync_logs = sync_logs or SyncLogService(session)
        self.mappings = mappings or MappingService(session)
        self.locks = locks or SyncLockService(session)
        self.logger = get_logger()

    @classmethod
    def build(
        cls,
        session: Session,
        record_source: RecordSource,
        http_factory: Callable[[], requests.Session] = requests.Session,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "SyncHandler":
        """Wire a handler with its credential store and API client on one session."""
        credentials = CredentialService(
            session,
            cls.provider.value,
            oauth=cls.oauth_class() if cls.oauth_class else None,
            http=http_factory(),
        )
        client = cls.client_class(
            credentials,
            http_factory=http_factory,
            sleep=sleep,
            counters=KeyedCounterService(session),
        )
        return cls(session, record_source, client, credentials=credentials)

    @property
    def display_name(self) -> str:
        return self.provider.display_name

    # ==================== REMOTE OPERATIONS ====================

    def search_candidate_by_email(self, api: ProviderSession, email: str) -> Optional[str]:
        raise NotImplementedError

    def create_candidate(self, api: ProviderSession, candidate: CandidateRecord) -> str:
        raise NotImplementedError

    def update_candidate(
        self, api: ProviderSession, external_id: str, candidate: CandidateRecord
    ) -> None:
        raise NotImplementedError

    def push_stage(
        self, api: ProviderSession, external_id: str, mapped_stage: str, internal_stage: str
    ) -> None:
        raise NotImplementedError

    def create_interview(
        self, api: ProviderSession, interview: InterviewRecord, candidate_external_id: str
    ) -> Optional[str]:
        raise NotImplementedError

    def associate_interview(
        self, api: ProviderSession, external_interview_id: str, candidate_external_id: str
    ) -> None:
        raise NotImplementedError

    def update_interview(
        self,
        api: ProviderSession,
        interview: InterviewRecord,
        external_interview_id: Optional[str],
        candidate_external_id: str,
        status: str,
    ) -> None:
        raise NotImplementedError

    def complete_interview(
        self,
        api: ProviderSession,
        interview: InterviewRecord,
        external_interview_id: Optional[str],
        candidate_external_id: str,
    ) -> None:
        self.update_interview(
            api, interview, external_interview_id, candidate_external_id, "COMPLETED"
        )

    def fetch_candidate_page(
        self, api: ProviderSession, since: Optional[datetime], cursor: Optional[str]
    ) -> Tuple[List[ImportedCandidate], Optional[str]]:
        """Return one page of provider candidates modified since ``since`` and the next cursor."""
        raise NotImplementedError

    # ==================== ENTRY POINTS ====================

    def sync_candidate(
        self,
        tenant_id: str,
        candidate_id: str,
        event_type: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Push a candidate event to the provider.

        Args:
            tenant_id: Tenant owning the candidate
            candidate_id: Internal candidate id
            event_type: created, updated or stage_changed
            data: Event payload; stage_changed expects ``newStage``

        Returns:
            The response snapshot stored on the sync log

        Raises:
            ValidationError: Unknown event type
            EntityNotFoundError: The candidate does not exist
            ProviderAPIError: The provider call failed
        """
        event = _parse_event(CandidateEvent, event_type)
        data = data or {}

        def handle(run: SyncRun) -> Tuple[Dict[str, Any], Optional[str]]:
            key = entity_lock_key(tenant_id, self.provider.value, EntityType.CANDIDATE.value, candidate_id)
            with self.locks.lock(key):
                if event == CandidateEvent.CREATED:
                    return self._handle_candidate_created(run, candidate_id)
                if event == CandidateEvent.UPDATED:
                    return self._handle_candidate_updated(run, candidate_id)
                return self._handle_stage_changed(run, candidate_id, data)

        return self._run(
            tenant_id,
            CANDIDATE_LOG_EVENTS[event],
            EntityType.CANDIDATE.value,
            candidate_id,
            data,
            handle,
        )

    def sync_interview(self, tenant_id: str, interview_id: str, event_type: str) -> Dict[str, Any]:
        """
        Push an interview event to the provider.

        Args:
            tenant_id: Tenant owning the interview
            interview_id: Internal interview id
            event_type: scheduled, rescheduled, cancelled or completed
        """
        event = _parse_event(InterviewEvent, event_type)

        def handle(run: SyncRun) -> Tuple[Dict[str, Any], Optional[str]]:
            key = entity_lock_key(tenant_id, self.provider.value, EntityType.INTERVIEW.value, interview_id)
            with self.locks.lock(key):
                if event == InterviewEvent.SCHEDULED:
                    return self._handle_interview_scheduled(run, interview_id)
                return self._handle_interview_changed(run, interview_id, event)

        return self._run(
            tenant_id,
            INTERVIEW_LOG_EVENTS[event],
            EntityType.INTERVIEW.value,
            interview_id,
            {"eventType": event.value},
            handle,
        )

    def import_candidates(
        self,
        tenant_id: str,
        since: Optional[datetime] = None,
        sink: Optional[CandidateSink] = None,
    ) -> Dict[str, Any]:
        """
        Pull candidates from the provider into the system of record.

        Records already mapped by external id update their candidate; new ones
        create a candidate and a mapping. A record that fails to save is
        counted as an error and the import continues.

        Args:
            tenant_id: Tenant to import into
            since: Only records modified at or after this instant (default:
                the ``lastImportAt`` integration setting; full import when unset)
            sink: Where candidates are saved (default: the record source)

        Returns:
            Counts of imported, updated and failed records and pages read

        Raises:
            ValidationError: The provider does not support imports
            ConfigurationError: No candidate sink is available
            ProviderAPIError: Reading a page failed
        """
        if not self.capabilities.supports_import:
            raise ValidationError(
                f"{self.display_name} does not support candidate import",
                error_code=ErrorCode.PRECONDITION_FAILED,
                provider=self.provider.value,
            )
        if sink is None and isinstance(self.records, CandidateSink):
            sink = self.records
        if sink is None:
            raise ConfigurationError(
                "No candidate sink configured for import", provider=self.provider.value
            )

        if since is None:
            last_import = self.credentials.get_settings(tenant_id).get("lastImportAt")
            since = datetime.fromisoformat(last_import) if last_import else None

        def handle(run: SyncRun) -> Tuple[Dict[str, Any], Optional[str]]:
            started = utc_now()
            imported = updated = errors = pages = 0
            cursor: Optional[str] = None

            while pages < Limits.IMPORT_MAX_PAGES:
                records, cursor = self._remote(
                    run,
                    "fetch_candidate_page",
                    lambda api, after=cursor: self.fetch_candidate_page(api, since, after),
                )
                pages += 1
                for record in records:
                    try:
                        if self._import_candidate(run, sink, record):
                            imported += 1
                        else:
                            updated += 1
                    except BaseError as e:
                        errors += 1
                        self.logger.warning(
                            f"Failed to import {self.display_name} candidate: {e.message}",
                            extra={"tenant_id": run.tenant_id, "external_id": record.external_id},
                        )
                if not cursor:
                    break

            self.credentials.update_settings(tenant_id, lastImportAt=started.isoformat())
            result = ImportResult(imported=imported, updated=updated, errors=errors, pages=pages)
            return result.model_dump(by_alias=True), None

        return self._run(
            tenant_id,
            SyncEventType.CANDIDATE_IMPORT,
            "integration",
            self.provider.value,
            {"since": since.isoformat() if since else None},
            handle,
            direction=SyncDirection.INBOUND,
        )

    # ==================== STATE MACHINE ====================

    def _run(
        self,
        tenant_id: str,
        log_event: SyncEventType,
        entity_type: str,
        entity_id: str,
        payload: Dict[str, Any],
        handle: Callable[[SyncRun], Tuple[Dict[str, Any], Optional[str]]],
        direction: SyncDirection = SyncDirection.OUTBOUND,
    ) -> Dict[str, Any]:
        with tenant_context(tenant_id):
            log = self.sync_logs.create_log(
                tenant_id,
                self.provider.value,
                log_event,
                entity_type,
                entity_id,
                payload=payload,
                direction=direction,
            )
            self.sync_logs.mark_in_progress(log.id)
            run = SyncRun(tenant_id, log.id)

            try:
                if not self.credentials.is_connected(tenant_id):
                    response: Dict[str, Any] = {"skipped": True, "reason": NOT_CONNECTED}
                    self.sync_logs.mark_skipped(run.log_id, response)
                    self.logger.info(
                        f"{self.display_name} not connected, skipping sync",
                        extra={"tenant_id": tenant_id, "entity_id": entity_id, "event": log_event.value},
                    )
                    return response

                response, external_id = handle(run)
                self._resume(run)
                self.sync_logs.mark_success(run.log_id, response, external_id)
                self.credentials.mark_synced(tenant_id)
            except Exception as e:
                self._fail(run, e)
                raise

            self.logger.info(
                f"{self.display_name} sync completed",
                extra={
                    "tenant_id": tenant_id,
                    "event": log_event.value,
                    "entity_id": entity_id,
                    "external_id": external_id,
                    "log_id": run.log_id,
                },
            )
            return response

    def _ensure_candidate(self, run: SyncRun, candidate: CandidateRecord) -> Tuple[str, str]:
        """
        Return the candidate's external id, linking or creating a remote record if needed.

        Returns:
            (external_id, action) where action is mapped, linked or created
        """
        key = entity_lock_key(run.tenant_id, self.provider.value, EntityType.CANDIDATE.value, candidate.id)
        with self.locks.lock(key):
            external_id = self.mappings.get_external_id(
                run.tenant_id, self.provider.value, EntityType.CANDIDATE.value, candidate.id
            )
            if external_id:
                return external_id, "mapped"

            existing = None
            if candidate.email:
                existing = self._remote(
                    run,
                    "search_candidate_by_email",
                    lambda api: self.search_candidate_by_email(api, candidate.email),
                )

            if existing:
                self._remote(
                    run, "update_candidate", lambda api: self.update_candidate(api, existing, candidate)
                )
                external_id, action = str(existing), "linked"
            else:
                created = self._remote(
                    run, "create_candidate", lambda api: self.create_candidate(api, candidate)
                )
                if not created:
                    raise ValidationError(
                        f"Failed to create candidate in {self.display_name}",
                        error_code=ErrorCode.PRECONDITION_FAILED,
                        candidate_id=candidate.id,
                    )
                external_id, action = str(created), "created"

            self.mappings.store_mapping(
                run.tenant_id,
                self.provider.value,
                EntityType.CANDIDATE.value,
                candidate.id,
                external_id,
            )
            return external_id, action

    def _import_candidate(self, run: SyncRun, sink: CandidateSink, record: ImportedCandidate) -> bool:
        """Save one pulled record; True when it created a new candidate."""
        key = entity_lock_key(
            run.tenant_id, self.provider.value, "external-candidate", record.external_id
        )
        with self.locks.lock(key):
            mapping = self.mappings.find_by_external_id(
                run.tenant_id, self.provider.value, EntityType.CANDIDATE.value, record.external_id
            )
            candidate_id = sink.save_imported_candidate(
                run.tenant_id,
                self.provider.value,
                record,
                candidate_id=mapping.entity_id if mapping else None,
            )
            if mapping is None:
                self.mappings.store_mapping(
                    run.tenant_id,
                    self.provider.value,
                    EntityType.CANDIDATE.value,
                    candidate_id,
                    record.external_id,
                )
            return mapping is None

    def _handle_candidate_created(self, run: SyncRun, candidate_id: str):
        candidate = load_candidate(self.records, run.tenant_id, candidate_id)
        external_id = self.mappings.get_external_id(
            run.tenant_id, self.provider.value, EntityType.CANDIDATE.value, candidate_id
        )
        if external_id:
            return {"skipped": True, "reason": "Already synced", "externalId": external_id}, external_id

        external_id, action = self._ensure_candidate(run, candidate)
        return {"externalId": external_id, "action": action}, external_id

    def _handle_candidate_updated(self, run: SyncRun, candidate_id: str):
        candidate = load_candidate(self.records, run.tenant_id, candidate_id)
        external_id = self.mappings.get_external_id(
            run.tenant_id, self.provider.value, EntityType.CANDIDATE.value, candidate_id
        )
        if not external_id:
            external_id, action = self._ensure_candidate(run, candidate)
            return {"externalId": external_id, "action": action, "createdInstead": True}, external_id

        self._remote(
            run, "update_candidate", lambda api: self.update_candidate(api, external_id, candidate)
        )
        return {"externalId": external_id, "action": "updated"}, external_id

    def _handle_stage_changed(self, run: SyncRun, candidate_id: str, data: Dict[str, Any]):
        candidate = load_candidate(self.records, run.tenant_id, candidate_id)
        new_stage = data.get("newStage") or data.get("new_stage")
        if not new_stage:
            return {"skipped": True, "reason": "No stage provided"}, None

        external_id, _ = self._ensure_candidate(run, candidate)
        mapped_stage = self.stage_mapping.map(new_stage)
        self._remote(
            run,
            "push_stage",
            lambda api: self.push_stage(api, external_id, mapped_stage, new_stage),
        )
        return (
            {"externalId": external_id, "newStage": new_stage, "mappedStage": mapped_stage},
            external_id,
        )

    def _handle_interview_scheduled(self, run: SyncRun, interview_id: str):
        interview = load_interview(self.records, run.tenant_id, interview_id)
        candidate_external_id, _ = self._ensure_candidate(run, interview.candidate)

        existing = self.mappings.get_external_id(
            run.tenant_id, self.provider.value, EntityType.INTERVIEW.value, interview_id
        )
        if existing:
            return {"skipped": True, "reason": "Already synced", "externalId": existing}, existing

        external_id = self._schedule(run, interview, candidate_external_id)
        return (
            {"externalId": external_id, "candidateExternalId": candidate_external_id},
            external_id,
        )

    def _schedule(self, run: SyncRun, interview: InterviewRecord, candidate_external_id: str) -> str:
        created = self._remote(
            run,
            "create_interview",
            lambda api: self.create_interview(api, interview, candidate_external_id),
        )
        if not created:
            raise ValidationError(
                f"Failed to create interview in {self.display_name}",
                error_code=ErrorCode.PRECONDITION_FAILED,
                interview_id=interview.id,
            )
        external_id = str(created)
        self.mappings.store_mapping(
            run.tenant_id, self.provider.value, EntityType.INTERVIEW.value, interview.id, external_id
        )

        # Stored before the association call; association retries reuse this artifact
        if self.associates_interviews:
            self._remote(
                run,
                "associate_interview",
                lambda api: self.associate_interview(api, external_id, candidate_external_id),
            )
        return external_id

    def _handle_interview_changed(self, run: SyncRun, interview_id: str, event: InterviewEvent):
        interview = load_interview(self.records, run.tenant_id, interview_id)
        status = INTERVIEW_EVENT_STATUS[event]
        candidate_external_id, _ = self._ensure_candidate(run, interview.candidate)

        external_id = self.mappings.get_external_id(
            run.tenant_id, self.provider.value, EntityType.INTERVIEW.value, interview_id
        )
        scheduled_first = False
        if not external_id and self.schedule_before_update:
            if event == InterviewEvent.CANCELLED:
                return {"skipped": True, "reason": "Interview was never synced"}, None
            external_id = self._schedule(run, interview, candidate_external_id)
            scheduled_first = True

        if event == InterviewEvent.COMPLETED:
            self._remote(
                run,
                "complete_interview",
                lambda api: self.complete_interview(
                    api, interview, external_id, candidate_external_id
                ),
            )
        else:
            self._remote(
                run,
                "update_interview",
                lambda api: self.update_interview(
                    api, interview, external_id, candidate_external_id, status
                ),
            )
        response = {"externalId": external_id, "status": status}
        if scheduled_first:
            response["scheduledFirst"] = True
        return response, external_id


def _parse_event(enum_cls, event_type):
    try:
        return enum_cls(getattr(event_type, "value", event_type))
    except ValueError as e:
        raise ValidationError(
            f"Unknown event type: {event_type}",
            field="event_type",
            error_code=ErrorCode.INVALID_FORMAT,
            cause=e,
        ) from e
