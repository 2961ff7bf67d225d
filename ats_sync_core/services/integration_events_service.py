"""
Integration event dispatcher.

Core record changes are fanned out to every connected integration of the
tenant whose capabilities cover the event. Each fan-out target becomes one
JSON job on the ``integration-sync`` Azure Storage queue. The queue worker
(``receive_jobs``) hands each dequeued job to ``process_event`` and settles
it: deleted on success, hidden again with exponential backoff on failure and
moved to the poison queue once its attempts are used up. Connected
integrations can also import candidates on a schedule (``schedule_imports``).

Publishing never raises: integration problems must not block the change
that triggered them.
"""

import math
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from azure.core.exceptions import AzureError
from azure.storage.queue import QueueClient
from sqlalchemy import and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import QueueConfig, get_config
from ..constants import (
    HandoffTrigger,
    ImportFrequency,
    ImportMode,
    IntegrationStatus,
    JobStatus,
    Limits,
    SyncEventType,
    SyncMode,
)
from ..db.db_base import as_utc, utc_now
from ..db.db_integration_models import Integration
from ..exceptions import BaseError, ErrorCode, ServiceError, ValidationError
from ..providers.registry import PROVIDER_CAPABILITIES, ProviderRegistry
from ..providers.stage_mapping import normalize
from ..schemas.integration_schemas import IntegrationEventMessage, JobOptions, JobOutcome
from ..utils.json_utils import loads
from ..utils.queue_utils import send_message_to_queue_direct
from ..utils.retry_utils import calculate_exponential_backoff
from .base_service import BaseService
from .sync_log_service import SyncLogService


class EventKind:
    CANDIDATE = "candidate"
    INTERVIEW = "interview"
    HANDOFF = "handoff"
    MANUAL = "manual"
    IMPORT = "import"


HIRED_STAGES = ("hired", "accepted")

IMPORT_INTERVALS = {
    ImportFrequency.HOURLY.value: timedelta(hours=1),
    ImportFrequency.DAILY.value: timedelta(hours=24),
}

QueueSender = Callable[..., None]


class IntegrationEventsService(BaseService):
    """Publishes integration events and processes dequeued sync jobs."""

    def __init__(
        self,
        session: Optional[Session] = None,
        queue_config: Optional[QueueConfig] = None,
        queue_client: Optional[QueueClient] = None,
        sender: QueueSender = send_message_to_queue_direct,
    ):
        super().__init__(session)
        self._queue_config = queue_config
        self.queue_client = queue_client
        self.sender = sender

    @property
    def queue_config(self) -> QueueConfig:
        return self._queue_config or get_config().queue

    # ==================== CANDIDATE EVENTS ====================

    def on_candidate_created(self, tenant_id: str, candidate_id: str) -> List[str]:
        return self._emit(tenant_id, EventKind.CANDIDATE, candidate_id, "created")

    def on_candidate_updated(self, tenant_id: str, candidate_id: str) -> List[str]:
        return self._emit(tenant_id, EventKind.CANDIDATE, candidate_id, "updated")

    def on_candidate_stage_changed(self, tenant_id: str, candidate_id: str, new_stage: str) -> List[str]:
        """Publish a stage change; moving to a hired stage also starts the employee handoff."""
        queued = self._emit(
            tenant_id, EventKind.CANDIDATE, candidate_id, "stage_changed", {"newStage": new_stage}
        )
        if normalize(new_stage) in HIRED_STAGES:
            queued += self.on_candidate_hired(tenant_id, candidate_id)
        return queued

    def on_candidate_hired(
        self,
        tenant_id: str,
        candidate_id: str,
        hire_date: Optional[date] = None,
        department: Optional[str] = None,
        trigger_source: HandoffTrigger = HandoffTrigger.MANUAL,
    ) -> List[str]:
        data: Dict[str, Any] = {}
        if hire_date:
            data["hireDate"] = hire_date.isoformat()
        if department:
            data["department"] = department
        return self._emit(tenant_id, EventKind.HANDOFF, candidate_id, trigger_source.value, data)

    def on_offer_accepted(
        self,
        tenant_id: str,
        candidate_id: str,
        start_date: Optional[date] = None,
        department: Optional[str] = None,
    ) -> List[str]:
        return self.on_candidate_hired(
            tenant_id, candidate_id, start_date, department, HandoffTrigger.OFFER_ACCEPTED
        )

    # ==================== INTERVIEW EVENTS ====================

    def on_interview_scheduled(self, tenant_id: str, interview_id: str) -> List[str]:
        return self._emit(tenant_id, EventKind.INTERVIEW, interview_id, "scheduled")

    def on_interview_rescheduled(self, tenant_id: str, interview_id: str) -> List[str]:
        return self._emit(tenant_id, EventKind.INTERVIEW, interview_id, "rescheduled")

    def on_interview_cancelled(self, tenant_id: str, interview_id: str) -> List[str]:
        return self._emit(tenant_id, EventKind.INTERVIEW, interview_id, "cancelled")

    def on_interview_completed(self, tenant_id: str, interview_id: str) -> List[str]:
        return self._emit(tenant_id, EventKind.INTERVIEW, interview_id, "completed")

    # ==================== PUBLISHING ====================

    @staticmethod
    def supports(provider: str, kind: str) -> bool:
        capabilities = PROVIDER_CAPABILITIES.get(provider)
        if capabilities is None:
            return False
        if kind == EventKind.CANDIDATE:
            return capabilities.candidate_sync == SyncMode.PUSH
        if kind == EventKind.INTERVIEW:
            return capabilities.interview_sync == SyncMode.PUSH
        if kind == EventKind.HANDOFF:
            return capabilities.candidate_sync == SyncMode.WRITE
        if kind == EventKind.IMPORT:
            return capabilities.supports_import
        return kind == EventKind.MANUAL

    def connected_providers(self, tenant_id: str) -> List[str]:
        rows = (
            self.session.query(Integration.provider)
            .filter(
                and_(
                    Integration.tenant_id == tenant_id,
                    Integration.status == IntegrationStatus.CONNECTED.value,
                )
            )
            .order_by(Integration.provider)
            .all()
        )
        return [row.provider for row in rows]

    def build_message(
        self,
        tenant_id: str,
        provider: str,
        kind: str,
        entity_id: Optional[str],
        event_type: str,
        data: Optional[Dict[str, Any]] = None,
        options: Optional[JobOptions] = None,
    ) -> IntegrationEventMessage:
        config = self.queue_config
        return IntegrationEventMessage(
            tenant_id=tenant_id,
            provider=provider,
            kind=kind,
            entity_id=entity_id,
            event_type=event_type,
            data=data or {},
            options=options
            or JobOptions(attempts=config.job_attempts, backoff_delay_ms=config.job_backoff_ms),
            enqueued_at=utc_now(),
        )

    def publish(self, message: IntegrationEventMessage) -> None:
        """
        Put one job on the sync queue.

        Raises:
            ServiceError: If the queue rejects the message
        """
        config = self.queue_config
        self.sender(
            config.connection_string,
            config.sync_queue_name,
            message.model_dump(mode="json"),
            queue_client=self.queue_client,
        )

    def _emit(
        self,
        tenant_id: str,
        kind: str,
        entity_id: str,
        event_type: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> List[str]:
        """Queue the event for every connected provider that supports it; returns those providers."""
        context = {"tenant_id": tenant_id, "kind": kind, "event_type": event_type, "entity_id": entity_id}
        try:
            providers = self.connected_providers(tenant_id)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to emit integration event: {e}", extra=context)
            return []

        if not providers:
            self.logger.debug("No active integrations for tenant", extra=context)
            return []

        queued = []
        for provider in providers:
            if not self.supports(provider, kind):
                self.logger.debug(
                    f"Provider {provider} does not support {kind} {event_type}", extra=context
                )
                continue
            try:
                self.publish(
                    self.build_message(tenant_id, provider, kind, entity_id, event_type, data)
                )
            except BaseError as e:
                self.logger.error(
                    f"Failed to queue event for {provider}: {e.message}",
                    extra={**context, "provider": provider},
                )
                continue
            queued.append(provider)
            self.logger.debug(f"Queued {kind} {event_type} event for {provider}", extra=context)
        return queued

    # ==================== SCHEDULED IMPORTS ====================

    def schedule_imports(self, now: Optional[datetime] = None) -> List[IntegrationEventMessage]:
        """
        Queue a candidate import for every connected integration whose scheduled import is due.

        An integration takes part when its settings set ``importMode`` to
        ``scheduled``; ``importFrequency`` (hourly or daily, default daily) is
        measured from ``lastImportAt``. Integrations never imported are due.
        """
        now = now or utc_now()
        integrations = (
            self.session.query(Integration)
            .filter(Integration.status == IntegrationStatus.CONNECTED.value)
            .order_by(Integration.tenant_id, Integration.provider)
            .all()
        )

        queued = []
        for integration in integrations:
            settings = integration.settings or {}
            if settings.get("importMode") != ImportMode.SCHEDULED.value:
                continue
            if not self.supports(integration.provider, EventKind.IMPORT):
                continue
            if not import_due(settings, now):
                continue

            message = self.build_message(
                integration.tenant_id,
                integration.provider,
                EventKind.IMPORT,
                None,
                "scheduled",
                options=JobOptions(
                    attempts=Limits.IMPORT_JOB_ATTEMPTS, backoff_delay_ms=Limits.IMPORT_JOB_BACKOFF_MS
                ),
            )
            context = {"tenant_id": integration.tenant_id, "provider": integration.provider}
            try:
                self.publish(message)
            except BaseError as e:
                self.logger.error(f"Failed to schedule import: {e.message}", extra=context)
                continue
            queued.append(message)
            self.logger.info("Scheduled candidate import", extra=context)
        return queued

    # ==================== QUEUE WORKER ====================

    def _sync_queue(self) -> QueueClient:
        if self.queue_client is None:
            config = self.queue_config
            self.queue_client = QueueClient.from_connection_string(
                conn_str=config.connection_string, queue_name=config.sync_queue_name
            )
        return self.queue_client

    def receive_jobs(self, registry: ProviderRegistry) -> List[JobOutcome]:
        """Receive one batch of sync jobs and settle each of them."""
        config = self.queue_config
        try:
            messages = list(
                self._sync_queue().receive_messages(
                    max_messages=config.receive_batch_size,
                    visibility_timeout=config.job_visibility_timeout,
                )
            )
        except AzureError as e:
            raise ServiceError(
                f"Failed to receive from queue {config.sync_queue_name}: {e}",
                error_code=ErrorCode.QUEUE_ERROR,
                operation="receive_jobs",
                cause=e,
            ) from e
        return [self.handle_queue_message(message, registry) for message in messages]

    def handle_queue_message(self, queue_message: Any, registry: ProviderRegistry) -> JobOutcome:
        """
        Process one received job and settle it on the queue.

        A job that succeeds is deleted. A failed job becomes visible again
        after the exponential backoff of its options, until its dequeue count
        reaches ``options.attempts``; it then moves to the poison queue.
        Malformed or unroutable jobs move there at once.
        """
        attempt = getattr(queue_message, "dequeue_count", None) or 1
        context: Dict[str, Any] = {"message_id": getattr(queue_message, "id", None), "attempt": attempt}

        try:
            event = parse_message(queue_message.content)
        except ValidationError as e:
            return self._dead_letter(queue_message, None, attempt, e.message, context)

        context.update(tenant_id=event.tenant_id, provider=event.provider, kind=event.kind)
        try:
            result = self.process_event(event, registry)
        except ValidationError as e:
            return self._dead_letter(queue_message, event, attempt, e.message, context)
        except Exception as e:
            error = e.message if isinstance(e, BaseError) else str(e) or type(e).__name__
            if attempt >= event.options.attempts:
                return self._dead_letter(queue_message, event, attempt, error, context)
            return self._schedule_retry(queue_message, event, attempt, error, context)

        self._settle("delete_message", queue_message)
        return JobOutcome(status=JobStatus.COMPLETED, attempt=attempt, result=result)

    def _schedule_retry(
        self,
        queue_message: Any,
        event: IntegrationEventMessage,
        attempt: int,
        error: str,
        context: Dict[str, Any],
    ) -> JobOutcome:
        delay = math.ceil(
            calculate_exponential_backoff(attempt, base_delay=event.options.backoff_delay_ms / 1000)
        )
        self._settle(
            "update_message",
            queue_message,
            pop_receipt=getattr(queue_message, "pop_receipt", None),
            visibility_timeout=delay,
        )
        self.logger.warning(
            f"Sync job failed, retrying in {delay}s: {error}",
            extra={**context, "retry_in_seconds": delay},
        )
        return JobOutcome(
            status=JobStatus.RETRY_SCHEDULED, attempt=attempt, retry_in_seconds=delay, error=error
        )

    def _dead_letter(
        self,
        queue_message: Any,
        event: Optional[IntegrationEventMessage],
        attempt: int,
        error: str,
        context: Dict[str, Any],
    ) -> JobOutcome:
        config = self.queue_config
        self.sender(
            config.connection_string,
            config.poison_queue_name,
            {
                "job": event.model_dump(mode="json") if event else str(queue_message.content),
                "error": error,
                "attempts": attempt,
                "failedAt": utc_now().isoformat(),
            },
        )
        self._settle("delete_message", queue_message)
        self.logger.error(
            f"Sync job moved to {config.poison_queue_name} after {attempt} attempt(s): {error}",
            extra=context,
        )
        return JobOutcome(status=JobStatus.DEAD_LETTERED, attempt=attempt, error=error)

    def _settle(self, action: str, queue_message: Any, **kwargs: Any) -> None:
        try:
            getattr(self._sync_queue(), action)(queue_message, **kwargs)
        except AzureError as e:
            raise ServiceError(
                f"Failed to {action.replace('_', ' ')} on queue {self.queue_config.sync_queue_name}: {e}",
                error_code=ErrorCode.QUEUE_ERROR,
                operation=action,
                cause=e,
            ) from e

    # ==================== PROCESSING ====================

    def process_event(
        self,
        message: Union[IntegrationEventMessage, Dict[str, Any], str, bytes],
        registry: ProviderRegistry,
    ) -> Any:
        """
        Route a dequeued job to its provider handler.

        Errors propagate so the queue can redeliver the job.

        Raises:
            ValidationError: Malformed message or unsupported provider/kind
        """
        event = parse_message(message)
        handler = registry.get(event.provider)
        self.logger.info(
            f"Processing {event.kind} {event.event_type} for {event.provider}",
            extra={"tenant_id": event.tenant_id, "entity_id": event.entity_id},
        )

        if event.kind == EventKind.CANDIDATE and registry.is_push_provider(event.provider):
            return handler.sync_candidate(event.tenant_id, event.entity_id, event.event_type, event.data)
        if event.kind == EventKind.INTERVIEW and registry.is_push_provider(event.provider):
            return handler.sync_interview(event.tenant_id, event.entity_id, event.event_type)
        if event.kind == EventKind.HANDOFF and not registry.is_push_provider(event.provider):
            hire_date = event.data.get("hireDate")
            return handler.handle_candidate_hired(
                event.tenant_id,
                event.entity_id,
                hire_date=date.fromisoformat(hire_date) if hire_date else None,
                department=event.data.get("department"),
                trigger_source=event.event_type,
            )
        if event.kind == EventKind.MANUAL:
            return self._process_manual(event, registry)
        if event.kind == EventKind.IMPORT and self.supports(event.provider, EventKind.IMPORT):
            return handler.import_candidates(event.tenant_id)

        raise ValidationError(
            f"Provider {event.provider} cannot process {event.kind} events",
            field="kind",
            error_code=ErrorCode.INVALID_FORMAT,
            provider=event.provider,
        )

    def _process_manual(self, event: IntegrationEventMessage, registry: ProviderRegistry) -> Dict[str, Any]:
        """
        Manual sync: verify the connection, then re-push the listed candidates.

        Individual candidate failures are already recorded on their own sync
        logs; the manual log records the totals.
        """
        handler = registry.get(event.provider)
        sync_logs = SyncLogService(self.session)
        log = sync_logs.create_log(
            event.tenant_id,
            event.provider,
            SyncEventType.MANUAL_SYNC,
            "integration",
            event.provider,
            payload=event.data,
        )
        sync_logs.mark_in_progress(log.id)

        connection = handler.client.test_connection(event.tenant_id)
        if not connection.success:
            sync_logs.mark_failed(log.id, connection.message)
            return {"success": False, "message": connection.message}

        pushed, failed = 0, 0
        if registry.is_push_provider(event.provider):
            for candidate_id in event.data.get("candidateIds") or []:
                try:
                    handler.sync_candidate(event.tenant_id, candidate_id, "updated")
                    pushed += 1
                except BaseError as e:
                    failed += 1
                    self.logger.warning(
                        f"Manual sync of candidate {candidate_id} failed: {e.message}",
                        extra={"tenant_id": event.tenant_id, "provider": event.provider},
                    )

        response = {"success": failed == 0, "pushed": pushed, "failed": failed}
        if failed:
            sync_logs.mark_failed(log.id, f"{failed} candidate(s) failed to sync")
        else:
            sync_logs.mark_success(log.id, response)
            handler.credentials.mark_synced(event.tenant_id)
        return response


def parse_message(message: Union[IntegrationEventMessage, Dict[str, Any], str, bytes]) -> IntegrationEventMessage:
    if isinstance(message, IntegrationEventMessage):
        return message
    try:
        body = loads(message) if isinstance(message, (str, bytes)) else message
        return IntegrationEventMessage.model_validate(body)
    except ValueError as e:
        raise ValidationError(
            f"Malformed integration event: {e}",
            error_code=ErrorCode.INVALID_FORMAT,
            cause=e,
        ) from e


def import_due(settings: Dict[str, Any], now: datetime) -> bool:
    """True when the scheduled import interval has passed since ``lastImportAt``."""
    last_import = settings.get("lastImportAt")
    if not last_import:
        return True
    interval = IMPORT_INTERVALS.get(
        settings.get("importFrequency"), IMPORT_INTERVALS[ImportFrequency.DAILY.value]
    )
    return as_utc(datetime.fromisoformat(last_import)) + interval <= now
