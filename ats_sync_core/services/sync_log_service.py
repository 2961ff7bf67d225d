"""
Sync log service.

Durable audit trail of every sync attempt. Each entry moves through
PENDING -> IN_PROGRESS -> {SUCCESS, FAILED, RETRYING}; RETRYING may go back
to IN_PROGRESS. Entries that reached SUCCESS or FAILED are immutable.
"""

from collections import defaultdict
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func

from ..constants import Limits, SyncDirection, SyncStatus
from ..context.operation_context import operation
from ..db.db_base import as_utc, utc_now
from ..db.db_sync_log_models import SyncLog
from ..exceptions import InvalidStateTransitionError, not_found
from ..schemas.integration_schemas import ErrorGroup, ErrorSummary, SyncSummary
from .base_service import BaseService

ALLOWED_TRANSITIONS = {
    SyncStatus.PENDING: {SyncStatus.IN_PROGRESS, SyncStatus.SUCCESS, SyncStatus.FAILED},
    SyncStatus.IN_PROGRESS: {SyncStatus.SUCCESS, SyncStatus.FAILED, SyncStatus.RETRYING},
    SyncStatus.RETRYING: {SyncStatus.IN_PROGRESS, SyncStatus.SUCCESS, SyncStatus.FAILED},
    SyncStatus.SUCCESS: set(),
    SyncStatus.FAILED: set(),
}

TERMINAL_STATUSES = (SyncStatus.SUCCESS.value, SyncStatus.FAILED.value)
OPEN_STATUSES = (
    SyncStatus.PENDING.value,
    SyncStatus.IN_PROGRESS.value,
    SyncStatus.RETRYING.value,
)

UNKNOWN_ERROR = "Unknown error"


class SyncLogService(BaseService):
    """Creates, transitions and aggregates sync log entries."""

    def create_log(
        self,
        tenant_id: str,
        provider: str,
        event_type: str,
        entity_type: str,
        entity_id: str,
        payload: Optional[Dict[str, Any]] = None,
        direction: str = SyncDirection.OUTBOUND.value,
    ) -> SyncLog:
        """Record a new sync attempt in PENDING state."""
        log = SyncLog(
            tenant_id=tenant_id,
            provider=provider,
            event_type=_value(event_type),
            direction=_value(direction),
            entity_type=_value(entity_type),
            entity_id=entity_id,
            status=SyncStatus.PENDING.value,
            retry_count=0,
            payload=payload,
        )
        self.session.add(log)
        self._commit("create_log")
        return log

    def get_log(self, log_id: str) -> SyncLog:
        log = self.session.get(SyncLog, log_id)
        if log is None:
            raise not_found("SyncLog", log_id=log_id)
        return log

    def _transition(self, log_id: str, target: SyncStatus, **fields: Any) -> SyncLog:
        log = self.get_log(log_id)
        current = SyncStatus(log.status)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStateTransitionError(
                f"Sync log {log_id} cannot move from {current.value} to {target.value}",
                log_id=log_id,
                from_status=current.value,
                to_status=target.value,
            )

        log.status = target.value
        for name, value in fields.items():
            setattr(log, name, value)
        if target.value in TERMINAL_STATUSES:
            log.completed_at = utc_now()

        self._commit(f"mark_{target.value.lower()}")
        return log

    def mark_in_progress(self, log_id: str) -> SyncLog:
        return self._transition(log_id, SyncStatus.IN_PROGRESS)

    def mark_success(
        self,
        log_id: str,
        response: Optional[Dict[str, Any]] = None,
        external_id: Optional[str] = None,
    ) -> SyncLog:
        """Complete a log successfully, storing the response snapshot and external id."""
        fields: Dict[str, Any] = {"response": response}
        if external_id is not None:
            fields["external_id"] = str(external_id)
        return self._transition(log_id, SyncStatus.SUCCESS, **fields)

    def mark_skipped(self, log_id: str, response: Dict[str, Any]) -> SyncLog:
        """Complete a log that did no work; skipped entries stay out of the success rate."""
        return self._transition(log_id, SyncStatus.SUCCESS, response=response, skipped=True)

    def mark_failed(self, log_id: str, error_message: str, retry_count: int = 0) -> SyncLog:
        return self._transition(
            log_id,
            SyncStatus.FAILED,
            error_message=error_message,
            retry_count=retry_count,
        )

    def mark_retrying(self, log_id: str, retry_count: int) -> SyncLog:
        return self._transition(log_id, SyncStatus.RETRYING, retry_count=retry_count)

    def get_recent_logs(
        self, tenant_id: str, provider: str, limit: int = Limits.DEFAULT_LOG_PAGE_SIZE
    ) -> List[SyncLog]:
        return (
            self.session.query(SyncLog)
            .filter(and_(SyncLog.tenant_id == tenant_id, SyncLog.provider == provider))
            .order_by(SyncLog.created_at.desc())
            .limit(limit)
            .all()
        )

    def get_failed_logs(
        self, tenant_id: str, provider: str, limit: int = Limits.DEFAULT_LOG_PAGE_SIZE
    ) -> List[SyncLog]:
        return (
            self.session.query(SyncLog)
            .filter(
                and_(
                    SyncLog.tenant_id == tenant_id,
                    SyncLog.provider == provider,
                    SyncLog.status == SyncStatus.FAILED.value,
                )
            )
            .order_by(SyncLog.created_at.desc())
            .limit(limit)
            .all()
        )

    def get_last_error(self, tenant_id: str, provider: str) -> Optional[str]:
        """Most recent failure message for the pair, if any."""
        failed = self.get_failed_logs(tenant_id, provider, limit=1)
        return failed[0].error_message if failed else None

    def get_summary_24h(self, tenant_id: str, provider: str) -> SyncSummary:
        """
        Aggregate the last 24 hours of attempts by status.

        ``pending`` counts every entry still in flight (pending, in progress
        or retrying). Entries skipped because the integration was not
        connected are counted in ``skipped`` only. ``success_rate`` is
        ``round(success / total * 100)`` and 0 when there were no attempts.
        """
        since = utc_now() - timedelta(hours=24)
        rows = (
            self.session.query(SyncLog.status, SyncLog.skipped, func.count(SyncLog.id))
            .filter(
                and_(
                    SyncLog.tenant_id == tenant_id,
                    SyncLog.provider == provider,
                    SyncLog.created_at >= since,
                )
            )
            .group_by(SyncLog.status, SyncLog.skipped)
            .all()
        )
        counts: Dict[str, int] = defaultdict(int)
        skipped = 0
        for status, was_skipped, count in rows:
            if was_skipped:
                skipped += count
            else:
                counts[status] += count

        total = sum(counts.values())
        success = counts.get(SyncStatus.SUCCESS.value, 0)
        failed = counts.get(SyncStatus.FAILED.value, 0)
        pending = sum(counts.get(status, 0) for status in OPEN_STATUSES)

        return SyncSummary(
            total=total,
            success=success,
            failed=failed,
            pending=pending,
            skipped=skipped,
            success_rate=round(success / total * 100) if total else 0,
        )

    def get_error_summary(
        self, tenant_id: str, provider: str, limit: int = Limits.DEFAULT_ERROR_SUMMARY_SIZE
    ) -> ErrorSummary:
        """Group the last 24 hours of failures by message, most frequent first."""
        since = utc_now() - timedelta(hours=24)
        failures = (
            self.session.query(SyncLog.error_message, SyncLog.created_at)
            .filter(
                and_(
                    SyncLog.tenant_id == tenant_id,
                    SyncLog.provider == provider,
                    SyncLog.status == SyncStatus.FAILED.value,
                    SyncLog.created_at >= since,
                )
            )
            .all()
        )

        counts: Dict[str, int] = defaultdict(int)
        last_seen: Dict[str, Any] = {}
        for message, created_at in failures:
            key = message or UNKNOWN_ERROR
            counts[key] += 1
            created_at = as_utc(created_at)
            if key not in last_seen or created_at > last_seen[key]:
                last_seen[key] = created_at

        groups = sorted(
            (
                ErrorGroup(message=key, count=count, last_occurred=last_seen[key])
                for key, count in counts.items()
            ),
            key=lambda group: (group.count, group.last_occurred),
            reverse=True,
        )
        return ErrorSummary(recent_errors=groups[:limit], total_failures_24h=len(failures))

    @operation()
    def cleanup_old_logs(self, days_to_keep: int = Limits.DEFAULT_LOG_RETENTION_DAYS) -> int:
        """
        Delete completed entries older than ``days_to_keep`` days.

        Only SUCCESS and FAILED rows are removed; entries still pending, in
        progress or retrying are kept regardless of age.

        Returns:
            Number of deleted rows
        """
        cutoff = utc_now() - timedelta(days=days_to_keep)
        deleted = (
            self.session.query(SyncLog)
            .filter(and_(SyncLog.created_at < cutoff, SyncLog.status.in_(TERMINAL_STATUSES)))
            .delete(synchronize_session=False)
        )
        self._commit("cleanup_old_logs")

        self.logger.info(
            "Cleaned up old sync logs", extra={"deleted": deleted, "days_to_keep": days_to_keep}
        )
        return deleted


def _value(value: Any) -> Any:
    return getattr(value, "value", value)
