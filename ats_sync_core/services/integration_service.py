"""
Operator-facing integration management.

Lists a tenant's integrations, drives the connect flows (OAuth redirect and
callback, API keys), enqueues throttled manual syncs and candidate imports
and reports the status
shape shown on the integrations page.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from ..config import get_config
from ..constants import IntegrationStatus, Limits
from ..context.operation_context import operation
from ..db.db_integration_models import Integration
from ..db.db_sync_log_models import SyncLog
from ..exceptions import ErrorCode, ValidationError, not_found
from ..providers.oauth import parse_state
from ..providers.registry import ProviderRegistry, build_default_registry
from ..schemas.integration_schemas import (
    ConnectionTestResult,
    ErrorSummary,
    IntegrationStatusView,
    IntegrationView,
    SyncStats,
)
from .base_service import BaseService
from .integration_events_service import EventKind, IntegrationEventsService
from .keyed_counter_service import KeyedCounterService
from .record_source import InMemoryRecordSource, RecordSource
from .sync_log_service import SyncLogService

MANUAL_SYNC_EVENT = "manual"


def manual_sync_key(tenant_id: str, provider: str) -> str:
    return f"manual-sync:{tenant_id}:{provider}"


class IntegrationService(BaseService):
    """Integration management for one database session."""

    def __init__(
        self,
        session: Optional[Session] = None,
        registry: Optional[ProviderRegistry] = None,
        record_source: Optional[RecordSource] = None,
        events: Optional[IntegrationEventsService] = None,
        counters: Optional[KeyedCounterService] = None,
    ):
        super().__init__(session)
        self.registry = registry or build_default_registry(
            self.session, record_source or InMemoryRecordSource()
        )
        self.events = events or IntegrationEventsService(self.session)
        self.counters = counters or KeyedCounterService(self.session)
        self.sync_logs = SyncLogService(self.session)

    def _credentials(self, provider: str):
        return self.registry.get(provider).credentials

    # ==================== QUERIES ====================

    def list_integrations(self, tenant_id: str) -> List[IntegrationView]:
        rows = (
            self.session.query(Integration)
            .filter(Integration.tenant_id == tenant_id)
            .order_by(Integration.provider)
            .all()
        )
        return [self._view(row) for row in rows]

    def get_integration(self, tenant_id: str, provider: str) -> IntegrationView:
        """
        Raises:
            EntityNotFoundError: If the tenant has no integration with ``provider``
        """
        integration = self._find(tenant_id, provider)
        if integration is None:
            raise not_found("Integration", tenant_id=tenant_id, provider=provider)
        return self._view(integration)

    def _find(self, tenant_id: str, provider: str) -> Optional[Integration]:
        return (
            self.session.query(Integration)
            .filter(and_(Integration.tenant_id == tenant_id, Integration.provider == provider))
            .first()
        )

    def _view(self, integration: Integration) -> IntegrationView:
        capabilities = None
        if self.registry.is_supported(integration.provider):
            capabilities = self.registry.capabilities(integration.provider)
        return IntegrationView(
            provider=integration.provider,
            status=integration.status,
            connected=integration.status == IntegrationStatus.CONNECTED.value,
            last_synced_at=integration.last_synced_at,
            last_error=integration.last_error,
            settings=integration.settings or {},
            capabilities=capabilities,
        )

    # ==================== CONNECT ====================

    def connect(self, tenant_id: str, provider: str, **settings: Any) -> Dict[str, str]:
        """
        Start the OAuth flow; returns the authorization URL to redirect to.

        Raises:
            ValidationError: If the provider is unknown or connects with an API key
        """
        credentials = self._credentials(provider)
        if credentials.oauth is None:
            raise ValidationError(
                f"{credentials.display_name} connects with an API key",
                field="provider",
                error_code=ErrorCode.INVALID_FORMAT,
                provider=provider,
            )
        auth_url = credentials.get_auth_url(tenant_id, **settings)
        self.logger.info(
            f"Generated {credentials.display_name} authorization URL",
            extra={"tenant_id": tenant_id, "provider": provider},
        )
        return {"authUrl": auth_url, "provider": credentials.provider.value}

    @operation()
    def callback(self, provider: str, code: str, state: str, **extra: Any) -> Dict[str, Any]:
        """Finish the OAuth flow for the tenant named in the signed ``state``."""
        credentials = self._credentials(provider)
        if not code:
            raise ValidationError(
                "Authorization code is required", field="code", error_code=ErrorCode.MISSING_REQUIRED
            )
        tenant_id = parse_state(state, credentials.provider.value)
        credentials.exchange_code(tenant_id, code, **extra)
        return {"success": True, "provider": credentials.provider.value, "tenantId": tenant_id}

    def store_api_key(
        self,
        tenant_id: str,
        provider: str,
        api_key: str,
        on_behalf_of_user_id: Optional[str] = None,
    ) -> IntegrationView:
        integration = self._credentials(provider).store_api_key(
            tenant_id, api_key, on_behalf_of_user_id
        )
        return self._view(integration)

    def disconnect(self, tenant_id: str, provider: str) -> Dict[str, bool]:
        self._credentials(provider).disconnect(tenant_id)
        return {"success": True}

    def test_connection(self, tenant_id: str, provider: str) -> ConnectionTestResult:
        return self.registry.get(provider).client.test_connection(tenant_id)

    # ==================== SYNC ====================

    @operation()
    def sync_now(
        self, tenant_id: str, provider: str, candidate_ids: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """
        Enqueue a manual sync job.

        Manual syncs are throttled per (tenant, provider) by a persisted
        keyed counter.

        Raises:
            EntityNotFoundError: If the integration does not exist
            ValidationError: If the integration is not connected
            RateLimitExceededError: If the manual sync window is exhausted
        """
        self._require_connected(tenant_id, provider)
        state = self._throttle(tenant_id, provider)
        message = self.events.build_message(
            tenant_id,
            provider,
            EventKind.MANUAL,
            None,
            MANUAL_SYNC_EVENT,
            {"candidateIds": list(candidate_ids or [])},
        )
        self.events.publish(message)
        self.logger.info(
            "Manual sync enqueued", extra={"tenant_id": tenant_id, "provider": provider}
        )
        return {"success": True, "message": "Sync job enqueued", "remaining": state.remaining}

    @operation()
    def import_now(self, tenant_id: str, provider: str) -> Dict[str, Any]:
        """
        Enqueue an on-demand candidate import; shares the manual sync throttle.

        Raises:
            EntityNotFoundError: If the integration does not exist
            ValidationError: If the integration is not connected or cannot import
            RateLimitExceededError: If the manual sync window is exhausted
        """
        self._require_connected(tenant_id, provider)
        if not self.events.supports(provider, EventKind.IMPORT):
            raise ValidationError(
                f"Integration {provider} does not support candidate import",
                field="provider",
                error_code=ErrorCode.PRECONDITION_FAILED,
                provider=provider,
            )

        state = self._throttle(tenant_id, provider)
        self.events.publish(
            self.events.build_message(tenant_id, provider, EventKind.IMPORT, None, MANUAL_SYNC_EVENT)
        )
        self.logger.info("Candidate import enqueued", extra={"tenant_id": tenant_id, "provider": provider})
        return {"success": True, "message": "Import job enqueued", "remaining": state.remaining}

    def _require_connected(self, tenant_id: str, provider: str) -> Integration:
        integration = self._find(tenant_id, provider)
        if integration is None:
            raise not_found("Integration", tenant_id=tenant_id, provider=provider)
        if integration.status != IntegrationStatus.CONNECTED.value:
            raise ValidationError(
                f"Integration {provider} is not connected",
                field="provider",
                error_code=ErrorCode.INVALID_FORMAT,
                provider=provider,
            )
        return integration

    def _throttle(self, tenant_id: str, provider: str):
        sync = get_config().sync
        return self.counters.hit_or_raise(
            manual_sync_key(tenant_id, provider), sync.manual_sync_limit, sync.manual_sync_window
        )

    # ==================== STATUS ====================

    def get_status(self, tenant_id: str, provider: str) -> IntegrationStatusView:
        integration = self._find(tenant_id, provider)
        if integration is None:
            return IntegrationStatusView(connected=False, token_valid=False)

        connected = integration.status == IntegrationStatus.CONNECTED.value
        token_valid, token_expires_at = False, None
        if connected and self.registry.is_supported(provider):
            info = self._credentials(provider).get_token_info(tenant_id)
            token_valid, token_expires_at = info.valid, info.expires_at

        summary = self.sync_logs.get_summary_24h(tenant_id, provider)
        return IntegrationStatusView(
            connected=connected,
            token_valid=token_valid,
            token_expires_at=token_expires_at,
            last_sync_at=integration.last_synced_at,
            last_error=integration.last_error or self.sync_logs.get_last_error(tenant_id, provider),
            stats_24h=SyncStats(
                total=summary.total,
                success=summary.success,
                failed=summary.failed,
                success_rate=summary.success_rate,
            ),
        )

    def get_sync_logs(
        self, tenant_id: str, provider: str, limit: int = Limits.DEFAULT_LOG_PAGE_SIZE
    ) -> List[SyncLog]:
        return self.sync_logs.get_recent_logs(tenant_id, provider, limit)

    def get_error_summary(self, tenant_id: str, provider: str) -> ErrorSummary:
        return self.sync_logs.get_error_summary(tenant_id, provider)
