"""
Pydantic schemas exchanged with callers of the sync engine.

Operator-facing shapes (status, capabilities, summaries) serialize with
camelCase aliases via ``model_dump(by_alias=True)``.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..constants import JobStatus, SyncMode


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProviderCapabilities(CamelModel):
    """Static description of what a provider integration can sync."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    candidate_sync: SyncMode = SyncMode.NONE
    job_sync: SyncMode = SyncMode.NONE
    interview_sync: SyncMode = SyncMode.NONE
    supports_webhooks: bool = False
    supports_import: bool = False


class SyncSummary(CamelModel):
    total: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    pending: int = 0
    success_rate: int = 0


class ErrorGroup(CamelModel):
    message: str
    count: int
    last_occurred: datetime


class ErrorSummary(CamelModel):
    recent_errors: List[ErrorGroup] = Field(default_factory=list)
    total_failures_24h: int = 0


class SyncStats(CamelModel):
    total: int = 0
    success: int = 0
    failed: int = 0
    success_rate: int = 0


class IntegrationStatusView(CamelModel):
    """Status of one tenant integration as surfaced to operators."""

    connected: bool
    token_valid: bool
    token_expires_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    last_error: Optional[str] = None
    stats_24h: SyncStats = Field(default_factory=SyncStats, alias="stats24h")


class IntegrationView(CamelModel):
    provider: str
    status: str
    connected: bool
    last_synced_at: Optional[datetime] = None
    last_error: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)
    capabilities: Optional[ProviderCapabilities] = None


class ConnectionTestResult(BaseModel):
    success: bool
    message: str


class CounterState(BaseModel):
    """Outcome of a keyed counter hit."""

    key: str
    count: int
    limit: int
    remaining: int
    reset_at: datetime
    limited: bool


class HandoffResult(BaseModel):
    success: bool
    employee_id: Optional[str] = None
    skipped: bool = False
    reason: Optional[str] = None
    error: Optional[str] = None


class JobOptions(BaseModel):
    """Delivery options attached to queued sync jobs."""

    attempts: int = 5
    backoff_type: str = "exponential"
    backoff_delay_ms: int = 2000


class IntegrationEventMessage(BaseModel):
    """A sync job published to the integration sync queue."""

    tenant_id: str
    provider: str
    kind: str = Field(..., description="candidate, interview, handoff, manual or import")
    entity_id: Optional[str] = None
    event_type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    options: JobOptions = Field(default_factory=JobOptions)
    enqueued_at: Optional[datetime] = None


class JobOutcome(BaseModel):
    """How one dequeued sync job was settled."""

    status: JobStatus
    attempt: int
    retry_in_seconds: Optional[int] = None
    error: Optional[str] = None
    result: Any = None


class ImportResult(CamelModel):
    imported: int = 0
    updated: int = 0
    errors: int = 0
    pages: int = 0
