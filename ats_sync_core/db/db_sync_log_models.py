"""Audit trail of outbound and inbound sync operations."""

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text

from .db_base import JSON, UUIDMixin, utc_now
from .db_config import Base


class SyncLog(Base, UUIDMixin):
    """One sync operation against one provider for one internal entity."""

    __tablename__ = "sync_logs"

    tenant_id = Column(String(100), nullable=False)
    provider = Column(String(50), nullable=False)
    event_type = Column(String(50), nullable=False)
    direction = Column(String(10), nullable=False, default="OUTBOUND")
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(100), nullable=False)
    external_id = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="PENDING")
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    # Completed without work because the integration was not connected
    skipped = Column(Boolean, nullable=False, default=False)
    payload = Column(JSON, nullable=True)
    response = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_sync_log_tenant_provider_created", "tenant_id", "provider", "created_at"),
        Index("ix_sync_log_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<SyncLog(id='{self.id}', provider='{self.provider}', status='{self.status}')>"
