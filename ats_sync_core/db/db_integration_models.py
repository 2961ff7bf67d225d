"""
Integration credential and external-ID mapping models.

Just the data structure - behavior lives in the services.
"""

from sqlalchemy import Column, DateTime, Index, String, Text

from .db_base import JSON, TimestampMixin, UUIDMixin
from .db_config import Base


class Integration(Base, UUIDMixin, TimestampMixin):
    """A tenant's connection to one provider."""

    __tablename__ = "integrations"

    tenant_id = Column(String(100), nullable=False, index=True)
    provider = Column(String(50), nullable=False)

    # Encrypted credential blob, opaque outside the credential service
    tokens = Column(Text, nullable=True)

    status = Column(String(20), nullable=False, default="pending")
    last_error = Column(Text, nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    settings = Column(JSON, nullable=True)

    __table_args__ = (Index("ix_integration_lookup", "tenant_id", "provider", unique=True),)

    def __repr__(self) -> str:
        return f"<Integration(tenant_id='{self.tenant_id}', provider='{self.provider}', status='{self.status}')>"


class IntegrationMapping(Base, UUIDMixin, TimestampMixin):
    """Links an internal entity to the record created for it in a provider."""

    __tablename__ = "integration_mappings"

    tenant_id = Column(String(100), nullable=False)
    provider = Column(String(50), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(100), nullable=False)
    external_id = Column(String(255), nullable=False)

    __table_args__ = (
        Index(
            "ix_integration_mapping_key",
            "tenant_id",
            "provider",
            "entity_type",
            "entity_id",
            unique=True,
        ),
        Index("ix_integration_mapping_external", "tenant_id", "provider", "external_id"),
    )
