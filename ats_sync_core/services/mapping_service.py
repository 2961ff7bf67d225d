"""
External-ID mapping store.

One row per (tenant, provider, entity type, internal id). Storing a mapping
that already exists updates its external id in place.
"""

from typing import Optional

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError

from ..db.db_integration_models import IntegrationMapping
from .base_service import BaseService


class MappingService(BaseService):
    def _find(
        self, tenant_id: str, provider: str, entity_type: str, entity_id: str
    ) -> Optional[IntegrationMapping]:
        return (
            self.session.query(IntegrationMapping)
            .filter(
                and_(
                    IntegrationMapping.tenant_id == tenant_id,
                    IntegrationMapping.provider == provider,
                    IntegrationMapping.entity_type == entity_type,
                    IntegrationMapping.entity_id == entity_id,
                )
            )
            .first()
        )

    def get_external_id(
        self, tenant_id: str, provider: str, entity_type: str, entity_id: str
    ) -> Optional[str]:
        """Return the mapped external id, or None when the entity was never pushed."""
        mapping = self._find(tenant_id, provider, entity_type, entity_id)
        return mapping.external_id if mapping else None

    def find_by_external_id(
        self, tenant_id: str, provider: str, entity_type: str, external_id: str
    ) -> Optional[IntegrationMapping]:
        return (
            self.session.query(IntegrationMapping)
            .filter(
                and_(
                    IntegrationMapping.tenant_id == tenant_id,
                    IntegrationMapping.provider == provider,
                    IntegrationMapping.entity_type == entity_type,
                    IntegrationMapping.external_id == external_id,
                )
            )
            .first()
        )

    def store_mapping(
        self,
        tenant_id: str,
        provider: str,
        entity_type: str,
        entity_id: str,
        external_id: str,
    ) -> IntegrationMapping:
        """
        Upsert a mapping.

        A concurrent insert of the same key surfaces as an IntegrityError; the
        row written by the other party is then updated instead.
        """
        external_id = str(external_id)
        mapping = self._find(tenant_id, provider, entity_type, entity_id)
        if mapping is None:
            mapping = IntegrationMapping(
                tenant_id=tenant_id,
                provider=provider,
                entity_type=entity_type,
                entity_id=entity_id,
                external_id=external_id,
            )
            self.session.add(mapping)
            try:
                self.session.flush()
            except IntegrityError:
                self.session.rollback()
                mapping = self._find(tenant_id, provider, entity_type, entity_id)
                mapping.external_id = external_id
        else:
            mapping.external_id = external_id

        self._commit("store_mapping")
        self.logger.debug(
            "Stored integration mapping",
            extra={
                "tenant_id": tenant_id,
                "provider": provider,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "external_id": external_id,
            },
        )
        return mapping

    def delete_mapping(
        self, tenant_id: str, provider: str, entity_type: str, entity_id: str
    ) -> bool:
        mapping = self._find(tenant_id, provider, entity_type, entity_id)
        if mapping is None:
            return False
        self.session.delete(mapping)
        self._commit("delete_mapping")
        return True

    def count_mappings(self, tenant_id: str, provider: str, entity_type: Optional[str] = None) -> int:
        query = self.session.query(IntegrationMapping).filter(
            and_(IntegrationMapping.tenant_id == tenant_id, IntegrationMapping.provider == provider)
        )
        if entity_type is not None:
            query = query.filter(IntegrationMapping.entity_type == entity_type)
        return query.count()
