"""
Registry of provider integrations.

Maps provider identifiers to handler factories so that callers can look up
a handler by name without importing every adapter.
"""

import time
from typing import Callable, Dict, List, Optional, Union

import requests
from sqlalchemy.orm import Session

from ..exceptions import ErrorCode, ValidationError
from ..schemas.integration_schemas import ProviderCapabilities
from ..services.record_source import RecordSource
from .bamboohr import BambooHRHandoffHandler
from .greenhouse import GreenhouseSyncHandler
from .hubspot import HubSpotSyncHandler
from .lever import LeverSyncHandler
from .sync_handler import SyncHandler
from .workday import WorkdaySyncHandler

Handler = Union[SyncHandler, BambooHRHandoffHandler]

HANDLER_CLASSES = (
    HubSpotSyncHandler,
    GreenhouseSyncHandler,
    LeverSyncHandler,
    WorkdaySyncHandler,
    BambooHRHandoffHandler,
)


class ProviderRegistry:
    """Provider handlers of one database session."""

    def __init__(self):
        self._handlers: Dict[str, Handler] = {}

    def register(self, handler: Handler) -> None:
        self._handlers[handler.provider.value] = handler

    def is_supported(self, name: str) -> bool:
        return _normalize(name) in self._handlers

    def get(self, name: str) -> Handler:
        """
        Raises:
            ValidationError: If no handler is registered under ``name``
        """
        handler = self._handlers.get(_normalize(name))
        if handler is None:
            raise ValidationError(
                f"Provider {name} is not supported",
                field="provider",
                error_code=ErrorCode.INVALID_FORMAT,
                provider=name,
            )
        return handler

    def list_providers(self) -> List[str]:
        return list(self._handlers)

    def capabilities(self, name: str) -> ProviderCapabilities:
        return self.get(name).capabilities

    def is_push_provider(self, name: str) -> bool:
        return isinstance(self.get(name), SyncHandler)


def _normalize(name: Optional[str]) -> str:
    value = getattr(name, "value", name)
    return (value or "").strip().lower()


def build_default_registry(
    session: Session,
    record_source: RecordSource,
    http_factory: Callable[[], requests.Session] = requests.Session,
    sleep: Callable[[float], None] = time.sleep,
) -> ProviderRegistry:
    """Registry wired with every built-in provider on ``session``."""
    registry = ProviderRegistry()
    for handler_class in HANDLER_CLASSES:
        registry.register(
            handler_class.build(session, record_source, http_factory=http_factory, sleep=sleep)
        )
    return registry


PROVIDER_CAPABILITIES: Dict[str, ProviderCapabilities] = {
    cls.provider.value: cls.capabilities for cls in HANDLER_CLASSES
}
