"""Tests for the provider registry."""

import pytest

from ats_sync_core.constants import SyncMode
from ats_sync_core.exceptions import ValidationError
from ats_sync_core.providers.bamboohr import BambooHRHandoffHandler
from ats_sync_core.providers.hubspot import HubSpotSyncHandler
from ats_sync_core.providers.registry import PROVIDER_CAPABILITIES, ProviderRegistry


class TestDefaultRegistry:
    def test_every_provider_is_registered(self, registry):
        assert sorted(registry.list_providers()) == ["bamboohr", "greenhouse", "hubspot", "lever", "workday"]

    def test_lookup_is_case_insensitive(self, registry):
        assert isinstance(registry.get(" HubSpot "), HubSpotSyncHandler)
        assert registry.is_supported("LEVER")

    def test_unknown_provider(self, registry):
        assert registry.is_supported("salesforce") is False
        with pytest.raises(ValidationError, match="Provider salesforce is not supported"):
            registry.get("salesforce")

    def test_push_providers(self, registry):
        assert registry.is_push_provider("workday") is True
        assert registry.is_push_provider("bamboohr") is False
        assert isinstance(registry.get("bamboohr"), BambooHRHandoffHandler)

    def test_handlers_share_the_session(self, registry, db_session):
        handler = registry.get("lever")
        assert handler.session is db_session
        assert handler.credentials is handler.client.credentials
        assert handler.client.counters is not None

    def test_capabilities(self, registry):
        bamboohr = registry.capabilities("bamboohr")
        assert bamboohr.candidate_sync == SyncMode.WRITE
        assert bamboohr.interview_sync == SyncMode.NONE
        assert bamboohr.supports_webhooks is True
        assert bamboohr.job_sync == SyncMode.NONE
        assert bamboohr.supports_import is False
        assert registry.capabilities("hubspot").supports_import is True
        assert registry.capabilities("greenhouse").interview_sync == SyncMode.PUSH


def test_static_capabilities_match_handlers():
    assert PROVIDER_CAPABILITIES["hubspot"] == HubSpotSyncHandler.capabilities
    assert set(PROVIDER_CAPABILITIES) == {"hubspot", "greenhouse", "lever", "workday", "bamboohr"}


def test_empty_registry():
    registry = ProviderRegistry()
    assert registry.list_providers() == []
    assert registry.is_supported("hubspot") is False
