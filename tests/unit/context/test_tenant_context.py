"""
Tests for TenantContext.

Covers validation, the tenant_context block and the tenant_aware decorator,
including isolation between threads.
"""

import threading

import pytest

from ats_sync_core.context.tenant_context import TenantContext, tenant_aware, tenant_context
from ats_sync_core.exceptions import ValidationError


class TestTenantContextBasics:
    """Test basic TenantContext functionality."""

    def test_set_and_get_current_tenant(self):
        assert TenantContext.get_current_tenant_id() is None
        TenantContext.set_current_tenant("tenant-1")
        assert TenantContext.get_current_tenant_id() == "tenant-1"

    @pytest.mark.parametrize("invalid_tenant_id", ["", "   ", None, 123])
    def test_set_current_tenant_validation(self, invalid_tenant_id):
        with pytest.raises(ValidationError, match="tenant_id must be a non-empty string"):
            TenantContext.set_current_tenant(invalid_tenant_id)

    def test_whitespace_is_stripped(self):
        TenantContext.set_current_tenant("  tenant-1  ")
        assert TenantContext.get_current_tenant_id() == "tenant-1"

    def test_clear_is_idempotent(self):
        TenantContext.set_current_tenant("tenant-1")
        TenantContext.clear_current_tenant()
        TenantContext.clear_current_tenant()
        assert TenantContext.get_current_tenant_id() is None

    def test_threads_are_isolated(self):
        TenantContext.set_current_tenant("main-tenant")
        seen = {}

        def worker():
            seen["before"] = TenantContext.get_current_tenant_id()
            TenantContext.set_current_tenant("worker-tenant")
            seen["after"] = TenantContext.get_current_tenant_id()

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        assert seen == {"before": None, "after": "worker-tenant"}
        assert TenantContext.get_current_tenant_id() == "main-tenant"


class TestTenantContextManager:
    def test_sets_and_clears(self):
        with tenant_context("tenant-1"):
            assert TenantContext.get_current_tenant_id() == "tenant-1"
        assert TenantContext.get_current_tenant_id() is None

    def test_restores_previous_tenant(self):
        with tenant_context("outer"):
            with tenant_context("inner"):
                assert TenantContext.get_current_tenant_id() == "inner"
            assert TenantContext.get_current_tenant_id() == "outer"

    def test_restores_on_error(self):
        with pytest.raises(RuntimeError):
            with tenant_context("tenant-1"):
                raise RuntimeError("boom")
        assert TenantContext.get_current_tenant_id() is None


class TestTenantAware:
    """The decorator runs the function inside its tenant's context."""

    def test_positional_tenant_id(self):
        @tenant_aware
        def current(tenant_id, provider):
            return TenantContext.get_current_tenant_id(), provider

        assert current("tenant-7", "hubspot") == ("tenant-7", "hubspot")
        assert TenantContext.get_current_tenant_id() is None

    def test_keyword_tenant_id(self):
        @tenant_aware
        def current(provider, tenant_id=None):
            return TenantContext.get_current_tenant_id()

        assert current("lever", tenant_id="tenant-8") == "tenant-8"

    def test_falls_back_to_current_tenant(self):
        @tenant_aware
        def current(provider, tenant_id=None):
            return tenant_id

        with tenant_context("ambient"):
            assert current("lever") == "ambient"

    def test_missing_tenant_raises(self):
        @tenant_aware
        def current(provider, tenant_id=None):
            return tenant_id

        with pytest.raises(ValidationError, match="No tenant ID provided"):
            current("lever")

    def test_function_without_tenant_parameter_rejected(self):
        def no_tenant(provider):
            return provider

        with pytest.raises(TypeError):
            tenant_aware(no_tenant)
