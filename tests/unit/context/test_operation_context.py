"""Tests for the operation decorator and OperationHandler."""

from unittest.mock import Mock

import pytest

from ats_sync_core.context.operation_context import (
    OperationContext,
    OperationHandler,
    _sanitize_param,
    operation,
)
from ats_sync_core.context.tenant_context import tenant_context
from ats_sync_core.exceptions import BaseError, get_correlation_id, set_correlation_id


class TestOperationContext:
    def test_reuses_current_correlation_id(self):
        set_correlation_id("corr-1")
        ctx = OperationContext("sync")
        assert ctx.correlation_id == "corr-1"
        assert ctx.context["operation_id"] == ctx.operation_id

    def test_generates_correlation_id(self):
        ctx = OperationContext("sync")
        assert ctx.correlation_id
        assert get_correlation_id() == ctx.correlation_id

    def test_context_and_duration(self):
        ctx = OperationContext("sync", provider="hubspot")
        assert ctx.context["provider"] == "hubspot"
        assert ctx.context["correlation_id"] == ctx.correlation_id
        assert ctx.duration_ms >= 0


class TestOperationHandler:
    def test_enter_and_exit_are_logged(self):
        logger = Mock()
        with OperationHandler(logger).operation("sync", provider="lever"):
            pass

        messages = [call.args[0] for call in logger.debug.call_args_list]
        assert messages == ["ENTER: sync", "EXIT: sync"]
        assert logger.debug.call_args.kwargs["extra"]["status"] == "success"

    def test_tenant_is_added_to_context(self):
        logger = Mock()
        with tenant_context("tenant-1"):
            with OperationHandler(logger).operation("sync"):
                pass
        assert logger.debug.call_args.kwargs["extra"]["tenant_id"] == "tenant-1"

    def test_base_error_is_enriched_and_reraised(self):
        logger = Mock()
        with pytest.raises(BaseError) as exc_info:
            with OperationHandler(logger).operation("sync"):
                raise BaseError("Sync failed")

        assert exc_info.value.context["operation_name"] == "sync"
        assert "operation_duration_ms" in exc_info.value.context
        logger.error.assert_called_once()
        assert logger.error.call_args.args[0].startswith("ERROR: sync -> ")

    def test_other_errors_are_logged_with_traceback(self):
        logger = Mock()
        with pytest.raises(KeyError):
            with OperationHandler(logger).operation("sync"):
                raise KeyError("x")

        logger.exception.assert_called_once()
        assert logger.exception.call_args.kwargs["extra"]["error_type"] == "KeyError"


class TestSanitizeParam:
    @pytest.mark.parametrize("name", ["code", "api_key", "access_token", "client_secret", "state"])
    def test_sensitive_names_are_masked(self, name):
        assert _sanitize_param("value", name) == "***"

    def test_nested_dict(self):
        assert _sanitize_param({"email": "a@b.c", "password": "pw"}) == {
            "email": "a@b.c",
            "password": "***",
        }

    def test_objects_become_type_names(self):
        assert _sanitize_param(object()) == "object"

    def test_none(self):
        assert _sanitize_param(None, "code") is None


class TestOperationDecorator:
    def test_without_parentheses(self):
        @operation
        def sync(provider):
            return provider

        assert sync("hubspot") == "hubspot"

    def test_with_name(self):
        @operation(name="integration.connect")
        def connect(provider, code=None):
            return code

        assert connect("hubspot", code="secret-code") == "secret-code"

    def test_errors_propagate(self):
        @operation()
        def fail():
            raise BaseError("nope")

        with pytest.raises(BaseError, match="nope"):
            fail()
