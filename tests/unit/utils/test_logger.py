"""
Unit tests for the logging utilities.

Tests the ContextAwareLogger, TenantContextFilter, AzureQueueHandler,
and configuration functions.
"""

import logging
import sys
from io import StringIO
from unittest.mock import Mock

import pytest

from ats_sync_core.context.tenant_context import tenant_context
from ats_sync_core.utils.logger import (
    AzureQueueHandler,
    ContextAwareLogger,
    TenantContextFilter,
    configure_logging,
    get_logger,
)


def _capture(logger_name):
    base_logger = logging.getLogger(logger_name)
    base_logger.setLevel(logging.DEBUG)
    base_logger.propagate = False
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter("%(message)s"))
    base_logger.handlers = [handler]
    return base_logger, stream


@pytest.fixture
def configured_logger():
    """Remove handlers added by configure_logging after each test."""
    created = []

    def _configure(name, **kwargs):
        wrapped = configure_logging(name, **kwargs)
        created.append(wrapped.logger)
        return wrapped

    yield _configure

    for base_logger in created:
        for handler in base_logger.handlers[:]:
            if isinstance(handler, AzureQueueHandler):
                handler.log_buffer.clear()
            base_logger.removeHandler(handler)


class TestContextAwareLogger:
    """Test the ContextAwareLogger wrapper."""

    def test_message_without_extra(self):
        base_logger, stream = _capture("test.plain")
        ContextAwareLogger(base_logger).info("Test message")
        assert stream.getvalue().strip() == "Test message"

    def test_extra_is_rendered_as_pairs(self):
        base_logger, stream = _capture("test.extra")
        ContextAwareLogger(base_logger).warning(
            "Sync failed", extra={"provider": "hubspot", "log_id": "abc"}
        )
        assert stream.getvalue().strip() == "Sync failed | provider=hubspot | log_id=abc"

    def test_extra_is_kept_on_record(self):
        base_logger = Mock()
        ContextAwareLogger(base_logger).error("Boom", extra={"provider": "lever"})

        base_logger.error.assert_called_once_with(
            "Boom | provider=lever", extra={"provider": "lever"}
        )

    def test_reserved_keys_are_prefixed(self):
        """Keys clashing with LogRecord attributes must not break logging."""
        base_logger = Mock()
        ContextAwareLogger(base_logger).info("Hello", extra={"name": "x", "module": "y"})

        _, kwargs = base_logger.info.call_args
        assert kwargs["extra"] == {"ctx_name": "x", "ctx_module": "y"}

    def test_exception_includes_traceback(self):
        base_logger, stream = _capture("test.exception")
        try:
            raise ValueError("bad value")
        except ValueError:
            ContextAwareLogger(base_logger).exception("Handler crashed")

        output = stream.getvalue()
        assert "Handler crashed" in output
        assert "ValueError: bad value" in output

    def test_set_level(self):
        base_logger, stream = _capture("test.level")
        wrapped = ContextAwareLogger(base_logger)
        wrapped.set_level(logging.WARNING)
        wrapped.info("hidden")
        wrapped.debug("hidden")
        assert stream.getvalue() == ""


class TestTenantContextFilter:
    def test_adds_current_tenant(self):
        record = logging.LogRecord("test", logging.INFO, "", 0, "msg", (), None)
        with tenant_context("tenant-42"):
            assert TenantContextFilter().filter(record) is True
        assert record.tenant_id == "tenant-42"

    def test_no_tenant(self):
        record = logging.LogRecord("test", logging.INFO, "", 0, "msg", (), None)
        assert TenantContextFilter().filter(record) is True
        assert not hasattr(record, "tenant_id")


class TestAzureQueueHandler:
    """Test batching of structured log entries."""

    def _record(self, message="msg", **extra):
        record = logging.LogRecord("ats_sync.test", logging.INFO, __file__, 10, message, (), None)
        record.__dict__.update(extra)
        return record

    def test_buffers_until_batch_size(self):
        client = Mock()
        handler = AzureQueueHandler(batch_size=2, queue_client=client)

        handler.emit(self._record("first"))
        client.send_message.assert_not_called()

        handler.emit(self._record("second"))
        assert client.send_message.call_count == 2
        assert handler.log_buffer == []

    def test_entry_shape(self):
        handler = AzureQueueHandler(queue_client=Mock())
        entry = handler.build_entry(self._record("Sync completed", tenant_id="t-1", provider="hubspot"))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "ats_sync.test"
        assert entry["message"] == "Sync completed"
        assert entry["tenant_id"] == "t-1"
        assert entry["context"] == {"provider": "hubspot"}
        assert "exception" not in entry

    def test_entry_with_exception(self):
        handler = AzureQueueHandler(queue_client=Mock())
        try:
            raise RuntimeError("kaput")
        except RuntimeError:
            record = self._record()
            record.exc_info = sys.exc_info()

        entry = handler.build_entry(record)
        assert entry["exception"]["type"] == "RuntimeError"
        assert entry["exception"]["message"] == "kaput"

    def test_close_flushes(self):
        client = Mock()
        handler = AzureQueueHandler(batch_size=10, queue_client=client)
        handler.emit(self._record())
        handler.close()
        client.send_message.assert_called_once()

    def test_send_errors_do_not_raise(self, capsys):
        client = Mock()
        client.send_message.side_effect = RuntimeError("queue down")
        handler = AzureQueueHandler(batch_size=1, queue_client=client)

        handler.emit(self._record())

        assert "Error sending log entry to queue: queue down" in capsys.readouterr().err

    def test_flush_without_connection_keeps_buffer(self, capsys):
        handler = AzureQueueHandler(connection_string="", batch_size=10)
        handler.connection_string = None
        handler.emit(self._record())
        handler.flush()
        assert len(handler.log_buffer) == 1
        handler.log_buffer.clear()


class TestConfigureLogging:
    def test_console_only(self, configured_logger):
        wrapped = configured_logger("worker", log_level="DEBUG", enable_queue=False)

        assert isinstance(wrapped, ContextAwareLogger)
        assert wrapped.logger.name == "ats_sync.worker"
        assert wrapped.logger.level == logging.DEBUG
        assert len(wrapped.logger.handlers) == 1
        assert get_logger() is wrapped

    def test_with_queue_handler(self, configured_logger):
        wrapped = configured_logger(
            "worker-q", enable_queue=True, queue_name="custom-logs", connection_string="UseDevelopmentStorage=true"
        )

        queue_handlers = [h for h in wrapped.logger.handlers if isinstance(h, AzureQueueHandler)]
        assert len(queue_handlers) == 1
        assert queue_handlers[0].queue_name == "custom-logs"

    def test_reconfigure_replaces_handlers(self, configured_logger):
        configured_logger("worker-r", enable_queue=False)
        wrapped = configured_logger("worker-r", enable_queue=False)
        assert len(wrapped.logger.handlers) == 1


class TestGetLogger:
    def test_default_package_logger(self):
        wrapped = get_logger()
        assert wrapped.logger.name == "ats_sync"

    def test_level_by_name(self):
        wrapped = get_logger("warning")
        assert wrapped.logger.level == logging.WARNING
        wrapped.set_level(logging.NOTSET)
