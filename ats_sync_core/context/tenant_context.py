"""
Tenant context management.

The current tenant is kept in thread-local storage so that log records and
errors raised deep inside a sync can be attributed to the tenant whose event
is being processed.
"""

import inspect
import threading
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Generator, Optional

from ..exceptions import ErrorCode, ValidationError
from ..utils.logger import get_logger


class TenantContext:
    """Thread-local holder of the tenant currently being served."""

    _thread_local = threading.local()

    @classmethod
    def set_current_tenant(cls, tenant_id: str) -> None:
        """
        Set the current tenant ID for the execution context.

        Raises:
            ValidationError: If tenant_id is empty or not a string
        """
        if not tenant_id or not isinstance(tenant_id, str) or not tenant_id.strip():
            raise ValidationError(
                "tenant_id must be a non-empty string",
                error_code=ErrorCode.MISSING_REQUIRED,
                field="tenant_id",
                value=tenant_id,
            )

        cls._thread_local.tenant_id = tenant_id.strip()
        get_logger().debug(f"Current tenant set to: {tenant_id}")

    @classmethod
    def get_current_tenant_id(cls) -> Optional[str]:
        return getattr(cls._thread_local, "tenant_id", None)

    @classmethod
    def clear_current_tenant(cls) -> None:
        if hasattr(cls._thread_local, "tenant_id"):
            delattr(cls._thread_local, "tenant_id")


@contextmanager
def tenant_context(tenant_id: str) -> Generator[None, None, None]:
    """
    Set the current tenant for the duration of the block.

    The previous tenant, if any, is restored on exit.
    """
    previous_tenant = TenantContext.get_current_tenant_id()
    TenantContext.set_current_tenant(tenant_id)
    try:
        yield
    finally:
        if previous_tenant:
            TenantContext.set_current_tenant(previous_tenant)
        else:
            TenantContext.clear_current_tenant()


def tenant_aware(func: Callable) -> Callable:
    """
    Run a function inside the tenant context of its ``tenant_id`` argument.

    The argument may be passed positionally or by keyword. When it is
    missing the tenant already in context is used; when there is none a
    ValidationError is raised.
    """
    signature = inspect.signature(func)
    if "tenant_id" not in signature.parameters:
        raise TypeError(f"{func.__qualname__} has no tenant_id parameter")

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        bound = signature.bind_partial(*args, **kwargs)
        effective_tenant_id = bound.arguments.get("tenant_id") or TenantContext.get_current_tenant_id()

        if not effective_tenant_id or not isinstance(effective_tenant_id, str):
            raise ValidationError(
                "No tenant ID provided for tenant-aware function",
                error_code=ErrorCode.MISSING_REQUIRED,
                field="tenant_id",
            )

        if "tenant_id" not in bound.arguments:
            kwargs["tenant_id"] = effective_tenant_id

        with tenant_context(effective_tenant_id):
            return func(*args, **kwargs)

    return wrapper
