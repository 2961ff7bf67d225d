from .operation_context import OperationContext, OperationHandler, operation
from .tenant_context import TenantContext, tenant_aware, tenant_context

__all__ = [
    "OperationContext",
    "OperationHandler",
    "TenantContext",
    "operation",
    "tenant_aware",
    "tenant_context",
]
