"""Service-order lifecycle.

Submodules:
- lifecycle: transactional status, checkpoint, schedule and session operations
- orders: creation, descriptive edits, resolution, assignments and listings
- timestamp_chain: six-phase checkpoint validation
- status_flow: table-driven status transition policy
- resolution_gate: cause/remedy requirement for terminal statuses
- scheduling: due date, technician and duration updates
- work_sessions: one-open-session-per-technician bookkeeping
- audit: snapshot, diff and capped ledger append
"""

from fieldops.services.service_orders.context import ActorContext
from fieldops.services.service_orders.errors import (
    ServiceOrderConflictError,
    ServiceOrderError,
    ServiceOrderNotFoundError,
    ServiceOrderPermissionError,
    ServiceOrderValidationError,
)
from fieldops.services.service_orders.lifecycle import (
    ServiceOrderLifecycle,
    SoftSkip,
    service_order_lifecycle,
)
from fieldops.services.service_orders.orders import (
    AuditTrail,
    ServiceOrders,
    WorkLogs,
    audit_trail,
    service_orders,
    work_logs,
)

__all__ = [
    "ActorContext",
    "AuditTrail",
    "ServiceOrderConflictError",
    "ServiceOrderError",
    "ServiceOrderLifecycle",
    "ServiceOrderNotFoundError",
    "ServiceOrderPermissionError",
    "ServiceOrderValidationError",
    "ServiceOrders",
    "SoftSkip",
    "WorkLogs",
    "audit_trail",
    "service_order_lifecycle",
    "service_orders",
    "work_logs",
]
