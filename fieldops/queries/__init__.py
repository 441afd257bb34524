"""Query builders for database operations.

Composable, tenant-scoped query builder classes that keep filter logic out
of the service layer.

Usage:
    from fieldops.queries import ServiceOrderQuery

    orders = (
        ServiceOrderQuery(db, ctx.tenant_id)
        .by_status("scheduled")
        .by_technician(technician_id)
        .order_by("due_date", "asc")
        .paginate(50, 0)
        .all()
    )
"""

from fieldops.queries.base import BaseQuery
from fieldops.queries.service_orders import (
    AssignmentQuery,
    AuditEntryQuery,
    PartQuery,
    ServiceOrderQuery,
    WorkLogQuery,
)

__all__ = [
    "AssignmentQuery",
    "AuditEntryQuery",
    "BaseQuery",
    "PartQuery",
    "ServiceOrderQuery",
    "WorkLogQuery",
]
