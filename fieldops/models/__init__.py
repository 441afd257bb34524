from fieldops.models.service_orders import (  # noqa: F401
    AssignmentRole,
    AssignmentState,
    ServiceOrder,
    ServiceOrderAssignment,
    ServiceOrderAuditEntry,
    ServiceOrderPart,
    ServiceOrderResolution,
    ServiceOrderStatus,
    ServiceOrderType,
)
from fieldops.models.users import User, UserRole  # noqa: F401
from fieldops.models.work_logs import WorkLog, WorkLogSource  # noqa: F401
