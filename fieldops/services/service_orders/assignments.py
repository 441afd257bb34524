"""Active-assignment helpers shared by scheduling and order management."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy.orm import Session

from fieldops.models.service_orders import (
    AssignmentRole,
    AssignmentState,
    ServiceOrder,
    ServiceOrderAssignment,
)
from fieldops.models.users import User
from fieldops.queries.service_orders import AssignmentQuery
from fieldops.services.common import ensure_utc
from fieldops.services.service_orders.errors import (
    ServiceOrderNotFoundError,
    ServiceOrderValidationError,
)

logger = logging.getLogger(__name__)


def parse_user_id(value: uuid.UUID | str, label: str = "technician_id") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except ValueError as exc:
        raise ServiceOrderValidationError(
            f"invalid_{label}", f"Invalid {label}: {value}"
        ) from exc


def ensure_assignable_user(db: Session, tenant_id: uuid.UUID, user_id: uuid.UUID) -> User:
    """Return the user if it exists, is active and belongs to the tenant."""
    user = db.get(User, user_id)
    if not user or user.tenant_id != tenant_id or not user.is_active:
        raise ServiceOrderNotFoundError("user_not_found", f"User {user_id} not found")
    return user


def active_assignments(
    db: Session, order: ServiceOrder, role: AssignmentRole
) -> list[ServiceOrderAssignment]:
    return (
        AssignmentQuery(db, order.tenant_id)
        .by_service_order(order.id)
        .by_role(role)
        .active()
        .order_by("assigned_at", "asc")
        .all()
    )


def active_technician_id(db: Session, order: ServiceOrder) -> uuid.UUID | None:
    """The most recently assigned active technician, if any."""
    assignments = active_assignments(db, order, AssignmentRole.technician)
    if not assignments:
        return None
    return assignments[-1].user_id


def is_assigned_technician(db: Session, order: ServiceOrder, user_id: uuid.UUID) -> bool:
    return (
        AssignmentQuery(db, order.tenant_id)
        .by_service_order(order.id)
        .by_user(user_id)
        .by_role(AssignmentRole.technician)
        .active()
        .exists()
    )


def remove_assignment(assignment: ServiceOrderAssignment, at: datetime) -> None:
    assignment.state = AssignmentState.removed
    assignment.removed_at = ensure_utc(at)


def replace_active_assignment(
    db: Session,
    order: ServiceOrder,
    role: AssignmentRole,
    user_id: uuid.UUID | None,
    at: datetime,
) -> ServiceOrderAssignment | None:
    """Supersede every active assignment of ``role`` with at most one new one.

    Re-assigning the current sole assignee keeps the existing row. Passing
    ``user_id=None`` removes the active assignments without a replacement.
    """
    current = active_assignments(db, order, role)
    if user_id is not None and len(current) == 1 and current[0].user_id == user_id:
        return current[0]

    for assignment in current:
        remove_assignment(assignment, at)

    assignment = None
    if user_id is not None:
        assignment = ServiceOrderAssignment(
            tenant_id=order.tenant_id,
            service_order_id=order.id,
            user_id=user_id,
            role=role,
            state=AssignmentState.active,
            assigned_at=ensure_utc(at),
        )
        db.add(assignment)
    db.flush()
    logger.info(
        "service_order_assignment_replaced order_id=%s role=%s superseded=%s user_id=%s",
        order.id,
        role.value,
        len(current),
        user_id,
    )
    return assignment
