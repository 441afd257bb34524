"""Scheduling of service orders: due date, technician and planned duration."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from fieldops.models.service_orders import AssignmentRole, ServiceOrder, ServiceOrderStatus
from fieldops.services.common import ensure_utc
from fieldops.services.field_patch import CLEAR, UNSET, FieldPatch
from fieldops.services.service_orders.assignments import (
    ensure_assignable_user,
    parse_user_id,
    replace_active_assignment,
)
from fieldops.services.service_orders.context import ActorContext
from fieldops.services.service_orders.errors import (
    ServiceOrderPermissionError,
    ServiceOrderValidationError,
)
from fieldops.services.service_orders.observability import STATUS_TRANSITIONS
from fieldops.services.service_orders.permissions import can_dispatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleResult:
    previous_status: ServiceOrderStatus
    status: ServiceOrderStatus

    @property
    def status_changed(self) -> bool:
        return self.previous_status != self.status


def validate_duration(value) -> int:
    """Accept a positive, finite, integral number of minutes."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ServiceOrderValidationError("invalid_duration", "duration_min must be a number")
    if not math.isfinite(value) or value <= 0 or int(value) != value:
        raise ServiceOrderValidationError(
            "invalid_duration",
            f"duration_min must be a positive whole number of minutes, got {value}",
        )
    return int(value)


def derive_status(
    status: ServiceOrderStatus,
    previous_due: datetime | None,
    due_date: datetime | None,
) -> ServiceOrderStatus:
    if status == ServiceOrderStatus.open and previous_due is None and due_date is not None:
        return ServiceOrderStatus.scheduled
    if status == ServiceOrderStatus.scheduled and previous_due is not None and due_date is None:
        return ServiceOrderStatus.open
    return status


def apply_schedule(
    db: Session,
    order: ServiceOrder,
    ctx: ActorContext,
    *,
    due_date: FieldPatch = UNSET,
    technician_id: FieldPatch = UNSET,
    duration_min: FieldPatch = UNSET,
    now: datetime,
) -> ScheduleResult:
    """Apply a partial schedule update to a locked ``order``.

    Every field is validated before anything is written.
    """
    if not can_dispatch(ctx):
        raise ServiceOrderPermissionError(
            "forbidden", f"Role {ctx.role.value} may not schedule service orders"
        )

    new_duration = None
    if duration_min is not UNSET and duration_min is not CLEAR:
        new_duration = validate_duration(duration_min.value)

    new_technician_id = None
    if technician_id is not UNSET and technician_id is not CLEAR:
        new_technician_id = parse_user_id(technician_id.value)
        ensure_assignable_user(db, order.tenant_id, new_technician_id)

    previous_status = order.status
    if due_date is not UNSET:
        previous_due = order.due_date
        order.due_date = None if due_date is CLEAR else ensure_utc(due_date.value)
        order.status = derive_status(order.status, previous_due, order.due_date)

    if duration_min is not UNSET:
        order.duration_min = new_duration

    if technician_id is not UNSET:
        replace_active_assignment(db, order, AssignmentRole.technician, new_technician_id, now)

    result = ScheduleResult(previous_status, order.status)
    if result.status_changed:
        STATUS_TRANSITIONS.labels(
            from_status=previous_status.value, to_status=order.status.value, outcome="derived"
        ).inc()
        logger.info(
            "service_order_status_derived order_id=%s from=%s to=%s",
            order.id,
            previous_status.value,
            order.status.value,
        )
    return result
