"""Transactional entry points of the service-order lifecycle.

Every operation runs as one unit on the caller's session:
load and lock the order, snapshot it, validate, apply the change and its
derived effects, diff against the snapshot into the audit ledger, commit.
Any error rolls the whole unit back and propagates.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from fieldops.models.service_orders import TERMINAL_STATUSES, ServiceOrder, ServiceOrderStatus
from fieldops.models.work_logs import WorkLog, WorkLogSource
from fieldops.queries.service_orders import ServiceOrderQuery, WorkLogQuery
from fieldops.schemas.service_orders import (
    ServiceOrderScheduleUpdate,
    ServiceOrderStatusUpdate,
    ServiceOrderTimestampsUpdate,
    WorkSessionStart,
    WorkSessionStop,
)
from fieldops.services.common import utc_now
from fieldops.services.field_patch import patch_from, patches_from
from fieldops.services.service_orders import audit, work_sessions
from fieldops.services.service_orders.assignments import is_assigned_technician
from fieldops.services.service_orders.context import ActorContext
from fieldops.services.service_orders.errors import (
    ServiceOrderConflictError,
    ServiceOrderNotFoundError,
    ServiceOrderPermissionError,
    ServiceOrderValidationError,
)
from fieldops.services.service_orders.observability import STATUS_TRANSITIONS
from fieldops.services.service_orders.permissions import can_edit_order, can_work_order
from fieldops.services.service_orders.resolution_gate import ensure_resolution_for
from fieldops.services.service_orders.scheduling import apply_schedule
from fieldops.services.service_orders.status_flow import TransitionOutcome, validate_transition
from fieldops.services.service_orders.timestamp_chain import (
    CHECKPOINTS,
    chain_values,
    validate_timestamp_chain,
)

logger = logging.getLogger(__name__)

_STARTABLE_STATUSES = frozenset(
    {ServiceOrderStatus.open, ServiceOrderStatus.scheduled, ServiceOrderStatus.on_hold}
)


@dataclass(frozen=True)
class SoftSkip:
    """A status request that was deliberately left unapplied."""

    message: str
    service_order: ServiceOrder


def _now() -> datetime:
    return utc_now()


@contextmanager
def atomic(db: Session) -> Iterator[None]:
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise


def parse_id(value: uuid.UUID | str, code: str, label: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise ServiceOrderNotFoundError(code, f"{label} {value} not found") from exc


def load_order(
    db: Session, ctx: ActorContext, order_id: uuid.UUID | str, *, lock: bool = True
) -> ServiceOrder:
    order_uuid = parse_id(order_id, "service_order_not_found", "Service order")
    query = ServiceOrderQuery(db, ctx.tenant_id).by_id(order_uuid)
    if lock:
        query = query.for_update()
    order = query.first()
    if not order:
        raise ServiceOrderNotFoundError(
            "service_order_not_found", f"Service order {order_id} not found"
        )
    return order


def _assigned(db: Session, order: ServiceOrder, ctx: ActorContext) -> bool:
    return ctx.is_tech and is_assigned_technician(db, order, ctx.user_id)


def _count_transition(
    previous: ServiceOrderStatus, requested: ServiceOrderStatus, outcome: TransitionOutcome
) -> None:
    STATUS_TRANSITIONS.labels(
        from_status=previous.value, to_status=requested.value, outcome=outcome.value
    ).inc()


class ServiceOrderLifecycle:
    @staticmethod
    def update_status(
        db: Session, ctx: ActorContext, order_id: str, payload: ServiceOrderStatusUpdate
    ) -> ServiceOrder | SoftSkip:
        with atomic(db):
            order = load_order(db, ctx, order_id)
            now = _now()
            previous = order.status
            requested = payload.status
            check = validate_transition(previous, requested, ctx.role, _assigned(db, order, ctx))
            if check.outcome != TransitionOutcome.allow:
                _count_transition(previous, requested, check.outcome)

            if check.outcome == TransitionOutcome.soft_skip:
                logger.info(
                    "service_order_status_soft_skip order_id=%s user_id=%s requested=%s",
                    order.id,
                    ctx.user_id,
                    requested.value,
                )
                return SoftSkip(message=check.reason or "", service_order=order)
            if check.outcome == TransitionOutcome.deny:
                raise ServiceOrderPermissionError("transition_denied", check.reason or "Not allowed")

            ensure_resolution_for(db, order, requested)
            _count_transition(previous, requested, check.outcome)

            before = audit.snapshot_order(db, order)
            order.status = requested
            work_sessions.on_status_change(db, order, ctx, previous, now)
            audit.record_changes(db, order, ctx, before, now)
            logger.info(
                "service_order_status_changed order_id=%s from=%s to=%s user_id=%s",
                order.id,
                previous.value,
                requested.value,
                ctx.user_id,
            )
        db.refresh(order)
        return order

    @staticmethod
    def update_timestamps(
        db: Session, ctx: ActorContext, order_id: str, payload: ServiceOrderTimestampsUpdate
    ) -> ServiceOrder:
        with atomic(db):
            order = load_order(db, ctx, order_id)
            now = _now()
            if not can_edit_order(ctx, is_assigned_technician=_assigned(db, order, ctx)):
                raise ServiceOrderPermissionError(
                    "forbidden", "Only the assigned technician or a dispatcher may edit checkpoints"
                )

            check = validate_timestamp_chain(chain_values(order), patches_from(payload, CHECKPOINTS))
            if not check.accepted:
                violation = check.violation
                if violation.code == "clear_blocked":
                    raise ServiceOrderConflictError(
                        violation.code, violation.detail, payload={"checkpoint": violation.checkpoint}
                    )
                raise ServiceOrderValidationError(
                    violation.code, violation.detail, payload={"checkpoint": violation.checkpoint}
                )

            if check.changed:
                before = audit.snapshot_order(db, order)
                for key in check.changed:
                    setattr(order, key, check.values[key])
                work_sessions.on_timestamps_change(db, order, ctx, check.changed)
                audit.record_changes(db, order, ctx, before, now)
                logger.info(
                    "service_order_timestamps_changed order_id=%s changed=%s",
                    order.id,
                    ",".join(check.changed),
                )
        db.refresh(order)
        return order

    @staticmethod
    def schedule(
        db: Session, ctx: ActorContext, order_id: str, payload: ServiceOrderScheduleUpdate
    ) -> ServiceOrder:
        with atomic(db):
            order = load_order(db, ctx, order_id)
            now = _now()
            before = audit.snapshot_order(db, order)
            apply_schedule(
                db,
                order,
                ctx,
                due_date=patch_from(payload, "due_date"),
                technician_id=patch_from(payload, "technician_id", blank_clears=True),
                duration_min=patch_from(payload, "duration_min"),
                now=now,
            )
            audit.record_changes(db, order, ctx, before, now)
        db.refresh(order)
        return order

    @staticmethod
    def start_session(
        db: Session, ctx: ActorContext, order_id: str, payload: WorkSessionStart | None = None
    ) -> WorkLog:
        with atomic(db):
            order = load_order(db, ctx, order_id)
            now = _now()
            if not can_work_order(ctx, is_assigned_technician=_assigned(db, order, ctx)):
                raise ServiceOrderPermissionError(
                    "forbidden", "Only the assigned technician may start work on this service order"
                )
            if order.status in TERMINAL_STATUSES:
                raise ServiceOrderConflictError(
                    "service_order_closed",
                    f"Cannot start work on a {order.status.value} service order",
                )
            technician_id = work_sessions.acting_technician(db, order, ctx)
            if technician_id is None:
                raise ServiceOrderValidationError(
                    "technician_required", "Service order has no assigned technician"
                )

            before = audit.snapshot_order(db, order)
            session = work_sessions.ensure_open_session(
                db,
                order,
                technician_id,
                now,
                WorkLogSource.manual,
                note=payload.note if payload else None,
            )
            previous = order.status
            if previous in _STARTABLE_STATUSES:
                order.status = ServiceOrderStatus.in_progress
                STATUS_TRANSITIONS.labels(
                    from_status=previous.value,
                    to_status=order.status.value,
                    outcome="derived",
                ).inc()
            audit.record_changes(db, order, ctx, before, now)
        db.refresh(session)
        return session

    @staticmethod
    def stop_session(
        db: Session,
        ctx: ActorContext,
        order_id: str,
        session_id: str,
        payload: WorkSessionStop | None = None,
    ) -> WorkLog:
        with atomic(db):
            order = load_order(db, ctx, order_id)
            now = _now()
            session_uuid = parse_id(session_id, "work_log_not_found", "Work session")
            session = (
                WorkLogQuery(db, ctx.tenant_id)
                .by_id(session_uuid)
                .by_service_order(order.id)
                .for_update()
                .first()
            )
            if not session:
                raise ServiceOrderNotFoundError(
                    "work_log_not_found", f"Work session {session_id} not found"
                )
            if not ctx.is_admin and session.user_id != ctx.user_id:
                raise ServiceOrderPermissionError(
                    "forbidden", "Only the session owner may stop this work session"
                )

            if session.ended_at is None:
                before = audit.snapshot_order(db, order)
                work_sessions.close_session(session, now, WorkLogSource.manual)
                if payload and payload.note:
                    session.note = payload.note
                db.flush()
                work_sessions.apply_auto_pause(db, order)
                audit.record_changes(db, order, ctx, before, now)
        db.refresh(session)
        return session


service_order_lifecycle = ServiceOrderLifecycle()
