"""Work-session bookkeeping for service orders.

A technician holds at most one open work session per tenant. Sessions open
and close as a side effect of status and checkpoint changes, or through the
manual start/stop operations. The application-level check below runs under a
row lock; the partial unique index ``uq_work_logs_open_session`` catches
requests that race past it.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fieldops.models.service_orders import TERMINAL_STATUSES, ServiceOrder, ServiceOrderStatus
from fieldops.models.work_logs import WorkLog, WorkLogSource
from fieldops.queries.service_orders import WorkLogQuery
from fieldops.services.common import ensure_utc
from fieldops.services.service_orders.assignments import active_technician_id
from fieldops.services.service_orders.context import ActorContext
from fieldops.services.service_orders.errors import ServiceOrderConflictError
from fieldops.services.service_orders.observability import (
    STATUS_TRANSITIONS,
    WORK_SESSION_CONFLICTS,
    WORK_SESSIONS,
)

logger = logging.getLogger(__name__)


def find_open_session_for_user(
    db: Session, tenant_id: uuid.UUID, user_id: uuid.UUID, *, lock: bool = True
) -> WorkLog | None:
    """The technician's open session anywhere in the tenant."""
    query = WorkLogQuery(db, tenant_id).by_user(user_id).open_only()
    if lock:
        query = query.for_update()
    return query.first()


def open_sessions_for_order(db: Session, order: ServiceOrder, *, lock: bool = True) -> list[WorkLog]:
    query = WorkLogQuery(db, order.tenant_id).by_service_order(order.id).open_only()
    if lock:
        query = query.for_update()
    return query.order_by("started_at", "asc").all()


def technician_busy_error(db: Session, session: WorkLog | None) -> ServiceOrderConflictError:
    if session is None:
        return ServiceOrderConflictError(
            "technician_busy",
            "Technician already has an open work session on another service order",
        )
    other = db.get(ServiceOrder, session.service_order_id)
    title = other.title if other else None
    return ServiceOrderConflictError(
        "technician_busy",
        f"Technician already has an open work session on service order '{title}'",
        payload={
            "service_order_id": str(session.service_order_id),
            "title": title,
            "work_log_id": str(session.id),
        },
    )


def acting_technician(db: Session, order: ServiceOrder, ctx: ActorContext) -> uuid.UUID | None:
    """Whose session a status or checkpoint change opens."""
    if ctx.is_tech:
        return ctx.user_id
    return active_technician_id(db, order)


def ensure_open_session(
    db: Session,
    order: ServiceOrder,
    technician_id: uuid.UUID,
    at: datetime,
    source: WorkLogSource,
    *,
    correct_start: bool = False,
    note: str | None = None,
) -> WorkLog:
    """Open a session for ``technician_id`` on ``order`` unless one is open.

    An open session on this order is returned as is, with its start moved
    to ``at`` when ``correct_start`` is set. An open session on any other
    order raises ``technician_busy``.
    """
    at = ensure_utc(at)
    tenant_id = order.tenant_id
    order_id = order.id

    existing = find_open_session_for_user(db, tenant_id, technician_id)
    if existing is not None:
        if existing.service_order_id != order_id:
            WORK_SESSION_CONFLICTS.labels(detected_by="check").inc()
            logger.warning(
                "work_session_conflict order_id=%s user_id=%s open_order_id=%s work_log_id=%s",
                order_id,
                technician_id,
                existing.service_order_id,
                existing.id,
            )
            raise technician_busy_error(db, existing)
        if correct_start and ensure_utc(existing.started_at) != at:
            existing.started_at = at
            db.flush()
            WORK_SESSIONS.labels(action="restarted", source=source.value).inc()
        return existing

    session = WorkLog(
        tenant_id=tenant_id,
        service_order_id=order_id,
        user_id=technician_id,
        started_at=at,
        source=source,
        note=note,
    )
    db.add(session)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        WORK_SESSION_CONFLICTS.labels(detected_by="constraint").inc()
        logger.warning(
            "work_session_constraint_conflict order_id=%s user_id=%s",
            order_id,
            technician_id,
        )
        conflicting = WorkLogQuery(db, tenant_id).by_user(technician_id).open_only().first()
        raise technician_busy_error(db, conflicting) from exc

    WORK_SESSIONS.labels(action="opened", source=source.value).inc()
    logger.info(
        "work_session_opened order_id=%s user_id=%s work_log_id=%s source=%s",
        order_id,
        technician_id,
        session.id,
        source.value,
    )
    return session


def close_session(session: WorkLog, ended_at: datetime, source: WorkLogSource) -> WorkLog:
    """Close one session; an end before its start is clamped to the start."""
    if session.ended_at is not None:
        return session
    started_at = ensure_utc(session.started_at)
    session.ended_at = max(ensure_utc(ended_at), started_at)
    WORK_SESSIONS.labels(action="closed", source=source.value).inc()
    logger.info(
        "work_session_closed order_id=%s user_id=%s work_log_id=%s",
        session.service_order_id,
        session.user_id,
        session.id,
    )
    return session


def close_open_sessions(
    db: Session,
    order: ServiceOrder,
    ended_at: datetime,
    source: WorkLogSource = WorkLogSource.status,
) -> list[WorkLog]:
    """Close every open session on ``order``, for every technician."""
    sessions = open_sessions_for_order(db, order)
    for session in sessions:
        close_session(session, ended_at, source)
    if sessions:
        db.flush()
    return sessions


def apply_auto_pause(db: Session, order: ServiceOrder) -> bool:
    """Put a started, in-progress order on hold once no session is open on it."""
    if order.status != ServiceOrderStatus.in_progress:
        return False
    if order.activity_started_at is None:
        return False
    if open_sessions_for_order(db, order, lock=False):
        return False
    order.status = ServiceOrderStatus.on_hold
    STATUS_TRANSITIONS.labels(
        from_status=ServiceOrderStatus.in_progress.value,
        to_status=ServiceOrderStatus.on_hold.value,
        outcome="derived",
    ).inc()
    logger.info("service_order_auto_paused order_id=%s", order.id)
    return True


def on_status_change(
    db: Session,
    order: ServiceOrder,
    ctx: ActorContext,
    previous: ServiceOrderStatus,
    now: datetime,
) -> None:
    """Open or close sessions after an explicit status change."""
    current = order.status
    if current == ServiceOrderStatus.on_hold and previous != ServiceOrderStatus.on_hold:
        close_open_sessions(db, order, now, WorkLogSource.status)
    elif previous == ServiceOrderStatus.on_hold and current == ServiceOrderStatus.in_progress:
        technician_id = acting_technician(db, order, ctx)
        if technician_id is not None:
            ensure_open_session(db, order, technician_id, now, WorkLogSource.status)
    elif current in TERMINAL_STATUSES:
        ended_at = order.activity_finished_at or now
        close_open_sessions(db, order, ended_at, WorkLogSource.status)


def on_timestamps_change(
    db: Session,
    order: ServiceOrder,
    ctx: ActorContext,
    changed: tuple[str, ...],
) -> bool:
    """Sync sessions with changed checkpoints; return whether the order paused."""
    if (
        "activity_started_at" in changed
        and order.activity_started_at is not None
        and order.status != ServiceOrderStatus.on_hold
        and order.status not in TERMINAL_STATUSES
    ):
        technician_id = acting_technician(db, order, ctx)
        if technician_id is not None:
            ensure_open_session(
                db,
                order,
                technician_id,
                order.activity_started_at,
                WorkLogSource.checkpoint,
                correct_start=True,
            )

    if "activity_finished_at" in changed and order.activity_finished_at is not None:
        closed = close_open_sessions(db, order, order.activity_finished_at, WorkLogSource.checkpoint)
        if closed:
            return apply_auto_pause(db, order)
    return False
