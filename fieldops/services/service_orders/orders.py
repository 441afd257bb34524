"""Service-order management: creation, descriptive edits, signatures, parts,
resolution and assignments."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from fieldops.models.service_orders import (
    AssignmentRole,
    AssignmentState,
    ServiceOrder,
    ServiceOrderAssignment,
    ServiceOrderPart,
    ServiceOrderResolution,
    ServiceOrderStatus,
)
from fieldops.queries.service_orders import (
    AssignmentQuery,
    AuditEntryQuery,
    PartQuery,
    ServiceOrderQuery,
    WorkLogQuery,
)
from fieldops.schemas.service_orders import (
    AssignmentCreate,
    ResolutionUpsert,
    ServiceOrderCreate,
    ServiceOrderFormDataUpdate,
    ServiceOrderPartCreate,
    ServiceOrderSignaturesUpdate,
    ServiceOrderUpdate,
)
from fieldops.services.common import ensure_utc, utc_now
from fieldops.services.field_patch import patch_value, patches_from
from fieldops.services.response import ListResponseMixin
from fieldops.services.service_orders import audit
from fieldops.services.service_orders.assignments import (
    ensure_assignable_user,
    is_assigned_technician,
    remove_assignment,
    replace_active_assignment,
)
from fieldops.services.service_orders.context import ActorContext
from fieldops.services.service_orders.errors import (
    ServiceOrderNotFoundError,
    ServiceOrderPermissionError,
    ServiceOrderValidationError,
)
from fieldops.services.service_orders.lifecycle import atomic, load_order, parse_id
from fieldops.services.service_orders.permissions import can_dispatch, can_edit_order
from fieldops.services.service_orders.scheduling import validate_duration

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("title", "service_order_type", "has_issue", "is_active")
_SIGNATURE_FIELDS = ("technician_signature", "receiver_signature")


def _ensure_dispatcher(ctx: ActorContext, action: str) -> None:
    if not can_dispatch(ctx):
        raise ServiceOrderPermissionError(
            "forbidden", f"Role {ctx.role.value} may not {action}"
        )


def _ensure_editor(db: Session, ctx: ActorContext, order: ServiceOrder) -> None:
    assigned = ctx.is_tech and is_assigned_technician(db, order, ctx.user_id)
    if not can_edit_order(ctx, is_assigned_technician=assigned):
        raise ServiceOrderPermissionError(
            "forbidden", "Only the assigned technician or a dispatcher may edit this service order"
        )


def _get_resolution(db: Session, order: ServiceOrder) -> ServiceOrderResolution | None:
    return (
        db.query(ServiceOrderResolution)
        .filter(ServiceOrderResolution.tenant_id == order.tenant_id)
        .filter(ServiceOrderResolution.service_order_id == order.id)
        .one_or_none()
    )


class ServiceOrders(ListResponseMixin):
    @staticmethod
    def create(db: Session, ctx: ActorContext, payload: ServiceOrderCreate) -> ServiceOrder:
        _ensure_dispatcher(ctx, "create service orders")
        with atomic(db):
            now = utc_now()
            data = payload.model_dump(
                exclude={"technician_id", "supervisor_id", "due_date", "duration_min"}
            )
            order = ServiceOrder(tenant_id=ctx.tenant_id, **data)
            if payload.due_date is not None:
                order.due_date = ensure_utc(payload.due_date)
                order.status = ServiceOrderStatus.scheduled
            else:
                order.status = ServiceOrderStatus.open
            if payload.duration_min is not None:
                order.duration_min = validate_duration(payload.duration_min)
            db.add(order)
            db.flush()

            for role, user_id in (
                (AssignmentRole.technician, payload.technician_id),
                (AssignmentRole.supervisor, payload.supervisor_id),
            ):
                if user_id is not None:
                    ensure_assignable_user(db, ctx.tenant_id, user_id)
                    replace_active_assignment(db, order, role, user_id, now)

            audit.record_event(db, order, ctx, field="status", to_value=order.status, at=now)
            logger.info(
                "service_order_created order_id=%s tenant_id=%s status=%s",
                order.id,
                ctx.tenant_id,
                order.status.value,
            )
        db.refresh(order)
        return order

    @staticmethod
    def get(db: Session, ctx: ActorContext, order_id: str) -> ServiceOrder:
        return load_order(db, ctx, order_id, lock=False)

    @staticmethod
    def list(
        db: Session,
        ctx: ActorContext,
        status: str | None,
        technician_id: str | None,
        search: str | None,
        due_from,
        due_to,
        is_active: bool | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        query = (
            ServiceOrderQuery(db, ctx.tenant_id)
            .by_status(status)
            .by_technician(technician_id)
            .search(search)
            .due_between(ensure_utc(due_from), ensure_utc(due_to))
        )
        if is_active is None:
            query = query.active_only()
        else:
            query = query.active_only(is_active)
        return query.order_by(order_by, order_dir).paginate(limit, offset).all()

    @staticmethod
    def update(
        db: Session, ctx: ActorContext, order_id: str, payload: ServiceOrderUpdate
    ) -> ServiceOrder:
        with atomic(db):
            order = load_order(db, ctx, order_id)
            _ensure_editor(db, ctx, order)
            data = payload.model_dump(exclude_unset=True)
            for key in _REQUIRED_FIELDS:
                if key in data and data[key] is None:
                    raise ServiceOrderValidationError("field_required", f"{key} may not be null")
            if "is_active" in data:
                _ensure_dispatcher(ctx, "archive service orders")

            before = audit.snapshot_order(db, order)
            for key, value in data.items():
                setattr(order, key, value)
            audit.record_changes(db, order, ctx, before, utc_now())
        db.refresh(order)
        return order

    @staticmethod
    def update_form_data(
        db: Session, ctx: ActorContext, order_id: str, payload: ServiceOrderFormDataUpdate
    ) -> ServiceOrder:
        with atomic(db):
            order = load_order(db, ctx, order_id)
            _ensure_editor(db, ctx, order)
            before = audit.snapshot_order(db, order)
            order.form_data = dict(payload.form_data)
            audit.record_changes(db, order, ctx, before, utc_now())
        db.refresh(order)
        return order

    @staticmethod
    def get_resolution(db: Session, ctx: ActorContext, order_id: str) -> ServiceOrderResolution:
        order = load_order(db, ctx, order_id, lock=False)
        resolution = _get_resolution(db, order)
        if not resolution:
            raise ServiceOrderNotFoundError(
                "resolution_not_found", f"Service order {order_id} has no resolution"
            )
        return resolution

    @staticmethod
    def upsert_resolution(
        db: Session, ctx: ActorContext, order_id: str, payload: ResolutionUpsert
    ) -> ServiceOrderResolution:
        with atomic(db):
            order = load_order(db, ctx, order_id)
            _ensure_editor(db, ctx, order)
            before = audit.snapshot_order(db, order)
            resolution = _get_resolution(db, order)
            if resolution is None:
                resolution = ServiceOrderResolution(tenant_id=order.tenant_id, service_order_id=order.id)
                db.add(resolution)
            for key, patch in patches_from(payload, audit.RESOLUTION_FIELDS).items():
                setattr(resolution, key, patch_value(patch))
            db.flush()
            audit.record_changes(db, order, ctx, before, utc_now())
        db.refresh(resolution)
        return resolution

    @staticmethod
    def set_signatures(
        db: Session, ctx: ActorContext, order_id: str, payload: ServiceOrderSignaturesUpdate
    ) -> ServiceOrder:
        with atomic(db):
            order = load_order(db, ctx, order_id)
            _ensure_editor(db, ctx, order)
            before = audit.snapshot_order(db, order)
            for key, patch in patches_from(payload, _SIGNATURE_FIELDS).items():
                setattr(order, key, patch_value(patch, getattr(order, key)))
            audit.record_changes(db, order, ctx, before, utc_now())
        db.refresh(order)
        return order

    @staticmethod
    def list_parts(db: Session, ctx: ActorContext, order_id: str) -> list[ServiceOrderPart]:
        order = load_order(db, ctx, order_id, lock=False)
        return (
            PartQuery(db, ctx.tenant_id)
            .by_service_order(order.id)
            .order_by("created_at", "asc")
            .all()
        )

    @staticmethod
    def add_part(
        db: Session, ctx: ActorContext, order_id: str, payload: ServiceOrderPartCreate
    ) -> ServiceOrderPart:
        with atomic(db):
            order = load_order(db, ctx, order_id)
            _ensure_editor(db, ctx, order)
            free_text = (payload.free_text or "").strip() or None
            if payload.inventory_item_id is None and free_text is None:
                raise ServiceOrderValidationError(
                    "part_item_required", "inventory_item_id or free_text is required"
                )
            before = audit.snapshot_order(db, order)
            part = ServiceOrderPart(
                tenant_id=order.tenant_id,
                service_order_id=order.id,
                inventory_item_id=payload.inventory_item_id,
                free_text=free_text,
                qty=payload.qty,
                notes=payload.notes,
            )
            db.add(part)
            db.flush()
            audit.record_changes(db, order, ctx, before, utc_now())
            logger.info(
                "service_order_part_added order_id=%s part_id=%s qty=%s",
                order.id,
                part.id,
                part.qty,
            )
        db.refresh(part)
        return part

    @staticmethod
    def remove_part(db: Session, ctx: ActorContext, order_id: str, part_id: str) -> None:
        with atomic(db):
            order = load_order(db, ctx, order_id)
            _ensure_editor(db, ctx, order)
            part = (
                PartQuery(db, ctx.tenant_id)
                .by_id(parse_id(part_id, "part_not_found", "Part"))
                .by_service_order(order.id)
                .first()
            )
            if not part:
                raise ServiceOrderNotFoundError("part_not_found", f"Part {part_id} not found")
            before = audit.snapshot_order(db, order)
            db.delete(part)
            db.flush()
            audit.record_changes(db, order, ctx, before, utc_now())
            logger.info("service_order_part_removed order_id=%s part_id=%s", order.id, part_id)

    @staticmethod
    def list_assignments(
        db: Session, ctx: ActorContext, order_id: str, active_only: bool = True
    ) -> list[ServiceOrderAssignment]:
        order = load_order(db, ctx, order_id, lock=False)
        query = AssignmentQuery(db, ctx.tenant_id).by_service_order(order.id)
        if active_only:
            query = query.active()
        return query.order_by("assigned_at", "asc").all()

    @staticmethod
    def add_assignment(
        db: Session, ctx: ActorContext, order_id: str, payload: AssignmentCreate
    ) -> ServiceOrderAssignment:
        _ensure_dispatcher(ctx, "manage assignments")
        with atomic(db):
            order = load_order(db, ctx, order_id)
            ensure_assignable_user(db, ctx.tenant_id, payload.user_id)
            now = utc_now()
            before = audit.snapshot_order(db, order)
            assignment = replace_active_assignment(db, order, payload.role, payload.user_id, now)
            audit.record_changes(db, order, ctx, before, now)
        db.refresh(assignment)
        return assignment

    @staticmethod
    def remove_assignment(
        db: Session, ctx: ActorContext, order_id: str, assignment_id: str
    ) -> ServiceOrderAssignment:
        _ensure_dispatcher(ctx, "manage assignments")
        with atomic(db):
            order = load_order(db, ctx, order_id)
            assignment = (
                AssignmentQuery(db, ctx.tenant_id)
                .by_id(parse_id(assignment_id, "assignment_not_found", "Assignment"))
                .by_service_order(order.id)
                .first()
            )
            if not assignment:
                raise ServiceOrderNotFoundError(
                    "assignment_not_found", f"Assignment {assignment_id} not found"
                )
            if assignment.state == AssignmentState.active:
                now = utc_now()
                before = audit.snapshot_order(db, order)
                remove_assignment(assignment, now)
                db.flush()
                audit.record_changes(db, order, ctx, before, now)
        db.refresh(assignment)
        return assignment


class WorkLogs(ListResponseMixin):
    @staticmethod
    def list(
        db: Session,
        ctx: ActorContext,
        service_order_id: str | None,
        user_id: str | None,
        open_: bool | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        return (
            WorkLogQuery(db, ctx.tenant_id)
            .by_service_order(service_order_id)
            .by_user(user_id)
            .open_only(open_)
            .order_by(order_by, order_dir)
            .paginate(limit, offset)
            .all()
        )


class AuditTrail(ListResponseMixin):
    @staticmethod
    def list(
        db: Session,
        ctx: ActorContext,
        service_order_id: str,
        field: str | None,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        order = load_order(db, ctx, service_order_id, lock=False)
        return (
            AuditEntryQuery(db, ctx.tenant_id)
            .by_service_order(order.id)
            .by_field(field)
            .order_by("seq", order_dir)
            .paginate(limit, offset)
            .all()
        )


service_orders = ServiceOrders()
work_logs = WorkLogs()
audit_trail = AuditTrail()
