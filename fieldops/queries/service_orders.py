"""Query builders for service-order related models."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar

from sqlalchemy import or_

from fieldops.models.service_orders import (
    AssignmentRole,
    AssignmentState,
    ServiceOrder,
    ServiceOrderAssignment,
    ServiceOrderAuditEntry,
    ServiceOrderPart,
    ServiceOrderStatus,
)
from fieldops.models.work_logs import WorkLog
from fieldops.queries.base import BaseQuery
from fieldops.services.common import coerce_uuid, validate_enum

if TYPE_CHECKING:
    from uuid import UUID


class ServiceOrderQuery(BaseQuery[ServiceOrder]):
    """Query builder for ServiceOrder model.

    Usage:
        orders = (
            ServiceOrderQuery(db, tenant_id)
            .by_status(ServiceOrderStatus.scheduled)
            .due_between(start, end)
            .order_by("due_date", "asc")
            .all()
        )
    """

    model_class = ServiceOrder
    ordering_fields: ClassVar[dict[str, Any]] = {
        "created_at": ServiceOrder.created_at,
        "updated_at": ServiceOrder.updated_at,
        "status": ServiceOrder.status,
        "due_date": ServiceOrder.due_date,
        "title": ServiceOrder.title,
    }

    def by_status(self, status: ServiceOrderStatus | str | None) -> ServiceOrderQuery:
        if not status:
            return self
        if isinstance(status, str):
            status = validate_enum(status, ServiceOrderStatus, "status")
        return self._filter(ServiceOrder.status == status)

    def by_statuses(self, statuses: list[ServiceOrderStatus | str] | None) -> ServiceOrderQuery:
        if not statuses:
            return self
        status_enums = [
            validate_enum(s, ServiceOrderStatus, "status") if isinstance(s, str) else s for s in statuses
        ]
        return self._filter(ServiceOrder.status.in_(status_enums))

    def by_technician(self, user_id: UUID | str | None) -> ServiceOrderQuery:
        """Orders where ``user_id`` is the active technician."""
        if not user_id:
            return self
        active_for_user = (
            self.db.query(ServiceOrderAssignment.service_order_id)
            .filter(ServiceOrderAssignment.tenant_id == self.tenant_id)
            .filter(ServiceOrderAssignment.user_id == coerce_uuid(user_id))
            .filter(ServiceOrderAssignment.role == AssignmentRole.technician)
            .filter(ServiceOrderAssignment.state == AssignmentState.active)
        )
        return self._filter(ServiceOrder.id.in_(active_for_user))

    def search(self, term: str | None) -> ServiceOrderQuery:
        """Case-insensitive match on title or asset code."""
        term = (term or "").strip()
        if not term:
            return self
        pattern = f"%{term}%"
        return self._filter(
            or_(ServiceOrder.title.ilike(pattern), ServiceOrder.asset_code.ilike(pattern))
        )

    def due_between(self, start: datetime | None, end: datetime | None) -> ServiceOrderQuery:
        clone = self
        if start:
            clone = clone._filter(ServiceOrder.due_date >= start)
        if end:
            clone = clone._filter(ServiceOrder.due_date <= end)
        return clone

    def scheduled_only(self) -> ServiceOrderQuery:
        return self._filter(ServiceOrder.due_date.is_not(None))

    def unscheduled_only(self) -> ServiceOrderQuery:
        return self._filter(ServiceOrder.due_date.is_(None))


class AssignmentQuery(BaseQuery[ServiceOrderAssignment]):
    """Query builder for ServiceOrderAssignment model."""

    model_class = ServiceOrderAssignment
    ordering_fields: ClassVar[dict[str, Any]] = {
        "assigned_at": ServiceOrderAssignment.assigned_at,
    }

    def by_service_order(self, service_order_id: UUID | str | None) -> AssignmentQuery:
        if not service_order_id:
            return self
        return self._filter(ServiceOrderAssignment.service_order_id == coerce_uuid(service_order_id))

    def by_user(self, user_id: UUID | str | None) -> AssignmentQuery:
        if not user_id:
            return self
        return self._filter(ServiceOrderAssignment.user_id == coerce_uuid(user_id))

    def by_role(self, role: AssignmentRole | None) -> AssignmentQuery:
        if role is None:
            return self
        return self._filter(ServiceOrderAssignment.role == role)

    def active(self) -> AssignmentQuery:
        return self._filter(ServiceOrderAssignment.state == AssignmentState.active)


class PartQuery(BaseQuery[ServiceOrderPart]):
    """Query builder for ServiceOrderPart model."""

    model_class = ServiceOrderPart
    ordering_fields: ClassVar[dict[str, Any]] = {
        "created_at": ServiceOrderPart.created_at,
    }

    def by_service_order(self, service_order_id: UUID | str | None) -> PartQuery:
        if not service_order_id:
            return self
        return self._filter(ServiceOrderPart.service_order_id == coerce_uuid(service_order_id))


class WorkLogQuery(BaseQuery[WorkLog]):
    """Query builder for WorkLog model."""

    model_class = WorkLog
    ordering_fields: ClassVar[dict[str, Any]] = {
        "started_at": WorkLog.started_at,
        "ended_at": WorkLog.ended_at,
        "created_at": WorkLog.created_at,
    }

    def by_service_order(self, service_order_id: UUID | str | None) -> WorkLogQuery:
        if not service_order_id:
            return self
        return self._filter(WorkLog.service_order_id == coerce_uuid(service_order_id))

    def by_user(self, user_id: UUID | str | None) -> WorkLogQuery:
        if not user_id:
            return self
        return self._filter(WorkLog.user_id == coerce_uuid(user_id))

    def open_only(self, open_: bool | None = True) -> WorkLogQuery:
        if open_ is None:
            return self
        if open_:
            return self._filter(WorkLog.ended_at.is_(None))
        return self._filter(WorkLog.ended_at.is_not(None))


class AuditEntryQuery(BaseQuery[ServiceOrderAuditEntry]):
    """Query builder for the service-order audit ledger."""

    model_class = ServiceOrderAuditEntry
    ordering_fields: ClassVar[dict[str, Any]] = {
        "seq": ServiceOrderAuditEntry.seq,
        "at": ServiceOrderAuditEntry.at,
    }

    def by_service_order(self, service_order_id: UUID | str | None) -> AuditEntryQuery:
        if not service_order_id:
            return self
        return self._filter(ServiceOrderAuditEntry.service_order_id == coerce_uuid(service_order_id))

    def by_field(self, field: str | None) -> AuditEntryQuery:
        if not field:
            return self
        return self._filter(ServiceOrderAuditEntry.field == field)
