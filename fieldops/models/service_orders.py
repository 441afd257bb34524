import enum
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fieldops.db import Base


class ServiceOrderStatus(enum.Enum):
    open = "open"
    scheduled = "scheduled"
    in_progress = "in_progress"
    on_hold = "on_hold"
    completed = "completed"
    closed = "closed"
    canceled = "canceled"


TERMINAL_STATUSES = frozenset(
    {
        ServiceOrderStatus.completed,
        ServiceOrderStatus.closed,
        ServiceOrderStatus.canceled,
    }
)


class ServiceOrderType(enum.Enum):
    commissioning = "commissioning"
    diagnostic = "diagnostic"
    preventive = "preventive"
    corrective = "corrective"
    delivery = "delivery"
    other = "other"


class AssignmentRole(enum.Enum):
    technician = "technician"
    supervisor = "supervisor"


class AssignmentState(enum.Enum):
    active = "active"
    removed = "removed"


class ServiceOrder(Base):
    __tablename__ = "service_orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    service_order_type: Mapped[ServiceOrderType] = mapped_column(
        Enum(ServiceOrderType), default=ServiceOrderType.corrective
    )
    asset_code: Mapped[str | None] = mapped_column(String(120))
    status: Mapped[ServiceOrderStatus] = mapped_column(
        Enum(ServiceOrderStatus), default=ServiceOrderStatus.open, nullable=False
    )
    has_issue: Mapped[bool] = mapped_column(Boolean, default=False)

    # Checkpoint chain, in order
    taken_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    arrived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    check_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    activity_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    activity_finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Scheduling
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration_min: Mapped[int | None] = mapped_column(Integer)

    form_data: Mapped[dict | None] = mapped_column(JSON)
    technician_signature: Mapped[str | None] = mapped_column(Text)
    receiver_signature: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

    assignments = relationship(
        "ServiceOrderAssignment",
        back_populates="service_order",
        order_by="ServiceOrderAssignment.assigned_at",
    )
    work_logs = relationship(
        "WorkLog", back_populates="service_order", order_by="WorkLog.started_at"
    )
    resolution = relationship(
        "ServiceOrderResolution", back_populates="service_order", uselist=False
    )
    parts = relationship(
        "ServiceOrderPart", back_populates="service_order", order_by="ServiceOrderPart.created_at"
    )

    __table_args__ = (
        Index("ix_service_orders_tenant_status", "tenant_id", "status"),
        Index("ix_service_orders_tenant_due_date", "tenant_id", "due_date"),
    )


class ServiceOrderAssignment(Base):
    __tablename__ = "service_order_assignments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    service_order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("service_orders.id"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    role: Mapped[AssignmentRole] = mapped_column(
        Enum(AssignmentRole), default=AssignmentRole.technician
    )
    state: Mapped[AssignmentState] = mapped_column(
        Enum(AssignmentState), default=AssignmentState.active
    )
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    removed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    service_order = relationship("ServiceOrder", back_populates="assignments")
    user = relationship("User")

    __table_args__ = (
        Index(
            "ix_service_order_assignments_order_role_state",
            "service_order_id",
            "role",
            "state",
        ),
    )


class ServiceOrderResolution(Base):
    __tablename__ = "service_order_resolutions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    service_order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("service_orders.id"), nullable=False, unique=True
    )
    symptom_code: Mapped[str | None] = mapped_column(String(60))
    symptom_other: Mapped[str | None] = mapped_column(Text)
    cause_code: Mapped[str | None] = mapped_column(String(60))
    cause_other: Mapped[str | None] = mapped_column(Text)
    root_cause_text: Mapped[str | None] = mapped_column(Text)
    remedy_code: Mapped[str | None] = mapped_column(String(60))
    remedy_other: Mapped[str | None] = mapped_column(Text)
    solution_summary: Mapped[str | None] = mapped_column(Text)
    preventive_recommendation: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

    service_order = relationship("ServiceOrder", back_populates="resolution")

    @property
    def has_cause(self) -> bool:
        return bool((self.cause_code or "").strip() or (self.cause_other or "").strip())

    @property
    def has_remedy(self) -> bool:
        return bool((self.remedy_code or "").strip() or (self.remedy_other or "").strip())


class ServiceOrderAuditEntry(Base):
    """One recorded field-level change on a service order.

    ``seq`` increases per order; the ledger keeps only the most recent
    ``settings.audit_log_max_entries`` rows per order.
    """

    __tablename__ = "service_order_audit_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    service_order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("service_orders.id"), nullable=False
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    by_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    field: Mapped[str] = mapped_column(String(60), nullable=False)
    part: Mapped[str | None] = mapped_column(String(160))
    from_value: Mapped[Any] = mapped_column("from", JSON)
    to_value: Mapped[Any] = mapped_column("to", JSON)

    __table_args__ = (
        UniqueConstraint("service_order_id", "seq", name="uq_service_order_audit_entries_seq"),
    )


class ServiceOrderPart(Base):
    """A part consumed on a service order: an inventory item or free text."""

    __tablename__ = "service_order_parts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    service_order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("service_orders.id"), nullable=False, index=True
    )
    inventory_item_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    free_text: Mapped[str | None] = mapped_column(String(200))
    qty: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )

    service_order = relationship("ServiceOrder", back_populates="parts")
