import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fieldops.db import Base


class WorkLogSource(enum.Enum):
    manual = "manual"
    checkpoint = "checkpoint"
    status = "status"


class WorkLog(Base):
    """One contiguous work session of one technician on one service order.

    A session with ``ended_at`` NULL is open. A technician holds at most one
    open session per tenant; the partial unique index below enforces that at
    commit time for requests racing past the service-level check.
    """

    __tablename__ = "work_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    service_order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("service_orders.id"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    note: Mapped[str | None] = mapped_column(Text)
    source: Mapped[WorkLogSource] = mapped_column(
        Enum(WorkLogSource), default=WorkLogSource.manual
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

    service_order = relationship("ServiceOrder", back_populates="work_logs")
    user = relationship("User")

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    __table_args__ = (
        Index(
            "uq_work_logs_open_session",
            "tenant_id",
            "user_id",
            unique=True,
            sqlite_where=text("ended_at IS NULL"),
            postgresql_where=text("ended_at IS NULL"),
        ),
        Index("ix_work_logs_tenant_user_started", "tenant_id", "user_id", "started_at"),
    )
