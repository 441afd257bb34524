from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fieldops.models.service_orders import (
    AssignmentRole,
    AssignmentState,
    ServiceOrderStatus,
    ServiceOrderType,
)
from fieldops.models.work_logs import WorkLogSource


class ServiceOrderBase(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    service_order_type: ServiceOrderType = ServiceOrderType.corrective
    asset_code: str | None = Field(default=None, max_length=120)
    has_issue: bool = False
    due_date: datetime | None = None
    duration_min: int | None = Field(default=None, gt=0)
    form_data: dict | None = None


class ServiceOrderCreate(ServiceOrderBase):
    technician_id: UUID | None = None
    supervisor_id: UUID | None = None


class ServiceOrderUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    service_order_type: ServiceOrderType | None = None
    asset_code: str | None = Field(default=None, max_length=120)
    has_issue: bool | None = None
    is_active: bool | None = None


class ServiceOrderRead(ServiceOrderBase):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    status: ServiceOrderStatus
    taken_at: datetime | None = None
    arrived_at: datetime | None = None
    check_in_at: datetime | None = None
    activity_started_at: datetime | None = None
    activity_finished_at: datetime | None = None
    delivered_at: datetime | None = None
    technician_signature: str | None = None
    receiver_signature: str | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ServiceOrderStatusUpdate(BaseModel):
    status: ServiceOrderStatus


class ServiceOrderStatusChangeRead(BaseModel):
    outcome: str
    message: str | None = None
    service_order: ServiceOrderRead


class ServiceOrderTimestampsUpdate(BaseModel):
    """Partial checkpoint update; an explicit null clears the checkpoint."""

    taken_at: datetime | None = None
    arrived_at: datetime | None = None
    check_in_at: datetime | None = None
    activity_started_at: datetime | None = None
    activity_finished_at: datetime | None = None
    delivered_at: datetime | None = None


class ServiceOrderScheduleUpdate(BaseModel):
    """Partial schedule update; an explicit null (or blank technician) clears."""

    due_date: datetime | None = None
    technician_id: str | None = None
    duration_min: int | float | None = None

    @field_validator("technician_id", mode="before")
    @classmethod
    def _technician_id_text(cls, value: Any):
        if isinstance(value, UUID):
            return str(value)
        return value


class ServiceOrderFormDataUpdate(BaseModel):
    form_data: dict = Field(default_factory=dict)


class ServiceOrderSignaturesUpdate(BaseModel):
    """Partial signature update; an explicit null clears the signature."""

    technician_signature: str | None = None
    receiver_signature: str | None = None


class ServiceOrderPartCreate(BaseModel):
    inventory_item_id: UUID | None = None
    free_text: str | None = Field(default=None, max_length=200)
    qty: int = Field(default=1, gt=0)
    notes: str | None = None


class ServiceOrderPartRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    service_order_id: UUID
    inventory_item_id: UUID | None = None
    free_text: str | None = None
    qty: int
    notes: str | None = None
    created_at: datetime


class WorkSessionStart(BaseModel):
    note: str | None = None


class WorkSessionStop(BaseModel):
    note: str | None = None


class WorkLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    service_order_id: UUID
    user_id: UUID
    started_at: datetime
    ended_at: datetime | None = None
    note: str | None = None
    source: WorkLogSource
    created_at: datetime


class ResolutionUpsert(BaseModel):
    symptom_code: str | None = Field(default=None, max_length=60)
    symptom_other: str | None = None
    cause_code: str | None = Field(default=None, max_length=60)
    cause_other: str | None = None
    root_cause_text: str | None = None
    remedy_code: str | None = Field(default=None, max_length=60)
    remedy_other: str | None = None
    solution_summary: str | None = None
    preventive_recommendation: str | None = None


class ResolutionRead(ResolutionUpsert):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    service_order_id: UUID
    has_cause: bool
    has_remedy: bool
    updated_at: datetime


class AssignmentCreate(BaseModel):
    user_id: UUID
    role: AssignmentRole = AssignmentRole.technician


class AssignmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    service_order_id: UUID
    user_id: UUID
    role: AssignmentRole
    state: AssignmentState
    assigned_at: datetime
    removed_at: datetime | None = None


class AuditEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    seq: int
    at: datetime
    by_user_id: UUID | None = None
    field: str
    part: str | None = None
    from_value: Any = Field(default=None, serialization_alias="from")
    to_value: Any = Field(default=None, serialization_alias="to")
