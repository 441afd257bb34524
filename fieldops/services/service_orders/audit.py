"""Field-level audit trail for service orders.

Each mutating operation takes a snapshot of the order before and after the
change; ``record_changes`` diffs the two and appends one ledger entry per
changed top-level field, or per changed leaf of a compound field
(checkpoints, form data, resolution, work sessions, parts).

The ledger keeps the most recent ``settings.audit_log_max_entries`` entries
per order. Older entries are deleted on append.
"""

from __future__ import annotations

import enum
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from fieldops.config import settings
from fieldops.models.service_orders import (
    AssignmentRole,
    AssignmentState,
    ServiceOrder,
    ServiceOrderAssignment,
    ServiceOrderAuditEntry,
    ServiceOrderPart,
    ServiceOrderResolution,
)
from fieldops.models.work_logs import WorkLog
from fieldops.services.common import ensure_utc
from fieldops.services.service_orders.context import ActorContext
from fieldops.services.service_orders.observability import AUDIT_ENTRIES
from fieldops.services.service_orders.timestamp_chain import CHECKPOINTS

logger = logging.getLogger(__name__)

ELLIPSIS = "…"

SCALAR_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "service_order_type",
    "asset_code",
    "status",
    "has_issue",
    "due_date",
    "duration_min",
    "is_active",
    "technician_signature",
    "receiver_signature",
)

RESOLUTION_FIELDS: tuple[str, ...] = (
    "symptom_code",
    "symptom_other",
    "cause_code",
    "cause_other",
    "root_cause_text",
    "remedy_code",
    "remedy_other",
    "solution_summary",
    "preventive_recommendation",
)

COMPOUND_FIELDS: tuple[str, ...] = ("timestamps", "form_data", "resolution", "work_logs", "parts")


@dataclass(frozen=True)
class AuditChange:
    field: str
    part: str | None
    from_value: Any
    to_value: Any


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 1] + ELLIPSIS


def normalize_value(value: Any) -> Any:
    """Reduce ``value`` to a JSON primitive or its full JSON text."""
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str, sort_keys=True)


def summarize_value(value: Any, max_length: int | None = None) -> Any:
    """Reduce ``value`` to a JSON primitive or a bounded string summary."""
    max_length = max_length or settings.audit_value_max_length
    normalized = normalize_value(value)
    if isinstance(normalized, str):
        return _truncate(normalized, max_length)
    return normalized


def _flatten_form_data(form_data: dict | None) -> dict[str, Any]:
    leaves: dict[str, Any] = {}
    for key, value in (form_data or {}).items():
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                leaves[f"{key}.{sub_key}"] = normalize_value(sub_value)
        else:
            leaves[str(key)] = normalize_value(value)
    return leaves


def _session_summary(log: WorkLog) -> str:
    started = normalize_value(log.started_at)
    ended = normalize_value(log.ended_at) if log.ended_at else "open"
    return f"{started}/{ended}"


def _part_summary(part: ServiceOrderPart) -> str:
    return normalize_value(
        {
            "inventory_item_id": part.inventory_item_id,
            "free_text": part.free_text,
            "qty": part.qty,
            "notes": part.notes,
        }
    )


def _active_assignee(db: Session, order: ServiceOrder, role: AssignmentRole) -> str | None:
    assignment = (
        db.query(ServiceOrderAssignment)
        .filter(ServiceOrderAssignment.tenant_id == order.tenant_id)
        .filter(ServiceOrderAssignment.service_order_id == order.id)
        .filter(ServiceOrderAssignment.role == role)
        .filter(ServiceOrderAssignment.state == AssignmentState.active)
        .order_by(ServiceOrderAssignment.assigned_at.desc())
        .first()
    )
    return str(assignment.user_id) if assignment else None


def snapshot_order(db: Session, order: ServiceOrder) -> dict[str, Any]:
    """Capture the audited state of ``order`` and its child rows."""
    db.flush()
    snapshot: dict[str, Any] = {name: normalize_value(getattr(order, name)) for name in SCALAR_FIELDS}
    snapshot["technician_id"] = _active_assignee(db, order, AssignmentRole.technician)
    snapshot["supervisor_id"] = _active_assignee(db, order, AssignmentRole.supervisor)
    snapshot["timestamps"] = {key: normalize_value(getattr(order, key)) for key in CHECKPOINTS}
    snapshot["form_data"] = _flatten_form_data(order.form_data)

    resolution = (
        db.query(ServiceOrderResolution)
        .filter(ServiceOrderResolution.tenant_id == order.tenant_id)
        .filter(ServiceOrderResolution.service_order_id == order.id)
        .one_or_none()
    )
    snapshot["resolution"] = (
        {name: normalize_value(getattr(resolution, name)) for name in RESOLUTION_FIELDS}
        if resolution
        else {}
    )

    logs = (
        db.query(WorkLog)
        .filter(WorkLog.tenant_id == order.tenant_id)
        .filter(WorkLog.service_order_id == order.id)
        .all()
    )
    snapshot["work_logs"] = {str(log.id): _session_summary(log) for log in logs}

    parts = (
        db.query(ServiceOrderPart)
        .filter(ServiceOrderPart.tenant_id == order.tenant_id)
        .filter(ServiceOrderPart.service_order_id == order.id)
        .all()
    )
    snapshot["parts"] = {str(part.id): _part_summary(part) for part in parts}
    return snapshot


def _change(field: str, part: str | None, old_value: Any, new_value: Any) -> AuditChange:
    return AuditChange(field, part, summarize_value(old_value), summarize_value(new_value))


def diff_snapshots(before: dict[str, Any], after: dict[str, Any]) -> list[AuditChange]:
    """Compare full snapshot values; only the recorded values are truncated."""
    changes: list[AuditChange] = []
    for name in after:
        if name in COMPOUND_FIELDS:
            old_leaves = before.get(name) or {}
            new_leaves = after.get(name) or {}
            ordered_keys = list(new_leaves) + [key for key in old_leaves if key not in new_leaves]
            for key in ordered_keys:
                old_value = old_leaves.get(key)
                new_value = new_leaves.get(key)
                if old_value != new_value:
                    changes.append(_change(name, key, old_value, new_value))
        elif before.get(name) != after.get(name):
            changes.append(_change(name, None, before.get(name), after.get(name)))
    return changes


def append_entries(
    db: Session,
    order: ServiceOrder,
    changes: list[AuditChange],
    *,
    by_user_id: uuid.UUID | None,
    at: datetime,
    max_entries: int | None = None,
) -> list[ServiceOrderAuditEntry]:
    """Append ``changes`` to the order's ledger and evict beyond the cap."""
    if not changes:
        return []
    max_entries = max_entries or settings.audit_log_max_entries
    last_seq = (
        db.query(func.max(ServiceOrderAuditEntry.seq))
        .filter(ServiceOrderAuditEntry.service_order_id == order.id)
        .scalar()
    ) or 0

    entries = []
    for offset, change in enumerate(changes, start=1):
        entry = ServiceOrderAuditEntry(
            tenant_id=order.tenant_id,
            service_order_id=order.id,
            seq=last_seq + offset,
            at=ensure_utc(at),
            by_user_id=by_user_id,
            field=change.field,
            part=change.part,
            from_value=change.from_value,
            to_value=change.to_value,
        )
        db.add(entry)
        entries.append(entry)
    db.flush()
    AUDIT_ENTRIES.labels(action="written").inc(len(entries))

    newest_seq = last_seq + len(entries)
    evicted = (
        db.query(ServiceOrderAuditEntry)
        .filter(ServiceOrderAuditEntry.service_order_id == order.id)
        .filter(ServiceOrderAuditEntry.seq <= newest_seq - max_entries)
        .delete(synchronize_session=False)
    )
    if evicted:
        AUDIT_ENTRIES.labels(action="evicted").inc(evicted)
        logger.info(
            "service_order_audit_evicted order_id=%s evicted=%s kept=%s",
            order.id,
            evicted,
            max_entries,
        )
    return entries


def record_changes(
    db: Session,
    order: ServiceOrder,
    ctx: ActorContext,
    before: dict[str, Any],
    at: datetime,
) -> list[ServiceOrderAuditEntry]:
    """Diff ``before`` against the current state of ``order`` and append."""
    after = snapshot_order(db, order)
    return append_entries(db, order, diff_snapshots(before, after), by_user_id=ctx.user_id, at=at)


def record_event(
    db: Session,
    order: ServiceOrder,
    ctx: ActorContext,
    *,
    field: str,
    to_value: Any,
    at: datetime,
) -> list[ServiceOrderAuditEntry]:
    change = AuditChange(field, None, None, summarize_value(to_value))
    return append_entries(db, order, [change], by_user_id=ctx.user_id, at=at)
