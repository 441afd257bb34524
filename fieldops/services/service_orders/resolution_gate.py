"""Resolution gate for terminal service-order statuses.

Completing, closing or canceling an order requires a resolution record that
names both a cause and a remedy.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from fieldops.models.service_orders import (
    TERMINAL_STATUSES,
    ServiceOrder,
    ServiceOrderResolution,
    ServiceOrderStatus,
)
from fieldops.services.service_orders.errors import ServiceOrderConflictError


@dataclass(frozen=True)
class ResolutionCheck:
    has_cause: bool
    has_remedy: bool

    @property
    def complete(self) -> bool:
        return self.has_cause and self.has_remedy


def check_resolution(db: Session, order: ServiceOrder) -> ResolutionCheck:
    resolution = (
        db.query(ServiceOrderResolution)
        .filter(ServiceOrderResolution.tenant_id == order.tenant_id)
        .filter(ServiceOrderResolution.service_order_id == order.id)
        .one_or_none()
    )
    if resolution is None:
        return ResolutionCheck(has_cause=False, has_remedy=False)
    return ResolutionCheck(has_cause=resolution.has_cause, has_remedy=resolution.has_remedy)


def ensure_resolution_for(db: Session, order: ServiceOrder, requested: ServiceOrderStatus) -> None:
    if requested not in TERMINAL_STATUSES:
        return
    check = check_resolution(db, order)
    if check.complete:
        return
    missing = [name for name, present in (("cause", check.has_cause), ("remedy", check.has_remedy)) if not present]
    raise ServiceOrderConflictError(
        "resolution_incomplete",
        f"Cannot set status {requested.value}: resolution is missing {' and '.join(missing)}",
        payload={"missing": missing},
    )
