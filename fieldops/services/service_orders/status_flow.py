"""Service-order status flow rules.

The policy lives in one table keyed by ``(role, current, requested)``.
Admins bypass the table; every other role only gets the edges listed here.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from fieldops.models.service_orders import ServiceOrderStatus
from fieldops.models.users import UserRole


class TransitionOutcome(enum.Enum):
    allow = "allow"
    deny = "deny"
    soft_skip = "soft_skip"


_S = ServiceOrderStatus

_TECH_EDGES: frozenset[tuple[ServiceOrderStatus, ServiceOrderStatus]] = frozenset(
    {
        (_S.open, _S.in_progress),
        (_S.scheduled, _S.in_progress),
        (_S.in_progress, _S.on_hold),
        (_S.on_hold, _S.in_progress),
        (_S.in_progress, _S.completed),
        (_S.on_hold, _S.completed),
    }
)

TECH_TARGETS: frozenset[ServiceOrderStatus] = frozenset({_S.in_progress, _S.on_hold, _S.completed})

_TRANSITION_TABLE: dict[tuple[UserRole, ServiceOrderStatus, ServiceOrderStatus], TransitionOutcome] = {
    (UserRole.tech, current, requested): TransitionOutcome.allow for current, requested in _TECH_EDGES
}

SOFT_SKIP_MESSAGE = (
    "You are not the assigned technician for this service order; "
    "it was left unchanged. Ask a dispatcher to place it on hold."
)


@dataclass(frozen=True)
class TransitionCheck:
    outcome: TransitionOutcome
    reason: str | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome == TransitionOutcome.allow


def is_transition_allowed(
    role: UserRole, current: ServiceOrderStatus, requested: ServiceOrderStatus
) -> bool:
    if role == UserRole.admin:
        return True
    return _TRANSITION_TABLE.get((role, current, requested)) == TransitionOutcome.allow


def validate_transition(
    current: ServiceOrderStatus,
    requested: ServiceOrderStatus,
    role: UserRole,
    is_assigned_technician: bool,
) -> TransitionCheck:
    if role == UserRole.admin:
        return TransitionCheck(TransitionOutcome.allow)
    if role != UserRole.tech:
        return TransitionCheck(
            TransitionOutcome.deny,
            f"Role {role.value} may not change service order status",
        )
    if not is_assigned_technician:
        if requested == ServiceOrderStatus.on_hold:
            return TransitionCheck(TransitionOutcome.soft_skip, SOFT_SKIP_MESSAGE)
        return TransitionCheck(
            TransitionOutcome.deny,
            "Only the assigned technician may change this service order",
        )
    if requested not in TECH_TARGETS:
        return TransitionCheck(
            TransitionOutcome.deny,
            f"Technicians may not set status {requested.value}",
        )
    if not is_transition_allowed(role, current, requested):
        return TransitionCheck(
            TransitionOutcome.deny,
            f"Transition {current.value} -> {requested.value} is not allowed",
        )
    return TransitionCheck(TransitionOutcome.allow)
