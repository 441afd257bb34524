"""Permission helpers for service-order workflows."""

from __future__ import annotations

from fieldops.models.users import UserRole
from fieldops.services.service_orders.context import ActorContext

_DISPATCH_ROLES = frozenset({UserRole.admin, UserRole.supervisor})


def can_dispatch(ctx: ActorContext) -> bool:
    """Create orders, schedule them and manage assignments."""
    return ctx.role in _DISPATCH_ROLES


def can_edit_order(ctx: ActorContext, *, is_assigned_technician: bool) -> bool:
    """Edit checkpoints, form data, resolution and descriptive fields."""
    if ctx.role in _DISPATCH_ROLES:
        return True
    return ctx.role == UserRole.tech and is_assigned_technician


def can_work_order(ctx: ActorContext, *, is_assigned_technician: bool) -> bool:
    """Start a manual work session on an order."""
    if ctx.role == UserRole.admin:
        return True
    return ctx.role == UserRole.tech and is_assigned_technician

