from fastapi import Header, HTTPException

from fieldops.db import get_db
from fieldops.models.users import UserRole
from fieldops.services.common import coerce_uuid, validate_enum
from fieldops.services.service_orders.context import ActorContext

__all__ = ["get_actor", "get_db"]


def get_actor(
    x_tenant_id: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> ActorContext:
    """Build the actor context from headers set by the upstream gateway.

    The gateway authenticates the caller; these headers are trusted as is.
    """
    if not x_tenant_id or not x_user_id or not x_user_role:
        raise HTTPException(status_code=401, detail="Missing actor headers")
    return ActorContext(
        tenant_id=coerce_uuid(x_tenant_id),
        user_id=coerce_uuid(x_user_id),
        role=validate_enum(x_user_role.strip().lower(), UserRole, "role"),
    )
