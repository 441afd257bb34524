"""Actor context passed explicitly to every service-order operation."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from fieldops.models.users import UserRole


@dataclass(frozen=True)
class ActorContext:
    """Trusted ``(tenant, user, role)`` triple resolved upstream of this core."""

    tenant_id: uuid.UUID
    user_id: uuid.UUID
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin

    @property
    def is_tech(self) -> bool:
        return self.role == UserRole.tech
