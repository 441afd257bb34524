"""Base query builder class.

Provides the tenant-scoped, chainable query operations that all query
builders inherit.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar, Generic, Self, TypeVar

from sqlalchemy import asc, desc
from sqlalchemy.orm import Query

from fieldops.services.common import coerce_uuid

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.orm import Session

T = TypeVar("T")


class BaseQuery(Generic[T]):
    """Base class for composable, tenant-scoped query builders.

    Every builder is bound to one tenant at construction time; rows of other
    tenants are never visible through it.

    Subclasses should:
    1. Set `model_class` to the SQLAlchemy model (it must have `tenant_id`)
    2. Define `ordering_fields` mapping column names to model attributes
    3. Implement domain-specific filter methods
    """

    model_class: type[T]
    ordering_fields: ClassVar[dict[str, Any]] = {}

    def __init__(self, db: Session, tenant_id: UUID | str):
        self.db = db
        self.tenant_id = coerce_uuid(tenant_id)
        self._query: Query = db.query(self.model_class).filter(
            self.model_class.tenant_id == self.tenant_id
        )

    def _clone(self) -> Self:
        new = self.__class__.__new__(self.__class__)
        new.db = self.db
        new.tenant_id = self.tenant_id
        new._query = self._query
        return new

    def _filter(self, *criteria) -> Self:
        clone = self._clone()
        clone._query = clone._query.filter(*criteria)
        return clone

    # -------------------------------------------------------------------------
    # Common filters
    # -------------------------------------------------------------------------

    def by_id(self, id: UUID | str) -> Self:
        return self._filter(self.model_class.id == coerce_uuid(id))

    def active_only(self, active: bool = True) -> Self:
        """Filter by is_active flag, when the model has one."""
        is_active_col = getattr(self.model_class, "is_active", None)
        if is_active_col is None:
            return self
        return self._filter(is_active_col.is_(active))

    def for_update(self) -> Self:
        """Lock the selected rows until the surrounding transaction ends."""
        clone = self._clone()
        clone._query = clone._query.with_for_update()
        return clone

    # -------------------------------------------------------------------------
    # Ordering & pagination
    # -------------------------------------------------------------------------

    def order_by(self, field: str, direction: str = "asc") -> Self:
        column = self.ordering_fields.get(field)
        if column is None:
            return self
        clone = self._clone()
        if direction.lower() == "desc":
            clone._query = clone._query.order_by(desc(column))
        else:
            clone._query = clone._query.order_by(asc(column))
        return clone

    def paginate(self, limit: int = 50, offset: int = 0) -> Self:
        clone = self._clone()
        if limit > 0:
            clone._query = clone._query.limit(limit)
        if offset > 0:
            clone._query = clone._query.offset(offset)
        return clone

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def all(self) -> list[T]:
        return self._query.all()

    def first(self) -> T | None:
        return self._query.first()

    def one_or_none(self) -> T | None:
        return self._query.one_or_none()

    def count(self) -> int:
        return self._query.count()

    def exists(self) -> bool:
        return self.db.query(self._query.exists()).scalar()

    def query(self) -> Query:
        return self._query
