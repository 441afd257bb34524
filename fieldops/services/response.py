from __future__ import annotations

from typing import Any


class ListResponseMixin:
    """Adds ``list_response`` to service classes exposing ``list``.

    ``list`` must take ``limit`` and ``offset`` as its last two arguments.
    """

    @classmethod
    def list_response(cls, db, *args, **kwargs) -> dict[str, Any]:
        items = cls.list(db, *args, **kwargs)
        limit = kwargs.get("limit", args[-2] if len(args) >= 2 else None)
        offset = kwargs.get("offset", args[-1] if len(args) >= 2 else None)
        return {"items": items, "count": len(items), "limit": limit, "offset": offset}
