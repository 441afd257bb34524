"""Unified error taxonomy for service-order lifecycle operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fastapi import HTTPException


@dataclass(frozen=True)
class ServiceOrderError(Exception):
    code: str
    detail: str
    status_code: int = 400
    payload: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.detail

    def to_http_exception(self) -> HTTPException:
        detail: dict[str, Any] = {"code": self.code, "detail": self.detail}
        if self.payload:
            detail["payload"] = self.payload
        return HTTPException(status_code=self.status_code, detail=detail)


class ServiceOrderValidationError(ServiceOrderError):
    def __init__(self, code: str, detail: str, payload: dict[str, Any] | None = None):
        super().__init__(code=code, detail=detail, status_code=422, payload=payload or {})


class ServiceOrderPermissionError(ServiceOrderError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=403)


class ServiceOrderConflictError(ServiceOrderError):
    def __init__(self, code: str, detail: str, payload: dict[str, Any] | None = None):
        super().__init__(code=code, detail=detail, status_code=409, payload=payload or {})


class ServiceOrderNotFoundError(ServiceOrderError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=404)
