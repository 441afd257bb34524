"""Explicit three-state values for partial updates.

A partial update distinguishes three intents per field:

* ``UNSET``: the key was absent, leave the field untouched.
* ``CLEAR``: the key was sent as null, clear the field.
* ``SetTo(value)``: replace the field with ``value``.

``patch_from`` converts a pydantic payload into these values by looking at
``model_fields_set`` rather than at ``None``, so an explicit null and an
omitted key never collapse into the same thing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from pydantic import BaseModel

T = TypeVar("T")


class _Unset:
    _instance: _Unset | None = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


class _Clear:
    _instance: _Clear | None = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "CLEAR"


UNSET = _Unset()
CLEAR = _Clear()


@dataclass(frozen=True)
class SetTo(Generic[T]):
    value: T


FieldPatch = Union[_Unset, _Clear, SetTo[Any]]


def is_unset(patch: FieldPatch) -> bool:
    return patch is UNSET


def is_clear(patch: FieldPatch) -> bool:
    return patch is CLEAR


def patch_value(patch: FieldPatch, current: Any = None) -> Any:
    """Resolve a patch against the current value of the field."""
    if patch is UNSET:
        return current
    if patch is CLEAR:
        return None
    return patch.value


def patch_from(payload: BaseModel, field: str, *, blank_clears: bool = False) -> FieldPatch:
    if field not in payload.model_fields_set:
        return UNSET
    value = getattr(payload, field)
    if value is None:
        return CLEAR
    if blank_clears and isinstance(value, str) and not value.strip():
        return CLEAR
    return SetTo(value)


def patches_from(payload: BaseModel, fields: tuple[str, ...] | list[str]) -> dict[str, FieldPatch]:
    """Return the non-UNSET patches of ``payload`` for ``fields``."""
    patches: dict[str, FieldPatch] = {}
    for field in fields:
        patch = patch_from(payload, field)
        if patch is not UNSET:
            patches[field] = patch
    return patches
