"""Six-phase checkpoint chain validation.

The chain runs TAKEN -> ARRIVED -> CHECKIN -> STARTED -> FINISHED -> DELIVERED.
Every set checkpoint needs its immediate predecessor set, and may not be
earlier than it. Clearing is only possible from the tail inward.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from fieldops.services.common import ensure_utc
from fieldops.services.field_patch import CLEAR, UNSET, FieldPatch

CHECKPOINTS: tuple[str, ...] = (
    "taken_at",
    "arrived_at",
    "check_in_at",
    "activity_started_at",
    "activity_finished_at",
    "delivered_at",
)

ViolationCode = Literal["predecessor_missing", "out_of_order", "clear_blocked", "unknown_checkpoint"]


@dataclass(frozen=True)
class ChainViolation:
    code: ViolationCode
    checkpoint: str
    detail: str


@dataclass(frozen=True)
class ChainCheck:
    accepted: bool
    values: dict[str, datetime | None] = field(default_factory=dict)
    changed: tuple[str, ...] = ()
    violation: ChainViolation | None = None


def _reject(code: ViolationCode, checkpoint: str, detail: str) -> ChainCheck:
    return ChainCheck(accepted=False, violation=ChainViolation(code, checkpoint, detail))


def validate_timestamp_chain(
    current: Mapping[str, datetime | None],
    changes: Mapping[str, FieldPatch],
) -> ChainCheck:
    """Validate ``changes`` against ``current`` and return the next state.

    ``current`` maps each checkpoint to its stored value (missing keys count
    as unset). ``changes`` maps checkpoints to UNSET, CLEAR or ``SetTo``.
    """
    for key in changes:
        if key not in CHECKPOINTS:
            return _reject("unknown_checkpoint", key, f"Unknown checkpoint: {key}")

    before = {key: ensure_utc(current.get(key)) for key in CHECKPOINTS}
    after = dict(before)
    for key, patch in changes.items():
        if patch is UNSET:
            continue
        after[key] = None if patch is CLEAR else ensure_utc(patch.value)

    for index, key in enumerate(CHECKPOINTS):
        patch = changes.get(key, UNSET)
        if patch is UNSET:
            continue
        if patch is CLEAR:
            blocking = next((later for later in CHECKPOINTS[index + 1 :] if after[later] is not None), None)
            if blocking is not None:
                return _reject(
                    "clear_blocked",
                    key,
                    f"Cannot clear {key} while {blocking} is set",
                )
            continue
        if index == 0:
            continue
        predecessor = CHECKPOINTS[index - 1]
        if after[predecessor] is None:
            return _reject(
                "predecessor_missing",
                key,
                f"Cannot set {key} before {predecessor}",
            )
        if after[key] < after[predecessor]:
            return _reject(
                "out_of_order",
                key,
                f"{key} must not be earlier than {predecessor}",
            )

    # Full pass: edits to an earlier checkpoint can invalidate later ones.
    for index in range(1, len(CHECKPOINTS)):
        key = CHECKPOINTS[index]
        predecessor = CHECKPOINTS[index - 1]
        if after[key] is None:
            continue
        if after[predecessor] is None:
            return _reject(
                "predecessor_missing",
                key,
                f"{key} is set but {predecessor} is not",
            )
        if after[key] < after[predecessor]:
            return _reject(
                "out_of_order",
                key,
                f"{key} must not be earlier than {predecessor}",
            )

    changed = tuple(key for key in CHECKPOINTS if after[key] != before[key])
    return ChainCheck(accepted=True, values=after, changed=changed)


def chain_values(order) -> dict[str, datetime | None]:
    return {key: ensure_utc(getattr(order, key)) for key in CHECKPOINTS}
