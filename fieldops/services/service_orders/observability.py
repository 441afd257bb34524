"""Prometheus metrics for service-order lifecycle operations."""

from __future__ import annotations

from prometheus_client import Counter

STATUS_TRANSITIONS = Counter(
    "service_order_status_transitions_total",
    "Requested service-order status transitions",
    ["from_status", "to_status", "outcome"],  # outcome: allow, deny, soft_skip, derived
)

WORK_SESSIONS = Counter(
    "service_order_work_sessions_total",
    "Work sessions opened and closed",
    ["action", "source"],  # action: opened, closed, restarted
)

WORK_SESSION_CONFLICTS = Counter(
    "service_order_work_session_conflicts_total",
    "Rejected attempts to open a second session for a technician",
    ["detected_by"],  # detected_by: check, constraint
)

AUDIT_ENTRIES = Counter(
    "service_order_audit_entries_total",
    "Audit ledger entries written and evicted",
    ["action"],  # action: written, evicted
)
