"""Prometheus custom metrics for the Workflow Service."""

from prometheus_client import Counter

# --- Item Operations ---
ITEM_OPERATIONS = Counter(
    "workflow_item_operations_total",
    "Total item operations",
    ["operation"],  # create / get / list / history / reconcile
)

# --- Status Transitions ---
STATUS_TRANSITIONS = Counter(
    "workflow_status_transitions_total",
    "Total successful status transitions",
    ["kind", "from_status", "to_status"],
)

REJECTED_TRANSITIONS = Counter(
    "workflow_rejected_transitions_total",
    "Total transitions refused by the state machine",
    ["kind", "error"],
)

CAS_CONFLICTS = Counter(
    "workflow_cas_conflicts_total",
    "Total conditional status updates lost to a concurrent writer",
    ["kind"],
)

# --- Audit trail integrity ---
PARTIAL_FAILURES = Counter(
    "workflow_partial_failures_total",
    "Status changes committed without their audit record",
    ["kind"],
)

CORRUPT_HISTORIES = Counter(
    "workflow_corrupt_histories_total",
    "History reads that found a broken transition chain",
)

# --- Notifications ---
NOTIFICATIONS = Counter(
    "workflow_notifications_total",
    "Total transition notifications sent",
    ["status"],  # success / error / disabled
)
