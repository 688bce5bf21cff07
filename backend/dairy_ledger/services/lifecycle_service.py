# Overview: Status vocabularies and transition rules for every stateful entity.

"""
Dairy Ledger Status Lifecycles

================================================================================
PURPOSE: One place that says which status values exist and which moves are legal
================================================================================

STATE MACHINES:
    TruckLoad:       loaded -> reconciled
    Allowance pool:  pending -> allocated -> finalized
                     allocated -> pending   (last allocation removed)
                     pending -> finalized   (empty pool closed out)
    Reconciliation:  in_progress -> completed -> finalized
                     in_progress -> finalized is forbidden (completed is reached
                     implicitly once every truck out is verified)

RULES:
1. Terminal states (reconciled, finalized) have no outgoing transitions
2. Services call require_transition() before writing a new status
3. Status strings are never compared ad hoc outside this module's constants
================================================================================
"""

from __future__ import annotations

from ..validation import ConflictError, ValidationError


LOAD_LOADED = "loaded"
LOAD_RECONCILED = "reconciled"

ALLOWANCE_PENDING = "pending"
ALLOWANCE_ALLOCATED = "allocated"
ALLOWANCE_FINALIZED = "finalized"

RECON_IN_PROGRESS = "in_progress"
RECON_COMPLETED = "completed"
RECON_FINALIZED = "finalized"


class Lifecycle:
    """A closed set of statuses plus the allowed (from, to) pairs."""

    def __init__(self, entity: str, statuses: set[str], transitions: set[tuple[str, str]]):
        self.entity = entity
        self.statuses = frozenset(statuses)
        self.transitions = frozenset(transitions)

    def validate_status(self, status: str) -> None:
        if status not in self.statuses:
            raise ValidationError(
                f"Invalid {self.entity} status '{status}'. Must be one of: {', '.join(sorted(self.statuses))}"
            )

    def can_transition(self, from_status: str, to_status: str) -> bool:
        self.validate_status(from_status)
        self.validate_status(to_status)
        return (from_status, to_status) in self.transitions

    def is_terminal(self, status: str) -> bool:
        self.validate_status(status)
        return not any(src == status for src, _ in self.transitions)

    def require_transition(self, from_status: str, to_status: str) -> None:
        if not self.can_transition(from_status, to_status):
            raise ConflictError(
                f"Cannot move {self.entity} from '{from_status}' to '{to_status}'",
                details={"current_status": from_status, "requested_status": to_status},
            )


TRUCK_LOAD = Lifecycle(
    "truck load",
    {LOAD_LOADED, LOAD_RECONCILED},
    {(LOAD_LOADED, LOAD_RECONCILED)},
)

ALLOWANCE = Lifecycle(
    "allowance",
    {ALLOWANCE_PENDING, ALLOWANCE_ALLOCATED, ALLOWANCE_FINALIZED},
    {
        (ALLOWANCE_PENDING, ALLOWANCE_ALLOCATED),
        (ALLOWANCE_ALLOCATED, ALLOWANCE_PENDING),
        (ALLOWANCE_PENDING, ALLOWANCE_FINALIZED),
        (ALLOWANCE_ALLOCATED, ALLOWANCE_FINALIZED),
    },
)

RECONCILIATION = Lifecycle(
    "reconciliation",
    {RECON_IN_PROGRESS, RECON_COMPLETED, RECON_FINALIZED},
    {
        (RECON_IN_PROGRESS, RECON_COMPLETED),
        (RECON_COMPLETED, RECON_FINALIZED),
    },
)
