# Overview: Pytest coverage for status vocabularies and transition rules.

import pytest

from dairy_ledger.services import lifecycle_service as lifecycle
from dairy_ledger.validation import ConflictError, ValidationError


@pytest.mark.parametrize("machine,status", [
    (lifecycle.TRUCK_LOAD, lifecycle.LOAD_RECONCILED),
    (lifecycle.ALLOWANCE, lifecycle.ALLOWANCE_FINALIZED),
    (lifecycle.RECONCILIATION, lifecycle.RECON_FINALIZED),
])
def test_terminal_states_have_no_exits(machine, status):
    assert machine.is_terminal(status)
    for target in machine.statuses:
        assert not machine.can_transition(status, target)


def test_allocated_pool_can_fall_back_to_pending():
    assert not lifecycle.ALLOWANCE.is_terminal(lifecycle.ALLOWANCE_ALLOCATED)
    lifecycle.ALLOWANCE.require_transition(lifecycle.ALLOWANCE_ALLOCATED, lifecycle.ALLOWANCE_PENDING)


def test_reconciliation_cannot_skip_completed():
    with pytest.raises(ConflictError) as exc:
        lifecycle.RECONCILIATION.require_transition(lifecycle.RECON_IN_PROGRESS, lifecycle.RECON_FINALIZED)

    assert exc.value.details == {"current_status": "in_progress", "requested_status": "finalized"}


def test_unknown_status_is_a_validation_error():
    with pytest.raises(ValidationError):
        lifecycle.TRUCK_LOAD.is_terminal("parked")
