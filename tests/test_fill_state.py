"""
Unit tests for executor/fill_state.py -- execution and leg state machines.
"""

import pytest

from executor.fill_state import (
    ExecutionState,
    LegState,
    can_transition_to,
    is_terminal_state,
    outcome_for_legs,
    transition_leg,
    transition_to,
)


class TestExecutionTransitions:
    @pytest.mark.parametrize("target", [
        ExecutionState.BOTH_FILLED,
        ExecutionState.BOTH_REJECTED,
        ExecutionState.ASYMMETRIC,
        ExecutionState.ABORTED,
    ])
    def test_pending_to_terminal(self, target):
        assert can_transition_to(ExecutionState.PENDING, target)
        assert transition_to(ExecutionState.PENDING, target) == target

    def test_terminal_states_are_final(self):
        for state in ExecutionState:
            if state == ExecutionState.PENDING:
                assert not is_terminal_state(state)
                continue
            assert is_terminal_state(state)
            with pytest.raises(ValueError, match="Invalid state transition"):
                transition_to(state, ExecutionState.PENDING)

    def test_non_enum_rejected(self):
        with pytest.raises(ValueError):
            can_transition_to("pending", ExecutionState.ABORTED)
        with pytest.raises(ValueError):
            can_transition_to(ExecutionState.PENDING, "aborted")

    def test_string_values(self):
        assert ExecutionState.ASYMMETRIC == "asymmetric"
        assert ExecutionState.BOTH_FILLED.value == "both_filled"


class TestLegTransitions:
    def test_pending_resolves_once(self):
        assert transition_leg(LegState.PENDING, LegState.FILLED) == LegState.FILLED
        assert transition_leg(LegState.PENDING, LegState.PARTIAL) == LegState.PARTIAL
        with pytest.raises(ValueError):
            transition_leg(LegState.FILLED, LegState.REJECTED)

    def test_non_enum_rejected(self):
        with pytest.raises(ValueError):
            transition_leg("pending", LegState.FILLED)


class TestOutcomeForLegs:
    def test_both_filled(self):
        assert outcome_for_legs(LegState.FILLED, LegState.FILLED) == ExecutionState.BOTH_FILLED

    def test_both_rejected(self):
        assert outcome_for_legs(LegState.REJECTED, LegState.REJECTED) == ExecutionState.BOTH_REJECTED

    @pytest.mark.parametrize("buy,sell", [
        (LegState.FILLED, LegState.REJECTED),
        (LegState.REJECTED, LegState.FILLED),
    ])
    def test_one_leg_is_asymmetric(self, buy, sell):
        assert outcome_for_legs(buy, sell) == ExecutionState.ASYMMETRIC

    @pytest.mark.parametrize("buy,sell", [
        (LegState.PARTIAL, LegState.REJECTED),
        (LegState.REJECTED, LegState.PARTIAL),
        (LegState.PARTIAL, LegState.PARTIAL),
        (LegState.FILLED, LegState.PARTIAL),
    ])
    def test_partial_leg_is_asymmetric(self, buy, sell):
        assert outcome_for_legs(buy, sell) == ExecutionState.ASYMMETRIC

    def test_unresolved_leg_raises(self):
        with pytest.raises(ValueError, match="not resolved"):
            outcome_for_legs(LegState.PENDING, LegState.FILLED)
