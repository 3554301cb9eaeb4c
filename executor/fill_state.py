"""
Execution state machine for two-leg fill-or-kill execution.

Defines states for one execution attempt and for each of its legs, plus the
valid transitions between them. Used by executor/cross_platform.py.
"""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class ExecutionState(str, Enum):
    """
    States for one execution attempt.

    State flow:
    - PENDING: pre-flight running or legs in flight
    - BOTH_FILLED: both legs filled, hedged position opened
    - BOTH_REJECTED: neither leg filled, nothing changed
    - ASYMMETRIC: exactly one leg filled or a leg filled partially, unhedged exposure (critical)
    - ABORTED: no orders placed (breaker paused, mapping not tradeable or pre-flight failed)
    """
    PENDING = "pending"
    BOTH_FILLED = "both_filled"
    BOTH_REJECTED = "both_rejected"
    ASYMMETRIC = "asymmetric"
    ABORTED = "aborted"


class LegState(str, Enum):
    """
    States for one FOK leg. A leg that times out or raises is REJECTED.
    PARTIAL means the venue broke the FOK contract and reported fewer
    contracts than ordered; it carries exposure like FILLED does.
    """
    PENDING = "pending"
    FILLED = "filled"
    PARTIAL = "partial"
    REJECTED = "rejected"


_VALID_TRANSITIONS: dict[ExecutionState, set[ExecutionState]] = {
    ExecutionState.PENDING: {
        ExecutionState.BOTH_FILLED,
        ExecutionState.BOTH_REJECTED,
        ExecutionState.ASYMMETRIC,
        ExecutionState.ABORTED,
    },
    ExecutionState.BOTH_FILLED: set(),  # Terminal
    ExecutionState.BOTH_REJECTED: set(),  # Terminal
    ExecutionState.ASYMMETRIC: set(),  # Terminal, manual intervention
    ExecutionState.ABORTED: set(),  # Terminal
}

_VALID_LEG_TRANSITIONS: dict[LegState, set[LegState]] = {
    LegState.PENDING: {LegState.FILLED, LegState.PARTIAL, LegState.REJECTED},
    LegState.FILLED: set(),
    LegState.PARTIAL: set(),
    LegState.REJECTED: set(),
}


def can_transition_to(from_state: ExecutionState, to_state: ExecutionState) -> bool:
    """
    Check if an execution state transition is valid.

    Raises:
        ValueError: If either argument is not an ExecutionState
    """
    if not isinstance(from_state, ExecutionState):
        raise ValueError(f"Invalid from_state: {from_state}")
    if not isinstance(to_state, ExecutionState):
        raise ValueError(f"Invalid to_state: {to_state}")
    return to_state in _VALID_TRANSITIONS.get(from_state, set())


def transition_to(from_state: ExecutionState, to_state: ExecutionState) -> ExecutionState:
    """
    Perform a state transition, returning the new state.

    Raises:
        ValueError: If transition is invalid
    """
    if not can_transition_to(from_state, to_state):
        raise ValueError(f"Invalid state transition: {from_state.value} -> {to_state.value}")
    logger.debug("Execution state: %s -> %s", from_state.value, to_state.value)
    return to_state


def transition_leg(from_state: LegState, to_state: LegState) -> LegState:
    if not isinstance(from_state, LegState) or not isinstance(to_state, LegState):
        raise ValueError(f"Invalid leg transition: {from_state} -> {to_state}")
    if to_state not in _VALID_LEG_TRANSITIONS[from_state]:
        raise ValueError(f"Invalid leg transition: {from_state.value} -> {to_state.value}")
    return to_state


def is_terminal_state(state: ExecutionState) -> bool:
    return not _VALID_TRANSITIONS.get(state)


def outcome_for_legs(buy: LegState, sell: LegState) -> ExecutionState:
    """Map resolved leg states to the execution's terminal state."""
    if LegState.PENDING in (buy, sell):
        raise ValueError(f"Legs not resolved: buy={buy.value} sell={sell.value}")
    if buy == LegState.FILLED and sell == LegState.FILLED:
        return ExecutionState.BOTH_FILLED
    if buy == LegState.REJECTED and sell == LegState.REJECTED:
        return ExecutionState.BOTH_REJECTED
    return ExecutionState.ASYMMETRIC
