"""Destination-based phase transitions.

Thin layer over the FSM in fsm.py. Callers name the phase they want to
reach; this module maps it to the matching trigger. All transition logic
lives in fsm.py - this module provides:
- parse_phase() for untrusted phase strings
- transition() that applies a move to a Feature or raises InvalidTransition
- can_transition() / valid_targets() queries

Usage:
    from phaseflow.workflow.state_machine import transition
    from phaseflow.lib.models import Phase

    transition(feature, Phase.TECH_SPEC)
"""

import logging

from transitions import MachineError

from phaseflow.lib.models import Feature, FeatureType, Phase
from phaseflow.workflow.fsm import TRIGGER_FOR, VALID_TRANSITIONS, FeatureFSM

logger = logging.getLogger(__name__)


class InvalidTransition(Exception):
    """Raised when attempting a move that isn't in the transition table."""

    def __init__(self, from_phase: str, to_phase: str, feature_id: str = ""):
        self.from_phase = from_phase
        self.to_phase = to_phase
        self.feature_id = feature_id
        super().__init__(
            f"Invalid transition: {from_phase} -> {to_phase}"
            + (f" (feature: {feature_id})" if feature_id else "")
        )


def parse_phase(value: str | Phase | None) -> Phase | None:
    """Parse a phase string into the Phase enum.

    Returns None if the phase is unknown.
    """
    if value is None:
        return None
    if isinstance(value, Phase):
        return value
    for phase in Phase:
        if phase.value == value:
            return phase
    return None


def parse_feature_type(value: str | FeatureType | None) -> FeatureType | None:
    """Same as parse_phase, for feature types."""
    if value is None or isinstance(value, FeatureType):
        return value
    for kind in FeatureType:
        if kind.value == value:
            return kind
    return None


def can_transition(from_phase: Phase, to_phase: Phase) -> bool:
    """Check the table for a from -> to edge.

    Same-phase moves are not edges; callers treat them as no-ops.
    """
    return Phase(to_phase) in VALID_TRANSITIONS[Phase(from_phase)]


def valid_targets(from_phase: Phase) -> list[Phase]:
    """Allowed destinations from a phase, in workflow order."""
    return [p for p in Phase if p in VALID_TRANSITIONS[Phase(from_phase)]]


def transition(feature: Feature, to_phase: Phase) -> str:
    """Move feature to to_phase through the FSM.

    Returns:
        The trigger that fired

    Raises:
        InvalidTransition: If there is no edge from the current phase
    """
    current = Phase(feature.phase)
    to_phase = Phase(to_phase)

    trigger = TRIGGER_FOR.get((current.value, to_phase.value))
    if trigger is None:
        raise InvalidTransition(current.value, to_phase.value, feature.id)

    fsm = FeatureFSM(feature)
    try:
        getattr(fsm, trigger)()
    except MachineError as e:
        raise InvalidTransition(current.value, to_phase.value, feature.id) from e
    return trigger
