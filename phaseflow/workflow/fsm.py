"""Feature phase state machine using transitions library.

Every feature type shares one table. Forward edges move a single phase;
review and testing can send a feature back to implementation. 'complete'
is terminal.

Usage:
    from phaseflow.workflow.fsm import FeatureFSM

    fsm = FeatureFSM(feature)
    fsm.specify()          # product_refinement -> tech_spec
    fsm.reject_review()    # review -> implementation
"""

import logging
from typing import Callable

from transitions import Machine

from phaseflow.lib.models import Feature, Phase, utc_now

logger = logging.getLogger(__name__)


STATES = [p.value for p in Phase]

_EDGES = [
    # trigger          source                dest
    ("refine",         "created",            "product_refinement"),
    ("specify",        "product_refinement", "tech_spec"),
    ("implement",      "tech_spec",          "implementation"),
    ("submit_review",  "implementation",     "review"),
    ("approve_review", "review",             "testing"),
    ("reject_review",  "review",             "implementation"),
    ("pass_testing",   "testing",            "complete"),
    ("fail_testing",   "testing",            "implementation"),
]

TRANSITIONS = [{"trigger": t, "source": s, "dest": d} for t, s, d in _EDGES]

# (source, dest) -> trigger; callers ask for a destination, the machine wants a trigger
TRIGGER_FOR: dict[tuple[str, str], str] = {}
for _trigger, _source, _dest in _EDGES:
    TRIGGER_FOR.setdefault((_source, _dest), _trigger)

VALID_TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    phase: frozenset(Phase(d) for (s, d) in TRIGGER_FOR if s == phase.value)
    for phase in Phase
}


def reachable_phases(start: Phase) -> set[Phase]:
    """Closure of start under VALID_TRANSITIONS (start included)."""
    seen = {Phase(start)}
    stack = list(seen)
    while stack:
        for nxt in VALID_TRANSITIONS[stack.pop()] - seen:
            seen.add(nxt)
            stack.append(nxt)
    return seen


class FeatureFSM:
    """Drives one Feature's phase.

    The machine starts at the feature's recorded phase. A fired trigger
    writes the new phase onto the Feature, clears any block and bumps
    updated_at; persisting the ledger is left to the caller.
    """

    def __init__(self, feature: Feature, on_transition: Callable[[str, str, str], None] | None = None):
        """
        Args:
            feature: ledger entry to drive
            on_transition: called as (from_phase, to_phase, trigger) after each move
        """
        self.feature = feature
        self.on_transition = on_transition

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=Phase(feature.phase).value,
            auto_transitions=False,
            send_event=True,
            after_state_change="_moved",
        )

    def _moved(self, event) -> None:
        source, dest = event.transition.source, event.transition.dest
        trigger = event.event.name
        logger.info(f"[FSM] {self.feature.id}: {source} -> {dest} ({trigger})")

        feature = self.feature
        feature.phase = Phase(dest)
        feature.blocked_reason = None
        feature.updated_at = utc_now()

        if self.on_transition is not None:
            self.on_transition(source, dest, trigger)

    def get_available_triggers(self) -> list[str]:
        """Triggers that can fire from the current phase."""
        return self.machine.get_triggers(self.state)

    def can(self, trigger: str) -> bool:
        return trigger in self.get_available_triggers()
