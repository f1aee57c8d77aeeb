"""Initiative lifecycle state machine using transitions library.

Sixteen stages: draft, tierN_active/approved/blocked for tiers 1-3, tier4
with an extra review stage, and the terminal completed/cancelled stages.

Usage:
    from initflow.workflow.fsm import InitiativeFSM

    fsm = InitiativeFSM(state, state_path)
    fsm.start()     # draft -> tier1_active
    fsm.approve()   # tier1_active -> tier1_approved
    fsm.advance()   # tier1_approved -> tier2_active
"""

import logging
from pathlib import Path
from typing import Callable

from transitions import Machine

from initflow.lib.documents import now_iso
from initflow.workflow.initiative import InitiativeState, StageTransition, write_state_file

logger = logging.getLogger(__name__)


STATES = [
    "draft",
    "tier1_active",
    "tier1_approved",
    "tier1_blocked",
    "tier2_active",
    "tier2_approved",
    "tier2_blocked",
    "tier3_active",
    "tier3_approved",
    "tier3_blocked",
    "tier4_active",
    "tier4_review",
    "tier4_approved",
    "tier4_blocked",
    "completed",
    "cancelled",
]

TERMINAL_STATES = ("completed", "cancelled")

# Transitions defined as (trigger, source, dest), grouped by source stage.
# Each trigger becomes a method on the FSM
TRANSITIONS = [
    {"trigger": "start", "source": "draft", "dest": "tier1_active"},
    {"trigger": "cancel", "source": "draft", "dest": "cancelled"},

    # Tier 1: strategic review
    {"trigger": "approve", "source": "tier1_active", "dest": "tier1_approved"},
    {"trigger": "block", "source": "tier1_active", "dest": "tier1_blocked"},
    {"trigger": "cancel", "source": "tier1_active", "dest": "cancelled"},
    {"trigger": "advance", "source": "tier1_approved", "dest": "tier2_active"},
    {"trigger": "unblock", "source": "tier1_blocked", "dest": "tier1_active"},
    {"trigger": "cancel", "source": "tier1_blocked", "dest": "cancelled"},

    # Tier 2: product planning
    {"trigger": "approve", "source": "tier2_active", "dest": "tier2_approved"},
    {"trigger": "block", "source": "tier2_active", "dest": "tier2_blocked"},
    {"trigger": "escalate", "source": "tier2_active", "dest": "tier1_active"},
    {"trigger": "advance", "source": "tier2_approved", "dest": "tier3_active"},
    {"trigger": "unblock", "source": "tier2_blocked", "dest": "tier2_active"},
    {"trigger": "escalate", "source": "tier2_blocked", "dest": "tier1_active"},

    # Tier 3: technical design
    {"trigger": "approve", "source": "tier3_active", "dest": "tier3_approved"},
    {"trigger": "block", "source": "tier3_active", "dest": "tier3_blocked"},
    {"trigger": "escalate", "source": "tier3_active", "dest": "tier2_active"},
    {"trigger": "advance", "source": "tier3_approved", "dest": "tier4_active"},
    {"trigger": "unblock", "source": "tier3_blocked", "dest": "tier3_active"},
    {"trigger": "escalate", "source": "tier3_blocked", "dest": "tier2_active"},

    # Tier 4: implementation, with a review step before approval
    {"trigger": "submit_review", "source": "tier4_active", "dest": "tier4_review"},
    {"trigger": "block", "source": "tier4_active", "dest": "tier4_blocked"},
    {"trigger": "escalate", "source": "tier4_active", "dest": "tier3_active"},
    {"trigger": "approve", "source": "tier4_review", "dest": "tier4_approved"},
    {"trigger": "request_changes", "source": "tier4_review", "dest": "tier4_active"},
    {"trigger": "complete", "source": "tier4_approved", "dest": "completed"},
    {"trigger": "unblock", "source": "tier4_blocked", "dest": "tier4_active"},
    {"trigger": "escalate", "source": "tier4_blocked", "dest": "tier3_active"},
]

# Destination stages that can only be entered through a gate
GATE_REQUIREMENTS = {
    "tier1_approved": "strategic",
    "tier2_approved": "product",
    "tier3_approved": "design",
    "tier4_approved": "implementation",
}


# Pre-computed lookup: (source, dest) -> trigger name
def _build_trigger_lookup() -> dict[tuple[str, str], str]:
    """Build lookup from (source, dest) -> trigger name."""
    lookup: dict[tuple[str, str], str] = {}
    for t in TRANSITIONS:
        key = (t["source"], t["dest"])
        if key not in lookup:
            lookup[key] = t["trigger"]
    return lookup


TRIGGER_FOR = _build_trigger_lookup()


class InitiativeFSM:
    """State machine for one initiative's stage.

    Wraps the transitions library with initiative-specific logic:
    - Starts from the stage recorded in the loaded state
    - Records history and persists state.yaml after every transition
    - Logs all transitions
    """

    def __init__(
        self,
        state: InitiativeState,
        state_path: Path,
        on_transition: Callable[[str, str, str], None] | None = None,
    ):
        """Initialize FSM for an initiative.

        Args:
            state: Loaded initiative state (mutated on transition)
            state_path: Where state.yaml is written back
            on_transition: Optional callback(from_stage, to_stage, trigger) called after transitions
        """
        if state.stage not in STATES:
            raise ValueError(f"Unknown stage '{state.stage}' for initiative {state.metadata.id}")

        self.initiative = state
        self.state_path = state_path
        self.initiative_id = state.metadata.id
        self.on_transition = on_transition

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=state.stage,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        """Callback after any state transition.

        Updates the stage, stamps updated_at, appends history and writes
        state.yaml.
        """
        from_stage = event.transition.source
        to_stage = event.transition.dest
        trigger = event.event.name
        timestamp = now_iso()

        logger.info(f"[FSM] {self.initiative_id}: {from_stage} -> {to_stage} ({trigger})")

        self.initiative.stage = to_stage
        self.initiative.metadata.updated_at = timestamp
        self.initiative.history.append(
            StageTransition(
                from_stage=from_stage,
                to=to_stage,
                timestamp=timestamp,
                gate=GATE_REQUIREMENTS.get(to_stage),
            )
        )
        write_state_file(self.initiative, self.state_path)

        if self.on_transition:
            self.on_transition(from_stage, to_stage, trigger)

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        """Get list of triggers available in current state."""
        return self.machine.get_triggers(self.state)
