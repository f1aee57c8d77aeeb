"""Initiative stage transitions with gate enforcement.

Builds on the FSM in fsm.py. All transition edges live there; this module
provides:
- Stage enum for type safety
- can_transition() / apply_transition() which add gate checks and a
  per-initiative lock around the read-validate-write of state.yaml
- Pure stage queries (happy path, escalation target, predicates)

Usage:
    from initflow.workflow.state_machine import apply_transition

    result = apply_transition("my-init", "tier1_active", "tier1_approved", schema)
    if not result.success:
        print(result.error)
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from transitions import MachineError

from initflow.lib.config import get_initiatives_dir
from initflow.lib.locking import initiative_lock
from initflow.workflow.fsm import GATE_REQUIREMENTS, STATES, TERMINAL_STATES, TRANSITIONS, TRIGGER_FOR, InitiativeFSM
from initflow.workflow.gates import GateCheckResult, check_gate
from initflow.workflow.initiative import get_state_path, load_initiative_state
from initflow.workflow.schema import Schema

logger = logging.getLogger(__name__)


class Stage(Enum):
    """All lifecycle stages. Values match FSM state strings."""

    DRAFT = "draft"

    TIER1_ACTIVE = "tier1_active"
    TIER1_APPROVED = "tier1_approved"
    TIER1_BLOCKED = "tier1_blocked"

    TIER2_ACTIVE = "tier2_active"
    TIER2_APPROVED = "tier2_approved"
    TIER2_BLOCKED = "tier2_blocked"

    TIER3_ACTIVE = "tier3_active"
    TIER3_APPROVED = "tier3_approved"
    TIER3_BLOCKED = "tier3_blocked"

    TIER4_ACTIVE = "tier4_active"
    TIER4_REVIEW = "tier4_review"
    TIER4_APPROVED = "tier4_approved"
    TIER4_BLOCKED = "tier4_blocked"

    # Terminal
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def _build_valid_transitions() -> dict[str, list[str]]:
    table: dict[str, list[str]] = {stage: [] for stage in STATES}
    for t in TRANSITIONS:
        if t["dest"] not in table[t["source"]]:
            table[t["source"]].append(t["dest"])
    return table


VALID_TRANSITIONS = _build_valid_transitions()

# Forward progress only; ignores blocked and escalation edges
HAPPY_PATH = {
    "draft": "tier1_active",
    "tier1_active": "tier1_approved",
    "tier1_approved": "tier2_active",
    "tier1_blocked": "tier1_active",
    "tier2_active": "tier2_approved",
    "tier2_approved": "tier3_active",
    "tier2_blocked": "tier2_active",
    "tier3_active": "tier3_approved",
    "tier3_approved": "tier4_active",
    "tier3_blocked": "tier3_active",
    "tier4_active": "tier4_review",
    "tier4_review": "tier4_approved",
    "tier4_approved": "completed",
    "tier4_blocked": "tier4_active",
    "completed": None,
    "cancelled": None,
}

ESCALATION_TARGETS = {
    "tier2_active": "tier1_active",
    "tier2_blocked": "tier1_active",
    "tier3_active": "tier2_active",
    "tier3_blocked": "tier2_active",
    "tier4_active": "tier3_active",
    "tier4_blocked": "tier3_active",
}


@dataclass
class TransitionValidation:
    valid: bool
    reason: Optional[str] = None
    gate_check: Optional[GateCheckResult] = None

    def to_dict(self) -> dict:
        data = {"valid": self.valid}
        if self.reason:
            data["reason"] = self.reason
        if self.gate_check is not None:
            data["gate_check"] = self.gate_check.to_dict()
        return data


@dataclass
class TransitionResult:
    success: bool
    previous_stage: str
    new_stage: str
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "success": self.success,
            "previous_stage": self.previous_stage,
            "new_stage": self.new_stage,
        }
        if self.error:
            data["error"] = self.error
        return data


def parse_stage(value: str | None) -> Stage | None:
    """Parse a stage string into Stage enum.

    Returns None if the stage is unknown.
    """
    if value is None:
        return None
    for stage in Stage:
        if stage.value == value:
            return stage
    return None


def get_valid_transitions(stage: str) -> list[str]:
    return list(VALID_TRANSITIONS.get(stage, []))


def is_valid_transition(from_stage: str, to_stage: str) -> bool:
    """Structural check against the transition table. No gates involved."""
    return (from_stage, to_stage) in TRIGGER_FOR


def can_transition(
    initiative_id: str,
    from_stage: str,
    to_stage: str,
    schema: Optional[Schema] = None,
    base_path: Optional[Path] = None,
) -> TransitionValidation:
    """Check whether a transition is allowed, including its gate.

    Without a schema the gate is not evaluated.
    """
    if not is_valid_transition(from_stage, to_stage):
        valid = get_valid_transitions(from_stage)
        options = ", ".join(valid) if valid else "none"
        return TransitionValidation(
            valid=False,
            reason=f"Invalid transition: {from_stage} -> {to_stage}. Valid transitions: {options}",
        )

    gate_id = GATE_REQUIREMENTS.get(to_stage)
    if gate_id is None:
        return TransitionValidation(valid=True)

    if schema is None:
        logger.warning(
            f"[STATE] {initiative_id}: no schema supplied, skipping '{gate_id}' gate for {from_stage} -> {to_stage}"
        )
        return TransitionValidation(valid=True)

    gate_check = check_gate(initiative_id, gate_id, schema, base_path)
    if not gate_check.passed:
        failing = ", ".join(c.criterion for c in gate_check.failing_criteria)
        return TransitionValidation(
            valid=False,
            reason=f"Gate '{gate_id}' not passed. Failing criteria: {failing}",
            gate_check=gate_check,
        )

    return TransitionValidation(valid=True, gate_check=gate_check)


def apply_transition(
    initiative_id: str,
    from_stage: str,
    to_stage: str,
    schema: Optional[Schema] = None,
    base_path: Optional[Path] = None,
) -> TransitionResult:
    """Validate and persist a stage transition.

    The persisted stage must equal from_stage. Nothing is written on any
    failure path.

    Raises:
        InitiativeNotFound: If the initiative has no state.yaml
        ValidationError: If state.yaml is malformed
        LockTimeout: If another process holds the initiative lock
    """
    if base_path is None:
        base_path = get_initiatives_dir()

    with initiative_lock(base_path, initiative_id):
        validation = can_transition(initiative_id, from_stage, to_stage, schema, base_path)
        if not validation.valid:
            return TransitionResult(False, from_stage, from_stage, error=validation.reason)

        state = load_initiative_state(initiative_id, base_path)
        if state.stage != from_stage:
            return TransitionResult(
                False,
                state.stage,
                state.stage,
                error=f"Current stage is {state.stage}, not {from_stage}",
            )

        trigger = TRIGGER_FOR[(from_stage, to_stage)]
        fsm = InitiativeFSM(state, get_state_path(initiative_id, base_path))
        try:
            getattr(fsm, trigger)()
        except MachineError as e:
            return TransitionResult(False, from_stage, from_stage, error=str(e))

    logger.info(f"[STATE] {initiative_id}: {from_stage} -> {to_stage}")
    return TransitionResult(True, from_stage, to_stage)


def get_current_stage(initiative_id: str, base_path: Optional[Path] = None) -> str:
    return load_initiative_state(initiative_id, base_path).stage


def get_next_stage(stage: str) -> Optional[str]:
    """Next stage on the happy path, or None."""
    return HAPPY_PATH.get(stage)


def get_escalation_target(stage: str) -> Optional[str]:
    """Previous tier's active stage for escalations, or None."""
    return ESCALATION_TARGETS.get(stage)


def is_terminal_stage(stage: str) -> bool:
    return stage in TERMINAL_STATES


def is_blocked_stage(stage: str) -> bool:
    return stage.endswith("_blocked")


def is_approved_stage(stage: str) -> bool:
    return stage.endswith("_approved")
