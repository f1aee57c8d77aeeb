"""Tests for initflow.workflow.fsm module."""

import pytest
import yaml
from transitions import MachineError

from initflow.workflow.fsm import GATE_REQUIREMENTS, STATES, TRANSITIONS, TRIGGER_FOR, InitiativeFSM
from initflow.workflow.initiative import get_state_path, load_initiative_state


def load_fsm(initiatives_dir, initiative_id="test-init", on_transition=None):
    state = load_initiative_state(initiative_id, initiatives_dir)
    return InitiativeFSM(state, get_state_path(initiative_id, initiatives_dir), on_transition=on_transition)


class TestTransitionTable:
    """Static shape of the lifecycle."""

    def test_sixteen_states(self):
        """Lifecycle should have sixteen distinct states."""
        assert len(STATES) == 16
        assert len(set(STATES)) == 16

    def test_every_edge_uses_known_states(self):
        """Edges only reference declared states."""
        for t in TRANSITIONS:
            assert t["source"] in STATES
            assert t["dest"] in STATES

    def test_terminal_states_have_no_outgoing_edges(self):
        """Completed and cancelled are dead ends."""
        sources = {t["source"] for t in TRANSITIONS}
        assert "completed" not in sources
        assert "cancelled" not in sources

    def test_trigger_lookup(self):
        """Edges map back to their trigger names."""
        assert TRIGGER_FOR[("draft", "tier1_active")] == "start"
        assert TRIGGER_FOR[("tier4_review", "tier4_active")] == "request_changes"
        assert TRIGGER_FOR[("tier3_blocked", "tier2_active")] == "escalate"

    def test_approvals_are_gated(self):
        """Each approved stage requires its tier's gate."""
        assert GATE_REQUIREMENTS == {
            "tier1_approved": "strategic",
            "tier2_approved": "product",
            "tier3_approved": "design",
            "tier4_approved": "implementation",
        }


class TestInitiativeFSM:
    """Firing triggers against a persisted initiative."""

    def test_starts_at_persisted_stage(self, make_initiative, initiatives_dir):
        """Machine should start at the stage in state.yaml."""
        make_initiative(stage="tier2_active")
        fsm = load_fsm(initiatives_dir)
        assert fsm.state == "tier2_active"
        assert set(fsm.get_available_triggers()) == {"approve", "block", "escalate"}

    def test_transition_persists_history(self, make_initiative, initiatives_dir):
        """Firing a trigger should write stage and history."""
        init_dir = make_initiative()
        fsm = load_fsm(initiatives_dir)
        fsm.start()

        data = yaml.safe_load((init_dir / "state.yaml").read_text())
        assert data["stage"] == "tier1_active"
        assert data["history"][-1]["from"] == "draft"
        assert data["history"][-1]["to"] == "tier1_active"
        assert "gate" not in data["history"][-1]

    def test_approval_records_gate(self, make_initiative, initiatives_dir):
        """Approval should record the gate in history."""
        init_dir = make_initiative(stage="tier1_active")
        load_fsm(initiatives_dir).approve()

        data = yaml.safe_load((init_dir / "state.yaml").read_text())
        assert data["history"][-1]["gate"] == "strategic"
        assert data["metadata"]["updated_at"] != "2026-01-01T00:00:00+00:00"

    def test_invalid_trigger_raises(self, make_initiative, initiatives_dir):
        """Triggers not valid from the current stage raise."""
        make_initiative()
        fsm = load_fsm(initiatives_dir)
        assert fsm.can("approve") is False
        with pytest.raises(MachineError):
            fsm.approve()

    def test_on_transition_callback(self, make_initiative, initiatives_dir):
        """Callback receives source, dest and trigger."""
        make_initiative(stage="tier4_active")
        calls = []
        fsm = load_fsm(initiatives_dir, on_transition=lambda *args: calls.append(args))
        fsm.submit_review()
        assert calls == [("tier4_active", "tier4_review", "submit_review")]

    def test_unknown_stage_rejected(self, make_initiative, initiatives_dir):
        """A stage outside the lifecycle cannot seed the machine."""
        make_initiative()
        state = load_initiative_state("test-init", initiatives_dir)
        state.stage = "limbo"
        with pytest.raises(ValueError):
            InitiativeFSM(state, get_state_path("test-init", initiatives_dir))
