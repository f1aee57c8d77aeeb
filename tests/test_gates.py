"""Tests for initflow.workflow.gates module."""

import pytest

from conftest import MANDATE, write
from initflow.workflow.gates import (
    ESCALATION_CRITERION,
    can_pass_gate,
    check_criterion,
    check_gate,
    strict_equal,
)
from initflow.workflow.schema import GateCriterion

OPEN_ESCALATION = {
    "id": "ESC-1",
    "from_tier": "tier2",
    "to_tier": "tier1",
    "severity": "high",
    "reason": "Scope conflict",
    "created_at": "2026-01-02T00:00:00+00:00",
}


class TestStrategicGate:
    """Gate driven by the strategic mandate frontmatter."""

    def test_passes_with_complete_mandate(self, schema, make_initiative, initiatives_dir):
        """Complete mandate frontmatter passes every criterion."""
        init_dir = make_initiative(stage="tier1_active")
        write(init_dir, "tier1/strategic-mandate.md", MANDATE)

        result = check_gate("test-init", "strategic", schema, initiatives_dir)
        assert result.passed is True
        assert result.criteria_met == result.criteria_total == 4
        assert result.failing_criteria == []

    def test_null_sponsor_fails(self, schema, make_initiative, initiatives_dir):
        """A null sponsor fails only sponsor_identified."""
        init_dir = make_initiative(stage="tier1_active")
        write(init_dir, "tier1/strategic-mandate.md", MANDATE.replace("sponsor: Jane", "sponsor: null"))

        result = check_gate("test-init", "strategic", schema, initiatives_dir)
        assert result.passed is False
        assert [c.criterion for c in result.failing_criteria] == ["sponsor_identified"]

    def test_string_true_is_not_boolean_true(self, schema, make_initiative, initiatives_dir):
        """Quoted "true" does not satisfy a boolean expectation."""
        init_dir = make_initiative(stage="tier1_active")
        write(init_dir, "tier1/strategic-mandate.md", MANDATE.replace("vision_aligned: true", 'vision_aligned: "true"'))

        result = check_gate("test-init", "strategic", schema, initiatives_dir)
        failing = {c.criterion: c for c in result.failing_criteria}
        assert list(failing) == ["vision_aligned"]
        assert failing["vision_aligned"].actual == "true"
        assert failing["vision_aligned"].expected is True

    def test_missing_mandate_fails_every_criterion(self, schema, make_initiative, initiatives_dir):
        """Without the mandate nothing passes."""
        make_initiative(stage="tier1_active")
        result = check_gate("test-init", "strategic", schema, initiatives_dir)
        assert result.criteria_met == 0
        assert "File not found" in result.failing_criteria[0].reason

    def test_empty_metrics_list_fails(self, schema, make_initiative, initiatives_dir):
        """An empty success_metrics list is not defined."""
        init_dir = make_initiative(stage="tier1_active")
        write(init_dir, "tier1/strategic-mandate.md", (
            "---\nvision_aligned: true\nsponsor: Jane\nsuccess_metrics: []\n---\n"
        ))
        result = check_gate("test-init", "strategic", schema, initiatives_dir)
        assert [c.criterion for c in result.failing_criteria] == ["success_metrics_defined"]


class TestEscalations:
    """Open escalations block every gate."""

    def test_open_escalation_fails_passing_gate(self, schema, make_initiative, initiatives_dir):
        """An open escalation adds a failing criterion."""
        init_dir = make_initiative(stage="tier1_active", escalations=[OPEN_ESCALATION])
        write(init_dir, "tier1/strategic-mandate.md", MANDATE)

        result = check_gate("test-init", "strategic", schema, initiatives_dir)
        assert result.passed is False
        assert result.criteria_total == 5
        assert [c.criterion for c in result.failing_criteria] == [ESCALATION_CRITERION]
        assert result.failing_criteria[0].found == 1

    def test_resolved_escalation_does_not_block(self, schema, make_initiative, initiatives_dir):
        """Resolved escalations are not counted."""
        resolved = dict(OPEN_ESCALATION, resolved_at="2026-01-03T00:00:00+00:00", resolution="Agreed")
        init_dir = make_initiative(stage="tier1_active", escalations=[resolved])
        write(init_dir, "tier1/strategic-mandate.md", MANDATE)

        passed, result = can_pass_gate("test-init", "strategic", schema, initiatives_dir)
        assert passed is True
        assert result.criteria_total == 4

    def test_empty_resolved_at_still_blocks(self, schema, make_initiative, initiatives_dir):
        """An escalation with an empty resolved_at is still open."""
        unresolved = dict(OPEN_ESCALATION, resolved_at="")
        init_dir = make_initiative(stage="tier1_active", escalations=[unresolved])
        write(init_dir, "tier1/strategic-mandate.md", MANDATE)

        result = check_gate("test-init", "strategic", schema, initiatives_dir)
        assert result.passed is False
        assert [c.criterion for c in result.failing_criteria] == [ESCALATION_CRITERION]

    def test_unreadable_state_skips_escalation_check(self, schema, initiatives_dir, caplog):
        """Missing state.yaml skips the escalation rule with a warning."""
        write(initiatives_dir / "stateless", "tier1/strategic-mandate.md", MANDATE)

        result = check_gate("stateless", "strategic", schema, initiatives_dir)
        assert result.passed is True
        assert "skipping escalation check" in caplog.text


class TestProductGate:
    """Glob and all_have_field criteria."""

    def test_epics_without_moscow_fail(self, schema, make_initiative, initiatives_dir):
        """Every epic needs a moscow field."""
        init_dir = make_initiative(stage="tier2_active")
        write(init_dir, "tier2/prd.md", "# PRD\n")
        write(init_dir, "tier2/epics/e1.yaml", {"id": "E1", "title": "One", "moscow": "must"})
        write(init_dir, "tier2/epics/e2.yaml", {"id": "E2", "title": "Two"})

        result = check_gate("test-init", "product", schema, initiatives_dir)
        failing = {c.criterion: c for c in result.failing_criteria}
        assert list(failing) == ["moscow_applied"]
        assert failing["moscow_applied"].missing == ["tier2/epics/e2.yaml"]
        assert failing["moscow_applied"].checked == 2

    def test_no_epics(self, schema, make_initiative, initiatives_dir):
        """Zero epics fails both epic criteria."""
        init_dir = make_initiative(stage="tier2_active")
        write(init_dir, "tier2/prd.md", "# PRD\n")

        result = check_gate("test-init", "product", schema, initiatives_dir)
        failing = {c.criterion: c for c in result.failing_criteria}
        assert set(failing) == {"epics_defined", "moscow_applied"}
        assert failing["epics_defined"].found == 0
        assert failing["epics_defined"].reason == "Found 0 files, need at least 1"
        assert "No files found" in failing["moscow_applied"].reason

    def test_to_dict_lists_failing_labels(self, schema, make_initiative, initiatives_dir):
        """Serialized result lists failing criteria by id."""
        make_initiative(stage="tier2_active")
        data = check_gate("test-init", "product", schema, initiatives_dir).to_dict()
        assert data["gate"] == "product"
        assert data["passed"] is False
        assert data["failing_criteria"] == ["prd_exists", "epics_defined", "moscow_applied"]
        assert data["criteria_met"] == 0


class TestImplementationGate:
    """field_value on a plain YAML document."""

    def test_progress_complete(self, schema, make_initiative, initiatives_dir):
        """all_complete true passes the implementation gate."""
        init_dir = make_initiative(stage="tier4_review")
        write(init_dir, "tier4/progress.yaml", {"all_complete": True})
        write(init_dir, "tier4/reviews/final.md", "# Review\n")

        assert check_gate("test-init", "implementation", schema, initiatives_dir).passed is True

    def test_progress_incomplete(self, schema, make_initiative, initiatives_dir):
        """all_complete false fails all_tasks_complete."""
        init_dir = make_initiative(stage="tier4_review")
        write(init_dir, "tier4/progress.yaml", {"all_complete": False})
        write(init_dir, "tier4/reviews/final.md", "# Review\n")

        result = check_gate("test-init", "implementation", schema, initiatives_dir)
        assert [c.criterion for c in result.failing_criteria] == ["all_tasks_complete"]


class TestCheckCriterion:
    """Individual criterion kinds."""

    def test_all_have_field_value_mismatch(self, make_initiative, initiatives_dir):
        """Files with another value are reported missing."""
        init_dir = make_initiative()
        write(init_dir, "tier2/epics/e1.yaml", {"id": "E1", "moscow": "must"})
        write(init_dir, "tier2/epics/e2.yaml", {"id": "E2", "moscow": "should"})

        criterion = GateCriterion(
            check="all_have_field_value", pattern="tier2/epics/*.yaml", field="moscow", expected="must",
        )
        result = check_criterion("test-init", criterion, initiatives_dir)
        assert result.passed is False
        assert result.missing == ["tier2/epics/e2.yaml"]

    def test_all_have_field_value_match(self, make_initiative, initiatives_dir):
        """Matching values pass."""
        init_dir = make_initiative()
        write(init_dir, "tier2/epics/e1.yaml", {"id": "E1", "moscow": "must"})

        criterion = GateCriterion(
            check="all_have_field_value", pattern="tier2/epics/*.yaml", field="moscow", expected="must",
        )
        assert check_criterion("test-init", criterion, initiatives_dir).passed is True

    def test_unknown_check_type_fails(self, make_initiative, initiatives_dir):
        """Unknown check kinds fail with a reason."""
        make_initiative()
        result = check_criterion("test-init", GateCriterion(check="file_is_pretty"), initiatives_dir)
        assert result.passed is False
        assert result.reason == "Unknown check type: file_is_pretty"

    def test_missing_parameters_fail(self, make_initiative, initiatives_dir):
        """A criterion without its field fails."""
        make_initiative()
        result = check_criterion("test-init", GateCriterion(check="field_value", path="x.md"), initiatives_dir)
        assert result.passed is False
        assert result.reason == "Criterion is missing field"

    def test_directory_is_not_a_file(self, make_initiative, initiatives_dir):
        """file_exists should not accept a directory."""
        init_dir = make_initiative()
        (init_dir / "tier1").mkdir()
        result = check_criterion("test-init", GateCriterion(check="file_exists", path="tier1"), initiatives_dir)
        assert result.passed is False

    def test_unknown_gate_raises(self, schema, make_initiative, initiatives_dir):
        """Checking an undefined gate raises ValueError."""
        make_initiative()
        with pytest.raises(ValueError):
            check_gate("test-init", "security", schema, initiatives_dir)


class TestStrictEqual:
    """Type-strict equality."""

    def test_bool_and_int_differ(self):
        """True and 1 are not equal."""
        assert strict_equal(1, True) is False
        assert strict_equal(True, 1) is False

    def test_same_values_equal(self):
        """Same-typed values compare normally."""
        assert strict_equal(True, True) is True
        assert strict_equal("must", "must") is True
        assert strict_equal(2, 2.0) is True

    def test_none_never_matches_value(self):
        """None never equals a value."""
        assert strict_equal(None, True) is False
