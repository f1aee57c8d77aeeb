"""
Gate checks for initiatives.

A gate is a named list of machine-checkable criteria declared in the
workflow schema. Each criterion inspects files inside the initiative
directory: existence, glob counts, or YAML/frontmatter field values.

On top of the declared criteria every gate carries an implicit rule: an
initiative with open escalations cannot pass any gate.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from initflow.lib.documents import match_files, read_fields
from initflow.lib.validate import ValidationError
from initflow.workflow.initiative import get_initiative_path, load_initiative_state
from initflow.workflow.schema import GateCriterion, Schema, get_gate_def

logger = logging.getLogger(__name__)

ESCALATION_CRITERION = "no_unresolved_escalations"

_REQUIRED_PARAMS = {
    "file_exists": ("path",),
    "glob_min_count": ("pattern", "min"),
    "field_value": ("path", "field"),
    "field_not_empty": ("path", "field"),
    "all_have_field": ("pattern", "field"),
    "all_have_field_value": ("pattern", "field"),
}


@dataclass
class GateCriterionResult:
    criterion: str
    check: str
    passed: bool
    reason: Optional[str] = None
    expected: Any = None
    actual: Any = None
    found: Optional[int] = None
    checked: Optional[int] = None
    missing: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {"criterion": self.criterion, "check": self.check, "passed": self.passed}
        for key in ("reason", "expected", "actual", "found", "checked"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.missing:
            data["missing"] = list(self.missing)
        return data


@dataclass
class GateCheckResult:
    gate: str
    passed: bool
    criteria: list[GateCriterionResult]
    failing_criteria: list[GateCriterionResult]

    @property
    def criteria_met(self) -> int:
        return sum(1 for c in self.criteria if c.passed)

    @property
    def criteria_total(self) -> int:
        return len(self.criteria)

    def to_dict(self) -> dict:
        return {
            "gate": self.gate,
            "passed": self.passed,
            "criteria": [c.to_dict() for c in self.criteria],
            "criteria_met": self.criteria_met,
            "criteria_total": self.criteria_total,
            "failing_criteria": [c.criterion for c in self.failing_criteria],
        }


def strict_equal(actual: Any, expected: Any) -> bool:
    """Equality that never treats booleans as numbers."""
    if isinstance(actual, bool) or isinstance(expected, bool):
        return type(actual) is type(expected) and actual == expected
    return actual == expected


def is_empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, list) and not value)


def _check_file_exists(root: Path, path: str) -> GateCriterionResult:
    try:
        (root / path).read_bytes()
    except OSError:
        return GateCriterionResult("file_exists", "file_exists", False, reason=f"File not found: {path}")
    return GateCriterionResult("file_exists", "file_exists", True)


def _check_glob_min_count(root: Path, pattern: str, minimum: int) -> GateCriterionResult:
    found = len(match_files(root, pattern))
    passed = found >= minimum
    return GateCriterionResult(
        "glob_min_count",
        "glob_min_count",
        passed,
        reason=None if passed else f"Found {found} files, need at least {minimum}",
        expected=minimum,
        found=found,
    )


def _check_field_value(root: Path, path: str, field_name: str, expected: Any) -> GateCriterionResult:
    actual = read_fields(root / path).get(field_name)
    passed = strict_equal(actual, expected)
    return GateCriterionResult(
        "field_value",
        "field_value",
        passed,
        reason=None if passed else f"Field '{field_name}' is {actual!r}, expected {expected!r}",
        expected=expected,
        actual=actual,
    )


def _check_field_not_empty(root: Path, path: str, field_name: str) -> GateCriterionResult:
    actual = read_fields(root / path).get(field_name)
    passed = not is_empty(actual)
    return GateCriterionResult(
        "field_not_empty",
        "field_not_empty",
        passed,
        reason=None if passed else f"Field '{field_name}' is empty or null",
        actual=actual,
    )


def _check_all_have_field(
    root: Path,
    check: str,
    pattern: str,
    field_name: str,
    expected: Any = None,
    compare: bool = False,
) -> GateCriterionResult:
    files = match_files(root, pattern)
    if not files:
        return GateCriterionResult(
            check, check, False,
            reason=f"No files found matching pattern: {pattern}",
            checked=0,
        )

    missing = []
    for rel_path in files:
        value = read_fields(root / rel_path).get(field_name)
        if value is None or (compare and not strict_equal(value, expected)):
            missing.append(rel_path)

    passed = not missing
    if passed:
        reason = None
    elif compare:
        reason = f"Files where '{field_name}' is not {expected!r}: {', '.join(missing)}"
    else:
        reason = f"Files missing '{field_name}': {', '.join(missing)}"

    return GateCriterionResult(
        check, check, passed,
        reason=reason,
        expected=expected if compare else None,
        checked=len(files),
        missing=missing,
    )


def check_criterion(
    initiative_id: str,
    criterion: GateCriterion,
    base_path: Optional[Path] = None,
) -> GateCriterionResult:
    """Evaluate one criterion against the initiative's files."""
    kind = criterion.check

    if kind not in _REQUIRED_PARAMS:
        return GateCriterionResult(kind, kind, False, reason=f"Unknown check type: {kind}")

    absent = [p for p in _REQUIRED_PARAMS[kind] if getattr(criterion, p) is None]
    if absent:
        return GateCriterionResult(kind, kind, False, reason=f"Criterion is missing {', '.join(absent)}")

    root = get_initiative_path(initiative_id, base_path)

    if kind == "file_exists":
        return _check_file_exists(root, criterion.path)
    if kind == "glob_min_count":
        return _check_glob_min_count(root, criterion.pattern, criterion.min)
    if kind == "field_value":
        return _check_field_value(root, criterion.path, criterion.field, criterion.expected)
    if kind == "field_not_empty":
        return _check_field_not_empty(root, criterion.path, criterion.field)
    if kind == "all_have_field":
        return _check_all_have_field(root, kind, criterion.pattern, criterion.field)
    return _check_all_have_field(root, kind, criterion.pattern, criterion.field, criterion.expected, compare=True)


def _check_escalations(initiative_id: str, base_path: Optional[Path]) -> Optional[GateCriterionResult]:
    try:
        state = load_initiative_state(initiative_id, base_path)
    except (FileNotFoundError, OSError, ValidationError) as e:
        logger.warning(f"[GATE] {initiative_id}: skipping escalation check, state unreadable: {e}")
        return None

    open_count = len(state.open_escalations)
    if not open_count:
        return None
    return GateCriterionResult(
        ESCALATION_CRITERION,
        "escalations",
        False,
        reason=f"{open_count} unresolved escalation(s)",
        found=open_count,
    )


def check_gate(
    initiative_id: str,
    gate_id: str,
    schema: Schema,
    base_path: Optional[Path] = None,
) -> GateCheckResult:
    """Evaluate every criterion of a gate plus the open-escalation rule.

    Raises:
        ValueError: If the gate is not defined in the schema
    """
    gate = get_gate_def(schema, gate_id)
    if gate is None:
        raise ValueError(f"Gate '{gate_id}' not found in schema '{schema.name}'")

    results = []
    for criterion in gate.criteria:
        result = check_criterion(initiative_id, criterion, base_path)
        result.criterion = criterion.label
        results.append(result)

    escalation = _check_escalations(initiative_id, base_path)
    if escalation is not None:
        results.append(escalation)

    failing = [r for r in results if not r.passed]
    logger.debug(f"[GATE] {initiative_id}/{gate_id}: {len(results) - len(failing)}/{len(results)} criteria met")

    return GateCheckResult(gate=gate_id, passed=not failing, criteria=results, failing_criteria=failing)


def can_pass_gate(
    initiative_id: str,
    gate_id: str,
    schema: Schema,
    base_path: Optional[Path] = None,
) -> tuple[bool, GateCheckResult]:
    result = check_gate(initiative_id, gate_id, schema, base_path)
    return result.passed, result
