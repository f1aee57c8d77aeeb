"""
Status queries for initiatives.

Everything here is derived from the filesystem on every call: an artifact
is done when the file (or at least one file matching its glob) exists,
ready when all of its direct dependencies are done, and blocked otherwise.
Nothing is cached between calls.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from initflow.lib.documents import is_pattern, match_files
from initflow.workflow.initiative import Escalation, get_initiative_path, load_initiative_state
from initflow.workflow.schema import (
    Schema,
    TIER_ORDER,
    get_artifact_def,
    get_artifact_order,
    get_tier_artifacts,
    get_tier_def,
    load_schema,
)

logger = logging.getLogger(__name__)

DONE = "done"
READY = "ready"
BLOCKED = "blocked"

GATE_ORDER = ("strategic", "product", "design", "implementation")

TIER_PATTERN = re.compile(r"^tier(\d)")


@dataclass
class ArtifactStatusResult:
    id: str
    tier: str
    status: str  # done | ready | blocked
    path: Optional[str] = None  # Set when exactly one file resolved
    paths: list[str] = field(default_factory=list)
    missing_deps: list[str] = field(default_factory=list)
    description: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tier": self.tier,
            "status": self.status,
            "path": self.path,
            "paths": list(self.paths),
            "missing_deps": list(self.missing_deps),
            "description": self.description,
        }


@dataclass
class TierStatusResult:
    tier: str
    name: str
    council: str
    artifacts: list[ArtifactStatusResult]
    completion_pct: float
    is_blocked: bool
    blocked_by: list[str]

    def to_dict(self) -> dict:
        return {
            "tier": self.tier,
            "name": self.name,
            "council": self.council,
            "artifacts": [a.to_dict() for a in self.artifacts],
            "completion_pct": self.completion_pct,
            "is_blocked": self.is_blocked,
            "blocked_by": list(self.blocked_by),
        }


@dataclass
class NextAction:
    artifact: str
    tier: str
    description: str
    generates: str

    def to_dict(self) -> dict:
        return {
            "artifact": self.artifact,
            "tier": self.tier,
            "description": self.description,
            "generates": self.generates,
        }


@dataclass
class InitiativeStatusResult:
    initiative: str
    title: str
    current_stage: str
    current_tier: Optional[str]
    completed_tiers: list[str]
    artifacts: list[ArtifactStatusResult]
    gates: list[dict]
    escalations: list[Escalation]
    blockers: list[str]
    next_action: Optional[NextAction]
    is_complete: bool

    def to_dict(self) -> dict:
        return {
            "initiative": self.initiative,
            "title": self.title,
            "current_stage": self.current_stage,
            "current_tier": self.current_tier,
            "completed_tiers": list(self.completed_tiers),
            "artifacts": [a.to_dict() for a in self.artifacts],
            "gates": [dict(g) for g in self.gates],
            "escalations": [e.to_dict() for e in self.escalations],
            "blockers": list(self.blockers),
            "next_action": self.next_action.to_dict() if self.next_action else None,
            "is_complete": self.is_complete,
        }


def resolve_generates(initiative_path: Path, generates: str) -> tuple[bool, list[str]]:
    """Return (done, paths) for an artifact's generates path or pattern."""
    if is_pattern(generates):
        paths = match_files(initiative_path, generates)
        return bool(paths), paths

    if (initiative_path / generates).is_file():
        return True, [generates]
    return False, []


def get_artifact_status(
    initiative_id: str,
    artifact_id: str,
    schema: Schema,
    base_path: Optional[Path] = None,
) -> ArtifactStatusResult:
    """Compute the status of one artifact.

    Raises:
        ValueError: If the artifact is not defined in the schema
    """
    artifact = get_artifact_def(schema, artifact_id)
    if artifact is None:
        raise ValueError(f"Artifact '{artifact_id}' not found in schema '{schema.name}'")

    initiative_path = get_initiative_path(initiative_id, base_path)
    done, paths = resolve_generates(initiative_path, artifact.generates)

    if done:
        return ArtifactStatusResult(
            id=artifact_id,
            tier=artifact.tier,
            status=DONE,
            path=paths[0] if len(paths) == 1 else None,
            paths=paths,
            description=artifact.description,
        )

    # Direct dependencies only
    missing_deps = []
    for dep_id in artifact.requires:
        dep = get_artifact_def(schema, dep_id)
        if dep is None:
            continue
        dep_done, _ = resolve_generates(initiative_path, dep.generates)
        if not dep_done:
            missing_deps.append(dep_id)

    return ArtifactStatusResult(
        id=artifact_id,
        tier=artifact.tier,
        status=BLOCKED if missing_deps else READY,
        missing_deps=missing_deps,
        description=artifact.description,
    )


def get_all_artifact_statuses(
    initiative_id: str,
    schema: Schema,
    base_path: Optional[Path] = None,
) -> list[ArtifactStatusResult]:
    """Status of every artifact, in dependency order."""
    return [
        get_artifact_status(initiative_id, artifact_id, schema, base_path)
        for artifact_id in get_artifact_order(schema)
    ]


def get_tier_status(
    initiative_id: str,
    tier_id: str,
    schema: Schema,
    base_path: Optional[Path] = None,
) -> TierStatusResult:
    """Aggregate status for one tier.

    Raises:
        ValueError: If the tier is not defined in the schema
    """
    tier = get_tier_def(schema, tier_id)
    if tier is None:
        raise ValueError(f"Tier '{tier_id}' not found in schema '{schema.name}'")

    statuses = [
        get_artifact_status(initiative_id, a.id, schema, base_path)
        for a in get_tier_artifacts(schema, tier_id)
    ]

    done_count = sum(1 for s in statuses if s.status == DONE)
    completion_pct = (done_count / len(statuses)) * 100 if statuses else 0

    blocked_by: list[str] = []
    for s in statuses:
        if s.status != BLOCKED:
            continue
        for dep in s.missing_deps:
            if dep not in blocked_by:
                blocked_by.append(dep)

    return TierStatusResult(
        tier=tier_id,
        name=tier.name,
        council=tier.council,
        artifacts=statuses,
        completion_pct=completion_pct,
        is_blocked=any(s.status == BLOCKED for s in statuses),
        blocked_by=blocked_by,
    )


def get_tier_from_stage(stage: str) -> Optional[str]:
    """tierN for tierN_* stages, None for draft/completed/cancelled."""
    match = TIER_PATTERN.match(stage)
    return f"tier{match.group(1)}" if match else None


def get_completed_tiers(stage: str) -> list[str]:
    if stage == "completed":
        return list(TIER_ORDER)

    match = TIER_PATTERN.match(stage)
    if not match:
        return []

    current = int(match.group(1))
    completed = []
    for tier in TIER_ORDER:
        number = int(tier[4:])
        if number < current or (number == current and stage.endswith("_approved")):
            completed.append(tier)
    return completed


def find_next_action(artifacts: list[ArtifactStatusResult], schema: Schema) -> Optional[NextAction]:
    """First ready artifact in dependency order."""
    by_id = {a.id: a for a in artifacts}
    for artifact_id in get_artifact_order(schema):
        status = by_id.get(artifact_id)
        if status is None or status.status != READY:
            continue
        artifact = get_artifact_def(schema, artifact_id)
        return NextAction(
            artifact=artifact_id,
            tier=status.tier,
            description=f"Create {artifact_id}",
            generates=artifact.generates if artifact else "",
        )
    return None


def get_initiative_status(
    initiative_id: str,
    schema: Optional[Schema] = None,
    base_path: Optional[Path] = None,
) -> InitiativeStatusResult:
    """Full status of an initiative.

    Raises:
        InitiativeNotFound: If the initiative has no state.yaml
        ValidationError: If state.yaml is malformed
    """
    if schema is None:
        schema = load_schema("initiative-flow")

    state = load_initiative_state(initiative_id, base_path)
    artifacts = get_all_artifact_statuses(initiative_id, schema, base_path)

    gates = []
    for gate_id in GATE_ORDER:
        entry = next((h for h in state.history if h.gate == gate_id), None)
        if entry is not None:
            gates.append({"id": gate_id, "status": "passed", "passed_at": entry.timestamp})
        else:
            gates.append({"id": gate_id, "status": "pending"})

    is_complete = state.stage == "completed"
    next_action = None if is_complete else find_next_action(artifacts, schema)
    done_count = sum(1 for a in artifacts if a.status == DONE)
    logger.debug(f"[STATUS] {initiative_id}: {state.stage}, {done_count}/{len(artifacts)} artifacts done")

    return InitiativeStatusResult(
        initiative=initiative_id,
        title=state.metadata.title,
        current_stage=state.stage,
        current_tier=get_tier_from_stage(state.stage),
        completed_tiers=get_completed_tiers(state.stage),
        artifacts=artifacts,
        gates=gates,
        escalations=state.escalations,
        blockers=state.blockers,
        next_action=next_action,
        is_complete=is_complete,
    )
