"""Workflow schema loader.

A workflow schema declares the tiers of an initiative, the artifacts each
tier produces (with their dependencies) and the gates guarding tier
approval. Schemas are looked up in the project first:

    openspec/schemas/<name>/schema.yaml

and fall back to the copy bundled with the package (initflow/schemas/<name>.yaml).

Usage:
    from initflow.workflow.schema import load_schema, get_artifact_order

    schema = load_schema("initiative-flow")
    for artifact_id in get_artifact_order(schema):
        ...
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from initflow.lib.config import get_openspec_dir
from initflow.lib.validate import ValidationError, get_schemas_dir, validate

logger = logging.getLogger(__name__)

TIER_ORDER = ("tier1", "tier2", "tier3", "tier4")

CHECK_KINDS = (
    "file_exists",
    "glob_min_count",
    "field_value",
    "field_not_empty",
    "all_have_field",
    "all_have_field_value",
)


class SchemaNotFound(FileNotFoundError):
    """No workflow schema document exists for the requested name."""


@dataclass(frozen=True)
class TierDefinition:
    id: str
    name: str = ""
    council: str = ""
    coordinator: Optional[str] = None
    skills: Any = ()  # list of skills, or mapping of role -> skills


@dataclass(frozen=True)
class ArtifactDefinition:
    id: str
    tier: str
    generates: str  # File path or glob pattern, relative to the initiative
    template: str = ""
    description: str = ""
    instruction: str = ""
    requires: tuple[str, ...] = ()  # Dependency artifact IDs
    gate: Optional[str] = None  # Gate this artifact contributes to


@dataclass(frozen=True)
class GateCriterion:
    """One machine-checkable gate criterion.

    `check` selects the predicate; the other fields are its parameters.
    """
    check: str
    id: Optional[str] = None
    description: Optional[str] = None
    path: Optional[str] = None
    pattern: Optional[str] = None
    field: Optional[str] = None
    expected: Any = None
    min: Optional[int] = None

    @property
    def label(self) -> str:
        return self.id or self.description or self.check

    @classmethod
    def from_dict(cls, data: dict) -> "GateCriterion":
        return cls(
            check=data["check"],
            id=data.get("id"),
            description=data.get("description"),
            path=data.get("path"),
            pattern=data.get("pattern"),
            field=data.get("field"),
            expected=data.get("expected"),
            min=data.get("min"),
        )


@dataclass(frozen=True)
class GateDefinition:
    id: str
    description: str = ""
    from_artifacts: tuple[str, ...] = ()
    to_tier: Optional[str] = None
    terminal: bool = False
    criteria: tuple[GateCriterion, ...] = ()


@dataclass(frozen=True)
class Schema:
    name: str
    version: float
    description: str = ""
    tiers: tuple[TierDefinition, ...] = ()
    artifacts: tuple[ArtifactDefinition, ...] = ()
    gates: dict[str, GateDefinition] = field(default_factory=dict)
    apply: dict = field(default_factory=dict)
    archive: dict = field(default_factory=dict)


def find_schema_path(name: str, schemas_dir: Optional[Path] = None) -> Optional[Path]:
    """Locate the schema document for a workflow, or None."""
    if schemas_dir is None:
        schemas_dir = get_openspec_dir() / "schemas"

    candidates = [
        schemas_dir / name / "schema.yaml",
        get_schemas_dir() / f"{name}.yaml",
    ]
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def load_schema(name: str, schemas_dir: Optional[Path] = None) -> Schema:
    """Load and validate a workflow schema by name.

    Raises:
        SchemaNotFound: If no schema document exists
        ValidationError: If the document is malformed or its dependencies cycle
    """
    schema_path = find_schema_path(name, schemas_dir)
    if schema_path is None:
        searched = (schemas_dir or get_openspec_dir() / "schemas") / name / "schema.yaml"
        raise SchemaNotFound(f"Schema '{name}' not found at {searched}")

    try:
        raw = yaml.safe_load(schema_path.read_text())
    except yaml.YAMLError as e:
        raise ValidationError("workflow", f"Invalid YAML in {schema_path}: {e}") from None

    if not isinstance(raw, dict):
        raise ValidationError("workflow", f"Schema '{name}' is not a mapping")

    validate(raw, "workflow")
    schema = _build_schema(raw)

    # Fail at load time on dependency cycles
    get_artifact_order(schema)

    known = {a.id for a in schema.artifacts}
    for artifact in schema.artifacts:
        for dep in artifact.requires:
            if dep not in known:
                logger.warning(f"Schema '{name}': artifact '{artifact.id}' requires unknown artifact '{dep}'")

    logger.debug(f"Loaded schema '{schema.name}' v{schema.version} from {schema_path}")
    return schema


def _build_schema(raw: dict) -> Schema:
    tiers = tuple(
        TierDefinition(
            id=t["id"],
            name=t.get("name", ""),
            council=t.get("council", ""),
            coordinator=t.get("coordinator"),
            skills=t.get("skills") or (),
        )
        for t in raw.get("tiers") or []
    )

    artifacts = tuple(
        ArtifactDefinition(
            id=a["id"],
            tier=a.get("tier", ""),
            generates=a["generates"],
            template=a.get("template") or "",
            description=a.get("description") or "",
            instruction=a.get("instruction") or "",
            requires=tuple(a.get("requires") or ()),
            gate=a.get("gate"),
        )
        for a in raw["artifacts"]
    )

    gates = {}
    for gate_id, g in raw["gates"].items():
        g = g or {}
        gates[gate_id] = GateDefinition(
            id=gate_id,
            description=g.get("description") or "",
            from_artifacts=tuple(g.get("from_artifacts") or ()),
            to_tier=g.get("to_tier"),
            terminal=bool(g.get("terminal", False)),
            criteria=tuple(GateCriterion.from_dict(c) for c in g.get("criteria") or ()),
        )

    return Schema(
        name=raw["name"],
        version=raw["version"],
        description=raw.get("description") or "",
        tiers=tiers,
        artifacts=artifacts,
        gates=gates,
        apply=raw.get("apply") or {"requires": [], "tracks": "", "instruction": ""},
        archive=raw.get("archive") or {"destination": "", "update_specs": False},
    )


def get_artifact_def(schema: Schema, artifact_id: str) -> Optional[ArtifactDefinition]:
    for artifact in schema.artifacts:
        if artifact.id == artifact_id:
            return artifact
    return None


def get_tier_artifacts(schema: Schema, tier_id: str) -> list[ArtifactDefinition]:
    return [a for a in schema.artifacts if a.tier == tier_id]


def get_tier_def(schema: Schema, tier_id: str) -> Optional[TierDefinition]:
    for tier in schema.tiers:
        if tier.id == tier_id:
            return tier
    return None


def get_gate_def(schema: Schema, gate_id: str) -> Optional[GateDefinition]:
    return schema.gates.get(gate_id)


def get_dependents(schema: Schema, artifact_id: str) -> list[ArtifactDefinition]:
    """Artifacts that list artifact_id in their requires."""
    return [a for a in schema.artifacts if artifact_id in a.requires]


def get_artifact_order(schema: Schema) -> list[str]:
    """Topological order of artifact IDs, dependencies first.

    Raises:
        ValidationError: If the requires edges contain a cycle
    """
    visiting: list[str] = []
    done: set[str] = set()
    order: list[str] = []

    def visit(artifact_id: str) -> None:
        if artifact_id in done:
            return
        if artifact_id in visiting:
            cycle = visiting[visiting.index(artifact_id):] + [artifact_id]
            raise ValidationError("workflow", f"Dependency cycle: {' -> '.join(cycle)}", "artifacts")

        artifact = get_artifact_def(schema, artifact_id)
        if artifact is None:
            return

        visiting.append(artifact_id)
        for dep in artifact.requires:
            visit(dep)
        visiting.pop()

        done.add(artifact_id)
        order.append(artifact_id)

    for artifact in schema.artifacts:
        visit(artifact.id)

    return order


def get_tier_order() -> list[str]:
    return list(TIER_ORDER)
