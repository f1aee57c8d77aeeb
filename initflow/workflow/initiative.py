"""
Initiative state persistence.

Each initiative lives in its own directory:
  openspec/initiatives/<id>/state.yaml
  openspec/initiatives/<id>/tier1/...  (artifacts)

state.yaml holds metadata, the current stage, the transition history,
escalations and free-text blockers. It is only rewritten by
create_initiative() and by state machine transitions.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from initflow.lib.config import get_initiatives_dir
from initflow.lib.documents import as_text, dump_yaml, now_iso
from initflow.lib.validate import ValidationError, validate, validate_before_write

logger = logging.getLogger(__name__)

STATE_FILENAME = "state.yaml"


class InitiativeNotFound(FileNotFoundError):
    """No state.yaml exists for the initiative."""


@dataclass
class InitiativeMetadata:
    id: str
    title: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    mode: str = "strict"  # strict | auto
    allow_overlap: bool = False


@dataclass
class StageTransition:
    """One history entry. Serialized with a 'from' key."""
    from_stage: str
    to: str
    timestamp: Optional[str] = None
    gate: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"from": self.from_stage, "to": self.to, "timestamp": self.timestamp}
        if self.gate:
            data["gate"] = self.gate
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "StageTransition":
        return cls(
            from_stage=data["from"],
            to=data["to"],
            timestamp=as_text(data.get("timestamp")),
            gate=data.get("gate"),
        )


@dataclass
class Escalation:
    id: str
    from_tier: str = ""
    to_tier: str = ""
    severity: str = "medium"  # critical | high | medium | low
    reason: str = ""
    created_at: Optional[str] = None
    resolved_at: Optional[str] = None
    resolution: Optional[str] = None

    @property
    def is_open(self) -> bool:
        # An empty resolved_at still counts as open
        return not self.resolved_at

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "from_tier": self.from_tier,
            "to_tier": self.to_tier,
            "severity": self.severity,
            "reason": self.reason,
            "created_at": self.created_at,
        }
        if self.resolved_at is not None:
            data["resolved_at"] = self.resolved_at
        if self.resolution is not None:
            data["resolution"] = self.resolution
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Escalation":
        return cls(
            id=str(data["id"]),
            from_tier=data.get("from_tier") or "",
            to_tier=data.get("to_tier") or "",
            severity=data.get("severity") or "medium",
            reason=data.get("reason") or "",
            created_at=as_text(data.get("created_at")),
            resolved_at=as_text(data.get("resolved_at")),
            resolution=data.get("resolution"),
        )


@dataclass
class InitiativeState:
    metadata: InitiativeMetadata
    stage: str
    history: list[StageTransition] = field(default_factory=list)
    escalations: list[Escalation] = field(default_factory=list)
    blockers: list[str] = field(default_factory=list)

    @property
    def open_escalations(self) -> list[Escalation]:
        return [e for e in self.escalations if e.is_open]

    def to_dict(self) -> dict:
        meta = self.metadata
        return {
            "metadata": {
                "id": meta.id,
                "title": meta.title,
                "created_at": meta.created_at,
                "updated_at": meta.updated_at,
                "mode": meta.mode,
                "allow_overlap": meta.allow_overlap,
            },
            "stage": self.stage,
            "history": [h.to_dict() for h in self.history],
            "escalations": [e.to_dict() for e in self.escalations],
            "blockers": list(self.blockers),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InitiativeState":
        meta = data["metadata"]
        return cls(
            metadata=InitiativeMetadata(
                id=str(meta["id"]),
                title=meta.get("title") or "",
                created_at=as_text(meta.get("created_at")),
                updated_at=as_text(meta.get("updated_at")),
                mode=meta.get("mode") or "strict",
                allow_overlap=bool(meta.get("allow_overlap", False)),
            ),
            stage=data["stage"],
            history=[StageTransition.from_dict(h) for h in data.get("history") or []],
            escalations=[Escalation.from_dict(e) for e in data.get("escalations") or []],
            blockers=[str(b) for b in data.get("blockers") or []],
        )


def get_initiative_path(initiative_id: str, base_path: Optional[Path] = None) -> Path:
    """Directory holding an initiative's state and artifacts."""
    if base_path is None:
        base_path = get_initiatives_dir()
    return base_path / initiative_id


def get_state_path(initiative_id: str, base_path: Optional[Path] = None) -> Path:
    return get_initiative_path(initiative_id, base_path) / STATE_FILENAME


def read_state_file(state_path: Path) -> InitiativeState:
    """Parse and validate a state.yaml file.

    Raises:
        InitiativeNotFound: If the file does not exist
        ValidationError: If the file is unparsable or malformed
    """
    if not state_path.exists():
        raise InitiativeNotFound(f"Initiative not found: {state_path.parent.name} (no {state_path})")

    try:
        data = yaml.safe_load(state_path.read_text())
    except yaml.YAMLError as e:
        raise ValidationError("initiative_state", f"Invalid YAML in {state_path}: {e}") from None

    if not isinstance(data, dict):
        raise ValidationError("initiative_state", f"{state_path} is not a mapping")

    validate(data, "initiative_state")
    return InitiativeState.from_dict(data)


def write_state_file(state: InitiativeState, state_path: Path) -> None:
    """Validate and write state.yaml. Never writes invalid data."""
    data = state.to_dict()
    validate_before_write(data, "initiative_state", state_path)
    state_path.parent.mkdir(parents=True, exist_ok=True)
    state_path.write_text(dump_yaml(data))


def load_initiative_state(initiative_id: str, base_path: Optional[Path] = None) -> InitiativeState:
    """Load an initiative's persisted state.

    Raises:
        InitiativeNotFound: If state.yaml is missing
        ValidationError: If state.yaml is malformed
    """
    return read_state_file(get_state_path(initiative_id, base_path))


def save_initiative_state(state: InitiativeState, initiative_id: str, base_path: Optional[Path] = None) -> None:
    write_state_file(state, get_state_path(initiative_id, base_path))


def create_initiative(
    initiative_id: str,
    title: str,
    base_path: Optional[Path] = None,
    mode: str = "strict",
) -> InitiativeState:
    """Create a new initiative in the draft stage.

    Raises:
        FileExistsError: If the initiative already has a state file
        ValidationError: If the id or mode is invalid
    """
    state_path = get_state_path(initiative_id, base_path)
    if state_path.exists():
        raise FileExistsError(f"Initiative already exists: {initiative_id}")

    timestamp = now_iso()
    state = InitiativeState(
        metadata=InitiativeMetadata(
            id=initiative_id,
            title=title,
            created_at=timestamp,
            updated_at=timestamp,
            mode=mode,
        ),
        stage="draft",
    )
    write_state_file(state, state_path)
    logger.info(f"Created initiative {initiative_id} at {state_path.parent}")
    return state
