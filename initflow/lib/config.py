"""
Configuration loaders for initiative-flow.

Paths come from the environment (INITFLOW_OPENSPEC_DIR, default ./openspec).
Project settings come from openspec/config.yaml. If the file is missing or
unparsable, defaults are returned.
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA = "initiative-flow"
OPENSPEC_DIR_ENV = "INITFLOW_OPENSPEC_DIR"
CONFIG_FILENAME = "config.yaml"


@dataclass
class WorkItemsConfig:
    """Per-initiative work item settings from config.yaml"""
    enabled: bool = False
    auto_generate: bool = False
    initialized_at: Optional[str] = None


@dataclass
class FlowConfig:
    """Project-level configuration from openspec/config.yaml"""
    openspec_dir: Path
    schema: str = DEFAULT_SCHEMA
    context: str = ""
    workitems: dict[str, WorkItemsConfig] = field(default_factory=dict)

    @property
    def initiatives_dir(self) -> Path:
        return self.openspec_dir / "initiatives"

    @property
    def schemas_dir(self) -> Path:
        return self.openspec_dir / "schemas"


def get_openspec_dir() -> Path:
    """Get the openspec directory from the environment or the working directory."""
    env_dir = os.environ.get(OPENSPEC_DIR_ENV)
    if env_dir:
        return Path(env_dir)
    return Path.cwd() / "openspec"


def get_initiatives_dir() -> Path:
    """Default base path holding one directory per initiative."""
    return get_openspec_dir() / "initiatives"


def _read_config_data(config_path: Path) -> dict:
    if not config_path.exists():
        return {}
    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {config_path}: expected a mapping")
        return {}
    return data


def load_flow_config(openspec_dir: Optional[Path] = None) -> FlowConfig:
    """Load config.yaml and return FlowConfig.

    If openspec_dir is None the environment default is used.
    """
    if openspec_dir is None:
        openspec_dir = get_openspec_dir()

    data = _read_config_data(openspec_dir / CONFIG_FILENAME)

    workitems = {}
    for initiative_id, raw in (data.get("workitems") or {}).items():
        if not isinstance(raw, dict):
            logger.warning(f"Ignoring workitems config for {initiative_id}: expected a mapping")
            continue
        workitems[str(initiative_id)] = WorkItemsConfig(
            enabled=bool(raw.get("enabled", False)),
            auto_generate=bool(raw.get("auto_generate", False)),
            initialized_at=raw.get("initialized_at"),
        )

    return FlowConfig(
        openspec_dir=openspec_dir,
        schema=data.get("schema") or DEFAULT_SCHEMA,
        context=data.get("context") or "",
        workitems=workitems,
    )


def set_workitems_config(openspec_dir: Path, initiative_id: str, config: WorkItemsConfig) -> None:
    """Record work item settings for an initiative, preserving other keys."""
    config_path = openspec_dir / CONFIG_FILENAME
    data = _read_config_data(config_path)

    if not isinstance(data.get("workitems"), dict):
        data["workitems"] = {}
    data["workitems"][initiative_id] = {k: v for k, v in asdict(config).items() if v is not None}

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(yaml.safe_dump(data, sort_keys=False))
