"""
YAML document helpers.

Artifact files are either YAML documents or markdown with a YAML
frontmatter block. Readers here never raise on bad input: an unreadable or
malformed file reads as an empty mapping.
"""

import logging
import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

FRONTMATTER_PATTERN = re.compile(r"^---\r?\n(.*?)\r?\n---", re.DOTALL)


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def as_text(value: Any) -> Any:
    """Render YAML dates/timestamps as ISO strings, pass other values through."""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _as_mapping(data: Any, path: Path) -> dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.debug(f"Ignoring {path}: top level is not a mapping")
        return {}
    return data


def read_frontmatter(path: Path) -> dict:
    """Parse the frontmatter block of a markdown file."""
    try:
        content = path.read_text()
    except OSError:
        return {}

    match = FRONTMATTER_PATTERN.match(content)
    if not match:
        return {}
    try:
        return _as_mapping(yaml.safe_load(match.group(1)), path)
    except yaml.YAMLError as e:
        logger.debug(f"Malformed frontmatter in {path}: {e}")
        return {}


def read_yaml(path: Path) -> dict:
    """Parse a YAML file as a mapping."""
    try:
        content = path.read_text()
    except OSError:
        return {}
    try:
        return _as_mapping(yaml.safe_load(content), path)
    except yaml.YAMLError as e:
        logger.debug(f"Malformed YAML in {path}: {e}")
        return {}


def read_fields(path: Path) -> dict:
    """Frontmatter for markdown files, the whole document otherwise."""
    if path.suffix == ".md":
        return read_frontmatter(path)
    return read_yaml(path)


def is_pattern(value: str) -> bool:
    return any(ch in value for ch in "*?[")


def match_files(root: Path, pattern: str) -> list[str]:
    """Files under root matching a glob pattern, as sorted relative POSIX paths."""
    if not root.is_dir():
        return []
    return sorted(p.relative_to(root).as_posix() for p in root.glob(pattern) if p.is_file())


def dump_yaml(data: Any) -> str:
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True, width=100)
