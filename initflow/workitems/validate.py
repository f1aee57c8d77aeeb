"""
Work item tree validation.

Walks <initiative>/workitems/, loads every item file and the manifest, and
checks structural invariants: required fields, id format, enum values,
parent/children integrity, level hierarchy and id uniqueness.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from initflow.workflow.initiative import get_initiative_path
from initflow.workitems.generate import MANIFEST_FILENAME, SCHEMA_REFERENCE, WORKITEMS_DIR
from initflow.workitems.models import LEVELS, PRIORITIES, STATUSES

logger = logging.getLogger(__name__)

ID_PATTERN = re.compile(r"^\d+(\.\d+)*-.+$")
REQUIRED_FIELDS = ("id", "title", "description", "status", "created_at")


@dataclass
class ItemError:
    path: str
    rule: str
    message: str
    field: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"path": self.path, "rule": self.rule, "message": self.message}
        if self.field:
            data["field"] = self.field
        return data


@dataclass
class ItemWarning:
    path: str
    message: str

    def to_dict(self) -> dict:
        return {"path": self.path, "message": self.message}


@dataclass
class ValidationResult:
    valid: bool
    errors: list[ItemError] = field(default_factory=list)
    warnings: list[ItemWarning] = field(default_factory=list)
    items_checked: int = 0

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "items_checked": self.items_checked,
        }


@dataclass
class _IndexEntry:
    level: Optional[str]
    parent: Optional[str]
    children: list


def read_tree(workitems_path: Path) -> tuple[list[tuple[str, dict]], Optional[dict]]:
    """Return ([(relative_path, item)], manifest). Malformed files are skipped."""
    items = []
    manifest = None

    for path in sorted(workitems_path.rglob("*")):
        if path.suffix not in (".yaml", ".yml") or not path.is_file():
            continue
        if path.name == SCHEMA_REFERENCE:
            continue
        try:
            data = yaml.safe_load(path.read_text())
        except (OSError, yaml.YAMLError) as e:
            logger.debug(f"[WORKITEMS] Skipping unreadable {path}: {e}")
            continue
        if not isinstance(data, dict):
            continue

        rel_path = path.relative_to(workitems_path).as_posix()
        if rel_path == MANIFEST_FILENAME:
            manifest = data
        else:
            items.append((rel_path, data))

    return items, manifest


def _is_missing(value) -> bool:
    if value is None or value == "" or value is False:
        return True
    return isinstance(value, str) and not value.strip()


def _as_list(value) -> list:
    return value if isinstance(value, list) else []


def validate_item(item: dict, path: str, index: dict[str, _IndexEntry]) -> list[ItemError]:
    errors = []
    meta = item.get("_meta") if isinstance(item.get("_meta"), dict) else {}
    level = meta.get("level")
    item_id = item.get("id")
    parent = item.get("parent")
    children = _as_list(item.get("children"))

    for name in REQUIRED_FIELDS:
        if _is_missing(item.get(name)):
            errors.append(ItemError(path, "required_fields_present", f"Required field '{name}' missing", name))

    if item_id and (not isinstance(item_id, str) or not ID_PATTERN.match(item_id)):
        errors.append(ItemError(path, "valid_id_format", f"Invalid ID format: {item_id}", "id"))

    status = item.get("status")
    if status and status not in STATUSES:
        errors.append(ItemError(path, "valid_status_value", f"Invalid status: {status}", "status"))

    priority = item.get("priority")
    if priority and priority not in PRIORITIES:
        errors.append(ItemError(path, "valid_priority_value", f"Invalid priority: {priority}", "priority"))

    if level not in LEVELS:
        errors.append(ItemError(path, "valid_level", f"Invalid level: {level}", "_meta.level"))

    # Ids of the wrong type cannot be looked up
    parent_ref = parent if isinstance(parent, str) else None
    child_refs = [c for c in children if isinstance(c, str)]

    if parent and parent_ref is None:
        errors.append(ItemError(path, "parent_exists", f"Parent must be an ID, got {parent!r}", "parent"))
    elif parent_ref and parent_ref not in index:
        errors.append(ItemError(path, "parent_exists", f"Parent '{parent_ref}' not found", "parent"))

    for child_id in children:
        if not isinstance(child_id, str):
            errors.append(ItemError(path, "children_exist", f"Child must be an ID, got {child_id!r}", "children"))
        elif child_id not in index:
            errors.append(ItemError(path, "children_exist", f"Child '{child_id}' not found", "children"))

    if parent_ref:
        parent_entry = index.get(parent_ref)
        if parent_entry is not None and item_id not in parent_entry.children:
            errors.append(ItemError(
                path, "bidirectional_relationships", f"Parent '{parent}' doesn't list this item as a child", "parent"
            ))

    for child_id in child_refs:
        child_entry = index.get(child_id)
        if child_entry is not None and child_entry.parent != item_id:
            errors.append(ItemError(
                path, "bidirectional_relationships", f"Child '{child_id}' doesn't list this item as its parent",
                "children",
            ))

    if level == "epic" and parent:
        errors.append(ItemError(path, "epics_have_no_parent", "Epics cannot have a parent", "parent"))

    if level == "task" and children:
        errors.append(ItemError(path, "tasks_are_leaves", "Tasks cannot have children", "children"))

    if level in ("story", "task") and parent_ref:
        expected = "epic" if level == "story" else "story"
        parent_entry = index.get(parent_ref)
        if parent_entry is not None and parent_entry.level != expected:
            errors.append(ItemError(
                path, "level_hierarchy", f"{level.capitalize()} parent must be {expected}", "parent"
            ))

    return errors


def validate_work_items(initiative_id: str, base_path: Optional[Path] = None) -> ValidationResult:
    """Validate the generated work item tree of an initiative."""
    workitems_path = get_initiative_path(initiative_id, base_path) / WORKITEMS_DIR

    if not workitems_path.is_dir():
        return ValidationResult(
            valid=False,
            errors=[ItemError(str(workitems_path), "workitems_exists", f"{WORKITEMS_DIR}/ not found")],
        )

    items, manifest = read_tree(workitems_path)
    errors: list[ItemError] = []
    warnings: list[ItemWarning] = []

    if manifest is None:
        errors.append(ItemError(MANIFEST_FILENAME, "manifest_exists", f"{MANIFEST_FILENAME} not found"))

    index: dict[str, _IndexEntry] = {}
    for _, item in items:
        meta = item.get("_meta") if isinstance(item.get("_meta"), dict) else {}
        if item.get("id") and isinstance(item["id"], str):
            index[item["id"]] = _IndexEntry(
                level=meta.get("level"),
                parent=item.get("parent"),
                children=_as_list(item.get("children")),
            )

    for path, item in items:
        errors.extend(validate_item(item, path, index))

    seen = set()
    for path, item in items:
        item_id = item.get("id")
        if not isinstance(item_id, str):
            continue
        if item_id in seen:
            errors.append(ItemError(path, "unique_ids", f"Duplicate ID: {item_id}", "id"))
        seen.add(item_id)

    if not items:
        warnings.append(ItemWarning(str(workitems_path), "No work items found"))

    if manifest is not None:
        summary = manifest.get("summary") if isinstance(manifest.get("summary"), dict) else {}
        total = summary.get("total_items")
        if total is not None and total != len(items):
            warnings.append(ItemWarning(
                MANIFEST_FILENAME, f"Manifest lists {total} items but {len(items)} item files were found"
            ))

    if errors:
        logger.debug(f"[WORKITEMS] {initiative_id}: {len(errors)} validation error(s)")

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings, items_checked=len(items))
