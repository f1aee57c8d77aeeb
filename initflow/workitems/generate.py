"""
Work item generation.

Converts the planning artifacts of an initiative into a universal
epic/story/task tree:

  tier2/epics/*.yaml     -> workitems/<epic>/epic.yaml
  tier3/stories/*.yaml   -> workitems/<epic>/<story>/story.yaml
  tier3/tasks/*.yaml     -> workitems/<epic>/<story>/<task>.yaml

plus workitems/manifest.yaml describing the whole tree. Ids are
hierarchical (1, 1.1, 1.1.1) followed by a title slug, and are rebuilt
from scratch on every run. The output directory is removed and recreated
each time so no stale items survive.
"""

import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, TypeVar

import yaml
from pydantic import ValidationError as ModelValidationError

from initflow.lib.documents import dump_yaml, now_iso, read_yaml
from initflow.lib.validate import get_schemas_dir
from initflow.workflow.initiative import get_initiative_path
from initflow.workitems.models import (
    SCHEMA_VERSION,
    Dependency,
    Epic,
    Estimate,
    Risk,
    SourceEpic,
    SourceRecord,
    SourceRef,
    SourceStory,
    SourceTask,
    Story,
    SuccessMetric,
    Task,
    UserStory,
    WorkItemMeta,
)

logger = logging.getLogger(__name__)

WORKITEMS_DIR = "workitems"
MANIFEST_FILENAME = "manifest.yaml"
SCHEMA_REFERENCE = "_schema.yaml"
MANIFEST_SOURCE = "initiative-flow"

EPICS_DIR = "tier2/epics"
STORIES_DIR = "tier3/stories"
TASKS_DIR = "tier3/tasks"

SLUG_MAX_LENGTH = 30
DESCRIPTION_MAX_LENGTH = 500

STATUS_MAP = {
    "draft": "backlog",
    "defined": "todo",
    "ready": "todo",
    "pending": "todo",
    "in_progress": "in_progress",
    "in-progress": "in_progress",
    "review": "in_review",
    "in_review": "in_review",
    "done": "done",
    "complete": "done",
    "completed": "done",
    "blocked": "backlog",
    "cancelled": "cancelled",
    "canceled": "cancelled",
}

PRIORITY_MAP = {
    "must": "high",
    "should": "medium",
    "could": "low",
    "wont": "none",
}

USER_STORY_PATTERN = re.compile(r"As an? (.+?),? I want (.+?),? so that (.+)", re.IGNORECASE | re.DOTALL)
PROBLEM_STATEMENT_PATTERN = re.compile(r"## Problem Statement\s+(.*?)(?=\n##|\Z)", re.DOTALL)

R = TypeVar("R", bound=SourceRecord)


@dataclass
class GenerationResult:
    success: bool
    path: Path
    epics: int = 0
    stories: int = 0
    tasks: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.epics + self.stories + self.tasks

    def to_dict(self) -> dict:
        data = {
            "success": self.success,
            "path": str(self.path),
            "items_generated": {"epics": self.epics, "stories": self.stories, "tasks": self.tasks},
        }
        if self.errors:
            data["errors"] = list(self.errors)
        return data


# =============================================================================
# Helpers
# =============================================================================


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH]


def natural_key(value: str) -> list:
    """Sort key that orders 'epic-2' before 'epic-10'."""
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r"(\d+)", value)]


def map_status(status: Optional[str]) -> str:
    return STATUS_MAP.get((status or "").lower(), "backlog")


def map_priority(moscow: Optional[str]) -> str:
    return PRIORITY_MAP.get((moscow or "").lower(), "medium")


def parse_user_story(value) -> Optional[UserStory]:
    """Parse 'As a X, I want Y, so that Z' or a persona/want/benefit mapping."""
    if not value:
        return None
    if isinstance(value, dict):
        return UserStory(
            as_a=str(value.get("persona") or ""),
            i_want=str(value.get("want") or ""),
            so_that=str(value.get("benefit") or ""),
        )
    match = USER_STORY_PATTERN.search(value)
    if not match:
        return None
    return UserStory(as_a=match.group(1), i_want=match.group(2), so_that=match.group(3))


def dependency_ids(dependencies) -> Optional[list[str]]:
    """Ids from a dependency list of plain ids or {id: ..., type: ...} mappings."""
    if dependencies is None:
        return None
    ids = []
    for dep in dependencies:
        if isinstance(dep, dict):
            if dep.get("id"):
                ids.append(str(dep["id"]))
        elif dep:
            ids.append(dep)
    return ids


# =============================================================================
# Read source artifacts
# =============================================================================


def read_records(initiative_path: Path, subdir: str, model: type[R]) -> list[R]:
    """Parse every YAML file in a source directory. Malformed files are skipped."""
    source_dir = initiative_path / subdir
    if not source_dir.is_dir():
        return []

    records = []
    for path in sorted(source_dir.iterdir()):
        if path.suffix not in (".yaml", ".yml") or not path.is_file():
            continue
        try:
            data = yaml.safe_load(path.read_text())
        except (OSError, yaml.YAMLError) as e:
            logger.debug(f"[WORKITEMS] Skipping unreadable {path}: {e}")
            continue
        if not isinstance(data, dict):
            logger.debug(f"[WORKITEMS] Skipping {path}: not a mapping")
            continue
        data["source_path"] = f"{subdir}/{path.name}"
        try:
            records.append(model.model_validate(data))
        except ModelValidationError as e:
            logger.debug(f"[WORKITEMS] Skipping malformed {path}: {e.error_count()} error(s)")

    return sorted(records, key=lambda r: natural_key(r.id))


def read_adrs(initiative_path: Path) -> list[dict]:
    adrs_dir = initiative_path / "tier3" / "adrs"
    if not adrs_dir.is_dir():
        return []
    return [
        {
            "type": "adr",
            "id": path.stem,
            "title": path.stem.replace("-", " "),
            "path": f"../tier3/adrs/{path.name}",
        }
        for path in sorted(adrs_dir.glob("*.md"))
    ]


def read_project_info(initiative_id: str, initiative_path: Path) -> tuple[str, str]:
    """(title, description) from state.yaml metadata and the PRD problem statement."""
    metadata = read_yaml(initiative_path / "state.yaml").get("metadata")
    title = initiative_id
    if isinstance(metadata, dict) and metadata.get("title"):
        title = str(metadata["title"])

    description = ""
    try:
        prd = (initiative_path / "tier2" / "prd.md").read_text()
    except OSError:
        prd = ""
    match = PROBLEM_STATEMENT_PATTERN.search(prd)
    if match:
        description = match.group(1).strip()[:DESCRIPTION_MAX_LENGTH]

    return title, description


# =============================================================================
# Transform
# =============================================================================


def _meta(level: str, source_path: str, generated_at: str) -> WorkItemMeta:
    return WorkItemMeta(
        level=level,
        source=SourceRef(type=f"{level}_artifact", path=source_path),
        generated_at=generated_at,
    )


def transform_epic(epic: SourceEpic, uid: str, children: list[str], generated_at: str) -> Epic:
    success_metrics = None
    if epic.success_metrics is not None:
        success_metrics = [
            SuccessMetric(metric=m) if isinstance(m, str) else SuccessMetric.model_validate(m)
            for m in epic.success_metrics
        ]

    dependencies = None
    if epic.dependencies is not None:
        dependencies = [
            Dependency(description=d) if isinstance(d, str) else Dependency(
                type="internal" if d.get("type") == "internal" else "external",
                description=str(d.get("description") or ""),
            )
            for d in epic.dependencies
        ]

    risks = None
    if epic.risks is not None:
        risks = [Risk(description=r) if isinstance(r, str) else Risk.model_validate(r) for r in epic.risks]

    return Epic(
        meta=_meta("epic", epic.source_path, generated_at),
        id=f"{uid}-{slugify(epic.title)}",
        title=epic.title,
        description=epic.description or f"Epic: {epic.title}",
        status=map_status(epic.status),
        priority=map_priority(epic.moscow),
        created_at=epic.created_at or generated_at,
        updated_at=epic.updated_at,
        labels=epic.labels,
        estimate=Estimate(value=epic.complexity, unit="t-shirt") if epic.complexity else None,
        children=children or None,
        acceptance_criteria=epic.acceptance_criteria,
        success_metrics=success_metrics,
        dependencies=dependencies,
        risks=risks,
    )


def transform_story(story: SourceStory, uid: str, parent: str, children: list[str], generated_at: str) -> Story:
    return Story(
        meta=_meta("story", story.source_path, generated_at),
        id=f"{uid}-{slugify(story.title)}",
        title=story.title,
        description=story.description or f"Story: {story.title}",
        status=map_status(story.status),
        priority=map_priority(story.moscow),
        created_at=story.created_at or generated_at,
        updated_at=story.updated_at,
        labels=story.labels if story.labels is not None else story.skills_required,
        estimate=Estimate(value=story.story_points, unit="points") if story.story_points else None,
        parent=parent,
        children=children or None,
        blocked_by=dependency_ids(story.dependencies),
        acceptance_criteria=story.acceptance_criteria,
        user_story=parse_user_story(story.user_story),
    )


def transform_task(task: SourceTask, uid: str, parent: str, generated_at: str) -> Task:
    return Task(
        meta=_meta("task", task.source_path, generated_at),
        id=f"{uid}-{slugify(task.title)}",
        title=task.title,
        description=task.description or f"Task: {task.title}",
        status=map_status(task.status),
        priority="medium",
        created_at=task.created_at or generated_at,
        updated_at=task.updated_at,
        labels=task.skills_required,
        estimate=Estimate(value=task.estimated_hours, unit="hours") if task.estimated_hours else None,
        parent=parent,
        blocked_by=dependency_ids(task.dependencies),
        acceptance_criteria=task.test_requirements,
        implementation_notes=task.implementation_notes,
        affected_files=task.affected_files,
    )


def build_work_items(
    epics: list[SourceEpic],
    stories: list[SourceStory],
    tasks: list[SourceTask],
    generated_at: str,
) -> list[tuple[Epic, list[tuple[Story, list[Task]]]]]:
    """Link source records and assign hierarchical ids.

    Stories whose epic_id and tasks whose story_id resolve to nothing are
    left out of the tree.
    """
    stories_by_epic: dict[str, list[SourceStory]] = {e.id: [] for e in epics}
    for story in stories:
        if story.epic_id in stories_by_epic:
            stories_by_epic[story.epic_id].append(story)
        else:
            logger.debug(f"[WORKITEMS] Story {story.id} has no matching epic ({story.epic_id}), excluded")

    linked_story_ids = {s.id for group in stories_by_epic.values() for s in group}
    tasks_by_story: dict[str, list[SourceTask]] = {s: [] for s in linked_story_ids}
    for task in tasks:
        if task.story_id in tasks_by_story:
            tasks_by_story[task.story_id].append(task)
        else:
            logger.debug(f"[WORKITEMS] Task {task.id} has no matching story ({task.story_id}), excluded")

    tree = []
    for epic_index, source_epic in enumerate(epics, start=1):
        epic_uid = str(epic_index)
        epic_id = f"{epic_uid}-{slugify(source_epic.title)}"

        story_nodes = []
        for story_index, source_story in enumerate(stories_by_epic[source_epic.id], start=1):
            story_uid = f"{epic_uid}.{story_index}"
            story_id = f"{story_uid}-{slugify(source_story.title)}"

            task_items = [
                transform_task(source_task, f"{story_uid}.{task_index}", story_id, generated_at)
                for task_index, source_task in enumerate(tasks_by_story[source_story.id], start=1)
            ]
            story = transform_story(
                source_story, story_uid, epic_id, [t.id for t in task_items], generated_at
            )
            story_nodes.append((story, task_items))

        epic = transform_epic(source_epic, epic_uid, [s.id for s, _ in story_nodes], generated_at)
        tree.append((epic, story_nodes))

    return tree


# =============================================================================
# Manifest
# =============================================================================


def _node(item, path: str, children: Optional[list[dict]] = None) -> dict:
    node = {
        "id": item.id,
        "title": item.title,
        "slug": slugify(item.title),
        "level": item.level,
        "status": item.status,
        "priority": item.priority,
        "path": path,
    }
    if children:
        node["children"] = children
    return node


def build_manifest_tree(tree) -> list[dict]:
    nodes = []
    for epic, story_nodes in tree:
        story_entries = []
        for story, task_items in story_nodes:
            task_entries = [
                _node(task, f"{epic.id}/{story.id}/{task.id}.yaml") for task in task_items
            ]
            story_entries.append(_node(story, f"{epic.id}/{story.id}/story.yaml", task_entries))
        nodes.append(_node(epic, f"{epic.id}/epic.yaml", story_entries))
    return nodes


def calculate_summary(items: list) -> dict:
    by_level = {"epic": 0, "story": 0, "task": 0}
    by_status = {s: 0 for s in ("backlog", "todo", "in_progress", "in_review", "done", "cancelled")}
    by_priority = {p: 0 for p in ("urgent", "high", "medium", "low", "none")}

    for item in items:
        by_level[item.level] += 1
        by_status[item.status] += 1
        by_priority[item.priority] += 1

    return {
        "total_items": len(items),
        "by_level": by_level,
        "by_status": by_status,
        "by_priority": by_priority,
    }


def _flatten(tree) -> list:
    items = []
    for epic, story_nodes in tree:
        items.append(epic)
        for story, task_items in story_nodes:
            items.append(story)
            items.extend(task_items)
    return items


# =============================================================================
# Output
# =============================================================================


def write_work_items(output_dir: Path, tree, manifest: dict) -> None:
    """Replace output_dir with the generated tree."""
    if output_dir.exists():
        shutil.rmtree(output_dir)
    output_dir.mkdir(parents=True)

    (output_dir / MANIFEST_FILENAME).write_text(dump_yaml(manifest))

    reference = get_schemas_dir() / "workitems_schema.yaml"
    if reference.exists():
        shutil.copyfile(reference, output_dir / SCHEMA_REFERENCE)

    for epic, story_nodes in tree:
        epic_dir = output_dir / epic.id
        epic_dir.mkdir()
        (epic_dir / "epic.yaml").write_text(dump_yaml(epic.to_dict()))

        for story, task_items in story_nodes:
            story_dir = epic_dir / story.id
            story_dir.mkdir()
            (story_dir / "story.yaml").write_text(dump_yaml(story.to_dict()))

            for task in task_items:
                (story_dir / f"{task.id}.yaml").write_text(dump_yaml(task.to_dict()))


def generate_work_items(initiative_id: str, base_path: Optional[Path] = None) -> GenerationResult:
    """Generate the work item tree for an initiative.

    Returns an unsuccessful result (and leaves any existing output alone)
    when the initiative has no epics.
    """
    initiative_path = get_initiative_path(initiative_id, base_path)
    output_dir = initiative_path / WORKITEMS_DIR
    generated_at = now_iso()

    epics = read_records(initiative_path, EPICS_DIR, SourceEpic)
    stories = read_records(initiative_path, STORIES_DIR, SourceStory)
    tasks = read_records(initiative_path, TASKS_DIR, SourceTask)

    if not epics:
        return GenerationResult(False, output_dir, errors=[f"No epics found in {EPICS_DIR}/"])

    tree = build_work_items(epics, stories, tasks, generated_at)
    items = _flatten(tree)

    title, description = read_project_info(initiative_id, initiative_path)
    related = {
        "prd": {
            "type": "prd",
            "id": "prd",
            "title": "Product Requirements Document",
            "path": "../tier2/prd.md",
        },
    }
    adrs = read_adrs(initiative_path)
    if adrs:
        related["adrs"] = adrs

    manifest = {
        "schema_version": SCHEMA_VERSION,
        "generated_at": generated_at,
        "source": MANIFEST_SOURCE,
        "project": {"id": initiative_id, "title": title, "description": description},
        "tree": build_manifest_tree(tree),
        "related_documents": related,
        "summary": calculate_summary(items),
    }

    try:
        write_work_items(output_dir, tree, manifest)
    except OSError as e:
        logger.error(f"[WORKITEMS] {initiative_id}: failed to write {output_dir}: {e}")
        return GenerationResult(False, output_dir, errors=[str(e)])

    result = GenerationResult(
        True,
        output_dir,
        epics=manifest["summary"]["by_level"]["epic"],
        stories=manifest["summary"]["by_level"]["story"],
        tasks=manifest["summary"]["by_level"]["task"],
    )
    logger.info(
        f"[WORKITEMS] {initiative_id}: generated {result.epics} epics, "
        f"{result.stories} stories, {result.tasks} tasks"
    )
    return result
