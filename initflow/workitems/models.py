"""
Data models for work items.

Two families:
- Source records: epics, stories and tasks as authored in the tier
  artifacts (tier2/epics, tier3/stories, tier3/tasks). Lenient, unknown
  keys are ignored.
- Universal work items: the normalized epic/story/task tree written to
  <initiative>/workitems/.
"""

import logging
from datetime import date, datetime
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic import ValidationError as ModelValidationError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"

LEVELS = ("epic", "story", "task")
STATUSES = ("backlog", "todo", "in_progress", "in_review", "done", "cancelled")
PRIORITIES = ("urgent", "high", "medium", "low", "none")
ESTIMATE_UNITS = ("points", "hours", "days", "t-shirt")

Level = Literal["epic", "story", "task"]
Status = Literal["backlog", "todo", "in_progress", "in_review", "done", "cancelled"]
Priority = Literal["urgent", "high", "medium", "low", "none"]
Number = Union[int, float]


# =============================================================================
# Source records
# =============================================================================


class SourceRecord(BaseModel):
    """Fields shared by authored epics, stories and tasks."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: Optional[str] = None
    status: Optional[str] = None
    labels: Optional[list[str]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    source_path: str = ""  # Relative to the initiative, set by the reader

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _dates_as_text(cls, value: Any) -> Any:
        if isinstance(value, (date, datetime)):
            return value.isoformat()
        return value

    @field_validator("*", mode="wrap")
    @classmethod
    def _drop_unusable(cls, value: Any, handler, info: ValidationInfo) -> Any:
        # Only id and title are required to keep a record
        try:
            return handler(value)
        except ModelValidationError:
            if info.field_name in ("id", "title"):
                raise
            logger.debug(f"[WORKITEMS] Ignoring unusable {info.field_name} value {value!r}")
            return None


class SourceEpic(SourceRecord):
    moscow: Optional[str] = None
    complexity: Optional[str] = None  # XS | S | M | L | XL
    estimated_weeks: Optional[Union[Number, str]] = None
    acceptance_criteria: Optional[list[Any]] = None
    dependencies: Optional[list[Union[str, dict]]] = None
    risks: Optional[list[Union[str, dict]]] = None
    success_metrics: Optional[list[Union[str, dict]]] = None


class SourceStory(SourceRecord):
    epic_id: Optional[str] = None
    user_story: Optional[Union[str, dict]] = None
    moscow: Optional[str] = None
    story_points: Optional[Union[Number, str]] = None
    acceptance_criteria: Optional[list[Any]] = None
    skills_required: Optional[list[str]] = None
    dependencies: Optional[list[Union[str, dict]]] = None


class SourceTask(SourceRecord):
    story_id: Optional[str] = None
    skills_required: Optional[list[str]] = None
    estimated_hours: Optional[Union[Number, str]] = None
    dependencies: Optional[list[Union[str, dict]]] = None
    implementation_notes: Optional[str] = None
    affected_files: Optional[list[str]] = None
    test_requirements: Optional[list[Any]] = None


# =============================================================================
# Universal work items
# =============================================================================


class SourceRef(BaseModel):
    type: str  # epic_artifact | story_artifact | task_artifact
    path: str


class WorkItemMeta(BaseModel):
    schema_version: str = SCHEMA_VERSION
    level: Level
    source: SourceRef
    generated_at: str


class Estimate(BaseModel):
    value: Union[Number, str]
    unit: Literal["points", "hours", "days", "t-shirt"]


class SuccessMetric(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    metric: str
    target: str = ""


class Dependency(BaseModel):
    type: Literal["internal", "external"] = "external"
    description: str


class Risk(BaseModel):
    description: str
    mitigation: Optional[str] = None


class UserStory(BaseModel):
    as_a: str = ""
    i_want: str = ""
    so_that: str = ""


class WorkItem(BaseModel):
    """Common shape of every generated epic, story and task."""

    model_config = ConfigDict(populate_by_name=True)

    meta: WorkItemMeta = Field(alias="_meta")
    id: str
    title: str
    description: str
    status: Status
    priority: Priority = "medium"
    created_at: str
    updated_at: Optional[str] = None
    labels: Optional[list[str]] = None
    estimate: Optional[Estimate] = None
    parent: Optional[str] = None
    children: Optional[list[str]] = None
    blocked_by: Optional[list[str]] = None
    acceptance_criteria: Optional[list[Any]] = None

    @property
    def level(self) -> str:
        return self.meta.level

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class Epic(WorkItem):
    success_metrics: Optional[list[SuccessMetric]] = None
    dependencies: Optional[list[Dependency]] = None
    risks: Optional[list[Risk]] = None


class Story(WorkItem):
    user_story: Optional[UserStory] = None


class Task(WorkItem):
    implementation_notes: Optional[str] = None
    affected_files: Optional[list[str]] = None
