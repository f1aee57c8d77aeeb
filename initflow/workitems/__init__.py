"""
Work items module for initiative-flow.

Turns tier artifacts (epics, stories, tasks) into a universal
epic/story/task tree under <initiative>/workitems/, validates that tree,
and optionally keeps it in sync as the sources change.
"""

from initflow.workitems.models import Epic, Story, Task, WorkItem
from initflow.workitems.generate import GenerationResult, generate_work_items, slugify
from initflow.workitems.validate import ValidationResult, validate_work_items
from initflow.workitems.watch import WorkItemsWatcher, is_auto_generate_enabled, trigger_auto_generate

__all__ = [
    "Epic",
    "Story",
    "Task",
    "WorkItem",
    "GenerationResult",
    "generate_work_items",
    "slugify",
    "ValidationResult",
    "validate_work_items",
    "WorkItemsWatcher",
    "is_auto_generate_enabled",
    "trigger_auto_generate",
]
