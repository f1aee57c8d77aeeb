"""
Automatic work item regeneration.

WorkItemsWatcher polls the epic, story and task source directories of an
initiative and regenerates the work item tree when any YAML file is
added, changed or removed. Changes are debounced, and regenerations never
overlap: a change arriving mid-run queues exactly one more run.

Regeneration is best-effort. Failures are logged and the watcher keeps
running.
"""

import logging
import threading
from pathlib import Path
from typing import Callable, Optional

from initflow.lib.config import load_flow_config
from initflow.workflow.initiative import get_initiative_path
from initflow.workitems.generate import EPICS_DIR, STORIES_DIR, TASKS_DIR, GenerationResult, generate_work_items

logger = logging.getLogger(__name__)

WATCH_DIRS = (EPICS_DIR, STORIES_DIR, TASKS_DIR)
DEBOUNCE_SECONDS = 0.5
POLL_INTERVAL_SECONDS = 1.0


class WorkItemsWatcher:
    """Poll-based watcher that keeps workitems/ in sync with its sources."""

    def __init__(
        self,
        initiative_id: str,
        base_path: Optional[Path] = None,
        debounce: float = DEBOUNCE_SECONDS,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        on_generated: Callable[[GenerationResult], None] | None = None,
    ):
        self.initiative_id = initiative_id
        self.base_path = base_path
        self.initiative_path = get_initiative_path(initiative_id, base_path)
        self.debounce = debounce
        self.poll_interval = poll_interval
        self.on_generated = on_generated

        self._lock = threading.Lock()
        self._busy = False
        self._pending = False
        self._timer: threading.Timer | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._snapshot = self.snapshot()

    def snapshot(self) -> dict[str, float]:
        """Modification times of every source YAML file."""
        mtimes = {}
        for subdir in WATCH_DIRS:
            source_dir = self.initiative_path / subdir
            if not source_dir.is_dir():
                continue
            for path in source_dir.rglob("*"):
                if path.suffix not in (".yaml", ".yml"):
                    continue
                try:
                    mtimes[path.relative_to(self.initiative_path).as_posix()] = path.stat().st_mtime
                except OSError:
                    continue
        return mtimes

    def check_for_changes(self) -> bool:
        """Compare against the last snapshot; schedule a regeneration on change."""
        current = self.snapshot()
        changed = current != self._snapshot
        self._snapshot = current
        if changed:
            logger.debug(f"[WORKITEMS] {self.initiative_id}: source change detected")
            self.schedule()
        return changed

    def schedule(self) -> None:
        """Debounce: restart the countdown on every change."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        self.regenerate()

    def regenerate(self) -> Optional[GenerationResult]:
        """Run generation now unless one is in progress, in which case queue one more."""
        with self._lock:
            if self._busy:
                self._pending = True
                return None
            self._busy = True

        result = None
        try:
            while True:
                result = self._generate()
                with self._lock:
                    if not self._pending:
                        break
                    self._pending = False
        finally:
            with self._lock:
                self._busy = False
        return result

    def _generate(self) -> Optional[GenerationResult]:
        logger.info(f"[WORKITEMS] {self.initiative_id}: regenerating work items")
        try:
            result = generate_work_items(self.initiative_id, self.base_path)
        except Exception as e:
            logger.error(f"[WORKITEMS] {self.initiative_id}: regeneration failed: {e}")
            return None

        if not result.success:
            logger.warning(f"[WORKITEMS] {self.initiative_id}: {', '.join(result.errors)}")
        if self.on_generated:
            self.on_generated(result)
        return result

    def run(self) -> None:
        """Poll until stop() is called."""
        logger.info(f"[WORKITEMS] Watching {self.initiative_path} for source changes")
        while not self._stop.wait(self.poll_interval):
            self.check_for_changes()

    def start(self) -> None:
        """Run the poll loop in a background thread."""
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name=f"workitems-{self.initiative_id}", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if self._thread is not None:
            self._thread.join(timeout=self.poll_interval * 2)
            self._thread = None


def is_auto_generate_enabled(initiative_id: str, openspec_dir: Optional[Path] = None) -> bool:
    """True when config.yaml enables work items with auto_generate for the initiative."""
    config = load_flow_config(openspec_dir)
    settings = config.workitems.get(initiative_id)
    return bool(settings and settings.enabled and settings.auto_generate)


def trigger_auto_generate(
    initiative_id: str,
    openspec_dir: Optional[Path] = None,
    base_path: Optional[Path] = None,
) -> Optional[GenerationResult]:
    """Regenerate work items if auto-generation is enabled. Never raises."""
    try:
        if not is_auto_generate_enabled(initiative_id, openspec_dir):
            return None
        result = generate_work_items(initiative_id, base_path)
    except Exception as e:
        logger.warning(f"[WORKITEMS] {initiative_id}: auto-generation failed: {e}")
        return None

    if not result.success:
        logger.warning(f"[WORKITEMS] {initiative_id}: auto-generation failed: {', '.join(result.errors)}")
    return result
