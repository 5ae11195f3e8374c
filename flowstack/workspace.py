"""Workspace management for Flowstack sessions.

A session is the persisted plan plus execution state of one project root.
It lives in ``<project>/.flowstack/state/session.json`` and is rewritten after
every tracker mutation. Loading a session re-resolves the plan from the
stored tags and workflows directory, then verifies that the stored ordering
and checklist still match before restoring item statuses and gate results.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from .catalog import WorkflowCatalog
from .config import STORAGE_DIR_NAME
from .errors import NoActiveSession, StaleSession
from .flowstack_logging import (
    log_error_with_context,
    log_operation,
    log_performance,
    observability_hooks,
)
from .models import utc_now
from .resolver import resolve
from .tracker import ExecutionTracker

logger = logging.getLogger("flowstack.workspace")

SESSION_FORMAT_VERSION = 1


class Workspace:
    """Manage the Flowstack session stored inside a project root."""

    SESSION_FILE = "session.json"

    def __init__(self, root: Union[Path, str], storage_dir_name: str = STORAGE_DIR_NAME):
        """Initialize workspace with given root directory."""
        self.root = Path(root).resolve()
        self.base_dir = self.root / storage_dir_name
        self.state_dir = self.base_dir / "state"

        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log_error_with_context(e, {"operation": "workspace_init", "root": str(self.root)})
            raise RuntimeError(f"Could not initialize workspace at {self.root}: {e}") from e

        logger.debug(f"Workspace initialized at {self.root}")

    @property
    def session_path(self) -> Path:
        return self.state_dir / self.SESSION_FILE

    def has_session(self) -> bool:
        return self.session_path.exists()

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    @staticmethod
    def load_catalog(workflows_dir: Optional[Union[str, Path]] = None) -> WorkflowCatalog:
        """Load the catalog from a directory, or the built-in playbooks."""
        if workflows_dir is None:
            return WorkflowCatalog.builtin()
        return WorkflowCatalog.from_directory(workflows_dir)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    @log_performance("resolve_session")
    def resolve(
        self,
        tags: Iterable[str],
        workflows_dir: Optional[Union[str, Path]] = None,
    ) -> ExecutionTracker:
        """Resolve a fresh plan for ``tags`` and replace any stored session."""
        tag_list = list(tags)
        workflows_path = Path(workflows_dir).resolve() if workflows_dir else None

        with log_operation("resolve_session", root=str(self.root), tags=tag_list):
            catalog = self.load_catalog(workflows_path)
            plan = resolve(tag_list, catalog)
            tracker = ExecutionTracker(plan)
            self._write(tracker, workflows_path)

        observability_hooks.log_workflow_event(
            "session_created",
            root=str(self.root),
            workflows=plan.workflow_names,
        )
        return tracker

    def _read_session(self) -> Dict[str, Any]:
        if not self.session_path.exists():
            raise NoActiveSession(self.root)
        try:
            data = json.loads(self.session_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StaleSession(f"cannot read {self.session_path}: {e}") from e
        if not isinstance(data, dict) or data.get("version") != SESSION_FORMAT_VERSION:
            raise StaleSession(f"unsupported session format in {self.session_path}")
        return data

    @log_performance("load_session")
    def load_tracker(self) -> ExecutionTracker:
        """Rebuild the tracker for the stored session.

        Raises NoActiveSession when nothing was resolved yet and StaleSession
        when the catalog no longer produces the stored plan.
        """
        try:
            data = self._read_session()
            workflows_dir = data.get("workflows_dir")
            catalog = self.load_catalog(workflows_dir)
            plan = resolve(data.get("requested_tags", []), catalog)
            try:
                tracker = ExecutionTracker.restore(plan, data.get("snapshot", {}))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                raise StaleSession(f"corrupt session data in {self.session_path}: {e!r}") from e
        except (NoActiveSession, StaleSession) as e:
            log_error_with_context(e, {"operation": "load_session", "root": str(self.root)})
            raise

        logger.debug(f"Restored session with {len(plan.ordered_workflow_instances)} workflows")
        return tracker

    def stored_workflows_dir(self) -> Optional[Path]:
        """Workflows directory recorded in the session, if any."""
        data = self._read_session()
        value = data.get("workflows_dir")
        return Path(value) if value else None

    def save(self, tracker: ExecutionTracker) -> Path:
        """Persist the tracker state, keeping the stored workflows directory."""
        workflows_dir = self.stored_workflows_dir() if self.session_path.exists() else None
        return self._write(tracker, workflows_dir)

    def _write(self, tracker: ExecutionTracker, workflows_dir: Optional[Path]) -> Path:
        payload = {
            "version": SESSION_FORMAT_VERSION,
            "requested_tags": list(tracker.plan.requested_tags),
            "workflows_dir": str(workflows_dir) if workflows_dir else None,
            "saved_at": utc_now(),
            "snapshot": tracker.snapshot(),
        }
        temp_path = self.session_path.with_suffix(".json.tmp")
        temp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        temp_path.replace(self.session_path)
        logger.debug(f"Session saved to {self.session_path}")
        return self.session_path

    def clear(self) -> bool:
        """Delete the stored session. Returns False when there was none."""
        if not self.session_path.exists():
            return False
        self.session_path.unlink()
        logger.info(f"Session cleared at {self.root}")
        return True
