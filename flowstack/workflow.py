"""Workflow management for Flowstack.

This module provides the operator-facing facade shared by the CLI and the
MCP server. Every method loads the session, performs one tracker operation,
persists the result and returns a plain dict with a ``next_suggested_step``
hint. Errors come back as dicts carrying ``error``, ``error_type``,
``suggestion`` and the ``exit_code`` the CLI should use.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from .catalog import WorkflowCatalog
from .config import ConfigError, FlowstackConfig, load_config
from .errors import (
    EXIT_INVARIANT,
    EXIT_OK,
    FlowstackError,
    GateCheckFailed,
    NoActiveSession,
    StaleSession,
)
from .flowstack_logging import log_error_with_context, log_operation, observability_hooks
from .gates import CheckRunner, CommandCheckRunner
from .models import GUIDE_STEPS, PhaseName
from .tracker import ExecutionTracker
from .workspace import Workspace

logger = logging.getLogger("flowstack.workflow")


def _error_response(error: Exception, operation: str, next_step: Optional[str] = None) -> Dict[str, Any]:
    """Convert an exception into the dict shape returned by every operation."""
    log_error_with_context(error, {"operation": operation})
    if isinstance(error, FlowstackError):
        response = error.to_dict()
        response["exit_code"] = error.exit_code
    else:
        response = {
            "error": str(error),
            "error_type": type(error).__name__,
            "suggestion": "Check the project root and .flowstack/config.yaml",
            "exit_code": EXIT_INVARIANT,
        }
    response["next_suggested_step"] = next_step
    return response


class WorkflowManager:
    """Manages the Flowstack session of one project root."""

    def __init__(
        self,
        root: Optional[Union[Path, str]] = None,
        config: Optional[FlowstackConfig] = None,
    ):
        """Initialize the manager from a project root or a loaded config."""
        self.config = config or load_config(root)
        self.workspace = Workspace(self.config.project_root, self.config.storage_dir_name)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def catalog(self, workflows_dir: Optional[Union[str, Path]] = None) -> WorkflowCatalog:
        return Workspace.load_catalog(workflows_dir or self.config.workflows_dir)

    def check_runner(self) -> CheckRunner:
        """Runner executing the configured check commands in the project root."""
        return CommandCheckRunner(
            self.config.checks,
            cwd=self.config.project_root,
            timeout=self.config.check_timeout,
            coverage_threshold=self.config.coverage_threshold,
        )

    @staticmethod
    def _suggest(tracker: ExecutionTracker) -> Dict[str, Optional[str]]:
        """Work out the next operator action for the current tracker state."""
        if tracker.is_finished():
            return {
                "next_suggested_step": None,
                "workflow_tip": "Every checklist item is done. Resolve a new plan for the next change.",
            }
        current = tracker.current_item()
        if current is not None:
            return {
                "next_suggested_step": "complete_current",
                "workflow_tip": f"Work on '{current.item_id}', then mark it done with complete_current",
            }
        for instance, phase, item in tracker.plan.iter_items():
            if item.is_done:
                continue
            blocking = instance.blocking_gates()
            if phase.name == PhaseName.COMMIT and blocking:
                return {
                    "next_suggested_step": "run_gate",
                    "workflow_tip": (
                        f"Commit for '{instance.name}' is locked; run the "
                        f"{blocking[0].name} gate with run_gate first"
                    ),
                }
            break
        else:
            for instance in tracker.plan.ordered_workflow_instances:
                blocking = instance.blocking_gates()
                if blocking:
                    return {
                        "next_suggested_step": "run_gate",
                        "workflow_tip": (
                            f"Every item is done; the {blocking[0].name} gate of "
                            f"'{instance.name}' still has to pass"
                        ),
                    }
        return {
            "next_suggested_step": "start_next",
            "workflow_tip": "Take the next checklist item with start_next",
        }

    # ------------------------------------------------------------------
    # Catalog queries
    # ------------------------------------------------------------------

    def list_workflows(self) -> Dict[str, Any]:
        """List the workflows available to this project."""
        try:
            catalog = self.catalog()
            return {
                "workflows": [
                    {
                        "name": document.name,
                        "title": document.title,
                        "version": document.version,
                        "applicable_stacks": sorted(document.applicable_stacks),
                        "depends_on": sorted(document.depends_on),
                    }
                    for document in catalog
                ],
                "tags": catalog.all_tags(),
                "source_dir": str(catalog.source_dir) if catalog.source_dir else None,
                "exit_code": EXIT_OK,
                "next_suggested_step": "resolve_plan",
            }
        except (FlowstackError, ConfigError, OSError) as e:
            return _error_response(e, "list_workflows")

    def show_workflow(self, name: str) -> Dict[str, Any]:
        """Describe one workflow template."""
        try:
            document = self.catalog().get(name)
            return {"workflow": document.to_dict(), "exit_code": EXIT_OK}
        except (FlowstackError, ConfigError, OSError) as e:
            return _error_response(e, "show_workflow", "list_workflows")

    # ------------------------------------------------------------------
    # Session operations
    # ------------------------------------------------------------------

    def resolve_plan(
        self,
        tags: Iterable[str],
        workflows_dir: Optional[Union[str, Path]] = None,
    ) -> Dict[str, Any]:
        """Resolve and persist a plan for the requested stack tags."""
        tag_list = [tag for tag in tags if tag and tag.strip()]
        if not tag_list:
            return _error_response(ValueError("At least one stack tag is required"), "resolve_plan", "list_workflows")

        try:
            with log_operation("resolve_plan", tags=tag_list):
                tracker = self.workspace.resolve(tag_list, workflows_dir or self.config.workflows_dir)
        except (FlowstackError, ConfigError, OSError) as e:
            return _error_response(e, "resolve_plan", "list_workflows")

        plan = tracker.plan
        logger.info(f"Resolved plan: {', '.join(plan.workflow_names) or '(empty)'}")
        response = {
            "plan": plan.to_dict(),
            "workflows": plan.workflow_names,
            "unmatched_tags": list(plan.unmatched_tags),
            "session_path": str(self.workspace.session_path),
            "exit_code": EXIT_OK,
        }
        if not plan.ordered_workflow_instances:
            response["next_suggested_step"] = "list_workflows"
            response["workflow_tip"] = "No workflow matched; check the available tags with list_workflows"
        else:
            response.update(self._suggest(tracker))
        return response

    def _mutate(self, operation: str, action) -> Dict[str, Any]:
        try:
            tracker = self.workspace.load_tracker()
            item = action(tracker)
            self.workspace.save(tracker)
        except FlowstackError as e:
            next_step = "resolve_plan" if isinstance(e, (NoActiveSession, StaleSession)) else "execution_status"
            return _error_response(e, operation, next_step)
        except (ConfigError, OSError) as e:
            return _error_response(e, operation)

        response = {
            "item": item.to_dict(),
            "finished": tracker.is_finished(),
            "summary": tracker.summary().to_dict(),
            "exit_code": EXIT_OK,
        }
        response.update(self._suggest(tracker))
        return response

    def start_next(self) -> Dict[str, Any]:
        """Start the next pending checklist item."""
        return self._mutate("start_next", lambda tracker: tracker.start_next())

    def complete_current(self) -> Dict[str, Any]:
        """Mark the in-progress item done."""
        return self._mutate("complete_current", lambda tracker: tracker.complete_current())

    def abandon_current(self) -> Dict[str, Any]:
        """Release the in-progress item back to pending."""
        return self._mutate("abandon_current", lambda tracker: tracker.abandon_current())

    def run_gate(self, workflow: str, phase: str, runner: Optional[CheckRunner] = None) -> Dict[str, Any]:
        """Run a phase gate and persist its result.

        A failing gate returns the GateCheckFailed error fields alongside the
        gate result, with exit code 1.
        """
        try:
            tracker = self.workspace.load_tracker()
            with log_operation("run_gate", workflow=workflow, phase=phase):
                result = tracker.run_gate(workflow, phase, runner or self.check_runner())
            self.workspace.save(tracker)
        except FlowstackError as e:
            return _error_response(e, "run_gate", "execution_status")
        except (ConfigError, OSError) as e:
            return _error_response(e, "run_gate")

        response: Dict[str, Any] = {"workflow": workflow, "gate": result.to_dict()}
        if result.passed:
            response["exit_code"] = EXIT_OK
            response.update(self._suggest(tracker))
            return response

        failure = GateCheckFailed(result.failed_check or "gate", result.reason, phase=f"{workflow}/{result.phase}")
        log_error_with_context(failure, {"operation": "run_gate", "workflow": workflow})
        response.update(failure.to_dict())
        response["exit_code"] = failure.exit_code
        response["next_suggested_step"] = "run_gate"
        response["workflow_tip"] = f"Fix the '{failure.name}' check, then re-run the gate"
        return response

    def execution_status(self) -> Dict[str, Any]:
        """Report the current item, progress and gate state."""
        try:
            tracker = self.workspace.load_tracker()
            status = tracker.status()
        except FlowstackError as e:
            return _error_response(e, "execution_status", "resolve_plan")
        except (ConfigError, OSError) as e:
            return _error_response(e, "execution_status")

        status["requested_tags"] = list(tracker.plan.requested_tags)
        status["unmatched_tags"] = list(tracker.plan.unmatched_tags)
        status["exit_code"] = EXIT_OK
        status.update(self._suggest(tracker))
        observability_hooks.log_workflow_event(
            "status_checked",
            completion_rate=status["summary"]["completion_rate"],
        )
        return status

    def reset_session(self) -> Dict[str, Any]:
        """Discard the stored plan and execution state."""
        try:
            cleared = self.workspace.clear()
        except OSError as e:
            return _error_response(e, "reset_session")

        if cleared:
            observability_hooks.log_workflow_event("session_cleared", root=str(self.workspace.root))
        return {
            "cleared": cleared,
            "exit_code": EXIT_OK,
            "next_suggested_step": "resolve_plan",
            "workflow_tip": "Resolve a new plan with resolve_plan",
        }

    def current_plan(self) -> Dict[str, Any]:
        """Full plan with item statuses, for the plan resource."""
        try:
            tracker = self.workspace.load_tracker()
        except FlowstackError as e:
            return _error_response(e, "current_plan", "resolve_plan")
        return tracker.plan.to_dict()

    # ------------------------------------------------------------------
    # Workflow guidance
    # ------------------------------------------------------------------

    @staticmethod
    def get_workflow_guide() -> Dict[str, Any]:
        """Get the recommended operator loop."""
        return {
            "workflow_overview": "Compose stack workflows, then work through them one checklist item at a time",
            "steps": [step.to_dict() for step in GUIDE_STEPS],
            "tips": [
                "Only one checklist item can be in progress at a time",
                "Workflows run in dependency order; ties are broken alphabetically",
                "Commit items stay locked until every gate of their workflow passes",
                "A failed gate is never retried automatically; fix the check and re-run it",
                "Re-run resolve_plan after editing workflow files",
            ],
        }
