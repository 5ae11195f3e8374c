"""Execution tracker.

Owns the ExecutionState of one project session and advances checklist items
across a ResolvedPlan with the rule that at most one item is in progress at
any time. Items run in plan order: workflows in dependency order, phases in
RED -> GREEN -> REFACTOR -> COMMIT order, items in declared order.

Commit items are guarded: they can neither be started nor completed while
any gate of their workflow instance has not last passed.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from .errors import (
    AlreadyInProgress,
    FlowstackError,
    GateCheckFailed,
    NoActiveItem,
    NothingPending,
    StaleSession,
    UnknownWorkflow,
)
from .flowstack_logging import (
    log_error_with_context,
    log_gate_result,
    log_item_transition,
    log_performance,
    log_plan_finished,
)
from .gates import CheckRunner
from .models import (
    ChecklistItem,
    ExecutionState,
    ExecutionSummary,
    GateResult,
    Phase,
    PhaseName,
    ResolvedPlan,
    WorkflowInstance,
    utc_now,
)
from .state_machine import ItemStatus

logger = logging.getLogger("flowstack.tracker")

Located = Tuple[WorkflowInstance, Phase, ChecklistItem]


class ExecutionTracker:
    """Advances one item at a time through a resolved plan."""

    def __init__(self, plan: ResolvedPlan, state: Optional[ExecutionState] = None):
        self.plan = plan
        self.state = state or ExecutionState()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_item(self) -> Optional[ChecklistItem]:
        located = self._current()
        return located[2] if located else None

    def in_progress_items(self) -> List[ChecklistItem]:
        return [item for _, _, item in self.plan.iter_items() if item.status == ItemStatus.IN_PROGRESS]

    def is_finished(self) -> bool:
        """True once every phase is complete, gates included."""
        return all(instance.is_complete() for instance in self.plan.ordered_workflow_instances)

    def _current(self) -> Optional[Located]:
        if self.state.current is None:
            return None
        located = self.plan.find_item(self.state.current)
        if located is None:
            raise StaleSession(f"in-progress item '{self.state.current}' is not part of the plan")
        return located

    def _next_pending(self) -> Optional[Located]:
        for located in self.plan.iter_items():
            if located[2].status == ItemStatus.PENDING:
                return located
        return None

    def _ensure_commit_allowed(self, instance: WorkflowInstance, phase: Phase) -> None:
        """Raise GateCheckFailed while any gate of the instance has not passed."""
        if phase.name != PhaseName.COMMIT:
            return
        blocking = instance.blocking_gates()
        if not blocking:
            return
        first = blocking[0]
        result = first.last_gate_result
        if result is None:
            check = first.gate.checks[0] if first.gate else "gate"
            reason = f"the {first.name} gate of '{instance.name}' has not been run"
        else:
            check = result.failed_check or "gate"
            reason = result.reason or "gate did not pass"
        raise GateCheckFailed(check, reason, phase=f"{instance.name}/{first.name}")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @log_performance("start_next")
    def start_next(self) -> ChecklistItem:
        """Move the next pending item to in_progress."""
        try:
            current = self._current()
            if current is not None:
                raise AlreadyInProgress(current[2].item_id)

            located = self._next_pending()
            if located is None:
                raise NothingPending()
            instance, phase, item = located
            self._ensure_commit_allowed(instance, phase)

            item.start()
            self.state.current = item.item_id
        except FlowstackError as e:
            log_error_with_context(e, {"operation": "start_next", "current": self.state.current})
            raise

        logger.info(f"Started '{item.item_id}': {item.description}")
        log_item_transition(item.item_id, ItemStatus.PENDING, ItemStatus.IN_PROGRESS,
                            workflow=instance.name, phase=phase.name)
        return item

    @log_performance("complete_current")
    def complete_current(self) -> ChecklistItem:
        """Move the in-progress item to done."""
        try:
            current = self._current()
            if current is None:
                raise NoActiveItem()
            instance, phase, item = current
            self._ensure_commit_allowed(instance, phase)

            item.mark_done()
            self.state.current = None
            self.state.record_completion(item.item_id)
        except FlowstackError as e:
            log_error_with_context(e, {"operation": "complete_current", "current": self.state.current})
            raise

        logger.info(f"Completed '{item.item_id}'")
        log_item_transition(item.item_id, ItemStatus.IN_PROGRESS, ItemStatus.DONE,
                            workflow=instance.name, phase=phase.name)

        if self.is_finished():
            self._teardown()
        return item

    @log_performance("abandon_current")
    def abandon_current(self) -> ChecklistItem:
        """Release the in-progress item back to pending."""
        try:
            current = self._current()
            if current is None:
                raise NoActiveItem()
            instance, phase, item = current
            item.reset()
            self.state.current = None
        except FlowstackError as e:
            log_error_with_context(e, {"operation": "abandon_current", "current": self.state.current})
            raise

        logger.info(f"Abandoned '{item.item_id}'")
        log_item_transition(item.item_id, ItemStatus.IN_PROGRESS, ItemStatus.PENDING,
                            workflow=instance.name, phase=phase.name)
        return item

    def _teardown(self) -> None:
        self.state.current = None
        self.state.finished_at = utc_now()
        total = sum(1 for _ in self.plan.iter_items())
        logger.info(f"Plan complete: {total} items done")
        log_plan_finished(total, workflows=self.plan.workflow_names)

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    def find_phase(self, workflow_name: str, phase_name: str) -> Tuple[WorkflowInstance, Phase]:
        instance = self.plan.get_instance(workflow_name.strip().lower())
        if instance is None:
            raise UnknownWorkflow(workflow_name)
        phase = instance.get_phase(phase_name)
        if phase is None:
            raise UnknownWorkflow(f"{workflow_name}/{phase_name}")
        return instance, phase

    @log_performance("run_gate")
    def run_gate(self, workflow_name: str, phase_name: str, runner: CheckRunner) -> GateResult:
        """Run the gate of one phase and record the result.

        A failing gate is returned, not raised; callers decide whether to
        abandon the current item. A passing gate that was the last open part
        of the plan tears the state down.
        """
        instance, phase = self.find_phase(workflow_name, phase_name)
        result = phase.run_gate(runner)
        log_gate_result(instance.name, phase.name, result.passed, result.failed_check,
                        reason=result.reason)

        if self.is_finished():
            if not self.state.is_torn_down:
                self._teardown()
        elif self.state.is_torn_down:
            # A gate regressed after the plan finished
            self.state.finished_at = None
        return result

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def summary(self) -> ExecutionSummary:
        summary = ExecutionSummary(total_workflows=len(self.plan.ordered_workflow_instances))
        for instance in self.plan.ordered_workflow_instances:
            if instance.is_complete():
                summary.completed_workflows += 1
            for phase in instance.phases:
                if phase.gate is not None and not phase.gate_passed:
                    summary.blocked_gates.append(f"{instance.name}/{phase.name}")
                for item in phase.items:
                    summary.total_items += 1
                    if item.status == ItemStatus.DONE:
                        summary.done_items += 1
                    elif item.status == ItemStatus.IN_PROGRESS:
                        summary.in_progress_items += 1
                    else:
                        summary.pending_items += 1
        return summary

    def status(self) -> Dict[str, Any]:
        """Snapshot of the current item, progress and gate state."""
        current = self._current()
        next_pending = self._next_pending()
        return {
            "current": current[2].to_dict() if current else None,
            "current_workflow": current[0].name if current else None,
            "current_phase": current[1].name if current else None,
            "next_pending": next_pending[2].to_dict() if next_pending and not current else None,
            "finished": self.is_finished(),
            "summary": self.summary().to_dict(),
            "state": self.state.to_dict(),
            "workflows": [
                {
                    "name": instance.name,
                    "complete": instance.is_complete(),
                    "phases": [
                        {
                            "name": phase.name,
                            "done": sum(1 for item in phase.items if item.is_done),
                            "total": len(phase.items),
                            "gate": list(phase.gate.checks) if phase.gate else None,
                            "gate_passed": phase.gate_passed if phase.gate else None,
                        }
                        for phase in instance.phases
                    ],
                }
                for instance in self.plan.ordered_workflow_instances
            ],
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """Serializable record of item statuses, gate results and state."""
        items = {item.item_id: item.to_dict() for _, _, item in self.plan.iter_items()}
        gates = {
            f"{instance.name}/{phase.name}": phase.last_gate_result.to_dict()
            for instance in self.plan.ordered_workflow_instances
            for phase in instance.phases
            if phase.last_gate_result is not None
        }
        return {
            "workflows": self.plan.workflow_names,
            "items": items,
            "gates": gates,
            "state": self.state.to_dict(),
        }

    @classmethod
    def restore(cls, plan: ResolvedPlan, snapshot: Dict[str, Any]) -> "ExecutionTracker":
        """Rebuild a tracker for a freshly resolved plan from a snapshot."""
        if list(snapshot.get("workflows", [])) != plan.workflow_names:
            raise StaleSession("the resolved workflow order differs from the stored plan")

        stored_items = snapshot.get("items", {})
        plan_ids = [item.item_id for _, _, item in plan.iter_items()]
        if sorted(stored_items) != sorted(plan_ids):
            raise StaleSession("workflow checklists changed since the plan was resolved")

        for _, _, item in plan.iter_items():
            stored = ChecklistItem.from_dict(stored_items[item.item_id])
            item.status = stored.status
            item.started_at = stored.started_at
            item.completed_at = stored.completed_at

        for key, data in snapshot.get("gates", {}).items():
            workflow_name, _, phase_name = key.partition("/")
            instance = plan.get_instance(workflow_name)
            phase = instance.get_phase(phase_name) if instance else None
            if phase is None:
                raise StaleSession(f"gate result for unknown phase '{key}'")
            phase.last_gate_result = GateResult.from_dict(data)

        state = ExecutionState.from_dict(snapshot.get("state", {}))
        tracker = cls(plan, state)

        in_progress = tracker.in_progress_items()
        expected = [state.current] if state.current else []
        if [item.item_id for item in in_progress] != expected:
            raise StaleSession("stored in-progress item does not match item statuses")
        return tracker
