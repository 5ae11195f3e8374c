"""Data models for Flowstack workflow composition.

This module contains the core data structures used throughout Flowstack:
checklist items, phases, workflow document templates and their per-project
instances, resolved plans, gate results and execution state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple

from .state_machine import ItemStatus, validate_transition

if TYPE_CHECKING:
    from .gates import CheckRunner, ValidationGate


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


class PhaseName:
    RED = "Red"
    GREEN = "Green"
    REFACTOR = "Refactor"
    COMMIT = "Commit"

    # Canonical execution order
    ORDER = (RED, GREEN, REFACTOR, COMMIT)

    @classmethod
    def normalize(cls, value: str) -> Optional[str]:
        """Map a case-insensitive phase name onto its canonical spelling."""
        lowered = value.strip().lower()
        for name in cls.ORDER:
            if name.lower() == lowered:
                return name
        return None


# ---------------------------------------------------------------------------
# Checklist model
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ChecklistItem:
    """A single checkbox in a phase checklist."""

    item_id: str
    description: str
    status: str = ItemStatus.PENDING
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @classmethod
    def create(cls, description: str, item_id: str = "") -> "ChecklistItem":
        """Create a pending checklist item."""
        return cls(item_id=item_id, description=description.strip())

    @property
    def is_done(self) -> bool:
        return self.status == ItemStatus.DONE

    def start(self) -> None:
        """Move the item from pending to in_progress."""
        validate_transition(self.status, ItemStatus.IN_PROGRESS, self.item_id)
        self.status = ItemStatus.IN_PROGRESS
        self.started_at = utc_now()

    def mark_done(self) -> None:
        """Move the item from in_progress to done."""
        validate_transition(self.status, ItemStatus.DONE, self.item_id)
        self.status = ItemStatus.DONE
        self.completed_at = utc_now()

    def reset(self) -> None:
        """Move an in_progress item back to pending."""
        validate_transition(self.status, ItemStatus.PENDING, self.item_id)
        self.status = ItemStatus.PENDING
        self.started_at = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "item_id": self.item_id,
            "description": self.description,
            "status": self.status,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChecklistItem":
        """Create from dictionary representation."""
        status = data.get("status", ItemStatus.PENDING)
        if status not in ItemStatus.ALL:
            raise ValueError(f"Invalid item status: {status}")
        return cls(
            item_id=data["item_id"],
            description=data["description"],
            status=status,
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
        )


# ---------------------------------------------------------------------------
# Gate results
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class CheckResult:
    """Outcome of one named gate check."""

    name: str
    passed: bool
    reason: str = ""
    duration: float = 0.0

    @classmethod
    def success(cls, name: str, duration: float = 0.0) -> "CheckResult":
        return cls(name=name, passed=True, duration=duration)

    @classmethod
    def failure(cls, name: str, reason: str, duration: float = 0.0) -> "CheckResult":
        return cls(name=name, passed=False, reason=reason, duration=duration)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "passed": self.passed,
            "reason": self.reason,
            "duration": round(self.duration, 3),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckResult":
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            passed=bool(data["passed"]),
            reason=data.get("reason", ""),
            duration=data.get("duration", 0.0),
        )


@dataclass(slots=True)
class GateResult:
    """Outcome of running a phase's validation gate.

    ``results`` holds one entry per check that actually ran; the gate stops
    at the first failure, so a failing result always ends with the failed
    check.
    """

    phase: str
    passed: bool
    results: List[CheckResult] = field(default_factory=list)
    ran_at: str = field(default_factory=utc_now)

    @property
    def failed_check(self) -> Optional[str]:
        for result in self.results:
            if not result.passed:
                return result.name
        return None

    @property
    def reason(self) -> str:
        for result in self.results:
            if not result.passed:
                return result.reason
        return ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "phase": self.phase,
            "passed": self.passed,
            "failed_check": self.failed_check,
            "reason": self.reason,
            "results": [result.to_dict() for result in self.results],
            "ran_at": self.ran_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GateResult":
        """Create from dictionary representation."""
        return cls(
            phase=data["phase"],
            passed=bool(data["passed"]),
            results=[CheckResult.from_dict(item) for item in data.get("results", [])],
            ran_at=data.get("ran_at", utc_now()),
        )


# ---------------------------------------------------------------------------
# Phases and workflow documents
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class Phase:
    """One RED/GREEN/REFACTOR/COMMIT step of a workflow."""

    name: str
    items: List[ChecklistItem] = field(default_factory=list)
    gate: Optional["ValidationGate"] = None
    last_gate_result: Optional[GateResult] = None

    @classmethod
    def instantiate(cls, template: "Phase", workflow_name: Optional[str] = None) -> "Phase":
        """Clone a template phase with every item reset to pending."""
        prefix = f"{workflow_name}/" if workflow_name else ""
        items = [
            ChecklistItem(item_id=f"{prefix}{item.item_id}", description=item.description)
            for item in template.items
        ]
        return cls(name=template.name, items=items, gate=template.gate)

    @property
    def gate_passed(self) -> bool:
        """True when there is no gate or its last run passed."""
        if self.gate is None:
            return True
        return self.last_gate_result is not None and self.last_gate_result.passed

    def is_complete(self) -> bool:
        return all(item.is_done for item in self.items) and self.gate_passed

    def run_gate(self, runner: "CheckRunner") -> GateResult:
        """Run this phase's gate and remember the outcome."""
        if self.gate is None:
            result = GateResult(phase=self.name, passed=True)
        else:
            result = self.gate.run(runner, phase=self.name)
        self.last_gate_result = result
        return result

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "items": [item.to_dict() for item in self.items],
            "gate": list(self.gate.checks) if self.gate else None,
            "last_gate_result": self.last_gate_result.to_dict() if self.last_gate_result else None,
            "complete": self.is_complete(),
        }


@dataclass(frozen=True, slots=True, eq=False)
class WorkflowDocument:
    """Immutable playbook template loaded from a Markdown source."""

    name: str
    version: str
    phases: Tuple[Phase, ...]
    applicable_stacks: FrozenSet[str] = frozenset()
    depends_on: FrozenSet[str] = frozenset()
    title: str = ""
    related: Tuple[str, ...] = ()
    source_path: Optional[str] = None

    @property
    def tags(self) -> FrozenSet[str]:
        """Applicable stacks plus the document's own name."""
        return self.applicable_stacks | {self.name}

    def matches(self, tags: Iterable[str]) -> bool:
        return not self.tags.isdisjoint(tags)

    def instantiate_for_project(self) -> Tuple[Phase, ...]:
        """Return fresh phase instances for one project."""
        return tuple(Phase.instantiate(phase, self.name) for phase in self.phases)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "version": self.version,
            "title": self.title,
            "applicable_stacks": sorted(self.applicable_stacks),
            "depends_on": sorted(self.depends_on),
            "related": list(self.related),
            "source_path": self.source_path,
            "phases": [
                {
                    "name": phase.name,
                    "items": [item.description for item in phase.items],
                    "gate": list(phase.gate.checks) if phase.gate else None,
                }
                for phase in self.phases
            ],
        }


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CompositionRequest:
    """The set of stack tags an operator asked for."""

    requested_tags: FrozenSet[str]

    @classmethod
    def of(cls, tags: Iterable[str]) -> "CompositionRequest":
        """Build a request, normalizing tags to stripped lowercase."""
        normalized = {tag.strip().lower() for tag in tags if tag and tag.strip()}
        return cls(requested_tags=frozenset(normalized))


@dataclass(slots=True)
class WorkflowInstance:
    """A per-project clone of a workflow document."""

    document: WorkflowDocument
    phases: List[Phase]

    @classmethod
    def from_document(cls, document: WorkflowDocument) -> "WorkflowInstance":
        return cls(document=document, phases=list(document.instantiate_for_project()))

    @property
    def name(self) -> str:
        return self.document.name

    def get_phase(self, name: str) -> Optional[Phase]:
        canonical = PhaseName.normalize(name)
        for phase in self.phases:
            if phase.name == canonical:
                return phase
        return None

    def blocking_gates(self) -> List[Phase]:
        """Phases whose gate exists but has not last passed."""
        return [phase for phase in self.phases if not phase.gate_passed]

    def is_complete(self) -> bool:
        return all(phase.is_complete() for phase in self.phases)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "version": self.document.version,
            "phases": [phase.to_dict() for phase in self.phases],
            "complete": self.is_complete(),
        }


@dataclass(slots=True)
class ResolvedPlan:
    """Dependency-ordered workflow instances for one requested stack."""

    requested_tags: Tuple[str, ...]
    ordered_workflow_instances: List[WorkflowInstance]
    unmatched_tags: Tuple[str, ...] = ()

    @property
    def workflow_names(self) -> List[str]:
        return [instance.name for instance in self.ordered_workflow_instances]

    def iter_items(self) -> Iterator[Tuple[WorkflowInstance, Phase, ChecklistItem]]:
        """Yield every item in execution order."""
        for instance in self.ordered_workflow_instances:
            for phase in instance.phases:
                for item in phase.items:
                    yield instance, phase, item

    def find_item(self, item_id: str) -> Optional[Tuple[WorkflowInstance, Phase, ChecklistItem]]:
        for located in self.iter_items():
            if located[2].item_id == item_id:
                return located
        return None

    def get_instance(self, name: str) -> Optional[WorkflowInstance]:
        for instance in self.ordered_workflow_instances:
            if instance.name == name:
                return instance
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "requested_tags": list(self.requested_tags),
            "unmatched_tags": list(self.unmatched_tags),
            "workflows": self.workflow_names,
            "instances": [instance.to_dict() for instance in self.ordered_workflow_instances],
        }


# ---------------------------------------------------------------------------
# Execution state
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ExecutionState:
    """Per-project record of the single in-progress item and completed work."""

    current: Optional[str] = None
    history: List[Dict[str, str]] = field(default_factory=list)
    started_at: str = field(default_factory=utc_now)
    finished_at: Optional[str] = None

    @property
    def is_torn_down(self) -> bool:
        return self.finished_at is not None

    def record_completion(self, item_id: str) -> None:
        """Append a completed item to the history."""
        self.history.append({"item_id": item_id, "completed_at": utc_now()})

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "current": self.current,
            "history": [dict(entry) for entry in self.history],
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionState":
        """Create from dictionary representation."""
        return cls(
            current=data.get("current"),
            history=[dict(entry) for entry in data.get("history", [])],
            started_at=data.get("started_at", utc_now()),
            finished_at=data.get("finished_at"),
        )


@dataclass(slots=True)
class ExecutionSummary:
    """Progress counters across a resolved plan."""

    total_items: int = 0
    done_items: int = 0
    in_progress_items: int = 0
    pending_items: int = 0
    total_workflows: int = 0
    completed_workflows: int = 0
    blocked_gates: List[str] = field(default_factory=list)

    def get_completion_rate(self) -> float:
        """Get item completion rate as percentage."""
        if self.total_items == 0:
            return 0.0
        return (self.done_items / self.total_items) * 100

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "total_items": self.total_items,
            "done_items": self.done_items,
            "in_progress_items": self.in_progress_items,
            "pending_items": self.pending_items,
            "total_workflows": self.total_workflows,
            "completed_workflows": self.completed_workflows,
            "blocked_gates": list(self.blocked_gates),
            "completion_rate": round(self.get_completion_rate(), 1),
        }


# ---------------------------------------------------------------------------
# Operator guide
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class GuideStep:
    """Represents a single step of the recommended operator loop."""

    step_number: int
    name: str
    command: str
    tool_name: str
    description: str
    prerequisites: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "step": self.step_number,
            "name": self.name,
            "command": self.command,
            "tool": self.tool_name,
            "description": self.description,
            "prerequisites": list(self.prerequisites),
        }


GUIDE_STEPS = [
    GuideStep(
        step_number=1,
        name="Plan Resolution",
        command="flowstack resolve <tags...>",
        tool_name="resolve_plan",
        description="Compose the dependency-ordered set of workflows for your stack",
    ),
    GuideStep(
        step_number=2,
        name="Start Item",
        command="flowstack next",
        tool_name="start_next",
        description="Take the next pending checklist item; only one may be in progress",
        prerequisites=["Plan Resolution"],
    ),
    GuideStep(
        step_number=3,
        name="Finish Item",
        command="flowstack done",
        tool_name="complete_current",
        description="Mark the in-progress item done, or release it with 'abandon'",
        prerequisites=["Start Item"],
    ),
    GuideStep(
        step_number=4,
        name="Validation Gate",
        command="flowstack gate <workflow> <phase>",
        tool_name="run_gate",
        description="Run format, lint, typecheck, test and coverage checks before Commit",
        prerequisites=["Finish Item"],
    ),
    GuideStep(
        step_number=5,
        name="Commit",
        command="flowstack next",
        tool_name="start_next",
        description="Commit items unlock only after every gate of the workflow passes",
        prerequisites=["Validation Gate"],
    ),
]
