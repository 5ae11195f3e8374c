"""Error taxonomy for Flowstack.

Every error raised by the engine derives from :class:`FlowstackError` and
carries the process exit code the CLI should use when it surfaces the error,
plus a short hint describing what the operator should do next.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Union


EXIT_OK = 0
EXIT_INVARIANT = 1
EXIT_MALFORMED = 2


class FlowstackError(Exception):
    """Base class for all Flowstack errors."""

    exit_code = EXIT_INVARIANT
    next_action = "Run 'flowstack status' to inspect the current state"

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "error": str(self),
            "error_type": type(self).__name__,
            "suggestion": self.next_action,
        }


# ---------------------------------------------------------------------------
# Composition errors (fatal for the plan)
# ---------------------------------------------------------------------------


class MalformedWorkflow(FlowstackError):
    """Raised when a workflow source cannot be parsed into a valid template."""

    exit_code = EXIT_MALFORMED
    next_action = "Fix the workflow source file and resolve the plan again"

    def __init__(self, path: Optional[Union[str, Path]], reason: str):
        self.path = str(path) if path is not None else "<text>"
        self.reason = reason
        super().__init__(f"Malformed workflow {self.path}: {reason}")


class CyclicDependency(FlowstackError):
    """Raised when the depends_on relation of the selected workflows has a loop."""

    exit_code = EXIT_MALFORMED
    next_action = "Break the dependency loop in the workflow front matter"

    def __init__(self, involved_nodes: Iterable[str]):
        self.involved_nodes = tuple(involved_nodes)
        super().__init__(
            "Cyclic workflow dependency: " + " -> ".join(self.involved_nodes)
        )


class UnknownWorkflow(FlowstackError):
    """Raised when a workflow name is not present in the catalog."""

    exit_code = EXIT_MALFORMED
    next_action = "Run 'flowstack list' to see the available workflows"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown workflow: '{name}'")


# ---------------------------------------------------------------------------
# Execution tracker errors (recoverable by the operator)
# ---------------------------------------------------------------------------


class InvalidTransition(FlowstackError):
    """Raised when a checklist item status change is not allowed."""

    next_action = "Start the item with 'flowstack next' before completing it"

    def __init__(self, from_status: str, to_status: str, item_id: Optional[str] = None):
        self.from_status = from_status
        self.to_status = to_status
        self.item_id = item_id
        item_info = f" for item '{item_id}'" if item_id else ""
        super().__init__(
            f"Invalid transition{item_info}: '{from_status}' -> '{to_status}'"
        )


class AlreadyInProgress(FlowstackError):
    """Raised when starting an item while another one is in progress."""

    next_action = "Finish it with 'flowstack done' or release it with 'flowstack abandon'"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item '{item_id}' is already in progress")


class NoActiveItem(FlowstackError):
    """Raised when completing or abandoning while nothing is in progress."""

    next_action = "Start the next item with 'flowstack next'"

    def __init__(self):
        super().__init__("No item is currently in progress")


class NothingPending(FlowstackError):
    """Raised when asking for the next item after every item is done."""

    next_action = "The plan is complete; resolve a new plan to continue"

    def __init__(self):
        super().__init__("All checklist items are done")


class GateCheckFailed(FlowstackError):
    """Raised when a validation gate check blocks progression to Commit."""

    next_action = "Remediate the failing check and re-run 'flowstack gate'"

    def __init__(self, name: str, reason: str, phase: Optional[str] = None):
        self.name = name
        self.reason = reason
        self.phase = phase
        where = f" ({phase})" if phase else ""
        super().__init__(f"Gate check '{name}' failed{where}: {reason}")


# ---------------------------------------------------------------------------
# Session errors
# ---------------------------------------------------------------------------


class NoActiveSession(FlowstackError):
    """Raised when a tracker command runs before any plan was resolved."""

    next_action = "Resolve a plan first with 'flowstack resolve <tags...>'"

    def __init__(self, root: Union[str, Path]):
        self.root = str(root)
        super().__init__(f"No resolved plan found for project '{self.root}'")


class StaleSession(FlowstackError):
    """Raised when the stored plan no longer matches the workflow catalog."""

    next_action = "Re-run 'flowstack resolve <tags...>' to rebuild the plan"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Stored session is out of date: {reason}")
