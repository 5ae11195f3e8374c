"""MCP server exposing Flowstack workflow composition tools."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from .config import PROJECT_ROOT_ENV, ConfigError, load_config
from .flowstack_logging import performance_monitor, setup_logging
from .workflow import WorkflowManager

mcp = FastMCP("flowstack")


def _resolve_root(root: Optional[str]) -> Optional[Path]:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv(PROJECT_ROOT_ENV)
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable {PROJECT_ROOT_ENV} points to '{env_root}', which does not exist."
            )
        return env_path

    # Fall back to discovery of .flowstack/ from the working directory
    return None


def _manager(root: Optional[str]) -> WorkflowManager:
    try:
        config = load_config(_resolve_root(root))
    except ConfigError as e:
        raise ValueError(str(e)) from e
    return WorkflowManager(config=config)


@mcp.tool()
def list_workflows(root: Optional[str] = None) -> Dict[str, Any]:
    """List the workflow playbooks available to the project, with their stack tags and dependencies."""
    return _manager(root).list_workflows()


@mcp.tool()
def show_workflow(name: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Describe one workflow playbook: phases, checklist items, gates and dependencies."""
    return _manager(root).show_workflow(name)


@mcp.tool()
def resolve_plan(tags: List[str], root: Optional[str] = None, workflows_dir: Optional[str] = None) -> Dict[str, Any]:
    """STEP 1: Compose the dependency-ordered plan for the given stack tags (e.g. ["python", "sqlite"]).
    Replaces any previously stored plan for the project."""
    return _manager(root).resolve_plan(tags, workflows_dir=workflows_dir)


@mcp.tool()
def start_next(root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 2: Start the next pending checklist item. Only one item may be in progress at a time.
    Commit items stay locked until every gate of their workflow has passed."""
    return _manager(root).start_next()


@mcp.tool()
def complete_current(root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 3: Mark the in-progress checklist item as done."""
    return _manager(root).complete_current()


@mcp.tool()
def abandon_current(root: Optional[str] = None) -> Dict[str, Any]:
    """Release the in-progress checklist item back to pending without completing it."""
    return _manager(root).abandon_current()


@mcp.tool()
def run_gate(workflow: str, phase: str, root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 4: Run the validation gate (format, lint, typecheck, test, coverage) of a workflow phase.
    A failing gate reports the first failing check; fix it and run the gate again."""
    return _manager(root).run_gate(workflow, phase)


@mcp.tool()
def execution_status(root: Optional[str] = None) -> Dict[str, Any]:
    """Report the in-progress item, per-workflow progress and gate state of the current plan."""
    return _manager(root).execution_status()


@mcp.tool()
def reset_session(root: Optional[str] = None) -> Dict[str, Any]:
    """Discard the stored plan and execution state of the project."""
    return _manager(root).reset_session()


@mcp.tool()
def performance_metrics(name: Optional[str] = None) -> Dict[str, Any]:
    """Timing metrics recorded by this server process, optionally for one operation (e.g. "resolve_plan_duration")."""
    return {"metrics": performance_monitor.get_metrics(name)}


@mcp.tool()
def get_workflow_guide() -> Dict[str, Any]:
    """Get guidance on the recommended Flowstack operator loop."""
    return WorkflowManager.get_workflow_guide()


@mcp.resource("flowstack://plan")
def resource_plan() -> str:
    """Resource view exposing the current plan with item statuses."""
    try:
        manager = _manager(None)
    except ValueError as e:
        return f"No project root detected: {e}"

    plan = manager.current_plan()
    if "error" in plan:
        return f"{plan['error']}\n{plan['suggestion']}"
    return json.dumps(plan, indent=2)


def main() -> None:
    setup_logging(os.getenv("FLOWSTACK_LOG_LEVEL", "INFO"))
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
