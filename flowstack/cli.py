"""Flowstack CLI.

Operator-facing command-line interface for composing stack workflows and
working through them one checklist item at a time.

Usage:
    # All commands auto-detect the project root by walking up to .flowstack/
    # or accept --project-root.

    flowstack list                     # list available workflows
    flowstack show python-service      # print one workflow template

    flowstack resolve python sqlite    # compose and persist a plan
    flowstack next                     # start the next pending item
    flowstack done                     # complete the in-progress item
    flowstack abandon                  # release the in-progress item
    flowstack gate python-service commit   # run a phase gate
    flowstack status                   # show progress and gate state
    flowstack reset                    # discard the stored plan

Exit codes: 0 success, 1 invariant violation or failed gate, 2 malformed
workflow source, cyclic dependency or unknown workflow.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import ConfigError, load_config
from .errors import EXIT_INVARIANT, EXIT_OK
from .flowstack_logging import setup_logging
from .workflow import WorkflowManager

logger = logging.getLogger("flowstack.cli")


def _manager(args: argparse.Namespace) -> WorkflowManager:
    """Load config from args or auto-discovery and build a manager."""
    config = load_config(args.project_root)
    if args.workflows_dir:
        config.workflows_dir = Path(args.workflows_dir).expanduser().resolve()
    setup_logging(args.log_level or config.log_level, config.log_file)
    logger.debug(f"Running '{args.command}' in {config.project_root}")
    return WorkflowManager(config=config)


def _emit(args: argparse.Namespace, result: Dict[str, Any], render) -> int:
    """Print a manager result as JSON or via ``render``; return its exit code."""
    exit_code = int(result.get("exit_code", EXIT_OK))
    if args.json:
        print(json.dumps(result, indent=2, default=str))
        return exit_code

    if "error" in result and exit_code != EXIT_OK and "gate" not in result:
        print(f"Error: {result['error']}", file=sys.stderr)
        if result.get("suggestion"):
            print(f"  Next: {result['suggestion']}", file=sys.stderr)
        return exit_code

    render(result)
    if result.get("workflow_tip"):
        print(f"\nTip: {result['workflow_tip']}")
    return exit_code


# ---------------------------------------------------------------------------
# Catalog commands
# ---------------------------------------------------------------------------


def cmd_list(args: argparse.Namespace) -> int:
    """List available workflows."""

    def render(result: Dict[str, Any]) -> None:
        workflows = result["workflows"]
        if not workflows:
            print("No workflows found.")
            return
        print(f"{'Name':<28} {'Version':<10} {'Stacks':<28} {'Depends on'}")
        print("-" * 90)
        for workflow in workflows:
            print(
                f"{workflow['name']:<28} {workflow['version']:<10} "
                f"{', '.join(workflow['applicable_stacks']) or '-':<28} "
                f"{', '.join(workflow['depends_on']) or '-'}"
            )
        print(f"\n{len(workflows)} workflow(s). Run: flowstack resolve <tags...>")

    return _emit(args, _manager(args).list_workflows(), render)


def cmd_show(args: argparse.Namespace) -> int:
    """Print one workflow template."""

    def render(result: Dict[str, Any]) -> None:
        workflow = result["workflow"]
        print(f"\n{workflow['title']} ({workflow['name']} {workflow['version']})")
        print(f"  Stacks     : {', '.join(workflow['applicable_stacks']) or '-'}")
        print(f"  Depends on : {', '.join(workflow['depends_on']) or '-'}")
        print(f"  Source     : {workflow['source_path'] or '-'}")
        for phase in workflow["phases"]:
            gate = f"  (gate: {', '.join(phase['gate'])})" if phase["gate"] else ""
            print(f"\n  {phase['name']}{gate}")
            for description in phase["items"]:
                print(f"    - [ ] {description}")
        if workflow["related"]:
            print(f"\n  Related: {', '.join(workflow['related'])}")

    return _emit(args, _manager(args).show_workflow(args.name), render)


# ---------------------------------------------------------------------------
# Session commands
# ---------------------------------------------------------------------------


def _print_item(prefix: str, item: Dict[str, Any]) -> None:
    print(f"{prefix} {item['item_id']}: {item['description']}")


def cmd_resolve(args: argparse.Namespace) -> int:
    """Resolve and persist a plan for the given stack tags."""

    def render(result: Dict[str, Any]) -> None:
        plan = result["plan"]
        print(f"Resolved plan for: {', '.join(plan['requested_tags'])}")
        for index, instance in enumerate(plan["instances"], start=1):
            items = sum(len(phase["items"]) for phase in instance["phases"])
            print(f"  {index}. {instance['name']} ({items} items)")
        if result["unmatched_tags"]:
            print(f"No workflow applies to: {', '.join(result['unmatched_tags'])}")
        print(f"\nSession saved to {result['session_path']}")

    return _emit(args, _manager(args).resolve_plan(args.tags), render)


def cmd_next(args: argparse.Namespace) -> int:
    """Start the next pending checklist item."""
    return _emit(args, _manager(args).start_next(), lambda result: _print_item("Started", result["item"]))


def cmd_done(args: argparse.Namespace) -> int:
    """Complete the in-progress checklist item."""

    def render(result: Dict[str, Any]) -> None:
        _print_item("Completed", result["item"])
        summary = result["summary"]
        print(f"Progress: {summary['done_items']}/{summary['total_items']} items")
        if result["finished"]:
            print("All workflows complete.")

    return _emit(args, _manager(args).complete_current(), render)


def cmd_abandon(args: argparse.Namespace) -> int:
    """Release the in-progress item back to pending."""
    return _emit(args, _manager(args).abandon_current(), lambda result: _print_item("Released", result["item"]))


def cmd_gate(args: argparse.Namespace) -> int:
    """Run a phase gate with the configured check commands."""

    def render(result: Dict[str, Any]) -> None:
        gate = result["gate"]
        for check in gate["results"]:
            mark = "PASS" if check["passed"] else "FAIL"
            print(f"  {mark:<5} {check['name']:<12} {check['duration']:.2f}s")
            if not check["passed"] and check["reason"]:
                for line in check["reason"].splitlines()[-10:]:
                    print(f"        {line}")
        verdict = "passed" if gate["passed"] else f"failed at '{gate['failed_check']}'"
        print(f"\nGate {result['workflow']}/{gate['phase']} {verdict}")

    return _emit(args, _manager(args).run_gate(args.workflow, args.phase), render)


def cmd_status(args: argparse.Namespace) -> int:
    """Show the execution state and progress."""

    def render(result: Dict[str, Any]) -> None:
        summary = result["summary"]
        print(
            f"Plan: {', '.join(result['requested_tags'])} "
            f"({summary['done_items']}/{summary['total_items']} items, {summary['completion_rate']}%)"
        )
        for workflow in result["workflows"]:
            mark = "[x]" if workflow["complete"] else "[ ]"
            print(f"\n{mark} {workflow['name']}")
            for phase in workflow["phases"]:
                gate = ""
                if phase["gate"] is not None:
                    gate = "  gate: passed" if phase["gate_passed"] else "  gate: pending"
                print(f"    {phase['name']:<10} {phase['done']}/{phase['total']}{gate}")
        if result["current"]:
            print()
            _print_item("In progress", result["current"])
        elif result["next_pending"]:
            print()
            _print_item("Next", result["next_pending"])
        if result["state"]["finished_at"]:
            print(f"\nFinished at {result['state']['finished_at']}")

    return _emit(args, _manager(args).execution_status(), render)


def cmd_reset(args: argparse.Namespace) -> int:
    """Discard the stored plan and execution state."""

    def render(result: Dict[str, Any]) -> None:
        print("Session cleared." if result["cleared"] else "No session to clear.")

    return _emit(args, _manager(args).reset_session(), render)


# ---------------------------------------------------------------------------
# Main CLI
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flowstack",
        description="Flowstack: compose stack workflows and track them through validation gates",
    )
    parser.add_argument(
        "--project-root",
        metavar="PATH",
        help="Project root (default: FLOWSTACK_PROJECT_ROOT or auto-detect from .flowstack/)",
    )
    parser.add_argument(
        "--workflows-dir",
        metavar="PATH",
        help="Directory of workflow Markdown files (default: built-in playbooks)",
    )
    parser.add_argument(
        "--log-level",
        metavar="LEVEL",
        help="Logging level (default: from config, INFO)",
    )
    parser.add_argument("--json", action="store_true", help="Print results as JSON")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # list
    p_list = subparsers.add_parser("list", help="List available workflows")
    p_list.set_defaults(func=cmd_list)

    # show
    p_show = subparsers.add_parser("show", help="Print one workflow template")
    p_show.add_argument("name", help="Workflow name (e.g. python-service)")
    p_show.set_defaults(func=cmd_show)

    # resolve
    p_resolve = subparsers.add_parser("resolve", help="Resolve and persist a plan")
    p_resolve.add_argument("tags", nargs="+", help="Stack tags (e.g. python sqlite)")
    p_resolve.set_defaults(func=cmd_resolve)

    # next
    p_next = subparsers.add_parser("next", help="Start the next pending item")
    p_next.set_defaults(func=cmd_next)

    # done
    p_done = subparsers.add_parser("done", help="Complete the in-progress item")
    p_done.set_defaults(func=cmd_done)

    # abandon
    p_abandon = subparsers.add_parser("abandon", help="Release the in-progress item")
    p_abandon.set_defaults(func=cmd_abandon)

    # gate
    p_gate = subparsers.add_parser("gate", help="Run a phase gate")
    p_gate.add_argument("workflow", help="Workflow name")
    p_gate.add_argument("phase", help="Phase name (red, green, refactor, commit)")
    p_gate.set_defaults(func=cmd_gate)

    # status
    p_status = subparsers.add_parser("status", help="Show progress and gate state")
    p_status.set_defaults(func=cmd_status)

    # reset
    p_reset = subparsers.add_parser("reset", help="Discard the stored plan and state")
    p_reset.set_defaults(func=cmd_reset)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_INVARIANT


if __name__ == "__main__":
    sys.exit(main())
