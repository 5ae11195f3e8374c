"""Shared fixtures for Flowstack tests."""

import logging
import textwrap

import pytest

from flowstack.catalog import WorkflowCatalog
from flowstack.flowstack_logging import observability_hooks, performance_monitor
from flowstack.parser import parse_text


def make_workflow(name, stacks=(), depends_on=(), gates=None, phases=None):
    """Render a small workflow source document."""
    lines = ["---", f"name: {name}", "version: 1.0.0"]
    if stacks:
        lines.append(f"stacks: [{', '.join(stacks)}]")
    if depends_on:
        lines.append(f"depends_on: [{', '.join(depends_on)}]")
    if gates:
        lines.append("gates:")
        for phase, checks in gates.items():
            lines.append(f"  {phase}: [{', '.join(checks)}]")
    lines.extend(["---", f"# {name}", ""])

    phases = phases or {
        "RED": ["write failing test"],
        "GREEN": ["make it pass"],
        "REFACTOR": ["clean up"],
        "Commit": ["commit"],
    }
    for phase, items in phases.items():
        lines.append(f"## {phase}")
        lines.extend(f"- [ ] {item}" for item in items)
        lines.append("")
    return "\n".join(lines)


def make_catalog(*sources):
    return WorkflowCatalog(parse_text(source) for source in sources)


@pytest.fixture
def stack_catalog():
    """The python/sqlite catalog used across resolver and tracker tests."""
    return make_catalog(
        make_workflow("python-development", stacks=["python"], gates={"commit": ["lint", "test"]}),
        make_workflow(
            "python-service",
            stacks=["python", "service"],
            depends_on=["python-development"],
            gates={"commit": ["test"]},
        ),
        make_workflow("sqlite-development", stacks=["sqlite", "database"]),
        make_workflow("rust-development", stacks=["rust"]),
    )


@pytest.fixture
def workflows_dir(tmp_path):
    """A directory of workflow files on disk."""
    directory = tmp_path / "workflows"
    directory.mkdir()
    (directory / "python-development.md").write_text(
        make_workflow("python-development", stacks=["python"], gates={"commit": ["lint", "test"]}),
        encoding="utf-8",
    )
    (directory / "python-service.md").write_text(
        make_workflow("python-service", stacks=["python"], depends_on=["python-development"]),
        encoding="utf-8",
    )
    (directory / "sqlite-development.md").write_text(
        make_workflow("sqlite-development", stacks=["sqlite"]),
        encoding="utf-8",
    )
    (directory / "README.md").write_text("# Workflows\n\nNot a workflow.\n", encoding="utf-8")
    return directory


@pytest.fixture
def project_root(tmp_path, monkeypatch):
    """An empty project root isolated from FLOWSTACK_* environment variables."""
    for name in (
        "FLOWSTACK_PROJECT_ROOT",
        "FLOWSTACK_STORAGE_DIR",
        "FLOWSTACK_WORKFLOWS_DIR",
        "FLOWSTACK_LOG_LEVEL",
        "FLOWSTACK_CHECK_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture(autouse=True)
def reset_observability():
    """Keep global hooks, metrics and CLI log handlers from leaking between tests."""
    yield
    observability_hooks.hooks.clear()
    performance_monitor.clear()
    logger = logging.getLogger("flowstack")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


def dedent(text):
    return textwrap.dedent(text).lstrip("\n")
