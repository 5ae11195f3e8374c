"""Unit tests for the Flowstack workflow manager.

The manager is the dict-returning facade shared by the CLI and the MCP
server, so these tests focus on response shapes, exit codes and the
next-step hints.
"""

import pytest

from conftest import make_workflow
from flowstack.config import load_config
from flowstack.gates import CommandCheckRunner, StaticCheckRunner
from flowstack.workflow import WorkflowManager


@pytest.fixture
def manager(project_root, workflows_dir):
    config = load_config(project_root, environ={})
    config.workflows_dir = workflows_dir
    return WorkflowManager(config=config)


def _finish_items(manager, count):
    for _ in range(count):
        assert manager.start_next()["exit_code"] == 0
        assert manager.complete_current()["exit_code"] == 0


class TestWorkflowManagerInitialization:
    """Test cases for WorkflowManager initialization."""

    def test_manager_creation(self, project_root):
        manager = WorkflowManager(project_root)

        assert manager.workspace.root == project_root.resolve()
        assert manager.workspace.state_dir.exists()
        assert manager.config.project_root == project_root.resolve()

    def test_check_runner_uses_config(self, manager, project_root):
        runner = manager.check_runner()

        assert isinstance(runner, CommandCheckRunner)
        assert runner.commands == manager.config.checks
        assert runner.cwd == project_root.resolve()
        assert runner.coverage_threshold == 80.0


class TestCatalogQueries:
    """Test cases for listing and describing workflows."""

    def test_list_workflows(self, manager):
        result = manager.list_workflows()

        assert result["exit_code"] == 0
        assert [workflow["name"] for workflow in result["workflows"]] == [
            "python-development",
            "python-service",
            "sqlite-development",
        ]
        assert "python" in result["tags"]
        assert result["next_suggested_step"] == "resolve_plan"

    def test_list_builtin_workflows(self, project_root):
        result = WorkflowManager(project_root).list_workflows()

        names = [workflow["name"] for workflow in result["workflows"]]
        assert "python-development" in names
        assert "sqlite-development" in names
        assert result["source_dir"] is None

    def test_show_workflow(self, manager):
        result = manager.show_workflow("python-development")

        assert result["exit_code"] == 0
        assert result["workflow"]["phases"][-1]["gate"] == ["lint", "test"]

    def test_show_unknown_workflow(self, manager):
        result = manager.show_workflow("cobol-development")

        assert result["exit_code"] == 2
        assert result["error_type"] == "UnknownWorkflow"
        assert result["next_suggested_step"] == "list_workflows"


class TestResolvePlan:
    """Test cases for plan resolution through the manager."""

    def test_resolve_plan(self, manager):
        result = manager.resolve_plan(["python", "sqlite"])

        assert result["exit_code"] == 0
        assert result["workflows"] == ["python-development", "python-service", "sqlite-development"]
        assert result["unmatched_tags"] == []
        assert result["next_suggested_step"] == "start_next"
        assert manager.workspace.has_session()

    def test_resolve_requires_tags(self, manager):
        result = manager.resolve_plan(["", "  "])

        assert result["exit_code"] == 1
        assert result["error_type"] == "ValueError"

    def test_resolve_nothing_matches(self, manager):
        result = manager.resolve_plan(["haskell"])

        assert result["exit_code"] == 0
        assert result["workflows"] == []
        assert result["unmatched_tags"] == ["haskell"]
        assert result["next_suggested_step"] == "list_workflows"

    def test_resolve_cycle_exit_code(self, manager, workflows_dir):
        (workflows_dir / "python-development.md").write_text(
            make_workflow("python-development", stacks=["python"], depends_on=["python-service"]),
            encoding="utf-8",
        )

        result = manager.resolve_plan(["python"])

        assert result["exit_code"] == 2
        assert result["error_type"] == "CyclicDependency"
        assert not manager.workspace.has_session()

    def test_resolve_malformed_workflow(self, manager, workflows_dir):
        (workflows_dir / "broken.md").write_text("---\nname: broken\n---\n# Broken\n", encoding="utf-8")

        result = manager.resolve_plan(["python"])

        assert result["exit_code"] == 2
        assert result["error_type"] == "MalformedWorkflow"
        assert "broken.md" in result["error"]


class TestItemOperations:
    """Test cases for start, complete and abandon."""

    def test_start_without_session(self, manager):
        result = manager.start_next()

        assert result["exit_code"] == 1
        assert result["error_type"] == "NoActiveSession"
        assert result["next_suggested_step"] == "resolve_plan"

    def test_start_and_complete(self, manager):
        manager.resolve_plan(["sqlite"])

        started = manager.start_next()
        assert started["item"]["item_id"] == "sqlite-development/red/1"
        assert started["item"]["status"] == "in_progress"
        assert started["next_suggested_step"] == "complete_current"

        completed = manager.complete_current()
        assert completed["item"]["status"] == "done"
        assert completed["summary"]["done_items"] == 1
        assert completed["next_suggested_step"] == "start_next"

    def test_second_start_is_rejected(self, manager):
        manager.resolve_plan(["sqlite"])
        manager.start_next()

        result = manager.start_next()

        assert result["exit_code"] == 1
        assert result["error_type"] == "AlreadyInProgress"
        assert result["next_suggested_step"] == "execution_status"

    def test_complete_without_active_item(self, manager):
        manager.resolve_plan(["sqlite"])

        result = manager.complete_current()

        assert result["exit_code"] == 1
        assert result["error_type"] == "NoActiveItem"

    def test_abandon(self, manager):
        manager.resolve_plan(["sqlite"])
        manager.start_next()

        result = manager.abandon_current()

        assert result["exit_code"] == 0
        assert result["item"]["status"] == "pending"
        assert result["next_suggested_step"] == "start_next"

    def test_finishing_plan(self, manager):
        manager.resolve_plan(["sqlite"])
        _finish_items(manager, 3)
        manager.start_next()

        result = manager.complete_current()

        assert result["finished"] is True
        assert result["next_suggested_step"] is None

        after = manager.start_next()
        assert after["error_type"] == "NothingPending"


class TestRunGate:
    """Test cases for running validation gates through the manager."""

    def test_blocked_commit_suggests_gate(self, manager):
        manager.resolve_plan(["python-development"])
        _finish_items(manager, 3)

        status = manager.execution_status()
        assert status["next_suggested_step"] == "run_gate"

        blocked = manager.start_next()
        assert blocked["exit_code"] == 1
        assert blocked["error_type"] == "GateCheckFailed"

    def test_failing_gate(self, manager):
        manager.resolve_plan(["python-development"])

        result = manager.run_gate("python-development", "commit", StaticCheckRunner({"test": "1 failed"}))

        assert result["exit_code"] == 1
        assert result["error_type"] == "GateCheckFailed"
        assert result["gate"]["failed_check"] == "test"
        assert result["gate"]["passed"] is False
        assert result["next_suggested_step"] == "run_gate"
        assert "'test'" in result["workflow_tip"]

    def test_passing_gate_unlocks_commit(self, manager):
        manager.resolve_plan(["python-development"])
        _finish_items(manager, 3)

        result = manager.run_gate("python-development", "Commit", StaticCheckRunner({}))
        assert result["exit_code"] == 0
        assert result["gate"]["passed"] is True
        assert result["next_suggested_step"] == "start_next"

        started = manager.start_next()
        assert started["item"]["item_id"] == "python-development/commit/1"

    def test_gate_result_is_persisted(self, manager):
        manager.resolve_plan(["python-development"])
        manager.run_gate("python-development", "commit", StaticCheckRunner({"lint": "E501"}))

        status = manager.execution_status()

        commit = status["workflows"][0]["phases"][-1]
        assert commit["gate"] == ["lint", "test"]
        assert commit["gate_passed"] is False

    def test_open_gate_after_last_item(self, manager, workflows_dir):
        (workflows_dir / "gated.md").write_text(
            make_workflow("gated", gates={"green": ["test"]}, phases={"RED": ["a"], "GREEN": ["b"]}),
            encoding="utf-8",
        )
        manager.resolve_plan(["gated"])
        _finish_items(manager, 2)

        status = manager.execution_status()
        assert status["finished"] is False
        assert status["next_suggested_step"] == "run_gate"

        result = manager.run_gate("gated", "green", StaticCheckRunner({}))
        assert result["next_suggested_step"] is None
        assert manager.execution_status()["state"]["finished_at"] is not None

    def test_unknown_workflow(self, manager):
        manager.resolve_plan(["sqlite"])

        result = manager.run_gate("rust-development", "commit", StaticCheckRunner({}))

        assert result["exit_code"] == 2
        assert result["error_type"] == "UnknownWorkflow"

    def test_gate_without_session(self, manager):
        result = manager.run_gate("python-development", "commit", StaticCheckRunner({}))
        assert result["error_type"] == "NoActiveSession"


class TestStatusAndGuide:
    """Test cases for status reporting and the operator guide."""

    def test_execution_status(self, manager):
        manager.resolve_plan(["python", "haskell"])
        manager.start_next()

        status = manager.execution_status()

        assert status["exit_code"] == 0
        assert status["current"]["item_id"] == "python-development/red/1"
        assert status["requested_tags"] == ["haskell", "python"]
        assert status["unmatched_tags"] == ["haskell"]
        assert status["summary"]["in_progress_items"] == 1
        assert status["next_suggested_step"] == "complete_current"

    def test_status_without_session(self, manager):
        result = manager.execution_status()

        assert result["exit_code"] == 1
        assert result["next_suggested_step"] == "resolve_plan"

    def test_stale_session_suggests_resolve(self, manager, workflows_dir):
        manager.resolve_plan(["sqlite"])
        (workflows_dir / "sqlite-development.md").write_text(
            make_workflow("sqlite-development", stacks=["sqlite"], phases={"GREEN": ["only"]}),
            encoding="utf-8",
        )

        result = manager.start_next()

        assert result["error_type"] == "StaleSession"
        assert result["next_suggested_step"] == "resolve_plan"

    def test_reset_session(self, manager):
        manager.resolve_plan(["sqlite"])

        result = manager.reset_session()

        assert result["cleared"] is True
        assert result["next_suggested_step"] == "resolve_plan"
        assert manager.execution_status()["error_type"] == "NoActiveSession"
        assert manager.reset_session()["cleared"] is False

    def test_current_plan(self, manager):
        manager.resolve_plan(["sqlite"])

        plan = manager.current_plan()

        assert plan["workflows"][0]["name"] == "sqlite-development"

    def test_get_workflow_guide(self):
        guide = WorkflowManager.get_workflow_guide()

        assert len(guide["steps"]) == 5
        assert guide["steps"][0]["tool_name"] == "resolve_plan"
        assert guide["tips"]
