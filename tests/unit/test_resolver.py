"""Unit tests for the composition resolver."""

import logging

import pytest

from conftest import make_catalog, make_workflow
from flowstack.errors import CyclicDependency
from flowstack.flowstack_logging import observability_hooks
from flowstack.models import CompositionRequest
from flowstack.resolver import dependency_closure, resolve, topological_order


class TestResolve:
    """Test cases for plan resolution."""

    def test_python_sqlite_order(self, stack_catalog):
        plan = resolve({"python", "sqlite"}, stack_catalog)

        assert plan.workflow_names == ["python-development", "python-service", "sqlite-development"]
        assert plan.requested_tags == ("python", "sqlite")
        assert plan.unmatched_tags == ()

    def test_accepts_composition_request(self, stack_catalog):
        plan = resolve(CompositionRequest.of(["SQLite"]), stack_catalog)
        assert plan.workflow_names == ["sqlite-development"]

    def test_dependencies_pulled_in_implicitly(self, stack_catalog):
        """Test that a dependency is added even when no requested tag selects it."""
        plan = resolve({"service"}, stack_catalog)

        assert plan.workflow_names == ["python-development", "python-service"]

    def test_unmatched_tags_reported_and_logged(self, stack_catalog, caplog):
        with caplog.at_level(logging.WARNING, logger="flowstack.resolver"):
            plan = resolve({"python", "haskell"}, stack_catalog)

        assert plan.unmatched_tags == ("haskell",)
        assert "haskell" in caplog.text

    def test_nothing_matches(self, stack_catalog):
        plan = resolve({"haskell"}, stack_catalog)

        assert plan.ordered_workflow_instances == []
        assert plan.unmatched_tags == ("haskell",)

    def test_instances_are_fresh(self, stack_catalog):
        first = resolve({"python"}, stack_catalog)
        second = resolve({"python"}, stack_catalog)

        first.ordered_workflow_instances[0].phases[0].items[0].start()
        assert second.ordered_workflow_instances[0].phases[0].items[0].status == "pending"

    def test_item_ids_are_prefixed(self, stack_catalog):
        plan = resolve({"sqlite"}, stack_catalog)
        ids = [item.item_id for _, _, item in plan.iter_items()]

        assert ids == [
            "sqlite-development/red/1",
            "sqlite-development/green/1",
            "sqlite-development/refactor/1",
            "sqlite-development/commit/1",
        ]

    def test_plan_resolved_event(self, stack_catalog):
        events = []
        observability_hooks.register_hook("plan_resolved", lambda **data: events.append(data))

        resolve({"service"}, stack_catalog)

        assert events[0]["workflows"] == ["python-development", "python-service"]
        assert events[0]["implicit_dependencies"] == ["python-development"]


class TestTopologicalOrder:
    """Test cases for dependency ordering and cycle detection."""

    def test_alphabetical_tie_break(self):
        catalog = make_catalog(
            make_workflow("zeta"),
            make_workflow("alpha"),
            make_workflow("mid", depends_on=["zeta"]),
        )
        documents = {document.name: document for document in catalog}

        assert topological_order(documents) == ["alpha", "zeta", "mid"]

    def test_diamond(self):
        catalog = make_catalog(
            make_workflow("base"),
            make_workflow("left", depends_on=["base"]),
            make_workflow("right", depends_on=["base"]),
            make_workflow("top", depends_on=["left", "right"]),
        )
        documents = {document.name: document for document in catalog}

        assert topological_order(documents) == ["base", "left", "right", "top"]

    def test_two_node_cycle(self):
        catalog = make_catalog(
            make_workflow("a", stacks=["x"], depends_on=["b"]),
            make_workflow("b", depends_on=["a"]),
        )

        with pytest.raises(CyclicDependency) as exc_info:
            resolve({"x"}, catalog)

        error = exc_info.value
        assert error.involved_nodes == ("a", "b", "a")
        assert "a -> b -> a" in str(error)
        assert error.exit_code == 2

    def test_self_dependency(self):
        catalog = make_catalog(make_workflow("loop", depends_on=["loop"]))

        with pytest.raises(CyclicDependency) as exc_info:
            resolve({"loop"}, catalog)

        assert exc_info.value.involved_nodes == ("loop", "loop")

    def test_cycle_reported_without_downstream_nodes(self):
        catalog = make_catalog(
            make_workflow("app", stacks=["x"], depends_on=["b"]),
            make_workflow("b", depends_on=["c"]),
            make_workflow("c", depends_on=["b"]),
        )

        with pytest.raises(CyclicDependency) as exc_info:
            resolve({"x"}, catalog)

        assert set(exc_info.value.involved_nodes) == {"b", "c"}

    def test_cycle_outside_selection_is_ignored(self):
        catalog = make_catalog(
            make_workflow("solo", stacks=["x"]),
            make_workflow("a", depends_on=["b"]),
            make_workflow("b", depends_on=["a"]),
        )

        assert resolve({"x"}, catalog).workflow_names == ["solo"]


class TestDependencyClosure:
    def test_transitive(self):
        catalog = make_catalog(
            make_workflow("a"),
            make_workflow("b", depends_on=["a"]),
            make_workflow("c", depends_on=["b"]),
        )

        assert dependency_closure(["c"], catalog) == {"a", "b", "c"}
