"""Tests for dependency graph construction."""

import pytest

from agentmesh.errors import CycleDetected, WorkflowDefinitionError
from agentmesh.orchestrator import build_graph
from agentmesh.models import WorkflowDefinition


def definition(phases, dependencies=()):
    return WorkflowDefinition.from_dict(
        {
            "phases": [{"name": name, "agent": "echo"} for name in phases],
            "dependencies": [list(pair) for pair in dependencies],
        }
    )


class TestBuildGraph:
    """Tests for build_graph()."""

    def test_topological_order(self):
        """Test that every node comes after its dependencies."""
        graph = build_graph(definition(["D", "B", "C", "A"], [("A", "B"), ("A", "C"), ("B", "D"), ("C", "D")]))

        assert graph.order == ("A", "B", "C", "D")
        assert graph.dependencies_of("D") == {"B", "C"}
        assert graph.dependents_of("A") == {"B", "C"}

    def test_ties_keep_declaration_order(self):
        """Test that independent nodes keep their declared order."""
        graph = build_graph(definition(["c", "a", "b"]))

        assert graph.order == ("c", "a", "b")

    def test_waves(self):
        """Test grouping of nodes that can run together."""
        graph = build_graph(definition(["A", "B", "C", "D", "E"], [("A", "B"), ("A", "C"), ("B", "D"), ("C", "D")]))

        assert graph.waves() == [["A", "E"], ["B", "C"], ["D"]]

    def test_descendants(self):
        """Test the transitive downstream set."""
        graph = build_graph(definition(["A", "B", "C", "X"], [("A", "B"), ("B", "C")]))

        assert graph.descendants("A") == {"B", "C"}
        assert graph.descendants("C") == set()

    def test_two_node_cycle(self):
        """Test that A -> B -> A is reported with its nodes."""
        with pytest.raises(CycleDetected) as exc_info:
            build_graph(definition(["A", "B"], [("A", "B"), ("B", "A")]))

        assert exc_info.value.nodes == ["A", "B", "A"]

    def test_longer_cycle(self):
        """Test that a three-node cycle is reported in dependency direction."""
        with pytest.raises(CycleDetected) as exc_info:
            build_graph(definition(["A", "B", "C", "Z"], [("A", "B"), ("B", "C"), ("C", "A")]))

        assert exc_info.value.nodes == ["A", "B", "C", "A"]

    def test_self_dependency(self):
        """Test that a node depending on itself is a cycle."""
        with pytest.raises(CycleDetected) as exc_info:
            build_graph(definition(["A"], [("A", "A")]))

        assert exc_info.value.nodes == ["A", "A"]

    def test_cycle_is_a_definition_error(self):
        """Test that callers can catch cycles as definition errors."""
        with pytest.raises(WorkflowDefinitionError):
            build_graph(definition(["A", "B"], [("A", "B"), ("B", "A")]))

    def test_unknown_dependency(self):
        """Test that dependencies on undeclared phases are refused."""
        with pytest.raises(WorkflowDefinitionError, match="unknown phase 'Q'"):
            build_graph(definition(["A"], [("Q", "A")]))

    def test_duplicate_phase(self):
        """Test that phase names must be unique."""
        with pytest.raises(WorkflowDefinitionError, match="duplicate"):
            build_graph(definition(["A", "A"]))
