"""Tests for topology analysis and strategy classification."""

import pytest
from flow_transpiler.graph.models import FlowGraph, Node, make_edge
from flow_transpiler.transpiler.errors import StructuralError
from flow_transpiler.transpiler.topology import (
    EXIT, analyze, classify, find_back_edges, immediate_post_dominators, reachable_from_triggers,
)

TRIGGER = {"trigger": "state", "entity_id": "sensor.temperature"}
HOT = {"condition": "numeric_state", "entity_id": "sensor.temperature", "above": 25}


def _graph(nodes, edges):
    return FlowGraph(
        id="g1",
        nodes=[Node(id=node_id, type=node_type, data=data) for node_id, node_type, data in nodes],
        edges=[make_edge(source, target, handle) for source, target, handle in edges],
    )


def _action(name):
    return {"action": f"script.{name}"}


def test_linear_graph_is_native():
    """Test a trigger followed by a chain of actions classifies as native."""
    graph = _graph(
        [("t1", "trigger", TRIGGER), ("a1", "action", _action("one")), ("a2", "action", _action("two"))],
        [("t1", "a1", None), ("a1", "a2", None)],
    )

    assert classify(graph) == "native"


def test_back_edge_classifies_as_emulate():
    """Test a cycle from a later action to an earlier condition needs emulation."""
    graph = _graph(
        [("t1", "trigger", TRIGGER), ("c1", "condition", HOT),
         ("a1", "action", _action("cool")), ("a2", "action", _action("done"))],
        [("t1", "c1", None), ("c1", "a1", "true"), ("c1", "a2", "false"), ("a1", "c1", None)],
    )

    report = analyze(graph)

    assert report.strategy == "emulate"
    assert [e.id for e in report.back_edges] == ["e-a1-c1"]
    assert "e-a1-c1 (a1 -> c1)" in report.conflict_message()


def test_if_else_joining_at_common_continuation_is_native():
    """Test two branches meeting at their natural continuation stay native."""
    graph = _graph(
        [("t1", "trigger", TRIGGER), ("c1", "condition", HOT),
         ("a1", "action", _action("fan")), ("a2", "action", _action("heater")),
         ("d1", "delay", {"delay": 5})],
        [("t1", "c1", None), ("c1", "a1", "true"), ("c1", "a2", "false"),
         ("a1", "d1", None), ("a2", "d1", None)],
    )

    report = analyze(graph)

    assert report.strategy == "native"
    assert report.ipdom["c1"] == "d1"


def test_cross_branch_reconvergence_classifies_as_emulate():
    """Test a node reached from an inner branch and an outer sibling branch needs emulation."""
    graph = _graph(
        [("t1", "trigger", TRIGGER), ("c1", "condition", HOT), ("c2", "condition", HOT),
         ("b", "action", _action("b")), ("d", "action", _action("d")),
         ("e", "action", _action("e")), ("x", "action", _action("x"))],
        [("t1", "c1", None), ("c1", "c2", "true"), ("c1", "b", "false"),
         ("c2", "d", "true"), ("c2", "e", "false"), ("b", "d", None),
         ("d", "x", None), ("e", "x", None)],
    )

    report = analyze(graph)

    assert report.strategy == "emulate"
    assert report.back_edges == []
    assert report.reconvergent == ["d"]
    assert "reconverge at node(s) d" in report.conflict_message()


def test_triggers_leading_to_different_nodes_classify_as_emulate():
    """Test triggers that start different paths cannot share one action list."""
    graph = _graph(
        [("t1", "trigger", TRIGGER), ("t2", "trigger", TRIGGER),
         ("a1", "action", _action("one")), ("a2", "action", _action("two"))],
        [("t1", "a1", None), ("t2", "a2", None)],
    )

    report = analyze(graph)

    assert report.strategy == "emulate"
    assert report.divergent_triggers == ["t1", "t2"]


def test_gate_condition_post_dominator_is_exit():
    """Test a condition without a false edge is post-dominated by the exit only."""
    graph = _graph(
        [("t1", "trigger", TRIGGER), ("c1", "condition", HOT), ("a1", "action", _action("one"))],
        [("t1", "c1", None), ("c1", "a1", "true")],
    )

    ipdom = immediate_post_dominators(graph, {"c1", "a1"})

    assert ipdom == {"a1": EXIT, "c1": EXIT}
    assert classify(graph) == "native"


def test_unreachable_nodes_are_reported():
    """Test nodes that no trigger reaches are listed separately."""
    graph = _graph(
        [("t1", "trigger", TRIGGER), ("a1", "action", _action("one")), ("orphan", "action", _action("two"))],
        [("t1", "a1", None)],
    )

    report = analyze(graph)

    assert reachable_from_triggers(graph) == {"t1", "a1"}
    assert report.unreachable == ["orphan"]
    assert report.strategy == "native"


def test_cycle_outside_reachable_part_is_still_detected():
    """Test cycles are found even among nodes no trigger reaches."""
    graph = _graph(
        [("t1", "trigger", TRIGGER), ("a1", "action", _action("one")),
         ("x", "action", _action("x")), ("y", "action", _action("y"))],
        [("t1", "a1", None), ("x", "y", None), ("y", "x", None)],
    )

    assert [e.id for e in find_back_edges(graph)] == ["e-y-x"]
    assert classify(graph) == "emulate"


def test_classify_rejects_malformed_graph():
    """Test classification of a graph without triggers raises StructuralError."""
    graph = _graph([("a1", "action", _action("one"))], [])

    with pytest.raises(StructuralError, match="no trigger node"):
        classify(graph)
