"""Tests for the public parse / classify / transpile entry points."""

import pytest
import yaml
from flow_transpiler.graph.models import FlowGraph, Node, make_edge
from flow_transpiler.graph.schema import graph_to_dict
from flow_transpiler.transpiler.api import classify, parse, transpile
from flow_transpiler.transpiler.errors import StructuralError

SCENARIO_A = """
alias: Kitchen motion
triggers:
  - trigger: state
    entity_id: binary_sensor.kitchen_motion
    to: "on"
actions:
  - action: light.turn_on
    target:
      entity_id: light.kitchen
"""


def _editor_graph():
    return {
        "id": "kitchen",
        "name": "Kitchen motion",
        "nodes": [
            {"id": "motion", "type": "trigger", "position": {"x": 0, "y": 0},
             "data": {"trigger": "state", "entity_id": "binary_sensor.kitchen_motion", "to": "on"}},
            {"id": "light", "type": "action", "position": {"x": 0, "y": 120},
             "data": {"action": "light.turn_on", "target": {"entity_id": "light.kitchen"}}},
        ],
        "edges": [{"id": "e1", "source": "motion", "target": "light"}],
    }


def test_scenario_a_parse():
    """Test a one-trigger one-action automation parses to two nodes and one edge."""
    result = parse(SCENARIO_A)

    assert result.success is True
    assert result.errors == []
    assert [(n.id, n.type) for n in result.graph.nodes] == [("trigger_1", "trigger"), ("action_1", "action")]
    assert len(result.graph.edges) == 1
    assert result.graph.edges[0].source == "trigger_1"
    assert result.graph.edges[0].target == "action_1"
    assert result.graph.name == "Kitchen motion"


def test_scenario_a_transpile_back():
    """Test the parsed graph transpiles natively to an equivalent automation."""
    graph = parse(SCENARIO_A).graph

    result = transpile(graph)
    doc = yaml.safe_load(result.document)

    assert result.success is True
    assert result.output.strategy == "native"
    assert doc["triggers"] == [{"trigger": "state", "entity_id": "binary_sensor.kitchen_motion", "to": "on"}]
    assert doc["actions"] == [{"action": "light.turn_on", "target": {"entity_id": "light.kitchen"}}]
    assert result.output.config == doc


def test_transpile_accepts_editor_mapping():
    """Test a graph in the editor's JSON shape can be transpiled directly."""
    result = transpile(_editor_graph())
    reparsed = parse(result.document).graph

    assert result.success is True
    assert result.output.config["alias"] == "Kitchen motion"
    assert [n.id for n in reparsed.nodes] == ["motion", "light"]
    assert reparsed.id == "kitchen"


def test_classify_accepts_editor_mapping():
    """Test classification of a graph mapping."""
    assert classify(_editor_graph()) == "native"


def test_classify_rejects_malformed_mapping():
    """Test classification raises StructuralError for an invalid graph mapping."""
    with pytest.raises(StructuralError):
        classify({"nodes": [{"id": "x", "type": "robot"}]})


def test_transpile_unknown_strategy():
    """Test an unknown forced strategy is reported as an error."""
    result = transpile(_editor_graph(), force_strategy="turbo")

    assert result.success is False
    assert result.errors[0].startswith("TranspileError: Unknown strategy 'turbo'")


def test_transpile_invalid_input_type():
    """Test unsupported inputs fail without raising."""
    result = transpile(42)

    assert result.success is False
    assert result.errors == ["StructuralError: Expected a FlowGraph or a graph mapping, got int"]


def test_transpile_malformed_graph():
    """Test structural problems fail the whole transpile call."""
    graph = FlowGraph(
        nodes=[
            Node(id="t1", type="trigger", data={"trigger": "state", "entity_id": "sensor.a"}),
            Node(id="a1", type="action", data={"action": "light.turn_on"}),
            Node(id="a2", type="action", data={"action": "light.turn_off"}),
        ],
        edges=[make_edge("t1", "a1"), make_edge("t1", "a2")],
    )

    result = transpile(graph)

    assert result.success is False
    assert "only condition nodes may branch" in result.errors[0]


def test_force_state_machine_on_native_graph():
    """Test a native-capable graph can still be emulated on request."""
    result = transpile(_editor_graph(), force_strategy="state-machine")

    assert result.success is True
    assert result.output.strategy == "state-machine"
    assert "repeat" in result.output.config["actions"][1]


def test_prior_state_machine_strategy_is_kept():
    """Test a graph parsed from a state-machine document keeps that strategy."""
    emulated = transpile(_editor_graph(), force_strategy="state-machine")
    graph = parse(emulated.document).graph

    result = transpile(graph)

    assert graph.strategy == "state-machine"
    assert result.output.strategy == "state-machine"


def test_editor_mapping_with_strategy_hint():
    """Test the strategy field of an editor graph is honored."""
    raw = _editor_graph()
    raw["strategy"] = "state-machine"

    assert transpile(raw).output.strategy == "state-machine"


def test_round_trip_through_editor_json():
    """Test YAML -> graph -> editor JSON -> YAML keeps the automation."""
    graph = parse(SCENARIO_A).graph

    result = transpile(graph_to_dict(graph))

    assert result.success is True
    assert result.output.config["actions"] == [{"action": "light.turn_on", "target": {"entity_id": "light.kitchen"}}]


def test_gate_inside_branch_regenerates_as_state_machine():
    """Test a branch that can stop the run before the shared continuation is emulated."""
    yaml_text = """
triggers:
  - trigger: state
    entity_id: binary_sensor.door
actions:
  - if:
      - condition: state
        entity_id: binary_sensor.door
        state: "on"
    then:
      - condition: state
        entity_id: alarm_control_panel.home
        state: armed_away
      - action: notify.notify
    else:
      - action: light.turn_off
  - delay: 5
"""
    graph = parse(yaml_text).graph

    result = transpile(graph)
    reparsed = parse(result.document).graph

    assert classify(graph) == "emulate"
    assert result.output.strategy == "state-machine"
    assert [n.id for n in reparsed.nodes] == [n.id for n in graph.nodes]
    assert len(reparsed.edges) == len(graph.edges)


def test_block_flags_round_trip_through_editor_json():
    """Test a disabled if block keeps its flag through the editor's JSON shape."""
    yaml_text = """
triggers:
  - trigger: state
    entity_id: binary_sensor.door
actions:
  - enabled: false
    if: "{{ true }}"
    then:
      - action: light.turn_on
"""
    raw = graph_to_dict(parse(yaml_text).graph)

    result = transpile(raw)

    assert raw["nodes"][1]["flags"] == {"enabled": False}
    assert "flags" not in raw["nodes"][2]
    assert result.output.config["actions"][0]["enabled"] is False
