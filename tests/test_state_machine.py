"""Tests for the state-machine generator and its decoder."""

import pytest
from flow_transpiler import config
from flow_transpiler.graph.equivalence import graphs_equivalent
from flow_transpiler.graph.models import FlowGraph, Node, make_edge
from flow_transpiler.transpiler.api import transpile
from flow_transpiler.transpiler.errors import StructuralError
from flow_transpiler.transpiler.parser import parse
from flow_transpiler.transpiler.state_machine import (
    decode_state_machine, entry_expression, generate_emulated, resolve_entry,
)


@pytest.fixture
def cooling_loop():
    """Scenario C: the fan action loops back to the temperature check."""
    return FlowGraph(
        id="cooling",
        name="Cooling loop",
        nodes=[
            Node(id="t1", type="trigger", data={"trigger": "state", "entity_id": "sensor.temperature"}),
            Node(id="c1", type="condition", data={"condition": "numeric_state", "entity_id": "sensor.temperature",
                                                  "above": 25}),
            Node(id="a1", type="action", data={"action": "fan.turn_on", "target": {"entity_id": "fan.bedroom"}}),
            Node(id="a2", type="action", data={"action": "fan.turn_off", "target": {"entity_id": "fan.bedroom"}}),
        ],
        edges=[
            make_edge("t1", "c1"),
            make_edge("c1", "a1", "true"),
            make_edge("c1", "a2", "false"),
            make_edge("a1", "c1"),
        ],
    )


def test_forced_native_on_cycle_names_back_edge(cooling_loop):
    """Test forcing native on a cyclic graph fails and names the back edge."""
    result = transpile(cooling_loop, force_strategy="native")

    assert result.success is False
    assert result.document is None
    assert len(result.errors) == 1
    assert result.errors[0].startswith("StrategyConflictError:")
    assert "e-a1-c1 (a1 -> c1)" in result.errors[0]


def test_cyclic_graph_defaults_to_state_machine(cooling_loop):
    """Test the default strategy for a cyclic graph is the state machine."""
    result = transpile(cooling_loop)

    assert result.success is True
    assert result.output.strategy == "state-machine"
    assert any("cycles" in w for w in result.warnings)


def test_state_machine_document_shape(cooling_loop):
    """Test the dispatch loop layout of a generated document."""
    doc = generate_emulated(cooling_loop).config
    actions = doc["actions"]

    assert actions[0] == {"variables": {"current_node": "c1"}}
    repeat = actions[1]["repeat"]
    options = repeat["sequence"][0]["choose"]
    assert [o["conditions"][0]["value_template"] for o in options] == [
        "{{ current_node == 'c1' }}",
        "{{ current_node == 'a1' }}",
        "{{ current_node == 'a2' }}",
    ]
    check = options[0]["sequence"][0]
    assert check["then"] == [{"variables": {"current_node": "a1"}}]
    assert check["else"] == [{"variables": {"current_node": "a2"}}]
    assert options[1]["sequence"][1] == {"variables": {"current_node": "c1"}}
    assert options[2]["sequence"][1] == {"variables": {"current_node": "END"}}
    assert str(config.MAX_ITERATIONS) in repeat["until"][0]["value_template"]
    assert actions[2]["then"][0]["action"] == "system_log.write"
    assert "conditions" not in doc


def test_state_machine_round_trip(cooling_loop):
    """Test a state-machine document parses back to an equivalent graph."""
    result = transpile(cooling_loop)

    parsed = parse(result.document)

    assert parsed.success is True
    assert parsed.strategy == "state-machine"
    assert parsed.graph.strategy == "state-machine"
    assert [n.id for n in parsed.graph.nodes] == ["t1", "c1", "a1", "a2"]
    assert parsed.graph.id == "cooling"
    assert graphs_equivalent(cooling_loop, parsed.graph)


def test_state_machine_regeneration_is_stable(cooling_loop):
    """Test regenerating from a parsed state-machine document yields the same config."""
    first = transpile(cooling_loop)
    second = transpile(parse(first.document).graph)

    assert second.output.strategy == "state-machine"
    assert second.output.config == first.output.config


def test_divergent_triggers_route_on_trigger_index():
    """Test triggers leading to different nodes pick their start state from trigger.idx."""
    graph = FlowGraph(
        nodes=[
            Node(id="door", type="trigger", data={"trigger": "state", "entity_id": "binary_sensor.door"}),
            Node(id="window", type="trigger", data={"trigger": "state", "entity_id": "binary_sensor.window"}),
            Node(id="chime", type="action", data={"action": "media_player.play_media"}),
            Node(id="close", type="action", data={"action": "cover.close_cover"}),
        ],
        edges=[make_edge("door", "chime"), make_edge("window", "close")],
    )

    result = transpile(graph)
    expression = result.output.config["actions"][0]["variables"]["current_node"]
    parsed = parse(result.document).graph

    assert result.output.strategy == "state-machine"
    assert "trigger.idx" in expression
    assert resolve_entry(expression, 0) == "chime"
    assert resolve_entry(expression, 1) == "close"
    assert resolve_entry(expression, 5) == "END"
    assert graphs_equivalent(graph, parsed)


def test_entry_expression_single_target():
    """Test triggers sharing a first node start there directly."""
    assert entry_expression(["a1", "a1"]) == "a1"
    assert entry_expression([None]) == "END"


def test_graph_with_only_triggers_has_empty_actions():
    """Test a graph without reachable nodes produces an empty action list."""
    graph = FlowGraph(nodes=[Node(id="t1", type="trigger", data={"trigger": "time", "at": "07:00:00"})])

    result = generate_emulated(graph)
    parsed = parse(result.document)

    assert result.success is True
    assert result.config["actions"] == []
    assert any("No node is reachable" in w for w in result.warnings)
    assert parsed.success is True
    assert [n.id for n in parsed.graph.nodes] == ["t1"]


def test_set_variables_and_delay_dispatch_options():
    """Test non-branching nodes emit their entry followed by the state assignment."""
    graph = FlowGraph(
        nodes=[
            Node(id="t1", type="trigger", data={"trigger": "state", "entity_id": "sensor.temperature"}),
            Node(id="v1", type="set_variables", data={"variables": {"level": 3}}),
            Node(id="d1", type="delay", data={"delay": 5}),
        ],
        edges=[make_edge("t1", "v1"), make_edge("v1", "d1")],
    )

    options = generate_emulated(graph).config["actions"][1]["repeat"]["sequence"][0]["choose"]

    assert options[0]["sequence"] == [{"variables": {"level": 3}}, {"variables": {"current_node": "d1"}}]
    assert options[1]["sequence"] == [{"delay": 5}, {"variables": {"current_node": "END"}}]


def test_decode_rejects_actions_without_dispatch_loop():
    """Test decoding plain actions as a state machine raises StructuralError."""
    triggers = [{"trigger": "state", "entity_id": "sensor.temperature"}]

    with pytest.raises(StructuralError, match="dispatch loop"):
        decode_state_machine(triggers, [{"action": "light.turn_on"}])


def test_decode_rejects_transition_to_unknown_state(cooling_loop):
    """Test a dispatch option pointing at a missing state raises StructuralError."""
    doc = generate_emulated(cooling_loop).config
    options = doc["actions"][1]["repeat"]["sequence"][0]["choose"]
    options[1]["sequence"][1] = {"variables": {"current_node": "ghost"}}

    with pytest.raises(StructuralError, match="unknown state ghost"):
        decode_state_machine(doc["triggers"], doc["actions"], ["t1"])


def test_tampered_state_machine_document_falls_back_to_structural_parse(cooling_loop):
    """Test an edited dispatch loop is parsed structurally with a warning."""
    doc = generate_emulated(cooling_loop).config
    doc["actions"].insert(0, {"action": "light.turn_on"})

    parsed = parse(doc)

    assert parsed.success is True
    assert parsed.graph.strategy is None
    assert any("Could not decode state-machine actions" in w for w in parsed.warnings)


@pytest.fixture
def disabled_diamond():
    """A disabled branch whose two arms meet again at a3."""
    return FlowGraph(
        id="diamond",
        nodes=[
            Node(id="t1", type="trigger", data={"trigger": "state", "entity_id": "sensor.temperature"}),
            Node(id="c1", type="condition", data={"condition": "numeric_state", "entity_id": "sensor.temperature",
                                                  "above": 25},
                 flags={"enabled": False, "continue_on_error": True}),
            Node(id="a1", type="action", data={"action": "fan.turn_on"}),
            Node(id="a2", type="action", data={"action": "fan.turn_off"}),
            Node(id="a3", type="action", data={"action": "notify.notify"}),
        ],
        edges=[
            make_edge("t1", "c1"),
            make_edge("c1", "a1", "true"),
            make_edge("c1", "a2", "false"),
            make_edge("a1", "a3"),
            make_edge("a2", "a3"),
        ],
    )


def test_disabled_condition_dispatch_skips_to_join(disabled_diamond):
    """Test a disabled condition assigns its join before the block and keeps its flags on the block."""
    result = generate_emulated(disabled_diamond)
    options = result.config["actions"][1]["repeat"]["sequence"][0]["choose"]

    sequence = options[0]["sequence"]
    assert sequence[0] == {"variables": {config.STATE_VARIABLE: "a3"}}
    assert sequence[1]["enabled"] is False
    assert sequence[1]["continue_on_error"] is True
    assert sequence[1]["then"] == [{"variables": {config.STATE_VARIABLE: "a1"}}]


def test_disabled_condition_round_trip(disabled_diamond):
    """Test flags survive state-machine generation and decoding."""
    result = generate_emulated(disabled_diamond)
    reparsed = parse(result.document).graph

    assert reparsed.node("c1").flags == {"enabled": False, "continue_on_error": True}
    assert graphs_equivalent(disabled_diamond, reparsed)


def test_single_child_and_group_survives_emulation():
    """Test an and group with one child is not flattened by the dispatch loop."""
    group = {"condition": "and", "conditions": [{"condition": "state", "entity_id": "light.a", "state": "on"}]}
    graph = FlowGraph(
        nodes=[
            Node(id="t1", type="trigger", data={"trigger": "state", "entity_id": "light.a"}),
            Node(id="c1", type="condition", data=group),
            Node(id="a1", type="action", data={"action": "light.turn_off"}),
        ],
        edges=[make_edge("t1", "c1"), make_edge("c1", "a1", "true"), make_edge("a1", "c1")],
    )

    result = transpile(graph, force_strategy="state-machine")
    reparsed = parse(result.document).graph

    assert reparsed.node("c1").data == group
    assert graphs_equivalent(graph, reparsed)
