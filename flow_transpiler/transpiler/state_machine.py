"""
State-machine generator: emulates any graph topology with one tracking
variable and a dispatch loop.

    actions:
      - variables: {current_node: <first node>}
      - repeat:
          sequence:
            - choose:
                - conditions: "{{ current_node == 'action_1' }}"
                  sequence: [<effect>, {variables: {current_node: <next>}}]
                ...
              default: [<log>, {variables: {current_node: END}}]
          until: "{{ current_node == 'END' or repeat.index >= MAX }}"
      - if: "{{ current_node != 'END' }}"
        then: [<log ceiling reached>]

`decode_state_machine` reads this shape back into nodes and edges.
"""
import copy
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from flow_transpiler import config
from flow_transpiler.graph.models import (
    BLOCK_FLAGS, CONDITION, HANDLE_FALSE, HANDLE_TRUE, TRIGGER, Edge, FlowGraph, Node, make_edge,
)
from flow_transpiler.graph.validation import node_warnings
from .conditions import condition_list, condition_payload
from .document import GenerateResult, assemble_document, dump_document
from .errors import StructuralError, TranspileError, format_error
from .lowering import CHOOSE_BLOCK, CONDITION_GATE, IF_BLOCK, classify_entry, lower_node
from .topology import analyze, block_joins, out_edges, successor

logger = logging.getLogger(__name__)

_STATE_TEST_RE = re.compile(r"^\{\{\s*(\w+)\s*==\s*'([A-Za-z0-9_.:-]+)'\s*\}\}$")
_TRIGGER_ROUTE_RE = re.compile(r"trigger\.idx\s*==\s*\"(\d+)\"\s*%\}([A-Za-z0-9_.:-]+)\{%")


def _state_test(node_id: str) -> Dict[str, Any]:
    return {"condition": "template", "value_template": f"{{{{ {config.STATE_VARIABLE} == '{node_id}' }}}}"}


def _assign(target: Optional[str]) -> Dict[str, Any]:
    return {"variables": {config.STATE_VARIABLE: target or config.END_STATE}}


def _log(message: str) -> Dict[str, Any]:
    return {"action": "system_log.write", "data": {"message": message, "level": "warning"}}


def entry_expression(targets: List[Optional[str]]) -> str:
    """
    Initial state for the dispatch loop. When every trigger leads to the same
    node this is the node id; otherwise a template routing on `trigger.idx`.
    """
    if len(set(targets)) == 1:
        return targets[0] or config.END_STATE
    parts = []
    for idx, target in enumerate(targets):
        keyword = "if" if idx == 0 else "elif"
        parts.append(f'{{% {keyword} trigger.idx == "{idx}" %}}{target or config.END_STATE}')
    parts.append(f"{{% else %}}{config.END_STATE}{{% endif %}}")
    return "".join(parts)


def resolve_entry(expression: str, trigger_index: int) -> str:
    """State the dispatch loop starts in when the trigger at `trigger_index` fires."""
    if "{%" not in expression:
        return expression
    routes = dict(_TRIGGER_ROUTE_RE.findall(expression))
    return routes.get(str(trigger_index), config.END_STATE)


def _dispatch_option(node: Node, out: Dict[str, List[Edge]], joins: Dict[str, Optional[str]]) -> Dict[str, Any]:
    if node.type == CONDITION:
        branch: Dict[str, Any] = {}
        if node.label:
            branch["alias"] = node.label
        branch.update(copy.deepcopy(node.flags))
        branch["if"] = condition_list(copy.deepcopy(node.data))
        branch["then"] = [_assign(successor(out, node.id, HANDLE_TRUE))]
        branch["else"] = [_assign(successor(out, node.id, HANDLE_FALSE))]
        sequence = [branch]
        if node.flags.get("enabled") is False:
            # a disabled block is skipped, so the state moves on to its join up front
            sequence.insert(0, _assign(joins.get(node.id)))
    else:
        sequence = [lower_node(node), _assign(successor(out, node.id))]
    return {"conditions": [_state_test(node.id)], "sequence": sequence}


def generate_emulated(graph: FlowGraph) -> GenerateResult:
    """
    Emulate the graph with a dispatch loop. Accepts any topology; cycles
    are reported as a warning since the loop is capped at MAX_ITERATIONS.
    """
    warnings: List[str] = []
    try:
        report = analyze(graph)
        warnings.extend(node_warnings(graph))
        out = out_edges(graph)
        joins = block_joins(graph)

        triggers = graph.triggers()
        order = [t.id for t in triggers]
        body = [n for n in graph.nodes if n.type != TRIGGER and n.id in report.reachable]
        order += [n.id for n in body]

        if report.unreachable:
            warnings.append(
                f"Omitted {len(report.unreachable)} node(s) not reachable from a trigger: "
                f"{', '.join(report.unreachable)}"
            )
        if report.has_cycles:
            warnings.append(
                f"Graph contains cycles; the emulation loop stops after {config.MAX_ITERATIONS} iterations"
            )

        actions: List[Dict[str, Any]] = []
        if body:
            name = graph.name or graph.id or "automation"
            state = config.STATE_VARIABLE
            end = config.END_STATE
            dispatch = {
                "choose": [_dispatch_option(node, out, joins) for node in body],
                "default": [
                    _log(f"{name}: unknown state {{{{ {state} }}}}"),
                    _assign(None),
                ],
            }
            actions = [
                {"variables": {state: entry_expression([successor(out, t.id) for t in triggers])}},
                {"repeat": {
                    "sequence": [dispatch],
                    "until": [{
                        "condition": "template",
                        "value_template": (
                            f"{{{{ {state} == '{end}' or repeat.index >= {config.MAX_ITERATIONS} }}}}"
                        ),
                    }],
                }},
                {
                    "if": [{"condition": "template", "value_template": f"{{{{ {state} != '{end}' }}}}"}],
                    "then": [_log(
                        f"{name}: stopped after {config.MAX_ITERATIONS} iterations in state {{{{ {state} }}}}"
                    )],
                },
            ]
        else:
            warnings.append("No node is reachable from a trigger; the automation has no actions")

        doc = assemble_document(
            graph, [lower_node(t) for t in triggers], [], actions, config.STRATEGY_STATE_MACHINE, order
        )
    except TranspileError as exc:
        logger.info(f"State-machine generation failed: {exc}")
        return GenerateResult(success=False, warnings=warnings, errors=[format_error(exc)],
                              strategy=config.STRATEGY_STATE_MACHINE)

    logger.debug(f"State-machine generation emitted {len(body)} dispatch state(s)")
    return GenerateResult(
        success=True,
        document=dump_document(doc),
        config=doc,
        warnings=warnings,
        strategy=config.STRATEGY_STATE_MACHINE,
    )


def _read_assignment(entry: Any) -> Optional[str]:
    """Target of a `variables: {current_node: X}` entry, None when it is not one."""
    if not isinstance(entry, dict) or set(entry.keys()) != {"variables"}:
        return None
    variables = entry["variables"]
    if not isinstance(variables, dict) or set(variables.keys()) != {config.STATE_VARIABLE}:
        return None
    target = variables[config.STATE_VARIABLE]
    return target if isinstance(target, str) else None


def _read_state_test(option: Dict[str, Any]) -> str:
    conditions = option.get("conditions")
    if isinstance(conditions, list) and len(conditions) == 1:
        conditions = conditions[0]
    template = conditions.get("value_template") if isinstance(conditions, dict) else conditions
    match = _STATE_TEST_RE.match(template.strip()) if isinstance(template, str) else None
    if match is None or match.group(1) != config.STATE_VARIABLE:
        raise StructuralError(f"dispatch option has no state test: {conditions!r}")
    return match.group(2)


def _single(entries: Any, where: str) -> str:
    target = _read_assignment(entries[0]) if isinstance(entries, list) and len(entries) == 1 else None
    if target is None:
        raise StructuralError(f"{where} must assign {config.STATE_VARIABLE}")
    return target


def decode_state_machine(triggers: List[Dict[str, Any]], actions: List[Dict[str, Any]],
                         trigger_ids: Optional[List[str]] = None) -> Tuple[List[Node], List[Edge]]:
    """
    Rebuild nodes and edges from a document produced by generate_emulated.
    Raises StructuralError when the actions do not have the emitted shape.
    """
    ids = list(trigger_ids) if trigger_ids else [f"trigger_{i + 1}" for i in range(len(triggers))]
    nodes = [Node(id=node_id, type=TRIGGER, data=copy.deepcopy(t)) for node_id, t in zip(ids, triggers)]
    edges: List[Edge] = []
    if not actions:
        return nodes, edges

    if len(actions) < 2:
        raise StructuralError("actions do not contain a dispatch loop")
    entry = _read_assignment(actions[0])
    repeat = actions[1].get("repeat") if isinstance(actions[1], dict) else None
    if entry is None or not isinstance(repeat, dict):
        raise StructuralError("actions do not start with the state variable and a repeat loop")
    sequence = repeat.get("sequence")
    if not isinstance(sequence, list) or len(sequence) != 1 or not isinstance(sequence[0], dict):
        raise StructuralError("repeat body is not a single dispatch block")
    options = sequence[0].get(CHOOSE_BLOCK)
    if not isinstance(options, list):
        raise StructuralError("repeat body is not a choose dispatch")

    transitions: List[Tuple[str, str, Optional[str]]] = []
    for option in options:
        if not isinstance(option, dict):
            raise StructuralError(f"dispatch option must be a mapping: {option!r}")
        node_id = _read_state_test(option)
        steps = option.get("sequence")
        if not isinstance(steps, list) or not steps or not isinstance(steps[0], dict):
            raise StructuralError(f"dispatch option {node_id} has no sequence")

        # a disabled block is preceded by the assignment of the state it skips to
        if (len(steps) == 2 and _read_assignment(steps[0]) is not None and isinstance(steps[1], dict)
                and classify_entry(steps[1]) == IF_BLOCK):
            steps = steps[1:]
        if len(steps) == 1 and classify_entry(steps[0]) == IF_BLOCK:
            block = steps[0]
            flags = {key: block[key] for key in BLOCK_FLAGS if key in block}
            nodes.append(Node(id=node_id, type=CONDITION, data=condition_payload(block["if"]),
                              label=block.get("alias"), flags=flags))
            transitions.append((node_id, _single(block.get("then"), f"{node_id} then"), HANDLE_TRUE))
            transitions.append((node_id, _single(block.get("else"), f"{node_id} else"), HANDLE_FALSE))
        elif len(steps) == 2 and _read_assignment(steps[1]) is not None:
            kind = classify_entry(steps[0])
            if kind in (IF_BLOCK, CHOOSE_BLOCK, CONDITION_GATE):
                raise StructuralError(f"dispatch option {node_id} has a structured effect")
            nodes.append(Node(id=node_id, type=kind, data=copy.deepcopy(steps[0])))
            transitions.append((node_id, _read_assignment(steps[1]), None))
        else:
            raise StructuralError(f"dispatch option {node_id} has an unexpected sequence")

    known = {n.id for n in nodes}
    targets = [resolve_entry(entry, i) for i in range(len(ids))]
    routed = [(trigger_id, target, None) for trigger_id, target in zip(ids, targets) if target]

    for source, target, handle in routed + transitions:
        if target == config.END_STATE:
            continue
        if target not in known:
            raise StructuralError(f"transition from {source} to unknown state {target}")
        edges.append(make_edge(source, target, handle))
    return nodes, edges
