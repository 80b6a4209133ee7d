"""
Parser that converts an automation document (YAML text or a loaded mapping)
into a FlowGraph.

Triggers, top-level conditions and the action sequence become nodes; `if` and
`choose` blocks become Condition nodes whose "true"/"false" handles lead to the
branch sequences. The parser tracks the set of "open ends" (node id + handle)
that the next action entry must be wired to.
"""
import copy
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from flow_transpiler import config
from flow_transpiler.graph.models import (
    ACTION, BLOCK_FLAGS, CONDITION, HANDLE_FALSE, HANDLE_TRUE, TRIGGER, WAIT,
    AutomationSettings, Edge, FlowGraph, Node, Position, make_edge,
)
from flow_transpiler.graph.schema import validate_automation
from flow_transpiler.graph.validation import check_structure, node_warnings, structural_errors
from .conditions import condition_payload, normalize_condition
from .errors import OutputSizeError, StructuralError, TranspileError, format_error
from .lowering import CHOOSE_BLOCK, CONDITION_GATE, IF_BLOCK, classify_entry
from .metadata import MetadataBlock, decode_metadata
from .state_machine import decode_state_machine

logger = logging.getLogger(__name__)

OpenEnd = Tuple[str, Optional[str]]

_LEGACY_TOP_LEVEL = {"trigger": "triggers", "condition": "conditions", "action": "actions"}
_IF_KEYS = {"if", "then", "else", "alias", *BLOCK_FLAGS}
_CHOOSE_KEYS = {"choose", "default", *BLOCK_FLAGS}
# keys whose values hold further action entries inside an opaque entry
_NESTED_KEYS = ("sequence", "then", "else", "default", "parallel", "repeat", "choose")


@dataclass
class ParseResult:
    success: bool
    graph: Optional[FlowGraph] = None
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    strategy: Optional[str] = None


def choose_node_bound(options: int, nested_conditions: int = 0) -> int:
    """
    Condition nodes created by exploding a choose block with `options`
    options. Nested condition groups stay on their option's node, so the
    count does not depend on `nested_conditions`.
    """
    return options


def choose_node_budget(options: int) -> int:
    """Total nodes a single choose block may produce, nested blocks included."""
    return config.CHOOSE_NODES_PER_OPTION * max(options, 1)


def parse(document: Union[str, Mapping[str, Any]]) -> ParseResult:
    """
    Parse an automation document into a graph. Never raises: structural
    problems and exceeded budgets give success=False and no graph.
    """
    warnings: List[str] = []
    try:
        graph = _parse(document, warnings)
    except TranspileError as exc:
        logger.info(f"Parse failed: {exc}")
        return ParseResult(success=False, warnings=warnings, errors=[format_error(exc)])
    return ParseResult(success=True, graph=graph, warnings=warnings, strategy=graph.strategy)


def load_document(document: Union[str, Mapping[str, Any]]) -> Dict[str, Any]:
    if isinstance(document, str):
        try:
            data = yaml.safe_load(document)
        except yaml.YAMLError as e:
            raise StructuralError(f"Invalid YAML: {e}")
    elif isinstance(document, Mapping):
        data = copy.deepcopy(dict(document))
    else:
        raise StructuralError(f"Document must be YAML text or a mapping, got {type(document).__name__}")

    if data is None:
        raise StructuralError("Document is empty")
    if not isinstance(data, dict):
        raise StructuralError(f"Document root must be a mapping, got {type(data).__name__}")
    return data


def _parse(document: Union[str, Mapping[str, Any]], warnings: List[str]) -> FlowGraph:
    raw = normalize_document(load_document(document), warnings)
    spec = validate_automation(raw)

    triggers = [_normalize_trigger(t, f"triggers[{i}]", warnings) for i, t in enumerate(spec.triggers)]
    for key in (spec.model_extra or {}):
        warnings.append(f"Ignored unknown automation key '{key}'")

    block, metadata_warnings = decode_metadata(raw)
    warnings.extend(metadata_warnings)

    strategy = block.strategy if block else None
    graph = None
    if strategy == config.STRATEGY_STATE_MACHINE:
        try:
            graph = _decode_emulated(triggers, spec.actions, block, spec.conditions)
        except StructuralError as e:
            warnings.append(f"Could not decode state-machine actions, parsing structurally: {e}")
            strategy = None

    if graph is None:
        builder = _GraphBuilder(warnings)
        builder.build(triggers, spec.conditions, spec.actions)
        graph = FlowGraph(nodes=builder.nodes, edges=builder.edges)
        if block is not None:
            _restore_ids(graph, block, warnings)

    if block is not None:
        _apply_positions(graph, block)

    graph.id = (block.graph_id if block and block.graph_id else None) or str(uuid.uuid4())
    graph.version = block.graph_version if block and block.graph_version is not None else 1
    graph.strategy = strategy
    graph.name = spec.alias or ""
    graph.description = spec.description or ""
    graph.settings = _settings(spec)

    check_structure(graph)
    warnings.extend(node_warnings(graph))
    logger.debug(f"Parsed graph {graph.id}: {len(graph.nodes)} nodes, {len(graph.edges)} edges")
    return graph


def normalize_document(raw: Dict[str, Any], warnings: List[str]) -> Dict[str, Any]:
    """
    Rename legacy top-level keys, wrap single entries in lists and check
    that the required sections exist.
    """
    out: Dict[str, Any] = {}
    for key, value in raw.items():
        modern = _LEGACY_TOP_LEVEL.get(key)
        if modern is None:
            out[key] = value
            continue
        if modern in raw:
            raise StructuralError(f"Document has both '{key}' and '{modern}'")
        warnings.append(f"Legacy key '{key}' renamed to '{modern}'")
        out[modern] = value

    for key in ("triggers", "actions"):
        if key not in out:
            raise StructuralError(f"Missing required top-level field: {key}")

    for key in ("triggers", "conditions", "actions"):
        value = out.get(key)
        if value is None:
            out[key] = []
        elif not isinstance(value, list):
            out[key] = [value]

    if not out["triggers"]:
        raise StructuralError("Automation has no triggers")
    return out


def _rename_key(entry: Dict[str, Any], old: str, new: str) -> Dict[str, Any]:
    # keeps the position of the renamed key
    return {(new if k == old else k): v for k, v in entry.items()}


def _normalize_trigger(trigger: Dict[str, Any], where: str, warnings: List[str]) -> Dict[str, Any]:
    trigger = copy.deepcopy(trigger)
    if "platform" in trigger:
        if "trigger" in trigger:
            warnings.append(f"{where}: dropped legacy key 'platform' next to 'trigger'")
            trigger.pop("platform")
        else:
            warnings.append(f"{where}: legacy key 'platform' renamed to 'trigger'")
            trigger = _rename_key(trigger, "platform", "trigger")
    return trigger


def _normalize_action(entry: Dict[str, Any], where: str, warnings: List[str]) -> Dict[str, Any]:
    entry = copy.deepcopy(entry)
    if "service" in entry:
        if "action" in entry:
            warnings.append(f"{where}: dropped legacy key 'service' next to 'action'")
            entry.pop("service")
        else:
            warnings.append(f"{where}: legacy key 'service' renamed to 'action'")
            entry = _rename_key(entry, "service", "action")
    return entry


def _normalize_wait(entry: Dict[str, Any], where: str, warnings: List[str]) -> Dict[str, Any]:
    entry = copy.deepcopy(entry)
    waits = entry.get("wait_for_trigger")
    if isinstance(waits, dict):
        waits = [waits]
    if isinstance(waits, list):
        entry["wait_for_trigger"] = [
            _normalize_trigger(t, f"{where}.wait_for_trigger[{i}]", warnings) if isinstance(t, dict) else t
            for i, t in enumerate(waits)
        ]
    return entry


def _normalize_nested(value: Any, where: str, warnings: List[str]) -> Any:
    """Apply the legacy key renames to entries nested inside an opaque entry."""
    if isinstance(value, list):
        return [_normalize_nested(item, f"{where}[{i}]", warnings) for i, item in enumerate(value)]
    if not isinstance(value, dict):
        return value

    if "service" in value:
        value = _normalize_action(value, where, warnings)
    if "wait_for_trigger" in value:
        value = _normalize_wait(value, where, warnings)
    out = dict(value)
    for key in _NESTED_KEYS:
        if key in out:
            out[key] = _normalize_nested(out[key], f"{where}.{key}", warnings)
    return out


def _block_flags(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {key: entry[key] for key in BLOCK_FLAGS if key in entry}


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


class _GraphBuilder:
    def __init__(self, warnings: List[str]):
        self.nodes: List[Node] = []
        self.edges: List[Edge] = []
        self.warnings = warnings
        self._counters: Dict[str, int] = {}

    def add_node(self, node_type: str, data: Dict[str, Any], label: Optional[str] = None,
                 flags: Optional[Dict[str, Any]] = None) -> str:
        if len(self.nodes) >= config.MAX_GRAPH_NODES:
            raise OutputSizeError(f"Graph exceeds {config.MAX_GRAPH_NODES} nodes")
        self._counters[node_type] = self._counters.get(node_type, 0) + 1
        node_id = f"{node_type}_{self._counters[node_type]}"
        self.nodes.append(Node(id=node_id, type=node_type, data=data, label=label, flags=dict(flags or {})))
        return node_id

    def connect(self, ends: List[OpenEnd], target: str):
        for source, handle in ends:
            self.edges.append(make_edge(source, target, handle))

    def build(self, triggers: List[Dict[str, Any]], conditions: List[Any], actions: List[Dict[str, Any]]):
        ends: List[OpenEnd] = []
        for trigger in triggers:
            ends.append((self.add_node(TRIGGER, trigger), None))

        for condition in conditions:
            node_id = self.add_node(CONDITION, normalize_condition(condition))
            self.connect(ends, node_id)
            ends = [(node_id, HANDLE_TRUE)]

        self.sequence(actions, ends, "actions", 0)

    def sequence(self, entries: Any, ends: List[OpenEnd], where: str, depth: int) -> List[OpenEnd]:
        for i, entry in enumerate(_as_list(entries)):
            ends = self.entry(entry, ends, f"{where}[{i}]", depth)
        return ends

    def entry(self, entry: Any, ends: List[OpenEnd], where: str, depth: int) -> List[OpenEnd]:
        if not isinstance(entry, dict):
            raise StructuralError(f"{where}: action entry must be a mapping, got {type(entry).__name__}")

        kind = classify_entry(entry)
        if kind == IF_BLOCK:
            return self.if_block(entry, ends, where, depth)
        if kind == CHOOSE_BLOCK:
            return self.choose_block(entry, ends, where, depth)
        if kind == CONDITION_GATE:
            node_id = self.add_node(CONDITION, normalize_condition(entry))
            self.connect(ends, node_id)
            # a failed condition stops the run
            return [(node_id, HANDLE_TRUE)]

        if kind == ACTION:
            entry = _normalize_nested(_normalize_action(entry, where, self.warnings), where, self.warnings)
        elif kind == WAIT:
            entry = _normalize_wait(entry, where, self.warnings)
        else:
            entry = copy.deepcopy(entry)
        node_id = self.add_node(kind, entry)
        self.connect(ends, node_id)
        return [(node_id, None)]

    def _enter(self, where: str, depth: int):
        if depth + 1 > config.MAX_NESTING_DEPTH:
            raise OutputSizeError(f"{where}: nesting exceeds {config.MAX_NESTING_DEPTH} levels")

    def _drop_extra_keys(self, entry: Dict[str, Any], allowed: set, where: str):
        for key in entry:
            if key not in allowed:
                self.warnings.append(f"{where}: key '{key}' on a branching block is not represented in the graph and was dropped")

    def if_block(self, entry: Dict[str, Any], ends: List[OpenEnd], where: str, depth: int) -> List[OpenEnd]:
        self._enter(where, depth)
        self._drop_extra_keys(entry, _IF_KEYS, where)

        node_id = self.add_node(CONDITION, condition_payload(entry["if"]), label=entry.get("alias"),
                                flags=_block_flags(entry))
        self.connect(ends, node_id)
        then_ends = self.sequence(entry.get("then"), [(node_id, HANDLE_TRUE)], f"{where}.then", depth + 1)
        else_ends = self.sequence(entry.get("else"), [(node_id, HANDLE_FALSE)], f"{where}.else", depth + 1)
        return then_ends + else_ends

    def choose_block(self, entry: Dict[str, Any], ends: List[OpenEnd], where: str, depth: int) -> List[OpenEnd]:
        self._enter(where, depth)
        self._drop_extra_keys(entry, _CHOOSE_KEYS, where)

        options = _as_list(entry["choose"])
        budget = choose_node_budget(len(options))
        start = len(self.nodes)

        pending = ends
        out: List[OpenEnd] = []
        for i, option in enumerate(options):
            option_where = f"{where}.choose[{i}]"
            if not isinstance(option, dict) or "conditions" not in option:
                raise StructuralError(f"{option_where}: choose option requires 'conditions'")
            # flags of the whole block sit on its first option
            flags = _block_flags(entry) if i == 0 else None
            node_id = self.add_node(CONDITION, condition_payload(option["conditions"]), label=option.get("alias"),
                                    flags=flags)
            self.connect(pending, node_id)
            out += self.sequence(option.get("sequence"), [(node_id, HANDLE_TRUE)], f"{option_where}.sequence", depth + 1)
            pending = [(node_id, HANDLE_FALSE)]
            self._check_budget(start, budget, len(options), where)

        out += self.sequence(entry.get("default"), pending, f"{where}.default", depth + 1)
        self._check_budget(start, budget, len(options), where)
        return out

    def _check_budget(self, start: int, budget: int, options: int, where: str):
        produced = len(self.nodes) - start
        if produced > budget:
            raise OutputSizeError(
                f"{where}: choose block with {options} option(s) produced {produced} nodes, "
                f"budget is {budget} ({config.CHOOSE_NODES_PER_OPTION} per option)"
            )


def _decode_emulated(triggers: List[Dict[str, Any]], actions: List[Dict[str, Any]],
                     block: MetadataBlock, conditions: List[Any]) -> FlowGraph:
    if conditions:
        raise StructuralError("state-machine documents carry no top-level conditions")
    trigger_ids = None
    if block.node_ids and len(block.node_ids) >= len(triggers):
        trigger_ids = block.node_ids[:len(triggers)]
    nodes, edges = decode_state_machine(triggers, actions, trigger_ids)
    graph = FlowGraph(nodes=nodes, edges=edges)
    problems = structural_errors(graph)
    if problems:
        raise StructuralError("; ".join(problems))
    return graph


def _restore_ids(graph: FlowGraph, block: MetadataBlock, warnings: List[str]):
    """Rename generated node ids to the ids recorded in the metadata."""
    if not block.node_ids:
        return
    if len(block.node_ids) != len(graph.nodes):
        warnings.append(
            f"Metadata lists {len(block.node_ids)} node ids but the document produced "
            f"{len(graph.nodes)} nodes; keeping generated ids"
        )
        return

    renamed = FlowGraph(
        nodes=[Node(id=new, type=n.type, data=n.data, position=n.position, label=n.label, flags=n.flags)
               for n, new in zip(graph.nodes, block.node_ids)],
        edges=[],
    )
    mapping = {n.id: new for n, new in zip(graph.nodes, block.node_ids)}
    renamed.edges = [make_edge(mapping[e.source], mapping[e.target], e.source_handle, e.label) for e in graph.edges]

    problems = structural_errors(renamed)
    if problems:
        warnings.append(f"Metadata node ids are unusable ({problems[0]}); keeping generated ids")
        return
    graph.nodes = renamed.nodes
    graph.edges = renamed.edges


def _apply_positions(graph: FlowGraph, block: MetadataBlock):
    for node in graph.nodes:
        position = block.node_positions.get(node.id)
        if position is not None:
            node.position = Position(x=position.x, y=position.y)


def _settings(spec) -> AutomationSettings:
    variables = dict(spec.variables or {})
    variables.pop(config.METADATA_KEY, None)
    return AutomationSettings(
        automation_id=str(spec.id) if spec.id is not None else None,
        mode=spec.mode,
        max=spec.max,
        max_exceeded=spec.max_exceeded,
        initial_state=spec.initial_state,
        hide_entity=spec.hide_entity,
        trace=spec.trace,
        variables=variables,
    )
