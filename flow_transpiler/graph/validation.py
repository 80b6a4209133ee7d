""" Structural and field-level validation of automation graphs. """

import logging
import re
from typing import Any, Dict, List

from flow_transpiler import config
from flow_transpiler.transpiler.errors import OutputSizeError, StructuralError, ValidationError
from .models import (
    ACTION, CONDITION, DELAY, HANDLE_FALSE, HANDLE_TRUE, NODE_TYPES, SET_VARIABLES, TRIGGER, WAIT,
    FlowGraph, Node,
)

logger = logging.getLogger(__name__)

_NODE_ID_RE = re.compile(r"^[A-Za-z0-9_.:-]+$")
_SERVICE_RE = re.compile(r"^[a-z0-9_]+\.[a-z0-9_]+$")

# trigger platform -> fields that must be present
_TRIGGER_REQUIRED = {
    "state": ("entity_id",),
    "numeric_state": ("entity_id",),
    "event": ("event_type",),
    "time": ("at",),
    "mqtt": ("topic",),
    "webhook": ("webhook_id",),
    "zone": ("entity_id", "zone"),
    "geo_location": ("source", "zone"),
    "template": ("value_template",),
    "sun": ("event",),
    "homeassistant": ("event",),
    "device": ("device_id",),
    "tag": ("tag_id",),
}

# condition type -> fields that must be present
_CONDITION_REQUIRED = {
    "state": ("entity_id", "state"),
    "numeric_state": ("entity_id",),
    "trigger": ("id",),
    "template": ("value_template",),
    "zone": ("entity_id", "zone"),
    "device": ("device_id",),
}

_GROUP_CONDITIONS = ("and", "or", "not")


def structural_errors(graph: FlowGraph) -> List[str]:
    """
    Collect every violation of the graph invariants.
    """
    problems: List[str] = []
    seen = set()
    for node in graph.nodes:
        if not node.id:
            problems.append("Node with empty id")
            continue
        if node.id in seen:
            problems.append(f"Duplicate node id: {node.id}")
        seen.add(node.id)
        if not _NODE_ID_RE.match(node.id):
            problems.append(f"Invalid characters in node id: {node.id!r}")
        if node.id == config.END_STATE:
            problems.append(f"Node id {config.END_STATE!r} is reserved")
        if node.type not in NODE_TYPES:
            problems.append(f"Unknown node type {node.type!r} on node {node.id}")

    types = {node.id: node.type for node in graph.nodes}
    if not any(t == TRIGGER for t in types.values()):
        problems.append("Graph has no trigger node")

    handles: Dict[str, List[str]] = {}
    for edge in graph.edges:
        if edge.source not in types or edge.target not in types:
            problems.append(f"Edge references unknown node: {edge.source} -> {edge.target}")
            continue
        if types[edge.target] == TRIGGER:
            problems.append(f"Trigger node {edge.target} has an incoming edge from {edge.source}")
        handles.setdefault(edge.source, []).append(edge.source_handle or "")

    for source, used in handles.items():
        if types[source] == CONDITION:
            for handle in used:
                if handle not in (HANDLE_TRUE, HANDLE_FALSE):
                    problems.append(f"Condition node {source} has an edge with handle {handle!r}")
            for handle in (HANDLE_TRUE, HANDLE_FALSE):
                if used.count(handle) > 1:
                    problems.append(f"Condition node {source} has more than one {handle!r} edge")
        elif len(used) > 1:
            problems.append(f"Node {source} has {len(used)} outgoing edges; only condition nodes may branch")

    return problems


def check_structure(graph: FlowGraph) -> None:
    """Raise StructuralError when the graph breaks an invariant."""
    if len(graph.nodes) > config.MAX_GRAPH_NODES:
        raise OutputSizeError(
            f"Graph has {len(graph.nodes)} nodes, limit is {config.MAX_GRAPH_NODES}"
        )
    problems = structural_errors(graph)
    if problems:
        raise StructuralError("; ".join(problems))


def check_node(node: Node) -> List[ValidationError]:
    """Field-level checks for a single node. Problems are returned, never raised."""
    data = node.data or {}
    issues: List[ValidationError] = []

    def issue(message: str):
        issues.append(ValidationError(f"Node {node.id}: {message}", node_id=node.id))

    if node.type == TRIGGER:
        platform = data.get("trigger")
        if not platform:
            issue("trigger has no platform")
        else:
            for key in _TRIGGER_REQUIRED.get(platform, ()):
                if _missing(data.get(key)):
                    issue(f"{platform} trigger requires '{key}'")
            if platform == "numeric_state" and "above" not in data and "below" not in data:
                issue("numeric_state trigger requires 'above' or 'below'")
    elif node.type == CONDITION:
        for message in _condition_issues(data):
            issue(message)
    elif node.type == ACTION:
        if not data:
            issue("action has no payload")
        elif "action" in data:
            service = data.get("action")
            if not isinstance(service, str) or not _SERVICE_RE.match(service):
                issue(f"action must be in the form 'domain.service', got {service!r}")
    elif node.type == DELAY:
        if _missing(data.get("delay")):
            issue("delay requires a duration")
    elif node.type == WAIT:
        if _missing(data.get("wait_template")) and _missing(data.get("wait_for_trigger")):
            issue("wait requires 'wait_template' or 'wait_for_trigger'")
    elif node.type == SET_VARIABLES:
        variables = data.get("variables")
        if not isinstance(variables, dict) or not variables:
            issue("set_variables requires at least one variable")
    return issues


def _condition_issues(data: Dict[str, Any], depth: int = 0) -> List[str]:
    if depth > config.MAX_CONDITION_DEPTH:
        return []
    kind = data.get("condition")
    if not kind:
        return ["condition has no type"]
    if kind in _GROUP_CONDITIONS:
        subconditions = data.get("conditions")
        if not isinstance(subconditions, list) or not subconditions:
            return [f"{kind} condition requires at least one sub-condition"]
        messages = []
        for sub in subconditions:
            if isinstance(sub, dict):
                messages.extend(_condition_issues(sub, depth + 1))
        return messages
    messages = []
    for key in _CONDITION_REQUIRED.get(kind, ()):
        value = data.get(key)
        if _missing(value) or (key == "id" and isinstance(value, list) and not value):
            messages.append(f"{kind} condition requires '{key}'")
    if kind == "numeric_state" and "above" not in data and "below" not in data:
        messages.append("numeric_state condition requires 'above' or 'below'")
    return messages


def _missing(value: Any) -> bool:
    return value is None or value == "" or value == {} or value == []


def node_warnings(graph: FlowGraph) -> List[str]:
    warnings = []
    for node in graph.nodes:
        for problem in check_node(node):
            logger.debug(f"Validation issue: {problem}")
            warnings.append(f"ValidationError: {problem}")
    return warnings
