import copy
from typing import Any, Callable, Dict

from flow_transpiler.graph.models import ACTION, CONDITION, DELAY, SET_VARIABLES, TRIGGER, WAIT, Node
from .errors import StructuralError

_LOWERINGS: Dict[str, Callable[[Node], Dict[str, Any]]] = {}

# action entry constructs that the parser turns into graph structure
IF_BLOCK = "if"
CHOOSE_BLOCK = "choose"
CONDITION_GATE = "condition"


def register_lowering(node_type: str):
    def _wrap(fn):
        _LOWERINGS[node_type] = fn
        return fn
    return _wrap


def get_lowering(node_type: str) -> Callable[[Node], Dict[str, Any]]:
    if node_type not in _LOWERINGS:
        raise StructuralError(f"No lowering registered for node type: {node_type}")
    return _LOWERINGS[node_type]


def lower_node(node: Node) -> Dict[str, Any]:
    """Document entry for a single node payload."""
    return get_lowering(node.type)(node)


@register_lowering(TRIGGER)
def lower_trigger(node: Node) -> Dict[str, Any]:
    return copy.deepcopy(node.data)


@register_lowering(CONDITION)
def lower_condition(node: Node) -> Dict[str, Any]:
    """ A condition used as an action entry: stops the run when it fails. """
    return copy.deepcopy(node.data)


@register_lowering(ACTION)
def lower_action(node: Node) -> Dict[str, Any]:
    return copy.deepcopy(node.data)


@register_lowering(DELAY)
def lower_delay(node: Node) -> Dict[str, Any]:
    return copy.deepcopy(node.data)


@register_lowering(WAIT)
def lower_wait(node: Node) -> Dict[str, Any]:
    return copy.deepcopy(node.data)


@register_lowering(SET_VARIABLES)
def lower_set_variables(node: Node) -> Dict[str, Any]:
    return copy.deepcopy(node.data)


def classify_entry(entry: Dict[str, Any]) -> str:
    """
    Kind of an action entry: one of the structural blocks (if, choose,
    condition gate) or the node type it becomes. Entries the graph does
    not model (repeat, parallel, device actions, ...) are kept as opaque
    action nodes.
    """
    if IF_BLOCK in entry:
        return IF_BLOCK
    if CHOOSE_BLOCK in entry:
        return CHOOSE_BLOCK
    if "condition" in entry:
        return CONDITION_GATE
    if "action" in entry or "service" in entry:
        return ACTION
    if "delay" in entry:
        return DELAY
    if "wait_template" in entry or "wait_for_trigger" in entry:
        return WAIT
    if "variables" in entry:
        return SET_VARIABLES
    return ACTION
