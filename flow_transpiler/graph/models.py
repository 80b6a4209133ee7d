""" Data models for automation graph representation """

from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any

TRIGGER = "trigger"
CONDITION = "condition"
ACTION = "action"
DELAY = "delay"
WAIT = "wait"
SET_VARIABLES = "set_variables"

NODE_TYPES = (TRIGGER, CONDITION, ACTION, DELAY, WAIT, SET_VARIABLES)

HANDLE_TRUE = "true"
HANDLE_FALSE = "false"

# per-entry runtime flags an if/choose block carries besides its branches
BLOCK_FLAGS = ("enabled", "continue_on_error")


@dataclass
class Position:
    x: float = 0.0
    y: float = 0.0


@dataclass
class Edge:
    id: str
    source: str
    target: str
    source_handle: Optional[str] = None  # "true" / "false" for condition nodes
    label: Optional[str] = None


@dataclass
class Node:
    id: str
    type: str
    data: Dict[str, Any] = field(default_factory=dict)
    position: Optional[Position] = None
    label: Optional[str] = None  # alias of the if/choose block that produced a condition node
    flags: Dict[str, Any] = field(default_factory=dict)  # enabled / continue_on_error of that block


@dataclass
class AutomationSettings:
    automation_id: Optional[str] = None
    mode: Optional[str] = None
    max: Optional[int] = None
    max_exceeded: Optional[str] = None
    initial_state: Optional[bool] = None
    hide_entity: Optional[bool] = None
    trace: Optional[Dict[str, Any]] = None
    variables: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FlowGraph:
    id: str = ""
    name: str = ""
    description: str = ""
    version: int = 1
    strategy: Optional[str] = None  # prior strategy restored from metadata
    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    settings: AutomationSettings = field(default_factory=AutomationSettings)

    def node(self, node_id: str) -> Node:
        for node in self.nodes:
            if node.id == node_id:
                return node
        raise KeyError(node_id)

    def node_map(self) -> Dict[str, Node]:
        return {node.id: node for node in self.nodes}

    def outgoing(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges if e.source == node_id]

    def incoming(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges if e.target == node_id]

    def triggers(self) -> List[Node]:
        return [n for n in self.nodes if n.type == TRIGGER]


def make_edge(source: str, target: str, handle: Optional[str] = None, label: Optional[str] = None) -> Edge:
    """Build an edge with the canonical id `e-<source>-<target>[-<handle>]`."""
    edge_id = f"e-{source}-{target}"
    if handle:
        edge_id += f"-{handle}"
    return Edge(id=edge_id, source=source, target=target, source_handle=handle, label=label)
