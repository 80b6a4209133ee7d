""" Structural comparison of graphs, ignoring node ids, edge ids and positions. """
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from .models import HANDLE_FALSE, FlowGraph

CanonicalNode = Tuple[str, Any, Optional[str], Dict[str, Any]]
CanonicalEdge = Tuple[int, int, Optional[str]]


def canonical_order(graph: FlowGraph) -> List[str]:
    """
    Node ids in depth-first order from the triggers, "true" edges before
    "false" edges; nodes not reached that way follow in declaration order.
    """
    out: Dict[str, List] = {}
    for edge in graph.edges:
        out.setdefault(edge.source, []).append(edge)
    for edges in out.values():
        edges.sort(key=lambda e: 1 if e.source_handle == HANDLE_FALSE else 0)

    order: List[str] = []
    seen = set()
    for root in [t.id for t in graph.triggers()] + [n.id for n in graph.nodes]:
        stack = [root]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            order.append(current)
            for edge in reversed(out.get(current, [])):
                stack.append(edge.target)
    return order


def canonical_form(graph: FlowGraph) -> Tuple[List[CanonicalNode], FrozenSet[CanonicalEdge]]:
    order = canonical_order(graph)
    index = {node_id: i for i, node_id in enumerate(order)}
    nodes = graph.node_map()
    canonical_nodes = [(nodes[n].type, nodes[n].data, nodes[n].label, nodes[n].flags) for n in order]
    canonical_edges = frozenset((index[e.source], index[e.target], e.source_handle) for e in graph.edges)
    return canonical_nodes, canonical_edges


def graphs_equivalent(a: FlowGraph, b: FlowGraph) -> bool:
    """True when both graphs have the same node types, payloads, labels, flags and edges up to renaming."""
    if len(a.nodes) != len(b.nodes) or len(a.edges) != len(b.edges):
        return False
    return canonical_form(a) == canonical_form(b)
