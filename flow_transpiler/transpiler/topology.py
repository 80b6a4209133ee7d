"""
Topology analysis that decides whether a graph can be lowered to structured
`if`/`choose` blocks ("native") or needs the state-machine emulation.

A graph is native when it has no cycle, every trigger leads to the same first
node, and walking it the way the native generator lowers it (each condition's
branches up to the condition's immediate post-dominator, then onward from
there) reaches every node at most once.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from flow_transpiler.graph.models import CONDITION, HANDLE_FALSE, HANDLE_TRUE, TRIGGER, Edge, FlowGraph
from flow_transpiler.graph.validation import check_structure

logger = logging.getLogger(__name__)

NATIVE = "native"
EMULATE = "emulate"

# virtual sink every path ends in
EXIT = "__exit__"


@dataclass
class TopologyReport:
    reachable: Set[str] = field(default_factory=set)
    unreachable: List[str] = field(default_factory=list)
    back_edges: List[Edge] = field(default_factory=list)
    reconvergent: List[str] = field(default_factory=list)
    divergent_triggers: List[str] = field(default_factory=list)
    entry: Optional[str] = None  # first node after the triggers, when they agree
    ipdom: Dict[str, str] = field(default_factory=dict)

    @property
    def native(self) -> bool:
        return not (self.back_edges or self.reconvergent or self.divergent_triggers)

    @property
    def strategy(self) -> str:
        return NATIVE if self.native else EMULATE

    @property
    def has_cycles(self) -> bool:
        return bool(self.back_edges)

    def offending_nodes(self) -> List[str]:
        nodes = [e.target for e in self.back_edges] + self.reconvergent + self.divergent_triggers
        return list(dict.fromkeys(nodes))

    def conflict_message(self) -> str:
        parts = []
        if self.back_edges:
            described = ", ".join(f"{e.id} ({e.source} -> {e.target})" for e in self.back_edges)
            parts.append(f"cycle via back edge(s) {described}")
        if self.reconvergent:
            parts.append(f"branches reconverge at node(s) {', '.join(self.reconvergent)}")
        if self.divergent_triggers:
            parts.append(f"triggers {', '.join(self.divergent_triggers)} lead to different first nodes")
        return "Graph cannot be expressed natively: " + "; ".join(parts)


def successor(graph_out: Dict[str, List[Edge]], node_id: str, handle: Optional[str] = None) -> Optional[str]:
    for edge in graph_out.get(node_id, []):
        if handle is None or edge.source_handle == handle:
            return edge.target
    return None


def out_edges(graph: FlowGraph) -> Dict[str, List[Edge]]:
    out: Dict[str, List[Edge]] = {node.id: [] for node in graph.nodes}
    for edge in graph.edges:
        out.setdefault(edge.source, []).append(edge)
    # "true" before "false" everywhere the order matters
    for edges in out.values():
        edges.sort(key=lambda e: 1 if e.source_handle == HANDLE_FALSE else 0)
    return out


def reachable_from_triggers(graph: FlowGraph) -> Set[str]:
    out = out_edges(graph)
    seen: Set[str] = set()
    queue = [t.id for t in graph.triggers()]
    while queue:
        current = queue.pop(0)
        if current in seen:
            continue
        seen.add(current)
        for edge in out.get(current, []):
            if edge.target not in seen:
                queue.append(edge.target)
    return seen


def find_back_edges(graph: FlowGraph) -> List[Edge]:
    """Back edges of an iterative depth-first search rooted at the triggers."""
    out = out_edges(graph)
    gray, black = 1, 2
    color: Dict[str, int] = {}
    back: List[Edge] = []
    roots = [t.id for t in graph.triggers()] + [n.id for n in graph.nodes]

    for root in roots:
        if root in color:
            continue
        color[root] = gray
        stack = [(root, iter(out.get(root, [])))]
        while stack:
            node_id, children = stack[-1]
            edge = next(children, None)
            if edge is None:
                color[node_id] = black
                stack.pop()
                continue
            state = color.get(edge.target)
            if state == gray:
                back.append(edge)
            elif state is None:
                color[edge.target] = gray
                stack.append((edge.target, iter(out.get(edge.target, []))))
    return back


def _successors(types: Dict[str, str], out: Dict[str, List[Edge]], node_id: str) -> List[str]:
    if types[node_id] == CONDITION:
        return [successor(out, node_id, HANDLE_TRUE) or EXIT, successor(out, node_id, HANDLE_FALSE) or EXIT]
    return [successor(out, node_id) or EXIT]


def _topological_order(nodes: Set[str], out: Dict[str, List[Edge]]) -> List[str]:
    indegree = {n: 0 for n in nodes}
    for n in nodes:
        for edge in out.get(n, []):
            if edge.target in indegree:
                indegree[edge.target] += 1
    queue = sorted(n for n, deg in indegree.items() if deg == 0)
    order = []
    while queue:
        current = queue.pop(0)
        order.append(current)
        for edge in out.get(current, []):
            if edge.target in indegree:
                indegree[edge.target] -= 1
                if indegree[edge.target] == 0:
                    queue.append(edge.target)
    return order


def immediate_post_dominators(graph: FlowGraph, nodes: Set[str]) -> Dict[str, str]:
    """
    Immediate post-dominator of every node in `nodes` (an acyclic part of the
    graph), with EXIT standing for "the run ends". A missing condition handle
    counts as an edge to EXIT.
    """
    out = out_edges(graph)
    types = {n.id: n.type for n in graph.nodes}
    ipdom: Dict[str, str] = {}
    depth: Dict[str, int] = {EXIT: 0}

    def intersect(a: str, b: str) -> str:
        while a != b:
            while depth[a] > depth[b]:
                a = ipdom[a]
            while depth[b] > depth[a]:
                b = ipdom[b]
            if a != b:
                a = ipdom[a]
                b = ipdom[b]
        return a

    for node_id in reversed(_topological_order(nodes, out)):
        succs = _successors(types, out, node_id)
        result = succs[0]
        for other in succs[1:]:
            result = intersect(result, other)
        ipdom[node_id] = result
        depth[node_id] = depth[result] + 1
    return ipdom


def block_joins(graph: FlowGraph) -> Dict[str, Optional[str]]:
    """
    Where the run continues when a condition's block is skipped: the
    condition's immediate post-dominator once back edges are ignored, None
    when the run ends.
    """
    back = {e.id for e in find_back_edges(graph)}
    forward = FlowGraph(nodes=graph.nodes, edges=[e for e in graph.edges if e.id not in back])
    types = {n.id: n.type for n in graph.nodes}
    body = {n for n in reachable_from_triggers(graph) if types[n] != TRIGGER}
    ipdom = immediate_post_dominators(forward, body)
    return {n: (None if target == EXIT else target) for n, target in ipdom.items() if types[n] == CONDITION}


def _reconvergent_nodes(graph: FlowGraph, entry: Optional[str], ipdom: Dict[str, str]) -> List[str]:
    """
    Walk the graph the way the native generator lowers it and report every
    node reached more than once.
    """
    out = out_edges(graph)
    types = {n.id: n.type for n in graph.nodes}
    visited: Set[str] = set()
    repeated: List[str] = []
    if entry is None:
        return repeated

    stack = [(entry, EXIT)]
    while stack:
        current, stop = stack.pop()
        while current is not None and current != stop and current != EXIT:
            if current in visited:
                if current not in repeated:
                    repeated.append(current)
                break
            visited.add(current)
            if types[current] == CONDITION:
                join = ipdom[current]
                for handle in (HANDLE_FALSE, HANDLE_TRUE):
                    branch = successor(out, current, handle)
                    if branch is not None:
                        stack.append((branch, join))
                current = join
            else:
                current = successor(out, current)
    return repeated


def analyze(graph: FlowGraph) -> TopologyReport:
    """Full topology report for a structurally valid graph."""
    check_structure(graph)
    out = out_edges(graph)
    types = {n.id: n.type for n in graph.nodes}
    report = TopologyReport()

    report.reachable = reachable_from_triggers(graph)
    report.unreachable = [n.id for n in graph.nodes if n.id not in report.reachable]
    report.back_edges = find_back_edges(graph)

    targets = {t.id: successor(out, t.id) for t in graph.triggers()}
    if len(set(targets.values())) > 1:
        report.divergent_triggers = list(targets.keys())
    else:
        report.entry = next(iter(targets.values()), None)

    if not report.back_edges:
        body = {n for n in report.reachable if types[n] != TRIGGER}
        report.ipdom = immediate_post_dominators(graph, body)
        if not report.divergent_triggers:
            report.reconvergent = _reconvergent_nodes(graph, report.entry, report.ipdom)

    logger.debug(
        f"Topology: {len(report.back_edges)} back edge(s), "
        f"{len(report.reconvergent)} reconvergent node(s), strategy={report.strategy}"
    )
    return report


def classify(graph: FlowGraph) -> str:
    """Return "native" or "emulate" for a structurally valid graph."""
    return analyze(graph).strategy
