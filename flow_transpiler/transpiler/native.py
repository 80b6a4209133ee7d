"""
Native generator: lowers a graph into structured `if`/`choose` blocks.

The walk starts at the node every trigger leads to. Leading conditions
without a "false" edge become the automation's `conditions`; the rest is a
linear action list in which each branching condition is lowered up to its
immediate post-dominator, after which emission resumes in the outer list.
Nodes are visited "true" branch first, which is the order the parser creates
them in when reading the document back.
"""
import copy
import logging
from typing import Any, Dict, List, Optional

from flow_transpiler import config
from flow_transpiler.graph.models import CONDITION, HANDLE_FALSE, HANDLE_TRUE, FlowGraph, Node
from flow_transpiler.graph.validation import node_warnings
from .conditions import condition_list
from .document import GenerateResult, assemble_document, dump_document
from .errors import OutputSizeError, StrategyConflictError, TranspileError, format_error
from .lowering import lower_node
from .topology import EXIT, TopologyReport, analyze, out_edges, successor

logger = logging.getLogger(__name__)


class _NativeLowering:
    def __init__(self, graph: FlowGraph, report: TopologyReport):
        self.graph = graph
        self.report = report
        self.nodes = graph.node_map()
        self.out = out_edges(graph)
        self.incoming: Dict[str, int] = {}
        for edge in graph.edges:
            self.incoming[edge.target] = self.incoming.get(edge.target, 0) + 1
        self.order: List[str] = []

    def true_target(self, node_id: str) -> Optional[str]:
        return successor(self.out, node_id, HANDLE_TRUE)

    def false_target(self, node_id: str) -> Optional[str]:
        return successor(self.out, node_id, HANDLE_FALSE)

    def join(self, node_id: str) -> Optional[str]:
        target = self.report.ipdom.get(node_id, EXIT)
        return None if target == EXIT else target

    def run(self):
        triggers = []
        for trigger in self.graph.triggers():
            self.order.append(trigger.id)
            triggers.append(lower_node(trigger))

        conditions = []
        current = self.report.entry
        while current is not None:
            node = self.nodes[current]
            if (node.type != CONDITION or node.label or node.flags
                    or self.false_target(current) is not None):
                break
            self.order.append(current)
            conditions.append(lower_node(node))
            current = self.true_target(current)

        actions = self.sequence(current, None, 0)
        return triggers, conditions, actions

    def sequence(self, start: Optional[str], stop: Optional[str], depth: int) -> List[Dict[str, Any]]:
        if depth > config.MAX_NESTING_DEPTH:
            raise OutputSizeError(f"Branch nesting exceeds {config.MAX_NESTING_DEPTH} levels")
        entries: List[Dict[str, Any]] = []
        current = start
        while current is not None and current != stop:
            node = self.nodes[current]
            if node.type != CONDITION:
                self.order.append(current)
                entries.append(lower_node(node))
                current = successor(self.out, current)
            elif self.false_target(current) is None and not node.label and not node.flags:
                # gate: a failed condition stops the run
                self.order.append(current)
                entries.append(lower_node(node))
                current = self.true_target(current)
            else:
                entries.append(self.branch(node, depth))
                current = self.join(current)
        return entries

    def _else_if_chain(self, head: Node) -> List[Node]:
        join = self.report.ipdom.get(head.id, EXIT)
        chain = [head]
        current = head
        while True:
            target = self.false_target(current.id)
            if target is None or target == self.join(head.id):
                break
            candidate = self.nodes[target]
            if (candidate.type != CONDITION or candidate.flags or self.incoming.get(target, 0) != 1
                    or self.report.ipdom.get(target, EXIT) != join):
                break
            chain.append(candidate)
            current = candidate
        return chain

    def _branch_body(self, target: Optional[str], stop: Optional[str], depth: int) -> List[Dict[str, Any]]:
        if target is None:
            return []
        return self.sequence(target, stop, depth + 1)

    def branch(self, head: Node, depth: int) -> Dict[str, Any]:
        stop = self.join(head.id)
        chain = self._else_if_chain(head)
        entry: Dict[str, Any] = {}
        if len(chain) == 1 and head.label:
            entry["alias"] = head.label
        # enabled / continue_on_error apply to the whole block
        entry.update(copy.deepcopy(head.flags))

        if len(chain) == 1:
            self.order.append(head.id)
            entry["if"] = condition_list(copy.deepcopy(head.data))
            entry["then"] = self._branch_body(self.true_target(head.id), stop, depth)
            otherwise = self._branch_body(self.false_target(head.id), stop, depth)
            if otherwise:
                entry["else"] = otherwise
            return entry

        options = []
        for node in chain:
            self.order.append(node.id)
            option: Dict[str, Any] = {}
            if node.label:
                option["alias"] = node.label
            option["conditions"] = condition_list(copy.deepcopy(node.data))
            option["sequence"] = self._branch_body(self.true_target(node.id), stop, depth)
            options.append(option)
        entry["choose"] = options
        default = self._branch_body(self.false_target(chain[-1].id), stop, depth)
        if default:
            entry["default"] = default
        return entry


def generate_native(graph: FlowGraph) -> GenerateResult:
    """
    Lower a graph to an automation document with structured branches.
    Graphs with cycles, reconverging branches or triggers that disagree on
    the first node give success=False and a StrategyConflictError.
    """
    warnings: List[str] = []
    try:
        report = analyze(graph)
        warnings.extend(node_warnings(graph))
        if not report.native:
            raise StrategyConflictError(
                report.conflict_message(),
                nodes=report.offending_nodes(),
                edges=[e.id for e in report.back_edges],
            )
        if report.unreachable:
            warnings.append(
                f"Omitted {len(report.unreachable)} node(s) not reachable from a trigger: "
                f"{', '.join(report.unreachable)}"
            )

        lowering = _NativeLowering(graph, report)
        triggers, conditions, actions = lowering.run()
        doc = assemble_document(graph, triggers, conditions, actions, config.STRATEGY_NATIVE, lowering.order)
    except TranspileError as exc:
        logger.info(f"Native generation failed: {exc}")
        return GenerateResult(success=False, warnings=warnings, errors=[format_error(exc)],
                              strategy=config.STRATEGY_NATIVE)

    logger.debug(f"Native generation emitted {len(lowering.order)} node(s)")
    return GenerateResult(
        success=True,
        document=dump_document(doc),
        config=doc,
        warnings=warnings,
        strategy=config.STRATEGY_NATIVE,
    )
