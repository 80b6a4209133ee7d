"""
Dry-run interpreters for graphs and emulated documents.

Both return the trace of executed node ids, so a graph and the state-machine
document generated from it can be compared run by run.
"""
import logging
from typing import Any, Dict, List, Optional

from flow_transpiler import config
from flow_transpiler.graph.models import CONDITION, HANDLE_FALSE, HANDLE_TRUE, SET_VARIABLES, FlowGraph
from flow_transpiler.transpiler.state_machine import resolve_entry
from flow_transpiler.transpiler.topology import block_joins, out_edges, successor
from .context import SimulationContext
from .guards import evaluate_condition, evaluate_conditions

logger = logging.getLogger(__name__)


def run_graph(graph: FlowGraph, context: SimulationContext, max_steps: Optional[int] = None) -> List[str]:
    """Follow the graph from the fired trigger until a node has no successor."""
    max_steps = config.MAX_ITERATIONS if max_steps is None else max_steps
    out = out_edges(graph)
    nodes = graph.node_map()
    joins = block_joins(graph)
    trigger = graph.triggers()[context.trigger_index]
    context.trigger_id = context.trigger_id or trigger.data.get("id")

    current = successor(out, trigger.id)
    steps = 0
    while current is not None:
        if steps >= max_steps:
            context.logs.append({"ceiling": max_steps, "state": current})
            logger.warning(f"Simulation stopped after {max_steps} steps at {current}")
            break
        node = nodes[current]
        context.trace.append(node.id)
        if node.type == CONDITION and node.flags.get("enabled") is False:
            # the whole block is skipped
            current = joins.get(node.id)
        elif node.type == CONDITION:
            passed = evaluate_condition(node.data, context)
            current = successor(out, node.id, HANDLE_TRUE if passed else HANDLE_FALSE)
        else:
            _apply(node.data, node.type == SET_VARIABLES, context)
            current = successor(out, node.id)
        steps += 1
    return context.trace


def _apply(entry: Dict[str, Any], is_assignment: bool, context: SimulationContext):
    if is_assignment:
        context.set_many(entry.get("variables", {}))
    else:
        context.logs.append(entry)


def _run_steps(steps: List[Dict[str, Any]], context: SimulationContext):
    for step in steps:
        if "if" in step and step.get("enabled") is False:
            continue
        if "if" in step:
            conditions = step["if"] if isinstance(step["if"], list) else [step["if"]]
            branch = step.get("then", []) if evaluate_conditions(conditions, context) else step.get("else", [])
            _run_steps(branch or [], context)
        else:
            _apply(step, "variables" in step, context)


def run_emulated(document: Dict[str, Any], context: SimulationContext, max_steps: Optional[int] = None) -> List[str]:
    """
    Interpret the dispatch loop of a state-machine document. The trace
    records the state dispatched on each iteration.
    """
    max_steps = config.MAX_ITERATIONS if max_steps is None else max_steps
    actions = document.get("actions", [])
    if not actions:
        return context.trace
    triggers = document.get("triggers", [])
    context.trigger_id = context.trigger_id or triggers[context.trigger_index].get("id")

    state = config.STATE_VARIABLE
    context.variables[state] = resolve_entry(actions[0]["variables"][state], context.trigger_index)
    repeat = actions[1]["repeat"]
    dispatch = repeat["sequence"][0]

    index = 0
    while True:
        index += 1
        context.variables["repeat"] = {"index": index}
        if index > max_steps:
            context.logs.append({"ceiling": max_steps, "state": context.variables[state]})
            break
        chosen = None
        for option in dispatch["choose"]:
            if evaluate_conditions(option["conditions"], context):
                chosen = option
                break
        if chosen is None:
            _run_steps(dispatch.get("default", []), context)
        else:
            context.trace.append(context.variables[state])
            _run_steps(chosen["sequence"], context)
        if evaluate_conditions(repeat["until"], context):
            break
    return context.trace
