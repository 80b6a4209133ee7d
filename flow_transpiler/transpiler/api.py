""" Public entry points: parse a document, transpile a graph. """
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from flow_transpiler import config
from flow_transpiler.graph.models import FlowGraph
from flow_transpiler.graph.schema import graph_from_dict
from flow_transpiler.graph.validation import check_structure
from .errors import StructuralError, TranspileError, format_error
from .native import generate_native
from .parser import ParseResult, parse
from .state_machine import generate_emulated
from . import topology

logger = logging.getLogger(__name__)

GraphInput = Union[FlowGraph, Mapping[str, Any]]

__all__ = [
    "ParseResult", "TranspileOutput", "TranspileResult",
    "parse", "classify", "transpile", "generate_native", "generate_emulated",
]


@dataclass
class TranspileOutput:
    strategy: str
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TranspileResult:
    success: bool
    document: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    output: Optional[TranspileOutput] = None


def _as_graph(graph: GraphInput) -> FlowGraph:
    if isinstance(graph, FlowGraph):
        return graph
    if isinstance(graph, Mapping):
        return graph_from_dict(dict(graph))
    raise StructuralError(f"Expected a FlowGraph or a graph mapping, got {type(graph).__name__}")


def classify(graph: GraphInput) -> str:
    """Return "native" or "emulate". Raises StructuralError for malformed graphs."""
    return topology.classify(_as_graph(graph))


def select_strategy(graph: FlowGraph, force_strategy: Optional[str] = None) -> str:
    """
    Generator to run: the forced one, the state-machine strategy recorded
    in the graph's metadata, or the result of classification.
    """
    if force_strategy is not None:
        if force_strategy not in config.STRATEGIES:
            raise TranspileError(
                f"Unknown strategy {force_strategy!r}, expected one of {', '.join(config.STRATEGIES)}"
            )
        return force_strategy
    if graph.strategy == config.STRATEGY_STATE_MACHINE:
        return config.STRATEGY_STATE_MACHINE
    if topology.classify(graph) == topology.NATIVE:
        return config.STRATEGY_NATIVE
    return config.STRATEGY_STATE_MACHINE


def transpile(graph: GraphInput, force_strategy: Optional[str] = None) -> TranspileResult:
    """
    Generate an automation document from a graph. Never raises: failures
    are reported with success=False and populated errors.
    """
    try:
        flow_graph = _as_graph(graph)
        check_structure(flow_graph)
        strategy = select_strategy(flow_graph, force_strategy)
    except TranspileError as exc:
        logger.info(f"Transpile failed: {exc}")
        return TranspileResult(success=False, errors=[format_error(exc)])

    logger.debug(f"Transpiling graph {flow_graph.id or '<unsaved>'} with strategy {strategy}")
    if strategy == config.STRATEGY_NATIVE:
        result = generate_native(flow_graph)
    else:
        result = generate_emulated(flow_graph)

    if not result.success:
        return TranspileResult(success=False, warnings=result.warnings, errors=result.errors)
    return TranspileResult(
        success=True,
        document=result.document,
        warnings=result.warnings,
        output=TranspileOutput(strategy=strategy, config=result.config),
    )
