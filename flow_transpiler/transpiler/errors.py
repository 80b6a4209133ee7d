""" Error taxonomy for the graph/config transpiler. """
from typing import List, Optional


class TranspileError(Exception):
    """Base class for every error raised inside the transpiler."""


class StructuralError(TranspileError):
    """Malformed document or graph. The operation fails entirely."""


class ValidationError(TranspileError):
    """Field-level issue on an otherwise well-formed node. Reported as a warning."""

    def __init__(self, message: str, node_id: Optional[str] = None):
        super().__init__(message)
        self.node_id = node_id


class StrategyConflictError(TranspileError):
    """Native generation requested on a graph that needs emulation."""

    def __init__(self, message: str, nodes: Optional[List[str]] = None, edges: Optional[List[str]] = None):
        super().__init__(message)
        self.nodes = list(nodes or [])
        self.edges = list(edges or [])


class OutputSizeError(TranspileError):
    """A node, nesting or iteration budget was exceeded."""


def format_error(exc: Exception) -> str:
    return f"{type(exc).__name__}: {exc}"
