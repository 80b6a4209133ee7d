""" Layout and versioning metadata embedded in the automation's variables. """

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from flow_transpiler import config
from flow_transpiler.graph.models import FlowGraph
from flow_transpiler.graph.schema import PositionSpec

logger = logging.getLogger(__name__)


class MetadataBlock(BaseModel):
    model_config = ConfigDict(extra="ignore")

    schema_version: int
    node_ids: List[str] = Field(default_factory=list)
    node_positions: Dict[str, PositionSpec] = Field(default_factory=dict)
    graph_id: Optional[str] = None
    graph_version: Optional[int] = None
    strategy: Optional[str] = None


def encode_metadata(graph: FlowGraph, strategy: str, node_order: List[str]) -> Dict[str, Any]:
    """
    Build the metadata block for a generated document.

    `node_order` lists node ids in the order the generator emitted them,
    which is the order the parser creates nodes when reading the document back.
    """
    positions = {}
    for node in graph.nodes:
        if node.position is not None:
            positions[node.id] = {"x": node.position.x, "y": node.position.y}
    return {
        "schema_version": config.METADATA_SCHEMA_VERSION,
        "node_ids": list(node_order),
        "node_positions": positions,
        "graph_id": graph.id or None,
        "graph_version": graph.version,
        "strategy": strategy,
    }


def decode_metadata(document: Dict[str, Any]) -> Tuple[Optional[MetadataBlock], List[str]]:
    """
    Extract the metadata block from a loaded document. Missing metadata
    gives (None, []); corrupt or unknown-version metadata is discarded
    with a warning.
    """
    variables = document.get("variables")
    if not isinstance(variables, dict) or config.METADATA_KEY not in variables:
        return None, []

    raw = variables[config.METADATA_KEY]
    if not isinstance(raw, dict):
        return None, [f"Discarded corrupt metadata: expected a mapping, got {type(raw).__name__}"]

    version = raw.get("schema_version")
    if version != config.METADATA_SCHEMA_VERSION:
        return None, [f"Discarded metadata with unknown schema version {version!r}"]

    try:
        block = MetadataBlock.model_validate(raw)
    except ValidationError as e:
        logger.debug(f"Metadata validation failed: {e}")
        return None, [f"Discarded corrupt metadata: {e.error_count()} invalid field(s)"]

    if block.strategy is not None and block.strategy not in config.STRATEGIES:
        return None, [f"Discarded metadata with unknown strategy {block.strategy!r}"]
    return block, []
