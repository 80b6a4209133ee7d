""" Result type and top-level document assembly shared by both generators. """
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from flow_transpiler import config
from flow_transpiler.graph.models import FlowGraph
from .metadata import encode_metadata

_SETTINGS_ORDER = ("mode", "max", "max_exceeded", "initial_state", "hide_entity", "trace")


@dataclass
class GenerateResult:
    success: bool
    document: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    strategy: Optional[str] = None


def assemble_document(graph: FlowGraph, triggers: List[Dict[str, Any]], conditions: List[Dict[str, Any]],
                      actions: List[Dict[str, Any]], strategy: str, node_order: List[str]) -> Dict[str, Any]:
    """
    Build the automation mapping: identity and mode settings, the
    variables section carrying the metadata block, then triggers,
    conditions and actions.
    """
    settings = graph.settings
    doc: Dict[str, Any] = {}
    if settings.automation_id:
        doc["id"] = settings.automation_id
    if graph.name:
        doc["alias"] = graph.name
    if graph.description:
        doc["description"] = graph.description
    for key in _SETTINGS_ORDER:
        value = getattr(settings, key)
        if value is not None:
            doc[key] = value

    variables = dict(settings.variables)
    variables[config.METADATA_KEY] = encode_metadata(graph, strategy, node_order)
    doc["variables"] = variables

    doc["triggers"] = triggers
    if conditions:
        doc["conditions"] = conditions
    doc["actions"] = actions
    return doc


def dump_document(doc: Dict[str, Any]) -> str:
    return yaml.safe_dump(doc, sort_keys=False, allow_unicode=True, default_flow_style=False)
