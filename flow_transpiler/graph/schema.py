from typing import List, Optional, Dict, Any, Literal, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from flow_transpiler.transpiler.errors import StructuralError
from .models import AutomationSettings, Edge, FlowGraph, Node, Position, make_edge

ModeName = Literal["single", "restart", "queued", "parallel"]
LogLevelName = Literal["silent", "critical", "error", "warning", "info", "debug"]
NodeTypeName = Literal["trigger", "condition", "action", "delay", "wait", "set_variables"]


class PositionSpec(BaseModel):
    x: float
    y: float


class NodeSpec(BaseModel):
    # the editor attaches its own rendering keys (width, selected, ...)
    model_config = ConfigDict(extra="ignore")

    id: str
    type: NodeTypeName
    data: Dict[str, Any] = Field(default_factory=dict)
    position: Optional[PositionSpec] = None
    label: Optional[str] = None
    flags: Dict[str, Any] = Field(default_factory=dict)


class EdgeSpec(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[str] = None
    source: str
    target: str
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")
    label: Optional[str] = None


class SettingsSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    automation_id: Optional[str] = None
    mode: Optional[ModeName] = None
    max: Optional[int] = None
    max_exceeded: Optional[LogLevelName] = None
    initial_state: Optional[bool] = None
    hide_entity: Optional[bool] = None
    trace: Optional[Dict[str, Any]] = None
    variables: Dict[str, Any] = Field(default_factory=dict)


class GraphSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    version: int = 1
    strategy: Optional[str] = None

    nodes: List[NodeSpec] = Field(default_factory=list)
    edges: List[EdgeSpec] = Field(default_factory=list)
    settings: Optional[SettingsSpec] = None


class AutomationSpec(BaseModel):
    """Canonical automation document, after legacy keys have been renamed."""

    model_config = ConfigDict(extra="allow")

    id: Optional[Union[str, int]] = None
    alias: Optional[str] = None
    description: Optional[str] = None
    mode: Optional[ModeName] = None
    max: Optional[int] = None
    max_exceeded: Optional[LogLevelName] = None
    initial_state: Optional[bool] = None
    hide_entity: Optional[bool] = None
    trace: Optional[Dict[str, Any]] = None
    variables: Optional[Dict[str, Any]] = None

    triggers: List[Dict[str, Any]]
    conditions: List[Any] = Field(default_factory=list)
    actions: List[Dict[str, Any]]


def _errors_text(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "<root>"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def validate_automation(raw: Dict[str, Any]) -> AutomationSpec:
    """Validate a normalized automation mapping against AutomationSpec."""
    try:
        return AutomationSpec.model_validate(raw)
    except ValidationError as e:
        raise StructuralError(f"Automation validation error: {_errors_text(e)}")


def validate_graph_dict(raw: Dict[str, Any]) -> GraphSpec:
    """Validate an editor graph mapping against GraphSpec."""
    try:
        return GraphSpec.model_validate(raw)
    except ValidationError as e:
        raise StructuralError(f"Graph validation error: {_errors_text(e)}")


def graph_from_dict(raw: Dict[str, Any]) -> FlowGraph:
    """
    Build a FlowGraph from the editor's JSON shape.
    """
    if not isinstance(raw, dict):
        raise StructuralError(f"Graph must be a mapping, got {type(raw).__name__}")
    spec = validate_graph_dict(raw)

    nodes = []
    for node_spec in spec.nodes:
        position = None
        if node_spec.position is not None:
            position = Position(x=node_spec.position.x, y=node_spec.position.y)
        nodes.append(Node(
            id=node_spec.id,
            type=node_spec.type,
            data=dict(node_spec.data),
            position=position,
            label=node_spec.label,
            flags=dict(node_spec.flags),
        ))

    edges = []
    for edge_spec in spec.edges:
        if edge_spec.id:
            edges.append(Edge(
                id=edge_spec.id,
                source=edge_spec.source,
                target=edge_spec.target,
                source_handle=edge_spec.source_handle,
                label=edge_spec.label,
            ))
        else:
            edges.append(make_edge(edge_spec.source, edge_spec.target, edge_spec.source_handle, edge_spec.label))

    settings = AutomationSettings()
    if spec.settings is not None:
        settings = AutomationSettings(**spec.settings.model_dump())

    return FlowGraph(
        id=spec.id or "",
        name=spec.name or "",
        description=spec.description or "",
        version=spec.version,
        strategy=spec.strategy,
        nodes=nodes,
        edges=edges,
        settings=settings,
    )


def graph_to_dict(graph: FlowGraph) -> Dict[str, Any]:
    """
    Serialize a FlowGraph into the editor's JSON shape (camelCase `sourceHandle`).
    """
    nodes = []
    for node in graph.nodes:
        item: Dict[str, Any] = {"id": node.id, "type": node.type, "data": node.data}
        if node.position is not None:
            item["position"] = {"x": node.position.x, "y": node.position.y}
        if node.label:
            item["label"] = node.label
        if node.flags:
            item["flags"] = node.flags
        nodes.append(item)

    edges = []
    for edge in graph.edges:
        item = {"id": edge.id, "source": edge.source, "target": edge.target}
        if edge.source_handle is not None:
            item["sourceHandle"] = edge.source_handle
        if edge.label:
            item["label"] = edge.label
        edges.append(item)

    settings = {k: v for k, v in vars(graph.settings).items() if v not in (None, {})}

    out: Dict[str, Any] = {
        "id": graph.id,
        "name": graph.name,
        "description": graph.description,
        "version": graph.version,
        "nodes": nodes,
        "edges": edges,
    }
    if graph.strategy:
        out["strategy"] = graph.strategy
    if settings:
        out["settings"] = settings
    return out
