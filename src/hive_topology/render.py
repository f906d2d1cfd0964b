"""Render-ready output consumed by the (external) drawing component."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Literal, Union

NodeShape = Literal["circle", "square", "triangle", "diamond", "pentagon", "hexagon", "star"]
NodeKind = Literal["shape", "swarm-group"]
EdgeKind = Literal["queue", "guard-rate", "guard-depth", "guard-backpressure"]


@dataclass(frozen=True)
class ShapeNodeData:
    label: str
    shape: NodeShape
    role: str
    fill: str
    has_error: bool
    component_type: str
    component_id: str
    enabled: bool | None = None
    swarm_id: str | None = None
    status: str | None = None
    meta: dict[str, Any] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class SwarmMemberData:
    """Render metadata of one component folded into a swarm group."""

    id: str
    name: str
    shape: NodeShape
    fill: str
    abbreviation: str
    component_type: str
    enabled: bool | None = None
    queue_count: int = 0
    tps: float | None = None


@dataclass(frozen=True)
class SwarmGroupEdgeData:
    source: str
    target: str
    queue: str
    depth: float


@dataclass(frozen=True)
class SwarmGroupNodeData:
    label: str
    swarm_id: str
    controller_id: str
    controller: SwarmMemberData | None = None
    members: tuple[SwarmMemberData, ...] = ()
    edges: tuple[SwarmGroupEdgeData, ...] = ()
    selected_id: str | None = None


NodeData = Union[ShapeNodeData, SwarmGroupNodeData]


@dataclass(frozen=True)
class RenderNode:
    id: str
    kind: NodeKind
    x: float
    y: float
    data: NodeData
    selected: bool = False
    selectable: bool = True

    def moved_to(self, x: float, y: float) -> RenderNode:
        return replace(self, x=x, y=y)


@dataclass(frozen=True)
class EdgeStyle:
    stroke: str
    stroke_width: float
    dasharray: str | None = None
    label_bg: str = "rgba(0,0,0,0.6)"


@dataclass(frozen=True)
class RenderEdge:
    id: str
    source: str
    target: str
    label: str
    kind: EdgeKind
    style: EdgeStyle


@dataclass(frozen=True)
class LayoutFrame:
    """One complete render pass: nodes and the edges between them."""

    nodes: tuple[RenderNode, ...] = ()
    edges: tuple[RenderEdge, ...] = ()

    def node(self, node_id: str) -> RenderNode | None:
        for n in self.nodes:
            if n.id == node_id:
                return n
        return None

    def signature(self) -> str:
        """Ids and rounded positions; changes whenever a refit is due."""
        return "|".join(f"{n.id}:{round(n.x)}:{round(n.y)}" for n in self.nodes)
