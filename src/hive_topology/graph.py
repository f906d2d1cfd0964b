"""Graph IR — the validated topology model the layout pipeline consumes.

Nodes and edges arrive fresh with every snapshot; they are treated as
immutable inputs. Layout only ever produces new copies carrying derived
coordinates (``dataclasses.replace``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Scope ids that denote "outside any swarm" rather than a swarm of their own.
RESERVED_SCOPES: tuple[str, ...] = ("hive",)

CONTROLLER_TYPE = "swarm-controller"
GENERATOR_TYPE = "generator"


def normalize_swarm_id(swarm_id: str | None, reserved: tuple[str, ...] = RESERVED_SCOPES) -> str | None:
    """Return the swarm identity of ``swarm_id`` or None for "no swarm".

    Blank ids and reserved scope ids (case-insensitive) normalize to None.
    """
    if swarm_id is None:
        return None
    trimmed = swarm_id.strip()
    if not trimmed:
        return None
    if trimmed.lower() in {r.lower() for r in reserved}:
        return None
    return trimmed


@dataclass(frozen=True)
class GraphNode:
    """A running component as seen by the topology stream."""

    id: str
    type: str
    swarm_id: str | None = None
    enabled: bool | None = None
    x: float | None = None
    y: float | None = None


@dataclass(frozen=True)
class GraphEdge:
    """``source`` publishes to ``queue``, which ``target`` consumes."""

    source: str
    target: str
    queue: str

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.source, self.target, self.queue)


@dataclass(frozen=True)
class Topology:
    """A raw topology snapshot; may be disconnected, cyclic or dangling."""

    nodes: tuple[GraphNode, ...] = ()
    edges: tuple[GraphEdge, ...] = ()


@dataclass(frozen=True)
class GraphData:
    """Output of graph building: connectivity-ordered nodes with fallback
    coordinates, and edges whose endpoints all exist in ``nodes``."""

    nodes: tuple[GraphNode, ...] = ()
    edges: tuple[GraphEdge, ...] = ()

    def node_ids(self) -> set[str]:
        return {n.id for n in self.nodes}


@dataclass(frozen=True)
class QueueInfo:
    name: str
    depth: float | None = None
    role: str | None = None


@dataclass(frozen=True)
class Component:
    """Live component status used to enrich nodes with render metadata."""

    id: str
    role: str | None = None
    name: str | None = None
    swarm_id: str | None = None
    status: str | None = None
    config: dict[str, Any] = field(default_factory=dict, hash=False, compare=True)
    queues: tuple[QueueInfo, ...] = ()
    last_error_at: str | None = None
