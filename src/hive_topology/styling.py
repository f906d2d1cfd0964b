"""Node styling helpers: fills, shapes, labels and per-queue metrics."""

from __future__ import annotations

import math
import re
from collections.abc import Iterable
from typing import Any

from hive_topology.config import LayoutConfig
from hive_topology.graph import Component, GraphNode
from hive_topology.render import NodeShape

SHAPE_ORDER: tuple[NodeShape, ...] = ("square", "triangle", "diamond", "pentagon", "hexagon", "star")
FALLBACK_SHAPE: NodeShape = "circle"

_HUMANIZE_SPLIT = re.compile(r"[-_.\s]+")
_ABBREV_SPLIT = re.compile(r"[-_\s]+")


def humanize(value: str | None) -> str:
    """``swarm-controller`` → ``Swarm Controller``."""
    if not value:
        return ""
    parts = [p for p in _HUMANIZE_SPLIT.split(value) if p]
    return " ".join(p[:1].upper() + p[1:] for p in parts)


def role_label(component_role: str | None, node_type: str) -> str:
    return humanize(component_role or node_type)


def role_abbreviation(node_type: str | None) -> str:
    """Initials of the dash/underscore/space separated parts, at most two."""
    if not node_type:
        return ""
    parts = [p for p in _ABBREV_SPLIT.split(node_type) if p]
    return "".join(p[0].upper() for p in parts)[:2]


def node_label(node: GraphNode, component: Component | None) -> str:
    if component is not None:
        if component.name and component.name.strip():
            return component.name.strip()
        if component.id and component.id.strip():
            return component.id.strip()
    return node.id


def fill_for(node: GraphNode, component: Component | None, config: LayoutConfig) -> str:
    """Disabled beats errored beats the per-type fill."""
    if node.enabled is False:
        return config.disabled_fill
    if component is not None and component.last_error_at:
        return config.error_fill
    return config.type_fills.get(node.type, config.default_fill)


def parse_tps(config: dict[str, Any] | None) -> float | None:
    """Configured throughput, accepting numbers and numeric strings."""
    if not config:
        return None
    raw = config.get("tps")
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str) and raw.strip():
        try:
            value = float(raw.strip())
        except ValueError:
            return None
    else:
        return None
    return value if math.isfinite(value) else None


class ShapeRegistry:
    """Stable type → shape assignment for one layout session.

    ``sut`` is always a circle; every other type takes the first shape of
    ``SHAPE_ORDER`` not yet handed out, then ``circle`` once they run out.
    """

    def __init__(self) -> None:
        self._shapes: dict[str, NodeShape] = {"sut": "circle"}

    def shape_for(self, node_type: str) -> NodeShape:
        shape = self._shapes.get(node_type)
        if shape is None:
            used = set(self._shapes.values())
            shape = next((s for s in SHAPE_ORDER if s not in used), FALLBACK_SHAPE)
            self._shapes[node_type] = shape
        return shape

    def assigned(self) -> dict[str, NodeShape]:
        return dict(self._shapes)


# ─── Queue Metrics ────────────────────────────────────────────────────────────


def queue_depths(components: Iterable[Component]) -> dict[str, float]:
    """Maximum reported depth per queue name across all components."""
    depths: dict[str, float] = {}
    for component in components:
        for queue in component.queues:
            if queue.depth is None:
                continue
            current = depths.get(queue.name)
            depths[queue.name] = queue.depth if current is None else max(current, queue.depth)
    return depths


def queue_counts(components: Iterable[Component]) -> dict[str, int]:
    return {c.id: len(c.queues) for c in components}
