"""Edge annotation — queue edges styled by depth, plus synthesized guard edges.

A swarm controller with a buffer guard regulates one *primary* queue (by
adjusting its producers' rate toward a target depth) and optionally watches
a *backpressure* queue. Those relationships are not queue bindings, so they
never appear in the topology; this module draws them as dashed edges from
the controller:

    rate          controller → producer of the primary queue
    depth         controller → consumer of the primary queue
    backpressure  controller → consumer of the backpressure queue
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from hive_topology.decode import decode_buffer_guard
from hive_topology.graph import CONTROLLER_TYPE, RESERVED_SCOPES, Component, GraphData, GraphEdge, normalize_swarm_id
from hive_topology.render import EdgeKind, EdgeStyle, RenderEdge

logger = logging.getLogger(__name__)

HOT_COLOR = "#ff6666"  # queue has a backlog
COOL_COLOR = "#66aaff"  # queue is empty
BASE_WIDTH = 2.0

RATE_COLOR = "#22c55e"
DEPTH_COLOR = "#f97316"
BACKPRESSURE_COLOR = "#a855f7"
GUARD_WIDTH = 2.5
GUARD_DASH = "4 2"
GUARD_LABEL_BG = "rgba(15,23,42,0.9)"


@dataclass(frozen=True)
class GuardQueuesConfig:
    primary: str | None = None
    backpressure: str | None = None
    target_depth: float | None = None
    min_depth: float | None = None
    max_depth: float | None = None
    high_depth: float | None = None
    recovery_depth: float | None = None
    min_rate: float | None = None
    max_rate: float | None = None


# ─── Base Edges ───────────────────────────────────────────────────────────────


def depth_style(depth: float) -> EdgeStyle:
    """Cool and thin when empty; hot and log-scaled thicker with backlog."""
    color = HOT_COLOR if depth > 0 else COOL_COLOR
    return EdgeStyle(stroke=color, stroke_width=BASE_WIDTH + math.log(max(depth, 0) + 1))


def build_base_edges(edges: Iterable[GraphEdge], queue_depths: Mapping[str, float]) -> list[RenderEdge]:
    """One render edge per distinct (source, target, queue)."""
    result: list[RenderEdge] = []
    seen: set[tuple[str, str, str]] = set()
    for edge in edges:
        if edge.key in seen:
            continue
        seen.add(edge.key)
        depth = queue_depths.get(edge.queue, 0)
        result.append(
            RenderEdge(
                id=f"{edge.source}-{edge.target}-{edge.queue}",
                source=edge.source,
                target=edge.target,
                label=edge.queue,
                kind="queue",
                style=depth_style(depth),
            )
        )
    return result


# ─── Guard Configuration ──────────────────────────────────────────────────────


def guard_queues_from_component(component: Component) -> GuardQueuesConfig | None:
    """Read the buffer-guard section of a controller's config, if any."""
    guard = decode_buffer_guard(component.config)
    if guard is None:
        return None
    adjust = guard.adjust
    bp = guard.backpressure
    primary = guard.queue_alias
    backpressure = bp.queue_alias if bp else None
    if not primary and not backpressure:
        return None
    return GuardQueuesConfig(
        primary=primary,
        backpressure=backpressure,
        target_depth=guard.target_depth,
        min_depth=guard.min_depth,
        max_depth=guard.max_depth,
        high_depth=bp.high_depth if bp else None,
        recovery_depth=bp.recovery_depth if bp else None,
        min_rate=adjust.min_rate if adjust else None,
        max_rate=adjust.max_rate if adjust else None,
    )


def build_guard_queues_by_swarm(
    components: Iterable[Component],
    reserved: tuple[str, ...] = RESERVED_SCOPES,
) -> dict[str, GuardQueuesConfig]:
    """Guard configuration per normalized swarm id, from controller components."""
    result: dict[str, GuardQueuesConfig] = {}
    for component in components:
        if (component.role or "").strip().lower() != CONTROLLER_TYPE:
            continue
        swarm = normalize_swarm_id(component.swarm_id, reserved)
        if swarm is None:
            continue
        config = guard_queues_from_component(component)
        if config is not None:
            result[swarm] = config
    return result


# ─── Guard Edges ──────────────────────────────────────────────────────────────


def queue_matches_alias(queue: str | None, alias: str | None) -> bool:
    """Exact match, or ``alias`` as the last ``.``-qualified segment(s)."""
    if not queue or not alias:
        return False
    return queue == alias or queue.endswith(f".{alias}")


def normalize_edge_label(label: str) -> str:
    return "\n".join(line.strip() for line in label.split("\n") if line.strip())


def format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def depth_label(cfg: GuardQueuesConfig) -> str:
    parts: list[str] = []
    if cfg.min_depth is not None and cfg.max_depth is not None:
        parts.append(f"depth {format_number(cfg.min_depth)}..{format_number(cfg.max_depth)}")
    if cfg.target_depth is not None:
        parts.append(f"target {format_number(cfg.target_depth)}")
    return normalize_edge_label(" ".join(parts) if parts else "guard")


def rate_label(cfg: GuardQueuesConfig) -> str:
    if cfg.min_rate is not None and cfg.max_rate is not None:
        return normalize_edge_label(f"rate {format_number(cfg.min_rate)}..{format_number(cfg.max_rate)}")
    return "rate"


def backpressure_label(cfg: GuardQueuesConfig) -> str:
    parts = ["backpressure"]
    if cfg.high_depth is not None:
        parts.append(f"high {format_number(cfg.high_depth)}")
    if cfg.recovery_depth is not None:
        parts.append(f"recovery {format_number(cfg.recovery_depth)}")
    return normalize_edge_label(" ".join(parts))


def _guard_edge(kind: EdgeKind, prefix: str, controller_id: str, target: str, label: str, color: str) -> RenderEdge:
    return RenderEdge(
        id=f"guard-{prefix}-{controller_id}-{target}",
        source=controller_id,
        target=target,
        label=label,
        kind=kind,
        style=EdgeStyle(stroke=color, stroke_width=GUARD_WIDTH, dasharray=GUARD_DASH, label_bg=GUARD_LABEL_BG),
    )


def find_controller_id(data: GraphData, swarm_id: str, reserved: tuple[str, ...] = RESERVED_SCOPES) -> str | None:
    for node in data.nodes:
        if node.type != CONTROLLER_TYPE:
            continue
        if node.swarm_id == swarm_id or normalize_swarm_id(node.swarm_id, reserved) == swarm_id:
            return node.id
    return None


def build_guarded_edges_for_swarm(
    data: GraphData,
    queue_depths: Mapping[str, float],
    swarm_id: str,
    guard_queues: GuardQueuesConfig | None = None,
    reserved: tuple[str, ...] = RESERVED_SCOPES,
) -> list[RenderEdge]:
    """Base queue edges of ``data`` followed by the swarm's guard edges.

    Without guard configuration or without a controller node for
    ``swarm_id`` only the base edges are returned. Each guard kind emits at
    most one edge per controller→target pair.
    """
    edges = build_base_edges(data.edges, queue_depths)
    if guard_queues is None:
        return edges

    controller_id = find_controller_id(data, swarm_id, reserved)
    if controller_id is None:
        logger.debug("swarm %s has guard config but no controller node; skipping guard edges", swarm_id)
        return edges

    if guard_queues.primary:
        rate = rate_label(guard_queues)
        depth = depth_label(guard_queues)
        rate_targets: set[str] = set()
        depth_targets: set[str] = set()
        for link in data.edges:
            if not queue_matches_alias(link.queue, guard_queues.primary):
                continue
            if link.source not in rate_targets:
                rate_targets.add(link.source)
                edges.append(_guard_edge("guard-rate", "rate", controller_id, link.source, rate, RATE_COLOR))
            if link.target not in depth_targets:
                depth_targets.add(link.target)
                edges.append(_guard_edge("guard-depth", "depth", controller_id, link.target, depth, DEPTH_COLOR))

    if guard_queues.backpressure:
        label = backpressure_label(guard_queues)
        bp_targets: set[str] = set()
        for link in data.edges:
            if not queue_matches_alias(link.queue, guard_queues.backpressure):
                continue
            if link.target in bp_targets:
                continue
            bp_targets.add(link.target)
            edges.append(
                _guard_edge("guard-backpressure", "bp", controller_id, link.target, label, BACKPRESSURE_COLOR)
            )

    return edges
