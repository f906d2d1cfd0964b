"""Incremental layout controller.

Reconciles every new topology/component snapshot with the live view state:

- nodes in the drag set are carried over from the previous frame unchanged
  (the very same ``RenderNode`` object);
- every other node is re-derived, positioned per axis by
  ``live snapshot`` → ``previous frame`` → ``position store`` → ``fallback``;
- fit-to-view runs after mount and after layout changes, never mid-drag.

One controller instance is one view. All state lives on the instance.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from hive_topology.config import LayoutConfig
from hive_topology.decode import DecodeError, decode_components, decode_topology
from hive_topology.graph import Component, GraphNode, Topology, normalize_swarm_id
from hive_topology.guards import build_base_edges, build_guard_queues_by_swarm, build_guarded_edges_for_swarm
from hive_topology.layout import build_graph
from hive_topology.render import (
    LayoutFrame,
    RenderEdge,
    RenderNode,
    ShapeNodeData,
    SwarmGroupNodeData,
    SwarmMemberData,
)
from hive_topology.styling import (
    ShapeRegistry,
    fill_for,
    node_label,
    parse_tps,
    queue_counts,
    queue_depths,
    role_abbreviation,
    role_label,
)
from hive_topology.swarms import SwarmGroup, collapse_edges, group_swarms
from hive_topology.transport import PositionStore, TopologySource, Unsubscribe, Viewport

logger = logging.getLogger(__name__)

FrameListener = Callable[[LayoutFrame], None]


def _finite(value: float | None) -> bool:
    return value is not None and math.isfinite(value)


class IncrementalLayoutController:
    """Turns snapshots into ``LayoutFrame``s while honouring user intent.

    Args:
        config:         Layout settings; defaults to ``LayoutConfig()``.
        position_store: Where completed drags are persisted, and read back
                        for nodes with no live or previous position.
        swarm_id:       Single-swarm filter; None shows the grouped overview.
    """

    def __init__(
        self,
        config: LayoutConfig | None = None,
        position_store: PositionStore | None = None,
        swarm_id: str | None = None,
    ) -> None:
        self.config = config or LayoutConfig()
        self._store = position_store
        self._swarm_id = swarm_id
        self._shapes = ShapeRegistry()
        self._frame = LayoutFrame()
        self._dragging: set[str] = set()
        self._selected_id: str | None = None
        self._listeners: list[FrameListener] = []
        self._viewport: Viewport | None = None
        self._pending_fit = False
        self._signature = ""
        self._topology = Topology()
        self._components: tuple[Component, ...] = ()

    # ── State ────────────────────────────────────────────────────────────────

    @property
    def frame(self) -> LayoutFrame:
        return self._frame

    @property
    def dragging(self) -> frozenset[str]:
        return frozenset(self._dragging)

    @property
    def swarm_id(self) -> str | None:
        return self._swarm_id

    @property
    def pending_fit(self) -> bool:
        return self._pending_fit

    def subscribe(self, listener: FrameListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ── Snapshots ────────────────────────────────────────────────────────────

    def apply_snapshot(self, topology: Topology, components: Iterable[Component] = ()) -> LayoutFrame:
        """Recompute the frame from a full snapshot; it supersedes the last one."""
        self._topology = topology
        self._components = tuple(components)
        return self._recompute()

    def set_swarm_filter(self, swarm_id: str | None) -> LayoutFrame:
        self._swarm_id = swarm_id
        return self._recompute()

    def select(self, node_id: str | None) -> LayoutFrame:
        self._selected_id = node_id
        return self._recompute()

    def _recompute(self) -> LayoutFrame:
        cfg = self.config
        data = build_graph(
            self._topology,
            self._swarm_id,
            h_spacing=cfg.h_spacing,
            v_spacing=cfg.v_spacing,
            reserved=cfg.reserved_scopes,
        )
        components = {c.id: c for c in self._components}
        depths = queue_depths(self._components)
        live = {n.id: n for n in self._topology.nodes}
        previous = {n.id: n for n in self._frame.nodes}

        nodes: list[RenderNode] = []
        edges: list[RenderEdge]
        if self._swarm_id:
            for node in data.nodes:
                nodes.append(self._carry_or(node.id, previous, lambda n=node: self._shape_node(n, live, previous, components)))
            swarm_key = normalize_swarm_id(self._swarm_id, cfg.reserved_scopes)
            if swarm_key is None:
                edges = build_base_edges(data.edges, depths)
            else:
                guard = build_guard_queues_by_swarm(self._components, cfg.reserved_scopes).get(swarm_key)
                edges = build_guarded_edges_for_swarm(data, depths, swarm_key, guard, cfg.reserved_scopes)
        else:
            grouping = group_swarms(data, depths, cfg.reserved_scopes)
            counts = queue_counts(self._components)
            for node in grouping.standalone:
                nodes.append(self._carry_or(node.id, previous, lambda n=node: self._shape_node(n, live, previous, components)))
            for group in grouping.groups:
                nodes.append(
                    self._carry_or(
                        group.group_id,
                        previous,
                        lambda g=group: self._group_node(g, live, previous, components, counts),
                    )
                )
            edges = collapse_edges(build_base_edges(data.edges, depths), grouping.owner)

        self._frame = LayoutFrame(nodes=tuple(nodes), edges=tuple(edges))
        self._emit()
        return self._frame

    def _carry_or(
        self,
        node_id: str,
        previous: Mapping[str, RenderNode],
        build: Callable[[], RenderNode],
    ) -> RenderNode:
        if node_id in self._dragging and node_id in previous:
            return previous[node_id]
        return build()

    def _position(
        self,
        node: GraphNode,
        live: Mapping[str, GraphNode],
        previous: Mapping[str, RenderNode],
    ) -> tuple[float, float]:
        """Per-axis: live snapshot, previous frame, position store, fallback."""
        raw = live.get(node.id)
        prev = previous.get(node.id)
        stored = self._store.get_node_position(node.id) if self._store is not None and prev is None else None

        def axis(name: str) -> float:
            raw_value = getattr(raw, name, None)
            if _finite(raw_value):
                return raw_value
            if prev is not None:
                return getattr(prev, name)
            if stored is not None:
                return getattr(stored, name)
            fallback = getattr(node, name)
            return fallback if _finite(fallback) else 0.0

        return axis("x"), axis("y")

    def _shape_node(
        self,
        node: GraphNode,
        live: Mapping[str, GraphNode],
        previous: Mapping[str, RenderNode],
        components: Mapping[str, Component],
    ) -> RenderNode:
        component = components.get(node.id)
        x, y = self._position(node, live, previous)
        data = ShapeNodeData(
            label=node_label(node, component),
            shape=self._shapes.shape_for(node.type),
            role=role_label(component.role if component else None, node.type),
            fill=fill_for(node, component, self.config),
            has_error=bool(component and component.last_error_at),
            component_type=node.type,
            component_id=node.id,
            enabled=node.enabled,
            swarm_id=node.swarm_id,
            status=component.status if component else None,
            meta=dict(component.config) if component else {},
        )
        return RenderNode(id=node.id, kind="shape", x=x, y=y, data=data, selected=self._selected_id == node.id)

    def _member(self, node: GraphNode, components: Mapping[str, Component], counts: Mapping[str, int]) -> SwarmMemberData:
        component = components.get(node.id)
        return SwarmMemberData(
            id=node.id,
            name=role_label(component.role if component else None, node.type),
            shape=self._shapes.shape_for(node.type),
            fill=fill_for(node, component, self.config),
            abbreviation=role_abbreviation(node.type),
            component_type=node.type,
            enabled=node.enabled,
            queue_count=counts.get(node.id, 0),
            tps=parse_tps(component.config) if component else None,
        )

    def _group_node(
        self,
        group: SwarmGroup,
        live: Mapping[str, GraphNode],
        previous: Mapping[str, RenderNode],
        components: Mapping[str, Component],
        counts: Mapping[str, int],
    ) -> RenderNode:
        x, y = self._position(group.controller, live, previous)
        data = SwarmGroupNodeData(
            label=group.swarm_id,
            swarm_id=group.swarm_id,
            controller_id=group.controller.id,
            controller=self._member(group.controller, components, counts),
            members=tuple(self._member(m, components, counts) for m in group.members),
            edges=tuple(group.edges),
            selected_id=self._selected_id,
        )
        return RenderNode(id=group.group_id, kind="swarm-group", x=x, y=y, data=data, selectable=False)

    # ── Drag gestures ────────────────────────────────────────────────────────

    def on_drag_start(self, node_id: str) -> None:
        self._dragging.add(node_id)

    def on_drag_move(self, node_id: str, x: float, y: float) -> None:
        """Follow the pointer: move the frozen node within the current frame."""
        if node_id not in self._dragging:
            return
        if self._move(node_id, x, y):
            self._emit()

    def on_drag_end(self, node_id: str, x: float, y: float) -> None:
        """Release the node and persist its final position.

        The store write happens last, after the node has left the drag set,
        so a snapshot echoed synchronously by the store already recomputes it.
        """
        self._dragging.discard(node_id)
        if self._move(node_id, x, y):
            self._emit()
        if self._store is not None:
            self._store.update_node_position(node_id, x, y)
        self._maybe_fit()

    def _move(self, node_id: str, x: float, y: float) -> bool:
        nodes = list(self._frame.nodes)
        for idx, node in enumerate(nodes):
            if node.id == node_id:
                if (node.x, node.y) == (x, y):
                    return False
                nodes[idx] = node.moved_to(x, y)
                self._frame = LayoutFrame(nodes=tuple(nodes), edges=self._frame.edges)
                return True
        return False

    # ── Viewport ─────────────────────────────────────────────────────────────

    def mount(self, viewport: Viewport) -> None:
        self._viewport = viewport
        self._pending_fit = True
        self._maybe_fit()

    def unmount(self) -> None:
        self._viewport = None
        self._pending_fit = False
        self._dragging.clear()

    def fit_view(self) -> None:
        """Fit immediately, regardless of pending state (e.g. a reset button)."""
        viewport = self._viewport
        if viewport is None or not self._frame.nodes:
            return
        viewport.fit_view(self.config.fit_padding)
        zoom = viewport.get_zoom()
        if zoom is not None and zoom < self.config.min_fit_zoom:
            viewport.zoom_to(self.config.min_fit_zoom)

    def _maybe_fit(self) -> None:
        if not self._frame.nodes or not self._pending_fit or self._dragging:
            return
        if self._viewport is None:
            return
        self._pending_fit = False
        self.fit_view()

    def _emit(self) -> None:
        signature = self._frame.signature()
        if signature != self._signature:
            self._signature = signature
            if self._viewport is not None:
                self._pending_fit = True
        for listener in list(self._listeners):
            listener(self._frame)
        self._maybe_fit()


class LayoutSession:
    """Wires a ``TopologySource`` to a controller for the lifetime of a view.

    Topology and component pushes arrive independently; the latest of each is
    kept and every push recomputes from both. A topology payload that cannot
    be decoded is ignored and the previous frame stays on screen.
    """

    def __init__(self, source: TopologySource, controller: IncrementalLayoutController) -> None:
        self.controller = controller
        self._topology: Topology | None = None
        self._components: list[Component] = []
        self._unsubscribes: list[Unsubscribe] = [
            source.subscribe_topology(self._on_topology),
            source.subscribe_components(self._on_components),
        ]

    def _on_topology(self, payload: Any) -> None:
        try:
            self._topology = decode_topology(payload)
        except DecodeError as exc:
            logger.warning("ignoring topology push: %s", exc)
            return
        self._refresh()

    def _on_components(self, payload: Any) -> None:
        self._components = decode_components(payload)
        self._refresh()

    def _refresh(self) -> None:
        # Components alone cannot place anything until a topology has arrived.
        if self._topology is None:
            return
        self.controller.apply_snapshot(self._topology, self._components)

    def close(self) -> None:
        while self._unsubscribes:
            self._unsubscribes.pop()()
