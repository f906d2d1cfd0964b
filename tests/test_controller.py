"""Tests for controller.py — incremental reconciliation, drags, fit-to-view and
the transport session."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from hive_topology.config import LayoutConfig
from hive_topology.controller import IncrementalLayoutController, LayoutSession
from hive_topology.graph import Component, GraphEdge, GraphNode, QueueInfo, Topology
from hive_topology.render import ShapeNodeData, SwarmGroupNodeData
from hive_topology.transport import InMemoryPositionStore, Position

# ─── Helpers ──────────────────────────────────────────────────────────────────


def node(node_id: str, node_type: str = "processor", swarm: str | None = "sw1", **kw) -> GraphNode:
    return GraphNode(id=node_id, type=node_type, swarm_id=swarm, **kw)


def make_topology(nodes: list[GraphNode], edges: list[tuple[str, str, str]] = ()) -> Topology:
    return Topology(nodes=tuple(nodes), edges=tuple(GraphEdge(s, t, q) for s, t, q in edges))


# g → p on sw1.work, plus the swarm controller. Fallback layout:
#   g (-140, -110)   p (140, 0)
#   ctrl (-140, 110)
SWARM = make_topology(
    [node("g", "generator"), node("p"), node("ctrl", "swarm-controller")],
    [("g", "p", "sw1.work")],
)

GUARD_CONFIG = {"trafficPolicy": {"bufferGuard": {"queueAlias": "work", "targetDepth": 5}}}


def positions(frame) -> dict[str, tuple[float, float]]:
    return {n.id: (n.x, n.y) for n in frame.nodes}


class FakeViewport:
    """Records fit/zoom calls."""

    def __init__(self, zoom: float | None = 1.0) -> None:
        self.zoom = zoom
        self.fits: list[float] = []
        self.zooms: list[float] = []

    def fit_view(self, padding: float) -> None:
        self.fits.append(padding)

    def get_zoom(self) -> float | None:
        return self.zoom

    def zoom_to(self, zoom: float) -> None:
        self.zooms.append(zoom)
        self.zoom = zoom


class RecordingPositionStore(InMemoryPositionStore):
    """InMemoryPositionStore that logs every write."""

    def __init__(self, positions: dict[str, Position] | None = None) -> None:
        super().__init__(positions)
        self.writes: list[tuple[str, float, float]] = []

    def update_node_position(self, node_id: str, x: float, y: float) -> None:
        super().update_node_position(node_id, x, y)
        self.writes.append((node_id, x, y))


class FakeSource:
    """TopologySource whose pushes are driven by the test."""

    def __init__(self) -> None:
        self.topology_fns: list[Callable[[Any], None]] = []
        self.component_fns: list[Callable[[Any], None]] = []

    def subscribe_topology(self, fn: Callable[[Any], None]) -> Callable[[], None]:
        self.topology_fns.append(fn)
        return lambda: self.topology_fns.remove(fn)

    def subscribe_components(self, fn: Callable[[Any], None]) -> Callable[[], None]:
        self.component_fns.append(fn)
        return lambda: self.component_fns.remove(fn)

    def push_topology(self, payload: Any) -> None:
        for fn in list(self.topology_fns):
            fn(payload)

    def push_components(self, payload: Any) -> None:
        for fn in list(self.component_fns):
            fn(payload)


# ─── Snapshots ────────────────────────────────────────────────────────────────


class TestApplySnapshot:
    def test_fallback_positions(self):
        """Without live or stored positions nodes take the layered fallback."""
        frame = IncrementalLayoutController(swarm_id="sw1").apply_snapshot(SWARM)
        assert positions(frame) == {"g": (-140, -110), "p": (140, 0), "ctrl": (-140, 110)}

    def test_deterministic(self):
        """Identical input on two fresh controllers → identical frames."""
        comps = [Component(id="p", name="Worker", queues=(QueueInfo("sw1.work", 3),))]
        first = IncrementalLayoutController(swarm_id="sw1").apply_snapshot(SWARM, comps)
        second = IncrementalLayoutController(swarm_id="sw1").apply_snapshot(SWARM, comps)
        assert first == second

    def test_repeat_snapshot_is_stable(self):
        """Re-applying the same snapshot changes nothing."""
        controller = IncrementalLayoutController(swarm_id="sw1")
        first = controller.apply_snapshot(SWARM)
        assert controller.apply_snapshot(SWARM) == first

    def test_shape_metadata_from_components(self):
        """Labels, roles, error state and fill come from component data."""
        controller = IncrementalLayoutController(swarm_id="sw1")
        comps = [Component(id="p", role="moderator", name="Mod", status="RUNNING", last_error_at="now")]
        data = controller.apply_snapshot(SWARM, comps).node("p").data
        assert isinstance(data, ShapeNodeData)
        assert data.label == "Mod"
        assert data.role == "Moderator"
        assert data.has_error
        assert data.fill == controller.config.error_fill
        assert data.status == "RUNNING"
        assert data.component_type == "processor"

    def test_metadata_recomputed_each_snapshot(self):
        """A node that is not dragged picks up fresh component state."""
        controller = IncrementalLayoutController(swarm_id="sw1")
        controller.apply_snapshot(SWARM, [Component(id="p", last_error_at="now")])
        frame = controller.apply_snapshot(SWARM, [Component(id="p")])
        assert not frame.node("p").data.has_error

    def test_new_nodes_do_not_move_existing(self):
        """Previously placed nodes keep their positions when the graph grows."""
        controller = IncrementalLayoutController(swarm_id="sw1")
        small = make_topology([node("g", "generator"), node("p")], [("g", "p", "q")])
        controller.apply_snapshot(small)
        grown = make_topology([node("g", "generator"), node("p"), node("s")], [("g", "p", "q"), ("p", "s", "r")])
        frame = controller.apply_snapshot(grown)
        assert positions(frame) == {"g": (-140, 0), "p": (140, 0), "s": (280, 0)}

    def test_live_position_beats_previous(self):
        """A live snapshot coordinate wins over the previous frame, per axis."""
        controller = IncrementalLayoutController(swarm_id="sw1")
        controller.apply_snapshot(SWARM)
        moved = make_topology(
            [node("g", "generator"), node("p", x=900.0), node("ctrl", "swarm-controller")],
            [("g", "p", "sw1.work")],
        )
        assert controller.apply_snapshot(moved).node("p").x == 900.0
        assert controller.frame.node("p").y == 0

    def test_store_used_for_new_nodes(self):
        """A brand-new node is placed from the position store."""
        store = RecordingPositionStore({"p": Position(5, 6)})
        controller = IncrementalLayoutController(position_store=store, swarm_id="sw1")
        assert controller.apply_snapshot(SWARM).node("p").x == 5
        assert controller.frame.node("p").y == 6
        assert store.writes == []

    def test_empty_snapshot(self):
        """No nodes → empty frame."""
        frame = IncrementalLayoutController().apply_snapshot(Topology())
        assert frame.nodes == ()
        assert frame.edges == ()

    def test_reserved_filter_is_empty(self):
        """Filtering on the hive scope renders nothing."""
        controller = IncrementalLayoutController()
        controller.apply_snapshot(SWARM)
        frame = controller.set_swarm_filter("hive")
        assert frame.nodes == ()
        assert frame.edges == ()


# ─── Edges ────────────────────────────────────────────────────────────────────


class TestFrameEdges:
    def test_guard_edges_in_swarm_view(self):
        """Filtered view adds the controller's guard edges."""
        comps = [Component(id="ctrl", role="swarm-controller", swarm_id="sw1", config=GUARD_CONFIG)]
        frame = IncrementalLayoutController(swarm_id="sw1").apply_snapshot(SWARM, comps)
        assert [(e.kind, e.source, e.target) for e in frame.edges] == [
            ("queue", "g", "p"),
            ("guard-rate", "ctrl", "g"),
            ("guard-depth", "ctrl", "p"),
        ]

    def test_queue_edge_depth_colour(self):
        """The scenario edge is cool when its queue is empty."""
        frame = IncrementalLayoutController(swarm_id="sw1").apply_snapshot(
            SWARM, [Component(id="p", queues=(QueueInfo("sw1.work", 0),))]
        )
        (edge,) = frame.edges
        assert edge.style.stroke == "#66aaff"

    def test_overview_groups_swarms(self):
        """Without a filter each controller becomes a group node."""
        topo = make_topology(
            [
                node("ctrl-1", "swarm-controller", "sw1"),
                node("w1", "processor", "sw1"),
                node("ctrl-2", "swarm-controller", "sw2"),
                node("x", "processor", None),
            ],
            [("ctrl-1", "w1", "ctl"), ("w1", "x", "out")],
        )
        comps = [Component(id="w1", config={"tps": "12"}, queues=(QueueInfo("ctl"), QueueInfo("out")))]
        frame = IncrementalLayoutController().apply_snapshot(topo, comps)
        assert [(n.id, n.kind) for n in frame.nodes] == [
            ("x", "shape"),
            ("ctrl-1", "swarm-group"),
            ("ctrl-2", "swarm-group"),
        ]
        group = frame.node("ctrl-1")
        assert not group.selectable
        assert isinstance(group.data, SwarmGroupNodeData)
        assert group.data.controller.id == "ctrl-1"
        (member,) = group.data.members
        assert (member.id, member.abbreviation, member.queue_count, member.tps) == ("w1", "P", 2, 12.0)
        assert [(e.source, e.target) for e in group.data.edges] == [("ctrl-1", "w1")]
        assert frame.node("ctrl-2").data.members == ()
        assert [(e.source, e.target) for e in frame.edges] == [("ctrl-1", "x")]

    def test_edge_referential_integrity(self):
        """Every emitted edge references an emitted node, in both views."""
        topo = make_topology(
            [
                node("ctrl-1", "swarm-controller", "sw1"),
                node("a", "generator", "sw1"),
                node("b", "processor", "sw2"),
                node("c", "processor", None),
            ],
            [("a", "b", "q1"), ("b", "c", "q2"), ("c", "a", "q3"), ("a", "ghost", "q4")],
        )
        for swarm in (None, "sw1", "sw2"):
            frame = IncrementalLayoutController(swarm_id=swarm).apply_snapshot(topo)
            ids = {n.id for n in frame.nodes}
            assert len(ids) == len(frame.nodes)
            for e in frame.edges:
                assert e.source in ids and e.target in ids


# ─── Drag Gestures ────────────────────────────────────────────────────────────


class TestDrag:
    def test_dragged_node_is_insulated(self):
        """A dragged node keeps its exact prior object across snapshots."""
        controller = IncrementalLayoutController(swarm_id="sw1")
        before = controller.apply_snapshot(SWARM).node("p")
        controller.on_drag_start("p")
        changed = make_topology(
            [node("g", "generator"), node("p", x=999.0), node("ctrl", "swarm-controller")],
            [("g", "p", "sw1.work")],
        )
        for _ in range(3):
            frame = controller.apply_snapshot(changed, [Component(id="p", last_error_at="now")])
            assert frame.node("p") is before

    def test_drag_end_writes_store_once(self):
        """Only drag-end writes to the position store, exactly once."""
        store = RecordingPositionStore()
        controller = IncrementalLayoutController(position_store=store, swarm_id="sw1")
        controller.apply_snapshot(SWARM)
        controller.on_drag_start("p")
        controller.on_drag_move("p", 300, 40)
        controller.apply_snapshot(SWARM)
        assert store.writes == []
        controller.on_drag_end("p", 320, 50)
        assert store.writes == [("p", 320, 50)]
        assert controller.dragging == frozenset()

    def test_position_preserved_after_drag(self):
        """After a drag the node stays where it was dropped."""
        controller = IncrementalLayoutController(position_store=RecordingPositionStore(), swarm_id="sw1")
        controller.apply_snapshot(SWARM)
        controller.on_drag_start("p")
        controller.on_drag_end("p", 500, 600)
        frame = controller.apply_snapshot(SWARM)
        assert (frame.node("p").x, frame.node("p").y) == (500, 600)
        assert (frame.node("g").x, frame.node("g").y) == (-140, -110)

    def test_drag_move_updates_frame(self):
        """Moves while dragging are reflected in the current frame."""
        controller = IncrementalLayoutController(swarm_id="sw1")
        controller.apply_snapshot(SWARM)
        seen = []
        controller.subscribe(seen.append)
        controller.on_drag_start("p")
        controller.on_drag_move("p", 10, 20)
        assert (controller.frame.node("p").x, controller.frame.node("p").y) == (10, 20)
        assert len(seen) == 1

    def test_move_without_drag_ignored(self):
        """Moves for a node that is not dragged do nothing."""
        controller = IncrementalLayoutController(swarm_id="sw1")
        frame = controller.apply_snapshot(SWARM)
        controller.on_drag_move("p", 10, 20)
        assert controller.frame is frame

    def test_drag_end_without_start_still_writes(self):
        """The drop position is persisted even without a drag start."""
        store = RecordingPositionStore()
        controller = IncrementalLayoutController(position_store=store, swarm_id="sw1")
        controller.apply_snapshot(SWARM)
        controller.on_drag_end("g", 1, 2)
        assert store.writes == [("g", 1, 2)]
        assert store.get_node_position("g") == Position(1, 2)

    def test_group_nodes_can_be_dragged(self):
        """Group nodes are insulated by their group id."""
        topo = make_topology([node("ctrl-1", "swarm-controller", "sw1"), node("w1", "processor", "sw1")])
        controller = IncrementalLayoutController()
        before = controller.apply_snapshot(topo).node("ctrl-1")
        controller.on_drag_start("ctrl-1")
        assert controller.apply_snapshot(topo, [Component(id="w1", config={"tps": 3})]).node("ctrl-1") is before


# ─── Selection & Subscriptions ────────────────────────────────────────────────


class TestSelection:
    def test_select_marks_node(self):
        """Selection is reflected without moving anything."""
        controller = IncrementalLayoutController(swarm_id="sw1")
        before = positions(controller.apply_snapshot(SWARM))
        frame = controller.select("p")
        assert [n.id for n in frame.nodes if n.selected] == ["p"]
        assert positions(frame) == before
        assert not any(n.selected for n in controller.select(None).nodes)

    def test_group_carries_selected_id(self):
        """Group data records the selected member id."""
        topo = make_topology([node("ctrl-1", "swarm-controller", "sw1"), node("w1", "processor", "sw1")])
        controller = IncrementalLayoutController()
        controller.apply_snapshot(topo)
        assert controller.select("w1").node("ctrl-1").data.selected_id == "w1"

    def test_subscribe_and_unsubscribe(self):
        """Listeners receive every emitted frame until unsubscribed."""
        controller = IncrementalLayoutController(swarm_id="sw1")
        seen = []
        unsubscribe = controller.subscribe(seen.append)
        frame = controller.apply_snapshot(SWARM)
        assert seen == [frame]
        unsubscribe()
        controller.apply_snapshot(SWARM)
        assert len(seen) == 1


# ─── Fit To View ──────────────────────────────────────────────────────────────


class TestFitView:
    def test_fit_after_mount_waits_for_nodes(self):
        """Mounting an empty view defers the fit until nodes exist."""
        viewport = FakeViewport()
        controller = IncrementalLayoutController(swarm_id="sw1")
        controller.mount(viewport)
        assert viewport.fits == []
        controller.apply_snapshot(SWARM)
        assert viewport.fits == [0.2]

    def test_fit_on_mount_with_nodes(self):
        """Mounting a populated view fits immediately."""
        viewport = FakeViewport()
        controller = IncrementalLayoutController(swarm_id="sw1")
        controller.apply_snapshot(SWARM)
        controller.mount(viewport)
        assert viewport.fits == [0.2]

    def test_no_refit_for_unchanged_layout(self):
        """Identical snapshots do not refit."""
        viewport = FakeViewport()
        controller = IncrementalLayoutController(swarm_id="sw1")
        controller.mount(viewport)
        controller.apply_snapshot(SWARM)
        controller.apply_snapshot(SWARM, [Component(id="p", status="RUNNING")])
        assert len(viewport.fits) == 1

    def test_refit_when_nodes_change(self):
        """A new node changes the signature and triggers a fit."""
        viewport = FakeViewport()
        controller = IncrementalLayoutController(swarm_id="sw1")
        controller.mount(viewport)
        controller.apply_snapshot(SWARM)
        grown = make_topology(list(SWARM.nodes) + [node("s", "sink")], [("g", "p", "sw1.work"), ("p", "s", "out")])
        controller.apply_snapshot(grown)
        assert len(viewport.fits) == 2

    def test_fit_deferred_during_drag(self):
        """Layout changes mid-drag fit only once the drag ends."""
        viewport = FakeViewport()
        controller = IncrementalLayoutController(swarm_id="sw1")
        controller.mount(viewport)
        controller.apply_snapshot(SWARM)
        controller.on_drag_start("p")
        grown = make_topology(list(SWARM.nodes) + [node("s", "sink")], [("g", "p", "sw1.work")])
        controller.apply_snapshot(grown)
        controller.on_drag_move("p", 42, 42)
        assert len(viewport.fits) == 1
        assert controller.pending_fit
        controller.on_drag_end("p", 42, 42)
        assert len(viewport.fits) == 2
        assert not controller.pending_fit

    def test_fit_waits_for_last_drag(self):
        """With two concurrent drags the fit waits for both to end."""
        viewport = FakeViewport()
        controller = IncrementalLayoutController(swarm_id="sw1")
        controller.mount(viewport)
        controller.apply_snapshot(SWARM)
        controller.on_drag_start("p")
        controller.on_drag_start("g")
        controller.on_drag_end("p", 1, 1)
        assert len(viewport.fits) == 1
        controller.on_drag_end("g", 2, 2)
        assert len(viewport.fits) == 2

    def test_zoom_clamped_up(self):
        """A fit that zooms out too far is clamped to the minimum zoom."""
        viewport = FakeViewport(zoom=0.5)
        controller = IncrementalLayoutController(LayoutConfig(min_fit_zoom=0.9), swarm_id="sw1")
        controller.apply_snapshot(SWARM)
        controller.mount(viewport)
        assert viewport.zooms == [0.9]

    def test_zoom_not_reduced(self):
        """A comfortable zoom is left alone."""
        viewport = FakeViewport(zoom=1.5)
        controller = IncrementalLayoutController(swarm_id="sw1")
        controller.apply_snapshot(SWARM)
        controller.mount(viewport)
        assert viewport.zooms == []

    def test_explicit_fit_and_empty_frame(self):
        """fit_view forces a fit, except on an empty frame."""
        viewport = FakeViewport()
        controller = IncrementalLayoutController(swarm_id="sw1")
        controller.mount(viewport)
        controller.fit_view()
        assert viewport.fits == []
        controller.apply_snapshot(SWARM)
        controller.fit_view()
        assert len(viewport.fits) == 2

    def test_unmount(self):
        """After unmount nothing is fitted and drags are forgotten."""
        viewport = FakeViewport()
        controller = IncrementalLayoutController(swarm_id="sw1")
        controller.mount(viewport)
        controller.on_drag_start("p")
        controller.unmount()
        assert controller.dragging == frozenset()
        controller.apply_snapshot(SWARM)
        assert viewport.fits == []


# ─── Session ──────────────────────────────────────────────────────────────────


TOPOLOGY_PAYLOAD = {
    "nodes": [
        {"id": "g", "role": "generator", "swarmId": "sw1"},
        {"id": "p", "type": "processor", "swarmId": "sw1"},
    ],
    "edges": [{"from": "g", "to": "p", "queue": "sw1.work"}],
}


class TestLayoutSession:
    def test_topology_push_renders(self):
        """A topology push produces a frame."""
        source = FakeSource()
        session = LayoutSession(source, IncrementalLayoutController())
        source.push_topology(TOPOLOGY_PAYLOAD)
        assert [n.id for n in session.controller.frame.nodes] == ["g", "p"]

    def test_components_wait_for_topology(self):
        """Components alone do not render; they enrich the next topology."""
        source = FakeSource()
        session = LayoutSession(source, IncrementalLayoutController())
        source.push_components([{"id": "p", "name": "Worker"}])
        assert session.controller.frame.nodes == ()
        source.push_topology(TOPOLOGY_PAYLOAD)
        assert session.controller.frame.node("p").data.label == "Worker"

    def test_component_push_recomputes(self):
        """A component push after a topology recomputes with both."""
        source = FakeSource()
        session = LayoutSession(source, IncrementalLayoutController())
        source.push_topology(TOPOLOGY_PAYLOAD)
        source.push_components([{"id": "p", "lastErrorAt": "now"}])
        assert session.controller.frame.node("p").data.has_error

    def test_bad_payload_keeps_frame(self, caplog):
        """An undecodable topology is logged and the last frame stays."""
        source = FakeSource()
        session = LayoutSession(source, IncrementalLayoutController())
        source.push_topology(TOPOLOGY_PAYLOAD)
        frame = session.controller.frame
        with caplog.at_level(logging.WARNING, logger="hive_topology.controller"):
            source.push_topology("not a topology")
        assert session.controller.frame is frame
        assert "ignoring topology push" in caplog.text

    def test_close_unsubscribes(self):
        """close() detaches from both streams."""
        source = FakeSource()
        session = LayoutSession(source, IncrementalLayoutController())
        session.close()
        assert source.topology_fns == []
        assert source.component_fns == []
        session.close()
