"""Layout module — layered fallback layout for live topologies.

Phases:
  1. Graph building   (BFS from generators, swarm filter, dangling-edge drop)
  2. Level assignment (Kahn-style longest path, residual append for cycles)
  3. Column ordering  (barycenter heuristic, one forward + one backward sweep)
  4. Coordinates      (fixed spacing, centred columns and rows)

Coordinates computed here are *fallbacks*: a node that already carries a
finite ``x``/``y`` in the snapshot keeps it, per axis.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, replace

import networkx as nx

from hive_topology.config import H_SPACING, V_SPACING
from hive_topology.graph import (
    GENERATOR_TYPE,
    RESERVED_SCOPES,
    GraphData,
    GraphEdge,
    GraphNode,
    Topology,
    normalize_swarm_id,
)

logger = logging.getLogger(__name__)

# ─── Graph Building ───────────────────────────────────────────────────────────


def connectivity_order(topo: Topology) -> list[GraphNode]:
    """Order nodes breadth-first from every generator, then the rest.

    Generators are the natural entry points of a producer/consumer graph, so
    emitting what they reach first biases later layering toward a left-to-right
    flow. Nodes the traversal never reaches keep their input order at the end.
    """
    adjacency: dict[str, list[str]] = {}
    for edge in topo.edges:
        adjacency.setdefault(edge.source, []).append(edge.target)

    by_id: dict[str, GraphNode] = {}
    for node in topo.nodes:
        by_id.setdefault(node.id, node)

    visited: set[str] = set()
    order: list[str] = []
    queue: deque[str] = deque(n.id for n in topo.nodes if n.type == GENERATOR_TYPE)
    while queue:
        node_id = queue.popleft()
        if node_id in visited:
            continue
        visited.add(node_id)
        order.append(node_id)
        queue.extend(adjacency.get(node_id, []))

    # Dangling edge targets may have been "visited"; they simply have no node.
    connected = [by_id[node_id] for node_id in order if node_id in by_id]
    unconnected = [n for n in topo.nodes if n.id not in visited]

    result: list[GraphNode] = []
    seen: set[str] = set()
    for node in connected + unconnected:
        if node.id in seen:
            continue
        seen.add(node.id)
        result.append(node)
    return result


def filter_swarm(
    nodes: list[GraphNode],
    swarm_id: str | None,
    reserved: tuple[str, ...] = RESERVED_SCOPES,
) -> list[GraphNode]:
    """Restrict ``nodes`` to one swarm.

    No filter (``None`` or ``""``) keeps everything. A filter that normalizes
    to "no swarm" (e.g. the reserved ``hive`` scope) keeps nothing.
    """
    if not swarm_id:
        return nodes
    target = normalize_swarm_id(swarm_id, reserved)
    if target is None:
        return []
    return [n for n in nodes if normalize_swarm_id(n.swarm_id, reserved) == target]


def build_graph(
    topo: Topology,
    swarm_id: str | None = None,
    *,
    h_spacing: float = H_SPACING,
    v_spacing: float = V_SPACING,
    reserved: tuple[str, ...] = RESERVED_SCOPES,
) -> GraphData:
    """Reduce a raw topology snapshot to positioned nodes and valid edges.

    Args:
        topo:      The snapshot, possibly disconnected or with dangling edges.
        swarm_id:  Optional single-swarm filter.
        h_spacing: Pixel distance between columns.
        v_spacing: Pixel distance between rows.
        reserved:  Scope ids that mean "outside any swarm".

    Returns:
        ``GraphData`` whose every edge references nodes present in ``nodes``;
        every node has finite ``x`` and ``y``.
    """
    nodes = filter_swarm(connectivity_order(topo), swarm_id, reserved)

    node_ids = {n.id for n in nodes}
    edges = [e for e in topo.edges if e.source in node_ids and e.target in node_ids]
    dropped = len(topo.edges) - len(edges)
    if dropped:
        logger.debug("dropped %d edge(s) with an endpoint outside the node set", dropped)

    positioned = apply_fallback_positions(nodes, edges, h_spacing=h_spacing, v_spacing=v_spacing)
    return GraphData(nodes=tuple(positioned), edges=tuple(edges))


def layout_digraph(nodes: list[GraphNode], edges: list[GraphEdge]) -> nx.DiGraph:
    """Build the DiGraph used by levelling and ordering.

    Node insertion order follows ``nodes``; each node carries its
    ``GraphNode`` under the ``data`` attribute. Edges with an unknown endpoint
    are skipped and repeated (source, target, queue) triples count once.
    Parallel edges on different queues share one DiGraph edge whose
    ``weight`` is the number of distinct queues, so barycenters still count
    every queue binding.
    """
    g: nx.DiGraph = nx.DiGraph()
    for node in nodes:
        g.add_node(node.id, data=node)
    seen: set[tuple[str, str, str]] = set()
    for edge in edges:
        if edge.key in seen or edge.source not in g or edge.target not in g:
            continue
        seen.add(edge.key)
        if g.has_edge(edge.source, edge.target):
            g[edge.source][edge.target]["weight"] += 1
        else:
            g.add_edge(edge.source, edge.target, weight=1)
    return g


# ─── Level Assignment ─────────────────────────────────────────────────────────


@dataclass
class LevelAssignment:
    """Result of level assignment.

    Attributes:
        levels:   Maps node id → level (0 = leftmost).
        columns:  Node ids grouped by level, one list per distinct level, in
                  ascending level order. Within a column ids keep graph order.
        residual: Ids that propagation never reached (cycle members), appended
                  after the highest propagated level.
    """

    levels: dict[str, int]
    columns: list[list[str]]
    residual: list[str]

    @property
    def column_count(self) -> int:
        return len(self.columns)

    @classmethod
    def assign(cls, graph: nx.DiGraph) -> LevelAssignment:
        """Assign longest-path levels with a Kahn-style traversal.

        Sources (in-degree 0) seed the queue at level 0; a fully cyclic graph
        seeds every node instead. Each processed edge u→v raises
        level[v] to at least level[u]+1 and releases v once all of its
        in-edges have been seen. Nodes left unlevelled get strictly increasing
        levels past the maximum, so every node has a level even on non-DAG
        input and the traversal always terminates.
        """
        remaining: dict[str, int] = {n: graph.in_degree(n) for n in graph.nodes}
        levels: dict[str, int] = {}
        queue: deque[str] = deque()

        for node_id in graph.nodes:
            if remaining[node_id] == 0:
                queue.append(node_id)
                levels[node_id] = 0

        if not queue:
            for node_id in graph.nodes:
                queue.append(node_id)
                levels.setdefault(node_id, 0)

        while queue:
            node_id = queue.popleft()
            current = levels.get(node_id, 0)
            for succ in graph.successors(node_id):
                candidate = current + 1
                if succ not in levels or candidate > levels[succ]:
                    levels[succ] = candidate
                remaining[succ] -= 1
                if remaining[succ] == 0:
                    queue.append(succ)

        max_level = max(levels.values(), default=0)
        residual = [n for n in graph.nodes if n not in levels]
        if residual:
            logger.debug("appending %d unreached node(s) after level %d", len(residual), max_level)
        for node_id in residual:
            max_level += 1
            levels[node_id] = max_level

        groups: dict[int, list[str]] = {}
        for node_id in graph.nodes:
            groups.setdefault(levels[node_id], []).append(node_id)
        columns = [groups[level] for level in sorted(groups)]

        return cls(levels=levels, columns=columns, residual=residual)


def assign_levels(graph: nx.DiGraph) -> LevelAssignment:
    return LevelAssignment.assign(graph)


# ─── Column Ordering (Barycenter) ─────────────────────────────────────────────


def node_sort_key(node: GraphNode) -> tuple[str, str]:
    """Deterministic tie-break: ``(type, id)``."""
    return (node.type or "", node.id or "")


def _barycenter(neighbors: list[tuple[str, int]], rank: dict[str, int]) -> float | None:
    """Edge-weighted average rank of the already-ranked neighbours, or None
    if none are."""
    total = 0.0
    count = 0
    for nb, weight in neighbors:
        if nb in rank:
            total += rank[nb] * weight
            count += weight
    if not count:
        return None
    return total / count


def _sort_column(column: list[str], graph: nx.DiGraph, rank: dict[str, int], direction: str) -> list[str]:
    """Sort one column by barycenter of predecessors ("incoming") or
    successors ("outgoing"). Ranked nodes come first; ties and unranked nodes
    fall back to ``(type, id)``."""

    def key(node_id: str) -> tuple[int, float, str, str]:
        if direction == "incoming":
            neighbors = [(u, w) for u, _, w in graph.in_edges(node_id, data="weight", default=1)]
        else:
            neighbors = [(v, w) for _, v, w in graph.out_edges(node_id, data="weight", default=1)]
        score = _barycenter(neighbors, rank)
        base = node_sort_key(graph.nodes[node_id]["data"])
        if score is None:
            return (1, 0.0, *base)
        return (0, score, *base)

    return sorted(column, key=key)


def order_columns(columns: list[list[str]], graph: nx.DiGraph) -> list[list[str]]:
    """Order nodes within each column to reduce crossings.

    Column 0 is sorted by ``(type, id)``. Then one forward sweep sorts every
    later column by the mean rank of its predecessors, and one backward sweep
    (second-to-last column down to the first) re-sorts by the mean rank of
    successors. Exactly one pass each way: more passes could reorder nodes
    between otherwise identical consecutive snapshots.

    Returns a new list[list[str]]; the input is not modified.
    """
    ordering: list[list[str]] = [list(col) for col in columns]
    rank: dict[str, int] = {}

    for col_idx, column in enumerate(ordering):
        if col_idx == 0:
            sorted_col = sorted(column, key=lambda n: node_sort_key(graph.nodes[n]["data"]))
        else:
            sorted_col = _sort_column(column, graph, rank, "incoming")
        for row, node_id in enumerate(sorted_col):
            rank[node_id] = row
        ordering[col_idx] = sorted_col

    for col_idx in range(len(ordering) - 2, -1, -1):
        sorted_col = _sort_column(ordering[col_idx], graph, rank, "outgoing")
        for row, node_id in enumerate(sorted_col):
            rank[node_id] = row
        ordering[col_idx] = sorted_col

    return ordering


# ─── Coordinate Assignment ────────────────────────────────────────────────────


def assign_coordinates(
    ordering: list[list[str]],
    h_spacing: float = H_SPACING,
    v_spacing: float = V_SPACING,
) -> dict[str, tuple[float, float]]:
    """Map (column, row) indices to pixel coordinates.

    The whole layout is centred horizontally on x=0 and every column is
    centred vertically on y=0.
    """
    positions: dict[str, tuple[float, float]] = {}
    total_width = (len(ordering) - 1) * h_spacing
    offset_x = total_width / 2
    for col_idx, column in enumerate(ordering):
        if not column:
            continue
        x = col_idx * h_spacing - offset_x
        offset_y = (len(column) - 1) * v_spacing / 2
        for row, node_id in enumerate(column):
            positions[node_id] = (x, row * v_spacing - offset_y)
    return positions


def _is_finite(value: float | None) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def apply_fallback_positions(
    nodes: list[GraphNode],
    edges: list[GraphEdge],
    *,
    h_spacing: float = H_SPACING,
    v_spacing: float = V_SPACING,
) -> list[GraphNode]:
    """Run levelling, ordering and coordinate assignment over ``nodes``.

    A finite ``x``/``y`` already on a node wins over the computed fallback,
    independently per axis. Node order is preserved.
    """
    if not nodes:
        return []

    graph = layout_digraph(nodes, edges)
    assignment = assign_levels(graph)
    ordering = order_columns(assignment.columns, graph)
    fallback = assign_coordinates(ordering, h_spacing, v_spacing)

    positioned: list[GraphNode] = []
    for node in nodes:
        fx, fy = fallback[node.id]
        positioned.append(
            replace(
                node,
                x=node.x if _is_finite(node.x) else fx,
                y=node.y if _is_finite(node.y) else fy,
            )
        )
    return positioned
