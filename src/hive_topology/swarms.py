"""Swarm grouping — collapse each swarm into one composite node for the
overview.

Every swarm controller becomes a group node (keyed by the controller's id);
the other nodes of its swarm fold into the group as members and their
queue edges become the group's internal edges. Nodes whose swarm has no
controller stay standalone. Edges crossing a group boundary are redirected
to the group node; edges internal to a group are dropped from the outer
edge list, so the overview only ever references nodes it renders.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace

from hive_topology.graph import CONTROLLER_TYPE, RESERVED_SCOPES, GraphData, GraphNode, normalize_swarm_id
from hive_topology.render import RenderEdge, SwarmGroupEdgeData


@dataclass
class SwarmGroup:
    """A controller and the components of its swarm."""

    swarm_id: str
    controller: GraphNode
    members: list[GraphNode] = field(default_factory=list)
    edges: list[SwarmGroupEdgeData] = field(default_factory=list)

    @property
    def group_id(self) -> str:
        return self.controller.id

    def member_ids(self) -> set[str]:
        return {self.controller.id, *(m.id for m in self.members)}


@dataclass
class SwarmGrouping:
    """Result of grouping.

    Attributes:
        standalone: Nodes outside every group, in input order.
        groups:     One group per controller, in controller input order.
        owner:      Maps every grouped node id (controllers included) to the
                    id of the group node that stands in for it.
    """

    standalone: list[GraphNode]
    groups: list[SwarmGroup]
    owner: dict[str, str]


def group_swarms(
    data: GraphData,
    queue_depths: Mapping[str, float],
    reserved: tuple[str, ...] = RESERVED_SCOPES,
) -> SwarmGrouping:
    """Partition ``data.nodes`` into standalone nodes and swarm groups."""
    controllers: dict[str, GraphNode] = {}
    for node in data.nodes:
        swarm = normalize_swarm_id(node.swarm_id, reserved)
        if node.type == CONTROLLER_TYPE and swarm is not None:
            # Last controller seen for a swarm owns the group.
            controllers[swarm] = node

    groups: dict[str, SwarmGroup] = {}
    for node in data.nodes:
        swarm = normalize_swarm_id(node.swarm_id, reserved)
        if swarm is not None and controllers.get(swarm) is node:
            groups[swarm] = SwarmGroup(swarm_id=swarm, controller=node)

    standalone: list[GraphNode] = []
    owner: dict[str, str] = {}
    for node in data.nodes:
        swarm = normalize_swarm_id(node.swarm_id, reserved)
        group = groups.get(swarm) if swarm is not None else None
        if group is None:
            standalone.append(node)
            continue
        owner[node.id] = group.group_id
        if node is not group.controller:
            group.members.append(node)

    for group in groups.values():
        inside = group.member_ids()
        seen: set[tuple[str, str, str]] = set()
        for edge in data.edges:
            if edge.source not in inside or edge.target not in inside or edge.key in seen:
                continue
            seen.add(edge.key)
            group.edges.append(
                SwarmGroupEdgeData(
                    source=edge.source,
                    target=edge.target,
                    queue=edge.queue,
                    depth=queue_depths.get(edge.queue, 0),
                )
            )

    return SwarmGrouping(standalone=standalone, groups=list(groups.values()), owner=owner)


def collapse_edges(edges: Iterable[RenderEdge], owner: Mapping[str, str]) -> list[RenderEdge]:
    """Redirect grouped endpoints to their group node.

    Edges that end up inside a single group are dropped; redirected edges
    that coincide on (source, target, label) collapse to the first one.
    """
    result: list[RenderEdge] = []
    added: set[tuple[str, str, str]] = set()
    for edge in edges:
        source = owner.get(edge.source, edge.source)
        target = owner.get(edge.target, edge.target)
        if source == target and edge.source in owner:
            continue
        key = (source, target, edge.label)
        if key in added:
            continue
        added.add(key)
        if (source, target) == (edge.source, edge.target):
            result.append(edge)
        else:
            result.append(replace(edge, id=f"{source}-{target}-{edge.label}", source=source, target=target))
    return result
