"""Collaborator interfaces at the boundary of the layout core."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class Position:
    x: float
    y: float


class TopologySource(Protocol):
    """Push streams delivered by the control-plane transport."""

    def subscribe_topology(self, fn: Callable[[Any], None]) -> Unsubscribe:
        """Call ``fn`` with every raw topology payload until unsubscribed."""
        ...

    def subscribe_components(self, fn: Callable[[Any], None]) -> Unsubscribe:
        """Call ``fn`` with every raw component list until unsubscribed."""
        ...


class PositionStore(Protocol):
    """External store of user-chosen node positions."""

    def get_node_position(self, node_id: str) -> Position | None: ...

    def update_node_position(self, node_id: str, x: float, y: float) -> None: ...


class Viewport(Protocol):
    """The rendering surface's camera."""

    def fit_view(self, padding: float) -> None: ...

    def get_zoom(self) -> float | None: ...

    def zoom_to(self, zoom: float) -> None: ...


class InMemoryPositionStore:
    """Dict-backed ``PositionStore``; one instance per view."""

    def __init__(self, positions: dict[str, Position] | None = None) -> None:
        self._positions: dict[str, Position] = dict(positions or {})

    def get_node_position(self, node_id: str) -> Position | None:
        return self._positions.get(node_id)

    def update_node_position(self, node_id: str, x: float, y: float) -> None:
        self._positions[node_id] = Position(x, y)
