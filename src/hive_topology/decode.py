"""Wire decoding — turns leniently-shaped control-plane payloads into the
validated Graph IR.

The transport delivers whatever the control plane emitted: role names under
``role``, ``name`` or ``service``, numbers as strings, coordinates that are
NaN. Pydantic models absorb that variety here so that the layout pipeline
only ever sees ``GraphNode``/``GraphEdge``/``Component`` instances.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from hive_topology.graph import Component, GraphEdge, GraphNode, QueueInfo, Topology

logger = logging.getLogger(__name__)


class DecodeError(ValueError):
    """The payload envelope itself is unusable (not a topology mapping)."""


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _finite_or_none(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = float(text)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def _first_text(data: Mapping[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class WireNode(_WireModel):
    id: str
    type: str | None = None
    swarm_id: str | None = Field(default=None, validation_alias=AliasChoices("swarmId", "swarm_id"))
    enabled: bool | None = None
    x: float | None = None
    y: float | None = None

    @model_validator(mode="before")
    @classmethod
    def _resolve_type(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            data = dict(data)
            data["type"] = _first_text(data, ("type", "role", "name", "service"))
        return data

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("node id is blank")
        return value

    @field_validator("swarm_id", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("enabled", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> bool | None:
        return value if isinstance(value, bool) else None

    @field_validator("x", "y", mode="before")
    @classmethod
    def _coordinate(cls, value: Any) -> float | None:
        return _finite_or_none(value)

    def to_node(self) -> GraphNode:
        return GraphNode(
            id=self.id,
            type=self.type or "",
            swarm_id=self.swarm_id,
            enabled=self.enabled,
            x=self.x,
            y=self.y,
        )


class WireEdge(_WireModel):
    source: str = Field(validation_alias=AliasChoices("from", "source"))
    target: str = Field(validation_alias=AliasChoices("to", "target"))
    queue: str = ""

    @field_validator("queue", mode="before")
    @classmethod
    def _queue(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) else ""

    def to_edge(self) -> GraphEdge:
        return GraphEdge(source=self.source, target=self.target, queue=self.queue)


class WireQueue(_WireModel):
    name: str
    depth: float | None = None
    role: str | None = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("queue name is blank")
        return value

    @field_validator("depth", mode="before")
    @classmethod
    def _depth(cls, value: Any) -> float | None:
        return _finite_or_none(value)


class WireComponent(_WireModel):
    id: str
    role: str | None = None
    name: str | None = None
    swarm_id: str | None = Field(default=None, validation_alias=AliasChoices("swarmId", "swarm_id"))
    status: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    queues: list[Any] = Field(default_factory=list)
    last_error_at: str | None = Field(default=None, validation_alias=AliasChoices("lastErrorAt", "last_error_at"))

    @model_validator(mode="before")
    @classmethod
    def _resolve_role(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            data = dict(data)
            data["role"] = _first_text(data, ("role", "name", "service"))
        return data

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("component id is blank")
        return value

    @field_validator("role", "name", "swarm_id", "status", "last_error_at", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        if value is not None and not isinstance(value, str):
            return str(value)
        return _blank_to_none(value)

    @field_validator("config", mode="before")
    @classmethod
    def _config(cls, value: Any) -> dict[str, Any]:
        return dict(value) if isinstance(value, Mapping) else {}

    @field_validator("queues", mode="before")
    @classmethod
    def _queues(cls, value: Any) -> list[Any]:
        return list(value) if isinstance(value, (list, tuple)) else []

    def to_component(self) -> Component:
        queues: list[QueueInfo] = []
        for raw in self.queues:
            try:
                q = WireQueue.model_validate(raw)
            except ValidationError:
                logger.debug("dropping malformed queue record on component %s: %r", self.id, raw)
                continue
            queues.append(QueueInfo(name=q.name, depth=q.depth, role=q.role))
        return Component(
            id=self.id,
            role=self.role,
            name=self.name,
            swarm_id=self.swarm_id,
            status=self.status,
            config=self.config,
            queues=tuple(queues),
            last_error_at=self.last_error_at,
        )


class _LenientSection(_WireModel):
    """Nested config section: non-mapping input decodes as empty."""

    @model_validator(mode="before")
    @classmethod
    def _mapping_only(cls, data: Any) -> Any:
        return dict(data) if isinstance(data, Mapping) else {}


class WireRateAdjust(_LenientSection):
    min_rate: float | None = Field(default=None, validation_alias="minRatePerSec")
    max_rate: float | None = Field(default=None, validation_alias="maxRatePerSec")

    @field_validator("min_rate", "max_rate", mode="before")
    @classmethod
    def _number(cls, value: Any) -> float | None:
        return _finite_or_none(value)


class WireBackpressure(_LenientSection):
    queue_alias: str | None = Field(default=None, validation_alias="queueAlias")
    high_depth: float | None = Field(default=None, validation_alias="highDepth")
    recovery_depth: float | None = Field(default=None, validation_alias="recoveryDepth")

    @field_validator("queue_alias", mode="before")
    @classmethod
    def _alias(cls, value: Any) -> str | None:
        return _blank_to_none(value) if isinstance(value, str) else None

    @field_validator("high_depth", "recovery_depth", mode="before")
    @classmethod
    def _number(cls, value: Any) -> float | None:
        return _finite_or_none(value)


class WireBufferGuard(_LenientSection):
    queue_alias: str | None = Field(default=None, validation_alias="queueAlias")
    target_depth: float | None = Field(default=None, validation_alias="targetDepth")
    min_depth: float | None = Field(default=None, validation_alias="minDepth")
    max_depth: float | None = Field(default=None, validation_alias="maxDepth")
    adjust: WireRateAdjust | None = None
    backpressure: WireBackpressure | None = None

    @field_validator("queue_alias", mode="before")
    @classmethod
    def _alias(cls, value: Any) -> str | None:
        return _blank_to_none(value) if isinstance(value, str) else None

    @field_validator("target_depth", "min_depth", "max_depth", mode="before")
    @classmethod
    def _number(cls, value: Any) -> float | None:
        return _finite_or_none(value)


def decode_buffer_guard(config: Mapping[str, Any] | None) -> WireBufferGuard | None:
    """Extract ``trafficPolicy.bufferGuard`` from a controller config.

    Returns None when either level is missing or not a mapping.
    """
    if not isinstance(config, Mapping):
        return None
    policy = config.get("trafficPolicy")
    if not isinstance(policy, Mapping):
        return None
    guard = policy.get("bufferGuard")
    if not isinstance(guard, Mapping):
        return None
    return WireBufferGuard.model_validate(guard)


# ─── Public decoders ──────────────────────────────────────────────────────────


def decode_topology(payload: Any) -> Topology:
    """Decode a topology push into a ``Topology``.

    Raises ``DecodeError`` when the payload is not a mapping of node/edge
    sequences. Individual malformed records are dropped.
    """
    if not isinstance(payload, Mapping):
        raise DecodeError(f"topology payload must be a mapping, got {type(payload).__name__}")
    raw_nodes = payload.get("nodes", [])
    raw_edges = payload.get("edges", [])
    if not isinstance(raw_nodes, (list, tuple)) or not isinstance(raw_edges, (list, tuple)):
        raise DecodeError("topology payload needs 'nodes' and 'edges' sequences")

    nodes: list[GraphNode] = []
    seen: set[str] = set()
    for raw in raw_nodes:
        try:
            node = WireNode.model_validate(raw).to_node()
        except ValidationError:
            logger.debug("rejecting malformed node record: %r", raw)
            continue
        if node.id in seen:
            logger.debug("dropping duplicate node id %s", node.id)
            continue
        seen.add(node.id)
        nodes.append(node)

    edges: list[GraphEdge] = []
    for raw in raw_edges:
        try:
            edges.append(WireEdge.model_validate(raw).to_edge())
        except ValidationError:
            logger.debug("rejecting malformed edge record: %r", raw)

    return Topology(nodes=tuple(nodes), edges=tuple(edges))


def decode_component(raw: Any) -> Component | None:
    """Decode one component record, or None if it cannot be identified."""
    try:
        return WireComponent.model_validate(raw).to_component()
    except ValidationError:
        logger.debug("rejecting malformed component record: %r", raw)
        return None


def decode_components(raw: Iterable[Any] | None) -> list[Component]:
    if not isinstance(raw, (list, tuple)):
        return []
    decoded = (decode_component(item) for item in raw)
    return [c for c in decoded if c is not None]
