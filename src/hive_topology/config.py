"""Layout configuration."""

from __future__ import annotations

from dataclasses import dataclass, field

from hive_topology.graph import RESERVED_SCOPES

# Pixel geometry for fallback coordinates.
H_SPACING: int = 280  # between columns (levels)
V_SPACING: int = 220  # between rows within a column

DEFAULT_FILL = "#60a5fa"
DISABLED_FILL = "#64748b"
ERROR_FILL = "#ef4444"

FIT_PADDING: float = 0.2
MIN_FIT_ZOOM: float = 0.9


@dataclass(frozen=True)
class LayoutConfig:
    """Per-session layout settings. Defaults mirror the module constants."""

    h_spacing: int = H_SPACING
    v_spacing: int = V_SPACING
    reserved_scopes: tuple[str, ...] = RESERVED_SCOPES
    default_fill: str = DEFAULT_FILL
    disabled_fill: str = DISABLED_FILL
    error_fill: str = ERROR_FILL
    type_fills: dict[str, str] = field(default_factory=dict, hash=False)
    fit_padding: float = FIT_PADDING
    min_fit_zoom: float = MIN_FIT_ZOOM
