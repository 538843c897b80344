"""Racing line construction pipeline.

``build_racing_line`` runs the full track-load pipeline::

    centreline -> resample -> frames -> curvature -> corners (pro line)
               -> offset optimisation -> path curvature -> target speed

and returns an immutable :class:`RacingLine`.  All stages are pure functions
over their own arrays, so lines for different tracks may be built in
parallel.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace, is_dataclass
import logging
from typing import Any, Dict, Iterable, List, Mapping

import numpy as np
import pandas as pd

from .corners import Corner, SegmenterConfig, detect_corners
from .curvature import analyse_curvature
from .geometry import (
    TrackGeometryError,
    arc_length,
    as_points,
    compute_frames,
    resample_closed_path,
    segment_lengths,
)
from .path_optim import OptimiserConfig, RacingLineError, optimise_offsets
from .speed_solver import SpeedConfig, build_speed_profile, lap_time

logger = logging.getLogger(__name__)

__all__ = [
    "LineConfig",
    "RacingLine",
    "RacingLineError",
    "RacingLinePoint",
    "TrackGeometryError",
    "build_racing_line",
    "build_racing_line_with_fallback",
    "centreline_line",
    "empty_line",
    "line_from_positions",
    "rederive_target_speed",
]

FRAME_COLUMNS = [
    "s_m",
    "x_m",
    "y_m",
    "offset_m",
    "tangent_x",
    "tangent_y",
    "normal_x",
    "normal_y",
    "curvature_1pm",
    "radius_m",
    "target_speed_mps",
]


@dataclass(frozen=True)
class RacingLinePoint:
    """A single sample of a racing line."""

    x: float
    y: float
    offset: float
    tangent: tuple[float, float]
    normal: tuple[float, float]
    curvature: float
    radius: float
    target_speed: float
    s: float


@dataclass
class LineConfig:
    """Configuration of the whole racing-line pipeline.

    ``spacing`` is the resampling distance in metres unless ``n_samples`` is
    given.  ``pro_line`` enables corner detection and entry/apex/exit
    shaping on top of plain curvature minimisation.
    """

    spacing: float = 2.0
    n_samples: int | None = None
    curvature_window: int = 5
    pro_line: bool = False
    corners: SegmenterConfig = field(default_factory=SegmenterConfig)
    optimiser: OptimiserConfig = field(default_factory=OptimiserConfig)
    speed: SpeedConfig = field(default_factory=SpeedConfig)

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "LineConfig":
        """Build a configuration from flat ``key -> value`` parameters.

        Keys address top-level fields directly (``spacing``) and nested
        sections with a dotted prefix (``optimiser.alpha``,
        ``speed.friction``, ``corners.merge_gap``).  Unknown keys raise
        ``KeyError``.
        """
        config = cls()
        nested: Dict[str, Dict[str, Any]] = {}
        top: Dict[str, Any] = {}
        for key, value in params.items():
            section, _, name = key.partition(".")
            if name:
                nested.setdefault(section, {})[name] = value
            else:
                top[section] = value

        for section, values in nested.items():
            current = getattr(config, section, None)
            if not is_dataclass(current):
                raise KeyError(f"unknown configuration section '{section}'")
            top[section] = replace(current, **_coerce(current, values))
        return replace(config, **_coerce(config, top))


def _coerce(target: Any, values: Mapping[str, Any]) -> Dict[str, Any]:
    known = {f.name for f in fields(target)}
    out: Dict[str, Any] = {}
    for name, value in values.items():
        if name not in known:
            raise KeyError(f"unknown configuration key '{name}'")
        default = getattr(target, name)
        if isinstance(default, bool):
            out[name] = bool(value)
        elif isinstance(default, int) and not isinstance(value, bool):
            out[name] = int(value)
        else:
            out[name] = value
    return out


@dataclass(frozen=True)
class RacingLine:
    """A finished racing line sampled at ``n`` points around a closed loop.

    All per-sample arrays have length ``n``.  ``s`` is the cumulative arc
    length starting at zero and ``length`` the closed loop length.
    """

    x: np.ndarray
    y: np.ndarray
    offset: np.ndarray
    tangent: np.ndarray
    normal: np.ndarray
    curvature: np.ndarray
    radius: np.ndarray
    target_speed: np.ndarray
    s: np.ndarray
    length: float
    centreline: np.ndarray | None = None
    corners: List[Corner] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return int(self.x.size)

    @property
    def positions(self) -> np.ndarray:
        return np.column_stack((self.x, self.y))

    def point(self, index: int) -> RacingLinePoint:
        i = index % len(self)
        return RacingLinePoint(
            float(self.x[i]),
            float(self.y[i]),
            float(self.offset[i]),
            (float(self.tangent[i, 0]), float(self.tangent[i, 1])),
            (float(self.normal[i, 0]), float(self.normal[i, 1])),
            float(self.curvature[i]),
            float(self.radius[i]),
            float(self.target_speed[i]),
            float(self.s[i]),
        )

    def points(self) -> List[RacingLinePoint]:
        return [self.point(i) for i in range(len(self))]

    def lap_time(self) -> float:
        """Lap time if every sample were driven at its target speed."""
        return lap_time(segment_lengths(self.positions), self.target_speed)

    def to_frame(self) -> pd.DataFrame:
        """Return the line as a flat table of per-sample records."""
        return pd.DataFrame(
            {
                "s_m": self.s,
                "x_m": self.x,
                "y_m": self.y,
                "offset_m": self.offset,
                "tangent_x": self.tangent[:, 0],
                "tangent_y": self.tangent[:, 1],
                "normal_x": self.normal[:, 0],
                "normal_y": self.normal[:, 1],
                "curvature_1pm": self.curvature,
                "radius_m": self.radius,
                "target_speed_mps": self.target_speed,
            }
        )


def empty_line() -> RacingLine:
    """A line with no samples, accepted by the controller as 'no line'."""
    empty = np.zeros(0)
    return RacingLine(
        empty, empty, empty, np.zeros((0, 2)), np.zeros((0, 2)), empty, empty, empty, empty, 0.0
    )


def _assemble(
    positions: np.ndarray,
    offset: np.ndarray,
    speed_config: SpeedConfig,
    curvature_window: int,
    centreline: np.ndarray | None = None,
    corners: List[Corner] | None = None,
    meta: Dict[str, Any] | None = None,
) -> RacingLine:
    frames = compute_frames(positions)
    profile = analyse_curvature(positions, curvature_window)
    s, total = arc_length(positions)
    radius, speed = build_speed_profile(profile.smoothed, speed_config, s)
    return RacingLine(
        x=positions[:, 0].copy(),
        y=positions[:, 1].copy(),
        offset=np.asarray(offset, dtype=float),
        tangent=frames.tangent,
        normal=frames.normal,
        curvature=profile.smoothed,
        radius=radius,
        target_speed=speed,
        s=s,
        length=total,
        centreline=centreline,
        corners=list(corners or []),
        meta=dict(meta or {}),
    )


def _prepare(
    centreline: Iterable, road_width: float | Iterable[float], config: LineConfig
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    pts = as_points(centreline)
    width = np.asarray(road_width, dtype=float)
    if width.ndim == 0:
        if not np.isfinite(width) or width <= 0:
            raise TrackGeometryError("road width must be positive")
    elif width.shape[0] != pts.shape[0]:
        raise TrackGeometryError("per-node road width must match the centreline length")
    elif not np.all(width > 0):
        raise TrackGeometryError("road width must be positive")

    if config.n_samples is not None:
        centre = resample_closed_path(pts, n_samples=config.n_samples)
    else:
        centre = resample_closed_path(pts, spacing=config.spacing)

    if width.ndim == 0:
        half_width = np.full(centre.shape[0], 0.5 * float(width))
    else:
        # Carry per-node widths on to the resampled grid by arc length.
        s_nodes, total_nodes = arc_length(pts)
        s_new, total_new = arc_length(centre)
        xp = np.append(s_nodes, total_nodes)
        fp = np.append(width, width[0])
        half_width = 0.5 * np.interp(s_new * total_nodes / total_new, xp, fp)
    return pts, centre, half_width


def build_racing_line(
    centreline: Iterable,
    road_width: float | Iterable[float],
    config: LineConfig | None = None,
) -> RacingLine:
    """Build a racing line around a closed centreline.

    Parameters
    ----------
    centreline:
        Closed centreline polyline, at least three distinct points.
    road_width:
        Road width in metres, scalar or one value per centreline node.
    config:
        Pipeline configuration, :class:`LineConfig` defaults if ``None``.

    Raises
    ------
    TrackGeometryError
        For invalid track input.
    RacingLineError
        When the optimiser fails to produce a finite line.
    """
    if config is None:
        config = LineConfig()
    _, centre, half_width = _prepare(centreline, road_width, config)

    frames = compute_frames(centre)
    corners: List[Corner] = []
    if config.pro_line:
        profile = analyse_curvature(centre, config.curvature_window)
        corners = detect_corners(profile.smoothed, config.corners)

    solution = optimise_offsets(
        centre, frames.normal, half_width, config.optimiser, corners=corners or None
    )
    positions = centre + frames.normal * solution.offset[:, None]

    meta = {
        "algorithm": "pro_line" if config.pro_line else "min_curvature",
        "fallback": False,
        "iterations": solution.iterations,
        "energy": solution.energy,
        "max_abs_offset": solution.max_abs_offset,
        "width_usage": solution.width_usage,
        "seam_index": frames.seam_index,
        "half_width": half_width,
    }
    line = _assemble(
        positions,
        solution.offset,
        config.speed,
        config.curvature_window,
        centreline=centre,
        corners=corners,
        meta=meta,
    )
    logger.info(
        "built %s line: %d samples, %d corners, length %.1f m",
        meta["algorithm"],
        len(line),
        len(corners),
        line.length,
    )
    return line


def centreline_line(
    centreline: Iterable,
    road_width: float | Iterable[float],
    config: LineConfig | None = None,
    reason: str | None = None,
) -> RacingLine:
    """Return a zero-offset line that follows the resampled centreline."""
    if config is None:
        config = LineConfig()
    _, centre, half_width = _prepare(centreline, road_width, config)
    meta = {
        "algorithm": "centreline",
        "fallback": True,
        "reason": reason,
        "half_width": half_width,
    }
    return _assemble(
        centre, np.zeros(centre.shape[0]), config.speed, config.curvature_window,
        centreline=centre, meta=meta,
    )


def build_racing_line_with_fallback(
    centreline: Iterable,
    road_width: float | Iterable[float],
    config: LineConfig | None = None,
) -> RacingLine:
    """Build a racing line, falling back to the centreline if optimisation fails.

    Invalid input still raises :class:`TrackGeometryError`; only optimiser
    failures are replaced by the explicit centreline fallback, which is
    flagged with ``meta["fallback"] = True``.
    """
    try:
        return build_racing_line(centreline, road_width, config)
    except RacingLineError as exc:
        logger.warning("racing line construction failed (%s); using centreline", exc)
        return centreline_line(centreline, road_width, config, reason=str(exc))


def line_from_positions(
    positions: Iterable,
    speed_config: SpeedConfig | None = None,
    offset: Iterable[float] | None = None,
    curvature_window: int = 5,
    meta: Dict[str, Any] | None = None,
) -> RacingLine:
    """Rebuild a line from raw positions, recomputing curvature and speeds."""
    pts = as_points(positions)
    if pts.shape[0] < 3:
        raise TrackGeometryError("racing line requires at least three points")
    if speed_config is None:
        speed_config = SpeedConfig()
    e = np.zeros(pts.shape[0]) if offset is None else np.asarray(offset, dtype=float)
    return _assemble(pts, e, speed_config, curvature_window, meta=meta)


def rederive_target_speed(
    line: RacingLine, speed_config: SpeedConfig | None = None, curvature_window: int = 5
) -> RacingLine:
    """Return ``line`` with curvature and target speed recomputed from positions.

    Stored curvature and speed values are ignored; they may be stale with
    respect to the current physical limits.
    """
    if len(line) == 0:
        return line
    rebuilt = line_from_positions(
        line.positions, speed_config, line.offset, curvature_window, meta=line.meta
    )
    return replace(
        line,
        curvature=rebuilt.curvature,
        radius=rebuilt.radius,
        target_speed=rebuilt.target_speed,
        tangent=rebuilt.tangent,
        normal=rebuilt.normal,
        s=rebuilt.s,
        length=rebuilt.length,
    )
