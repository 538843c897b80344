"""Closed-loop track geometry utilities.

This module provides the helpers that turn an arbitrary closed centreline
polyline into the evenly spaced sample grid used by the rest of the package:

``resample_closed_path``
    Interpolates a closed polyline on to a uniform arc-length grid.
``compute_frames``
    Computes unit tangents and continuous unit normals at each sample.
``load_centreline``
    Reads an ``x_m``/``y_m`` (and optional ``width_m``) CSV file.

All closed paths are *implicitly* closed: the first point is not repeated at
the end and index arithmetic wraps modulo the number of samples.  Use
:func:`close_loop` when an explicitly closed array is required, e.g. for
plotting.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Iterable

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

EPS = 1e-9


class TrackGeometryError(ValueError):
    """Raised when track input cannot describe a closed, drivable loop."""


@dataclass
class FrameField:
    """Per-sample tangent and normal vectors of a closed path.

    ``normal`` is the tangent rotated by +90 degrees so that it points to the
    driver's left.  ``seam_index`` is the index ``i`` for which the normals at
    ``i`` and ``i + 1`` (wrapping) still disagree after the continuity pass,
    or ``None`` when the field is continuous all the way round.
    """

    tangent: np.ndarray
    normal: np.ndarray
    seam_index: int | None = None


@dataclass
class Centreline:
    """Centreline nodes as read from disk with an optional per-node width."""

    points: np.ndarray
    width: np.ndarray | None = None


def as_points(points: Iterable) -> np.ndarray:
    """Return ``points`` as an ``(N, 2)`` float array.

    Accepts any sequence of ``(x, y)`` pairs or objects exposing ``x`` and
    ``y`` attributes.
    """
    if isinstance(points, np.ndarray):
        arr = points.astype(float, copy=True)
    else:
        items = list(points)
        if items and hasattr(items[0], "x") and hasattr(items[0], "y"):
            arr = np.array([[p.x, p.y] for p in items], dtype=float)
        else:
            arr = np.asarray(items, dtype=float)
    if arr.size == 0:
        return arr.reshape(0, 2)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise TrackGeometryError("points must have shape (N, 2)")
    if not np.all(np.isfinite(arr)):
        raise TrackGeometryError("points must be finite")
    return arr


def close_loop(points: np.ndarray) -> np.ndarray:
    """Append the first point to the end of ``points``."""
    pts = np.asarray(points, dtype=float)
    return np.vstack((pts, pts[:1]))


def _strip_duplicates(points: np.ndarray) -> np.ndarray:
    """Remove zero-length segments including an explicit closing duplicate."""
    nxt = np.roll(points, -1, axis=0)
    seg = np.hypot(*(nxt - points).T)
    keep = seg > EPS
    if not np.any(keep):
        return points[:1]
    return points[keep]


def segment_lengths(points: np.ndarray) -> np.ndarray:
    """Length of each segment ``i -> i + 1`` of a closed path, wrapping."""
    pts = np.asarray(points, dtype=float)
    return np.hypot(*(np.roll(pts, -1, axis=0) - pts).T)


def arc_length(points: np.ndarray) -> tuple[np.ndarray, float]:
    """Return cumulative arc length at each point and the closed loop length."""
    seg = segment_lengths(points)
    s = np.zeros(seg.size)
    s[1:] = np.cumsum(seg[:-1])
    return s, float(np.sum(seg))


def resample_closed_path(
    points: Iterable,
    n_samples: int | None = None,
    spacing: float | None = None,
) -> np.ndarray:
    """Resample a closed polyline to evenly spaced points by arc length.

    Parameters
    ----------
    points:
        Closed polyline with at least three distinct points.  The loop may be
        given explicitly closed (last point equal to the first) or implicitly.
    n_samples:
        Number of output points.  Takes precedence over ``spacing``.
    spacing:
        Desired distance between output points.  The actual spacing is
        ``perimeter / round(perimeter / spacing)`` so the loop closes exactly.

    Returns
    -------
    numpy.ndarray
        ``(n, 2)`` array of implicitly closed samples starting at the first
        input point and following the input winding.
    """
    pts = _strip_duplicates(as_points(points))
    if pts.shape[0] < 3:
        raise TrackGeometryError("closed path requires at least three distinct points")

    closed = close_loop(pts)
    seg = np.hypot(*np.diff(closed, axis=0).T)
    s_nodes = np.concatenate(([0.0], np.cumsum(seg)))
    total_length = s_nodes[-1]
    if total_length <= EPS:
        raise TrackGeometryError("closed path has zero length")

    if n_samples is None:
        if spacing is None:
            n_samples = pts.shape[0]
        else:
            if spacing <= 0:
                raise ValueError("spacing must be positive")
            n_samples = int(round(total_length / spacing))
    n_samples = max(int(n_samples), 3)

    s_uniform = np.arange(n_samples) * (total_length / n_samples)
    x = np.interp(s_uniform, s_nodes, closed[:, 0])
    y = np.interp(s_uniform, s_nodes, closed[:, 1])
    logger.debug(
        "resampled %d nodes to %d samples (perimeter %.1f m)",
        pts.shape[0],
        n_samples,
        total_length,
    )
    return np.column_stack((x, y))


def compute_frames(points: np.ndarray) -> FrameField:
    """Compute unit tangents and continuous unit normals for a closed path.

    Tangents are central differences ``p[i + 1] - p[i - 1]`` with wrapping.
    The normal at each sample is the tangent rotated by +90 degrees; walking
    the samples in order, any normal whose dot product with its predecessor
    is negative is negated.

    Known limitation: a loop whose normals turn through an odd number of half
    turns can keep a single discontinuity at the wrap seam.  It is reported
    through :attr:`FrameField.seam_index` rather than guessed away.
    """
    pts = np.asarray(points, dtype=float)
    n = pts.shape[0]
    if n < 3:
        raise TrackGeometryError("closed path requires at least three points")

    diff = np.roll(pts, -1, axis=0) - np.roll(pts, 1, axis=0)
    length = np.hypot(diff[:, 0], diff[:, 1])
    tangent = diff / np.maximum(length, EPS)[:, None]
    normal, seam_index = align_normals(np.column_stack((-tangent[:, 1], tangent[:, 0])))
    return FrameField(tangent, normal, seam_index)


def align_normals(normal: np.ndarray) -> tuple[np.ndarray, int | None]:
    """Negate normals that point against their predecessor.

    Returns the aligned copy and the index of the last sample if its normal
    still opposes the first one across the wrap seam, else ``None``.
    """
    normal = np.array(normal, dtype=float)
    n = normal.shape[0]
    for i in range(1, n):
        if np.dot(normal[i], normal[i - 1]) < 0.0:
            normal[i] = -normal[i]

    seam_index = None
    if n > 1 and np.dot(normal[-1], normal[0]) < 0.0:
        seam_index = n - 1
        logger.warning("normal field flips at the wrap seam (index %d)", seam_index)
    return normal, seam_index


def track_edges(
    centre: np.ndarray, normal: np.ndarray, half_width: float | np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    """Return ``(left_edge, right_edge)`` coordinates for a centreline."""
    hw = np.broadcast_to(np.asarray(half_width, dtype=float), (centre.shape[0],))
    left = centre + hw[:, None] * normal
    right = centre - hw[:, None] * normal
    return left, right


def centreline_from_frame(df: pd.DataFrame) -> Centreline:
    """Build a :class:`Centreline` from a table of nodes.

    The table must contain ``x_m`` and ``y_m`` columns.  An optional
    ``width_m`` column gives the road width at each node.
    """
    required = {"x_m", "y_m"}
    missing = required.difference(df.columns)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ValueError(f"track file missing required columns: {missing_str}")

    points = as_points(df[["x_m", "y_m"]].to_numpy(float))
    width = df["width_m"].to_numpy(float) if "width_m" in df.columns else None
    return Centreline(points, width)


def load_centreline(file_path: str) -> Centreline:
    """Load centreline nodes from a CSV file, see :func:`centreline_from_frame`."""
    return centreline_from_frame(pd.read_csv(file_path))
