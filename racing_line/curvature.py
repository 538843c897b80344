"""Signed discrete curvature of closed paths.

Curvature at sample ``i`` is the turning angle between the incoming segment
``p[i - 1] -> p[i]`` and the outgoing segment ``p[i] -> p[i + 1]`` divided by
the mean length of the two segments.  Positive values are left-hand
(counter-clockwise) turns and negative values right-hand turns.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.ndimage import uniform_filter1d

from .geometry import EPS


@dataclass
class CurvatureProfile:
    """Raw and moving-average smoothed curvature at each sample."""

    raw: np.ndarray
    smoothed: np.ndarray
    half_window: int


def signed_curvature(points: np.ndarray) -> np.ndarray:
    """Return the signed curvature at each sample of a closed path."""
    pts = np.asarray(points, dtype=float)
    v1 = pts - np.roll(pts, 1, axis=0)
    v2 = np.roll(pts, -1, axis=0) - pts
    len1 = np.hypot(v1[:, 0], v1[:, 1])
    len2 = np.hypot(v2[:, 0], v2[:, 1])

    cross = v1[:, 0] * v2[:, 1] - v1[:, 1] * v2[:, 0]
    dot = v1[:, 0] * v2[:, 0] + v1[:, 1] * v2[:, 1]
    angle = np.arctan2(cross, dot)

    avg_len = 0.5 * (len1 + len2)
    kappa = angle / np.maximum(avg_len, EPS)
    # Coincident neighbours carry no direction information.
    kappa[(len1 <= EPS) | (len2 <= EPS)] = 0.0
    return kappa


def smooth_curvature(kappa: np.ndarray, half_window: int) -> np.ndarray:
    """Circular moving average over ``2 * half_window + 1`` samples."""
    values = np.asarray(kappa, dtype=float)
    if half_window < 0:
        raise ValueError("half_window must be non-negative")
    n = values.size
    w = min(int(half_window), max((n - 1) // 2, 0))
    if w == 0 or n == 0:
        return values.copy()
    return uniform_filter1d(values, size=2 * w + 1, mode="wrap")


def max_adjacent_jump(values: np.ndarray) -> float:
    """Largest absolute difference between cyclically adjacent samples."""
    v = np.asarray(values, dtype=float)
    if v.size < 2:
        return 0.0
    return float(np.max(np.abs(np.roll(v, -1) - v)))


def analyse_curvature(points: np.ndarray, half_window: int = 5) -> CurvatureProfile:
    """Compute raw and smoothed signed curvature for a closed path."""
    raw = signed_curvature(points)
    return CurvatureProfile(raw, smooth_curvature(raw, half_window), half_window)
