r"""Target speed profile along a closed racing line.

The friction-limited cornering speed at each sample is
:math:`v = \sqrt{\mu g r}` with the radius :math:`r = 1/|\kappa|` floored at
``min_radius``.  Speeds are clamped to ``[speed_floor, speed_ceiling]``,
optionally limited by longitudinal acceleration and braking through forward
and backward passes around the loop, and then smoothed heavily so that the
controller does not react to sample-to-sample steps.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Iterable, Tuple

import numpy as np
from scipy.ndimage import uniform_filter1d

logger = logging.getLogger(__name__)


@dataclass
class SpeedConfig:
    """Parameters of the speed profile.

    ``a_accel`` and ``a_brake`` are optional longitudinal limits in
    ``m/s^2``.  When both are ``None`` only the lateral friction limit
    applies.
    """

    friction: float = 1.1
    gravity: float = 9.81
    min_radius: float = 5.0
    speed_floor: float = 5.0
    speed_ceiling: float = 80.0
    smoothing_passes: int = 20
    smoothing_half_window: int = 3
    a_accel: float | None = None
    a_brake: float | None = None

    def validate(self) -> None:
        if self.speed_floor > self.speed_ceiling:
            raise ValueError("speed_floor must not exceed speed_ceiling")
        if self.min_radius <= 0:
            raise ValueError("min_radius must be positive")
        if self.friction <= 0 or self.gravity <= 0:
            raise ValueError("friction and gravity must be positive")


def corner_radius(curvature: Iterable[float], min_radius: float) -> np.ndarray:
    """Return ``max(min_radius, 1/|curvature|)``; NaN curvature counts as straight."""
    kappa = np.nan_to_num(np.asarray(curvature, dtype=float), nan=0.0)
    kappa_abs = np.abs(kappa)
    radius = np.full_like(kappa_abs, np.inf)
    mask = kappa_abs > 1e-12
    radius[mask] = 1.0 / kappa_abs[mask]
    return np.maximum(radius, min_radius)


def limit_acceleration(
    s: Iterable[float],
    v: Iterable[float],
    a_accel: float | None,
    a_brake: float | None,
    closed_loop: bool = True,
) -> np.ndarray:
    """Limit a speed profile by longitudinal acceleration and braking.

    Parameters
    ----------
    s:
        Cumulative arc length at each sample.  For a closed loop the final
        entry of ``s`` must be followed by a closing segment of length
        ``s[1] - s[0]``.
    v:
        Speed limit at each sample.
    a_accel, a_brake:
        Maximum acceleration and braking deceleration.  ``None`` disables the
        respective pass.
    closed_loop:
        If ``True`` the passes are run twice around the loop so that the
        limits propagate across the wrap seam.

    Returns
    -------
    numpy.ndarray
        Speed profile no greater than ``v`` at any sample.
    """
    s = np.asarray(s, dtype=float)
    v = np.asarray(v, dtype=float).copy()
    if s.shape != v.shape:
        raise ValueError("s and v must have the same shape")
    n = v.size
    if n < 2:
        return v

    ds = np.diff(s)
    if closed_loop:
        ds = np.append(ds, ds[0] if ds.size else 0.0)
    laps = 2 if closed_loop else 1
    count = n if closed_loop else n - 1

    if a_accel is not None:
        # Forward pass (acceleration)
        for _ in range(laps):
            for i in range(count):
                j = (i + 1) % n
                v_next = np.sqrt(v[i] ** 2 + 2.0 * a_accel * ds[i])
                if v_next < v[j]:
                    v[j] = v_next

    if a_brake is not None:
        # Backward pass (braking)
        for _ in range(laps):
            for i in range(count, 0, -1):
                j = i % n
                v_prev_allowed = np.sqrt(v[j] ** 2 + 2.0 * a_brake * ds[i - 1])
                if v_prev_allowed < v[i - 1]:
                    v[i - 1] = v_prev_allowed

    return v


def smooth_speed(v: np.ndarray, passes: int, half_window: int) -> np.ndarray:
    """Repeated circular moving average of a speed profile."""
    out = np.asarray(v, dtype=float).copy()
    w = min(int(half_window), max((out.size - 1) // 2, 0))
    if w == 0:
        return out
    for _ in range(passes):
        out = uniform_filter1d(out, size=2 * w + 1, mode="wrap")
    return out


def build_speed_profile(
    curvature: Iterable[float],
    config: SpeedConfig | None = None,
    s: Iterable[float] | None = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Compute the corner radius and target speed at each sample.

    Parameters
    ----------
    curvature:
        Signed path curvature at each sample of a closed line.
    config:
        Speed parameters, :class:`SpeedConfig` defaults if ``None``.
    s:
        Cumulative arc length, required only when longitudinal limits are
        configured.

    Returns
    -------
    Tuple[np.ndarray, np.ndarray]
        ``radius`` and ``target_speed`` arrays; every speed lies within
        ``[config.speed_floor, config.speed_ceiling]``.
    """
    if config is None:
        config = SpeedConfig()
    config.validate()

    radius = corner_radius(curvature, config.min_radius)
    v = np.sqrt(config.friction * config.gravity * radius)
    v = np.clip(v, config.speed_floor, config.speed_ceiling)

    if config.a_accel is not None or config.a_brake is not None:
        if s is None:
            raise ValueError("arc length s is required for longitudinal limits")
        v = limit_acceleration(s, v, config.a_accel, config.a_brake, closed_loop=True)

    v = smooth_speed(v, config.smoothing_passes, config.smoothing_half_window)
    v = np.clip(v, config.speed_floor, config.speed_ceiling)
    logger.debug(
        "speed profile %.1f-%.1f m/s over %d samples", float(v.min()), float(v.max()), v.size
    )
    return radius, v


def lap_time(segment_length: Iterable[float], speed: Iterable[float]) -> float:
    """Lap time of a closed line from per-segment lengths and sample speeds."""
    ds = np.asarray(segment_length, dtype=float)
    v = np.asarray(speed, dtype=float)
    v_avg = 0.5 * (v + np.roll(v, -1))
    return float(np.sum(ds / np.maximum(v_avg, 1e-9)))
