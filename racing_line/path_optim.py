"""Elastic-band optimisation of a racing line.

The racing line is described by a lateral offset ``e[i]`` from each resampled
centreline point along its normal, ``p[i] = c[i] + n[i] * e[i]``.  Starting
from the centreline the offsets are relaxed iteratively to reduce the bending
of the path, regularised against neighbour-to-neighbour jitter, optionally
pulled towards corner entry/apex/exit targets and clamped to the usable
corridor after every update.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable, Iterable, Sequence

import numpy as np
from scipy.ndimage import uniform_filter1d

from .corners import Corner
from .geometry import TrackGeometryError

logger = logging.getLogger(__name__)


class RacingLineError(RuntimeError):
    """Raised when a racing line cannot be constructed from valid input."""


@dataclass
class OptimiserConfig:
    """Parameters of the elastic-band solver.

    ``alpha`` scales the push against local bending and ``beta`` the
    Laplacian regulariser on the offsets; keep ``alpha + beta`` below ``0.5``
    for a stable explicit update.  ``bend_window`` is the half window (in
    samples) of the moving average subtracted from the normal component of
    the bending vector; a path of constant curvature is then already in
    equilibrium.  Set it to ``0`` to push against the raw second difference.
    """

    iterations: int = 400
    alpha: float = 0.35
    beta: float = 0.08
    margin: float = 0.5
    bend_window: int = 15
    tol: float | None = 1e-6
    smoothing_passes: int = 3
    smoothing_strength: float = 0.2
    shaping_weight: float = 0.3
    apex_weight: float = 0.5
    entry_exit_weight: float = 0.3
    shaping_falloff: float = 10.0
    log_every: int = 50


@dataclass
class OffsetSolution:
    """Result of :func:`optimise_offsets`."""

    offset: np.ndarray
    iterations: int
    energy: float
    max_abs_offset: float
    width_usage: float


def corridor_bounds(
    half_width: float | Sequence[float], margin: float, n: int
) -> np.ndarray:
    """Return the usable half width ``half_width - margin`` at each sample."""
    hw = np.broadcast_to(np.asarray(half_width, dtype=float), (n,)).copy()
    usable = hw - margin
    if np.any(usable <= 0.0):
        raise TrackGeometryError("margin leaves no usable corridor width")
    return usable


def _second_difference(points: np.ndarray) -> np.ndarray:
    return np.roll(points, 1, axis=0) - 2.0 * points + np.roll(points, -1, axis=0)


def _laplacian(values: np.ndarray) -> np.ndarray:
    return np.roll(values, 1) - 2.0 * values + np.roll(values, -1)


def _cyclic_distance(n: int, index: int) -> np.ndarray:
    d = np.abs(np.arange(n) - index)
    return np.minimum(d, n - d)


def shaping_targets(
    corners: Iterable[Corner], usable: np.ndarray, config: OptimiserConfig
) -> list[tuple[int, float, float]]:
    """Return ``(index, target_offset, weight)`` triples for corner shaping.

    Apexes pull toward ``inside_sign * usable``; entries and exits toward the
    opposite edge.
    """
    apex_w = config.shaping_weight * config.apex_weight
    edge_w = config.shaping_weight * config.entry_exit_weight
    targets: list[tuple[int, float, float]] = []
    for corner in corners:
        outside = -corner.inside_sign
        targets.append((corner.entry, outside * usable[corner.entry], edge_w))
        targets.append((corner.apex, corner.inside_sign * usable[corner.apex], apex_w))
        targets.append((corner.exit, outside * usable[corner.exit], edge_w))
    return targets


def _shaping_pull(
    offsets: np.ndarray, targets: list[tuple[int, float, float]], falloff: float
) -> np.ndarray:
    n = offsets.size
    pull = np.zeros(n)
    for index, target, weight in targets:
        d = _cyclic_distance(n, index)
        mask = d < falloff
        w = weight * np.exp(-(d[mask] ** 2) / (2.0 * falloff**2))
        pull[mask] += w * (target - offsets[mask])
    return pull


def smooth_offsets(
    offsets: np.ndarray, usable: np.ndarray, passes: int, strength: float
) -> np.ndarray:
    """Neighbour-average smoothing of the offsets, re-clamped after each pass."""
    e = np.asarray(offsets, dtype=float).copy()
    for _ in range(passes):
        avg = 0.5 * (np.roll(e, 1) + np.roll(e, -1))
        e = np.clip(e + (avg - e) * strength, -usable, usable)
    return e


def optimise_offsets(
    centreline: np.ndarray,
    normals: np.ndarray,
    half_width: float | Sequence[float],
    config: OptimiserConfig | None = None,
    corners: Sequence[Corner] | None = None,
    callback: Callable[[int, np.ndarray], None] | None = None,
) -> OffsetSolution:
    """Optimise lateral offsets for a minimum-curvature racing line.

    Parameters
    ----------
    centreline, normals:
        ``(N, 2)`` arrays of resampled centreline points and their unit
        normals.
    half_width:
        Half the road width, scalar or per sample.
    config:
        Solver parameters, :class:`OptimiserConfig` defaults if ``None``.
    corners:
        Optional corners with entry/apex/exit indices.  When supplied the
        offsets are additionally pulled toward the outside at entry and exit
        and toward the inside at the apex.
    callback:
        Called as ``callback(iteration, offsets)`` with the clamped offsets
        after every iteration.

    Returns
    -------
    OffsetSolution
        Final smoothed offsets with iteration count and diagnostics.
    """
    if config is None:
        config = OptimiserConfig()
    if config.iterations < 0:
        raise ValueError("iterations must be non-negative")

    c = np.asarray(centreline, dtype=float)
    nrm = np.asarray(normals, dtype=float)
    n = c.shape[0]
    if nrm.shape != c.shape:
        raise ValueError("centreline and normals must have the same shape")

    usable = corridor_bounds(half_width, config.margin, n)
    window = min(int(config.bend_window), max((n - 1) // 2, 0))
    targets = shaping_targets(corners, usable, config) if corners else []

    e = np.zeros(n)
    energy = 0.0
    iterations = 0
    for it in range(config.iterations):
        p = c + nrm * e[:, None]
        d2 = _second_difference(p)
        energy = float(np.sum(d2**2))

        # Normal component of the bend; constant on a circle, so the
        # high-pass leaves no push there.
        bend = np.einsum("ij,ij->i", d2, nrm)
        if window > 0:
            bend = bend - uniform_filter1d(bend, size=2 * window + 1, mode="wrap")
        push = config.alpha * bend
        update = push + config.beta * _laplacian(e)
        if targets:
            update = update + _shaping_pull(e, targets, config.shaping_falloff)

        e_new = np.clip(e + update, -usable, usable)
        if not np.all(np.isfinite(e_new)):
            raise RacingLineError(f"optimiser produced non-finite offsets at iteration {it}")

        delta = float(np.max(np.abs(e_new - e)))
        e = e_new
        iterations = it + 1
        if callback is not None:
            callback(it, e)
        if config.log_every and it % config.log_every == 0:
            logger.debug("iteration %d: energy %.6g, max delta %.3g", it, energy, delta)
        if config.tol is not None and delta < config.tol:
            logger.debug("converged after %d iterations", iterations)
            break

    e = smooth_offsets(e, usable, config.smoothing_passes, config.smoothing_strength)

    max_abs = float(np.max(np.abs(e))) if n else 0.0
    usage = float(np.max(np.abs(e) / usable)) if n else 0.0
    logger.info(
        "optimised %d offsets in %d iterations (width usage %.0f%%)",
        n,
        iterations,
        100.0 * usage,
    )
    return OffsetSolution(e, iterations, energy, max_abs, usage)
