"""Geometric checks of a finished racing line against its track.

The checks are independent of how the line was built and are used by the
demo script and the tests:

* boundary violations, measured as the signed lateral distance from the
  nearest centreline sample,
* self-intersections between non-adjacent segments of the closed line,
* unsigned curvature statistics,
* total length and the gap across the wrap seam.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Iterable, List, Tuple

import numpy as np
from scipy.spatial import cKDTree

from .curvature import signed_curvature
from .geometry import EPS, as_points, segment_lengths

logger = logging.getLogger(__name__)


@dataclass
class ValidationReport:
    """Outcome of :func:`validate_racing_line`.

    ``min_distance_to_edge`` is negative when the line leaves the road.
    ``violation_indices`` lists the samples outside the road and
    ``intersection_pairs`` the ``(i, j)`` segment pairs that cross.
    """

    valid: bool
    num_points: int
    boundary_violations: int = 0
    max_boundary_penetration: float = 0.0
    min_distance_to_edge: float = float("inf")
    violation_indices: List[int] = field(default_factory=list)
    self_intersections: int = 0
    intersection_pairs: List[Tuple[int, int]] = field(default_factory=list)
    curvature_min: float = 0.0
    curvature_max: float = 0.0
    curvature_mean: float = 0.0
    length: float = 0.0
    closing_distance: float = 0.0
    is_closed_loop: bool = False
    error: str | None = None


def signed_offsets(
    centreline: np.ndarray, positions: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """Return the nearest centreline index and signed lateral offset of each position.

    The offset is measured along the centreline normal at the nearest
    sample, positive to the left of the direction of travel.
    """
    tree = cKDTree(centreline)
    _, idx = tree.query(positions)
    idx = np.asarray(idx, dtype=int)

    d = np.roll(centreline, -1, axis=0) - np.roll(centreline, 1, axis=0)
    length = np.maximum(np.hypot(d[:, 0], d[:, 1]), EPS)
    normal = np.column_stack((-d[:, 1], d[:, 0])) / length[:, None]

    rel = positions - centreline[idx]
    offset = np.einsum("ij,ij->i", rel, normal[idx])
    return idx, offset


def find_self_intersections(points: np.ndarray) -> List[Tuple[int, int]]:
    """Return index pairs of crossing non-adjacent segments of a closed path.

    Segment ``i`` joins ``points[i]`` and ``points[i + 1]`` (wrapping).
    Parallel segments are never reported.
    """
    n = points.shape[0]
    a = points
    b = np.roll(points, -1, axis=0)
    d = b - a
    pairs: List[Tuple[int, int]] = []
    for i in range(n - 2):
        j = np.arange(i + 2, n)
        if i == 0:
            j = j[j != n - 1]
        if j.size == 0:
            continue
        denom = d[i, 0] * d[j, 1] - d[i, 1] * d[j, 0]
        rel = a[j] - a[i]
        ok = np.abs(denom) > 1e-10
        safe = np.where(ok, denom, 1.0)
        t = (rel[:, 0] * d[j, 1] - rel[:, 1] * d[j, 0]) / safe
        u = (rel[:, 0] * d[i, 1] - rel[:, 1] * d[i, 0]) / safe
        hit = ok & (t >= 0) & (t <= 1) & (u >= 0) & (u <= 1)
        pairs.extend((i, int(k)) for k in j[hit])
    return pairs


def validate_racing_line(
    centreline: Iterable,
    road_width: float | Iterable[float],
    positions: Iterable,
    closing_factor: float = 2.0,
) -> ValidationReport:
    """Check a racing line against the road it was built for.

    Parameters
    ----------
    centreline:
        Closed centreline samples, ideally the resampled grid of the line.
    road_width:
        Road width in metres, scalar or one value per centreline sample.
    positions:
        Racing line positions, implicitly closed.
    closing_factor:
        The loop counts as closed when the gap between the last and first
        position is at most ``closing_factor`` times the median segment
        length.

    Returns
    -------
    ValidationReport
        ``valid`` is ``True`` when the line stays on the road, does not
        cross itself and closes.  Fewer than three positions give an invalid
        report with ``error`` set rather than an exception.
    """
    pts = np.asarray(positions, dtype=float).reshape(-1, 2) if positions is not None else np.zeros((0, 2))
    n = pts.shape[0]
    if n < 3:
        return ValidationReport(valid=False, num_points=n, error="racing line has fewer than three points")

    centre = as_points(centreline)
    width = np.asarray(road_width, dtype=float)
    half_width = 0.5 * width

    idx, offset = signed_offsets(centre, pts)
    hw = half_width if width.ndim == 0 else half_width[idx]
    to_edge = hw - np.abs(offset)
    outside = np.flatnonzero(to_edge < 0.0)

    pairs = find_self_intersections(pts)

    kappa = np.abs(signed_curvature(pts))
    seg = segment_lengths(pts)
    closing = float(seg[-1])
    typical = float(np.median(seg[:-1])) if n > 1 else 0.0
    closed = closing <= closing_factor * typical + EPS

    report = ValidationReport(
        valid=outside.size == 0 and not pairs and closed,
        num_points=n,
        boundary_violations=int(outside.size),
        max_boundary_penetration=float(max(0.0, -to_edge.min())),
        min_distance_to_edge=float(to_edge.min()),
        violation_indices=[int(i) for i in outside],
        self_intersections=len(pairs),
        intersection_pairs=pairs,
        curvature_min=float(kappa.min()),
        curvature_max=float(kappa.max()),
        curvature_mean=float(kappa.mean()),
        length=float(seg.sum()),
        closing_distance=closing,
        is_closed_loop=closed,
    )
    if not report.valid:
        logger.warning(
            "racing line failed validation: %d boundary violations, %d self-intersections, closed=%s",
            report.boundary_violations,
            report.self_intersections,
            report.is_closed_loop,
        )
    return report


def format_report(report: ValidationReport) -> str:
    """Format a :class:`ValidationReport` as human readable text."""
    if report.error:
        return f"ERROR: {report.error}"

    lines = [
        f"Points: {report.num_points}",
        f"Length: {report.length:.1f} m",
        "Closed loop: {} (gap: {:.2f} m)".format(
            "yes" if report.is_closed_loop else "no", report.closing_distance
        ),
        "",
        "Boundary checks:",
        f"  Violations: {report.boundary_violations}",
    ]
    if report.boundary_violations:
        lines.append(f"  Max penetration: {report.max_boundary_penetration:.2f} m")
    lines.append(f"  Min distance to edge: {report.min_distance_to_edge:.2f} m")
    lines += [
        "",
        f"Self-intersections: {report.self_intersections}",
        "",
        "Curvature (1/m):",
        f"  Min: {report.curvature_min:.5f}",
        f"  Max: {report.curvature_max:.5f}",
        f"  Mean: {report.curvature_mean:.5f}",
        "",
        "Overall: {}".format("VALID" if report.valid else "INVALID"),
    ]
    return "\n".join(lines)
