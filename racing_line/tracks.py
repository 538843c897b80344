"""Closed track centrelines built from straight and constant-radius sections.

A track is described as a list of sections driven one after another from a
start pose.  ``("straight", length)`` advances along the current heading and
``("corner", radius, angle_deg)`` follows an arc; a positive radius turns
left and a negative radius turns right.  The helpers below build the shapes
used in the demo and tests.
"""

from __future__ import annotations

from typing import Iterable, Sequence, Tuple

import numpy as np
import pandas as pd

from .geometry import EPS, TrackGeometryError

Section = Tuple


def build_track(
    sections: Iterable[Section],
    ds: float = 1.0,
    start: Sequence[float] = (0.0, 0.0),
    heading: float = 0.0,
    closure_tol: float = 1e-6,
) -> np.ndarray:
    """Discretise ``sections`` into an implicitly closed centreline.

    Parameters
    ----------
    sections:
        Sequence of ``("straight", length_m)`` and
        ``("corner", radius_m, angle_deg)`` tuples.
    ds:
        Approximate spacing of the generated points.
    start, heading:
        Start position and heading in radians.
    closure_tol:
        Maximum allowed distance between the end of the last section and
        the start point.

    Raises
    ------
    TrackGeometryError
        If a section is malformed or the sections do not close the loop.
    """
    if ds <= 0:
        raise ValueError("ds must be positive")
    x, y = float(start[0]), float(start[1])
    psi = float(heading)
    xs: list[np.ndarray] = []
    ys: list[np.ndarray] = []

    for section in sections:
        kind = str(section[0]).lower()
        if kind == "straight":
            length = float(section[1])
            if length <= 0:
                raise TrackGeometryError("straight section requires a positive length")
            n = max(1, int(round(length / ds)))
            s_local = np.arange(n) * (length / n)
            xs.append(x + s_local * np.cos(psi))
            ys.append(y + s_local * np.sin(psi))
            x += length * np.cos(psi)
            y += length * np.sin(psi)
        elif kind == "corner":
            r = float(section[1])
            angle = np.radians(float(section[2]))
            if abs(r) <= EPS or angle <= 0:
                raise TrackGeometryError("corner section requires a non-zero radius and positive angle")
            R = abs(r)
            sign = np.sign(r)
            cx = x - sign * R * np.sin(psi)
            cy = y + sign * R * np.cos(psi)
            phi0 = psi - sign * np.pi / 2.0
            length = R * angle
            n = max(1, int(round(length / ds)))
            phi = phi0 + sign * np.arange(n) * (angle / n)
            xs.append(cx + R * np.cos(phi))
            ys.append(cy + R * np.sin(phi))
            psi += sign * angle
            x = cx + R * np.cos(phi0 + sign * angle)
            y = cy + R * np.sin(phi0 + sign * angle)
        else:
            raise TrackGeometryError(f"unknown section type '{section[0]}'")

    if not xs:
        raise TrackGeometryError("track has no sections")
    gap = float(np.hypot(x - start[0], y - start[1]))
    if gap > closure_tol:
        raise TrackGeometryError(f"sections do not close the loop (gap {gap:.3g} m)")
    return np.column_stack((np.concatenate(xs), np.concatenate(ys)))


def sections_from_frame(df: pd.DataFrame) -> list[Section]:
    """Read sections from a table with ``section_type``, ``length_m``,
    ``radius_m`` and ``angle_deg`` columns."""
    sections: list[Section] = []
    for row in df.itertuples(index=False):
        kind = str(row.section_type).lower()
        if kind == "straight":
            sections.append(("straight", float(row.length_m)))
        else:
            sections.append((kind, float(row.radius_m), float(row.angle_deg)))
    return sections


def circle_track(radius: float, n_points: int = 360) -> np.ndarray:
    """Counter-clockwise circle of ``radius`` centred on the origin."""
    theta = np.linspace(0.0, 2.0 * np.pi, n_points, endpoint=False)
    return np.column_stack((radius * np.cos(theta), radius * np.sin(theta)))


def rounded_rectangle_track(
    length: float, width: float, radius: float, ds: float = 1.0
) -> np.ndarray:
    """Counter-clockwise rectangle with four left-hand 90 degree corners.

    ``length`` and ``width`` are the straight lengths between the corners.
    """
    quarter = [("straight", length), ("corner", radius, 90.0), ("straight", width), ("corner", radius, 90.0)]
    return build_track(quarter * 2, ds=ds)


def s_bend_track(
    straight: float,
    side: float,
    radius: float,
    bend_radius: float,
    bend_angle: float,
    ds: float = 1.0,
) -> np.ndarray:
    """Rounded rectangle with a left-right S-bend in both long straights.

    The two S-bends shift the loop by equal and opposite amounts so the loop
    still closes.
    """
    s_bend = [("corner", bend_radius, bend_angle), ("corner", -bend_radius, bend_angle)]
    half = (
        [("straight", straight)]
        + s_bend
        + [("straight", straight), ("corner", radius, 90.0), ("straight", side), ("corner", radius, 90.0)]
    )
    return build_track(half * 2, ds=ds)
