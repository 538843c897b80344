"""Corner segmentation of a closed path from its smoothed curvature.

Corners are found with a two-threshold (hysteresis) scan of the smoothed
signed curvature, filtered by length and peak curvature, merged with a
neighbour of the *same* turn direction when the gap between them is small,
and finally given entry, apex and exit indices for racing-line shaping.

Corners of opposite sign are never merged.  An S-curve is two corners with
opposite ``inside_sign`` no matter how short the gap between them is;
merging them would place the apex target on the outside of one of the two
bends.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
from typing import List

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class Corner:
    """A detected corner on a closed path of ``n`` samples.

    ``start`` and ``end`` are inclusive sample indices; ``end`` may be smaller
    than ``start`` when the corner spans the wrap seam.  ``inside_sign`` is
    ``+1`` for a left-hand corner (inside on the positive normal side) and
    ``-1`` for a right-hand corner.
    """

    start: int
    end: int
    inside_sign: int
    peak_index: int
    peak_curvature: float
    entry: int = -1
    apex: int = -1
    exit: int = -1

    def length(self, n: int) -> int:
        """Number of samples in the corner."""
        return (self.end - self.start) % n + 1


@dataclass
class SegmenterConfig:
    """Thresholds for corner detection.

    Curvatures are in ``1/m`` and lengths, gaps and leads in samples.
    """

    enter_threshold: float = 0.008
    exit_threshold: float = 0.004
    min_corner_length: int = 5
    min_peak_curvature: float = 0.01
    merge_gap: int = 8
    entry_lead: int = 10
    exit_lead: int = 10
    late_apex_fraction: float = 0.35

    def validate(self) -> None:
        if self.exit_threshold > self.enter_threshold:
            raise ValueError("exit_threshold must not exceed enter_threshold")
        if self.min_corner_length < 1:
            raise ValueError("min_corner_length must be at least 1")
        if not 0.0 <= self.late_apex_fraction <= 1.0:
            raise ValueError("late_apex_fraction must lie in [0, 1]")


def _close_region(
    smoothed: np.ndarray,
    start: int,
    end: int,
    peak_index: int,
    peak: float,
    config: SegmenterConfig,
) -> Corner | None:
    n = smoothed.size
    length = (end - start) % n + 1
    if length < config.min_corner_length or peak < config.min_peak_curvature:
        logger.debug(
            "discarded region %d-%d (length %d, peak %.4f)", start, end, length, peak
        )
        return None
    # The turn direction comes from the curvature at the peak sample only.
    inside_sign = 1 if smoothed[peak_index] > 0 else -1
    return Corner(start, end, inside_sign, peak_index, peak)


def find_corner_regions(smoothed: np.ndarray, config: SegmenterConfig) -> List[Corner]:
    """Scan one full wrap of ``smoothed`` for hysteresis-bounded corners.

    The scan starts at the first sample whose magnitude is below the exit
    threshold so that a corner spanning the wrap seam is seen as one run.
    A corner also closes when the curvature changes sign, which then opens a
    new corner on the same sample if it is above the enter threshold.
    """
    config.validate()
    kappa = np.asarray(smoothed, dtype=float)
    n = kappa.size
    magnitude = np.abs(kappa)

    outside = np.flatnonzero(magnitude < config.exit_threshold)
    if outside.size == 0:
        logger.debug("no sample below the exit threshold; loop has no discrete corners")
        return []
    first = int(outside[0])

    corners: List[Corner] = []
    in_corner = False
    start = peak_index = 0
    peak = 0.0
    sign = 0.0

    for k in range(n):
        idx = (first + k) % n
        curv = magnitude[idx]
        if in_corner and (curv < config.exit_threshold or np.sign(kappa[idx]) != sign):
            corner = _close_region(
                kappa, start, (idx - 1) % n, peak_index, peak, config
            )
            if corner is not None:
                corners.append(corner)
            in_corner = False
        if not in_corner:
            if curv > config.enter_threshold:
                in_corner = True
                start = peak_index = idx
                peak = curv
                sign = np.sign(kappa[idx])
        elif curv > peak:
            peak = curv
            peak_index = idx

    if in_corner:
        corner = _close_region(kappa, start, (first - 1) % n, peak_index, peak, config)
        if corner is not None:
            corners.append(corner)

    corners.sort(key=lambda c: c.start)
    return corners


def _gap(curr: Corner, nxt: Corner, n: int) -> int:
    """Samples strictly between ``curr.end`` and ``nxt.start``."""
    return (nxt.start - curr.end) % n - 1


def merge_corners(corners: List[Corner], n: int, merge_gap: int) -> List[Corner]:
    """Merge each corner with its cyclic successor when close and same-signed.

    Two corners are merged only if the gap between them is below
    ``merge_gap`` samples **and** their ``inside_sign`` values are equal.
    The merged corner keeps the higher peak and its index.
    """
    merged = [replace(c) for c in corners]
    changed = True
    while changed and len(merged) > 1:
        changed = False
        for i in range(len(merged)):
            j = (i + 1) % len(merged)
            curr, nxt = merged[i], merged[j]
            if curr.inside_sign != nxt.inside_sign:
                continue
            if _gap(curr, nxt, n) >= merge_gap:
                continue
            if nxt.peak_curvature > curr.peak_curvature:
                curr.peak_curvature = nxt.peak_curvature
                curr.peak_index = nxt.peak_index
            curr.end = nxt.end
            del merged[j]
            logger.debug("merged corners at %d and %d", curr.start, nxt.start)
            changed = True
            break
    merged.sort(key=lambda c: c.start)
    return merged


def place_targets(corner: Corner, n: int, config: SegmenterConfig) -> Corner:
    """Return ``corner`` with entry, late apex and exit indices filled in."""
    shift = int(np.floor(config.late_apex_fraction * corner.length(n)))
    return replace(
        corner,
        entry=(corner.start - config.entry_lead) % n,
        apex=(corner.peak_index + shift) % n,
        exit=(corner.end + config.exit_lead) % n,
    )


def detect_corners(smoothed: np.ndarray, config: SegmenterConfig | None = None) -> List[Corner]:
    """Detect, merge and place targets for the corners of a closed path."""
    if config is None:
        config = SegmenterConfig()
    n = np.asarray(smoothed).size
    regions = find_corner_regions(smoothed, config)
    corners = merge_corners(regions, n, config.merge_gap)
    corners = [place_targets(c, n, config) for c in corners]
    logger.debug(
        "detected %d corner regions, %d after merging", len(regions), len(corners)
    )
    return corners
