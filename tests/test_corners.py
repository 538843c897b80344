import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from racing_line.corners import (
    Corner,
    SegmenterConfig,
    detect_corners,
    find_corner_regions,
    merge_corners,
    place_targets,
)
from racing_line.curvature import analyse_curvature
from racing_line.geometry import resample_closed_path
from racing_line.tracks import circle_track, s_bend_track


def _profile(n: int, runs: list[tuple[int, int, float]]) -> np.ndarray:
    kappa = np.zeros(n)
    for start, stop, value in runs:
        kappa[np.arange(start, stop) % n] = value
    return kappa


def test_single_left_corner() -> None:
    kappa = _profile(200, [(50, 70, 0.05)])
    kappa[60] = 0.08
    corners = detect_corners(kappa)

    assert len(corners) == 1
    c = corners[0]
    assert (c.start, c.end) == (50, 69)
    assert c.inside_sign == 1
    assert c.peak_index == 60
    assert c.peak_curvature == pytest.approx(0.08)
    assert c.entry == 40
    assert c.exit == 79
    assert c.apex == 60 + int(np.floor(0.35 * c.length(200)))
    assert c.apex == 67


def test_s_curve_is_never_merged() -> None:
    # Left then right with a two sample gap, well below the merge gap.
    kappa = _profile(300, [(100, 120, 0.04), (122, 142, -0.04)])
    config = SegmenterConfig()
    corners = detect_corners(kappa, config)

    assert len(corners) == 2
    assert [c.inside_sign for c in corners] == [1, -1]
    gap = corners[1].start - corners[0].end - 1
    assert gap < config.merge_gap


def test_adjacent_opposite_signs_split_on_sign_flip() -> None:
    kappa = _profile(120, [(30, 45, 0.03), (45, 60, -0.03)])
    corners = find_corner_regions(kappa, SegmenterConfig())
    assert [(c.start, c.end, c.inside_sign) for c in corners] == [(30, 44, 1), (45, 59, -1)]


def test_same_sign_corners_merge_when_close() -> None:
    kappa = _profile(300, [(100, 115, 0.03), (118, 133, 0.06)])
    corners = detect_corners(kappa)
    assert len(corners) == 1
    c = corners[0]
    assert (c.start, c.end) == (100, 132)
    assert c.peak_curvature == pytest.approx(0.06)
    assert c.peak_index == 118


def test_same_sign_corners_stay_apart_when_far() -> None:
    kappa = _profile(300, [(100, 115, 0.03), (140, 155, 0.03)])
    assert len(detect_corners(kappa)) == 2


def test_hysteresis_keeps_corner_open_between_thresholds() -> None:
    kappa = _profile(200, [(40, 80, 0.05)])
    # Dips between the exit and enter thresholds do not close the corner.
    kappa[55:58] = 0.006
    corners = find_corner_regions(kappa, SegmenterConfig())
    assert len(corners) == 1
    assert (corners[0].start, corners[0].end) == (40, 79)


def test_corner_spanning_the_seam() -> None:
    kappa = _profile(200, [(190, 210, -0.05)])
    corners = detect_corners(kappa)
    assert len(corners) == 1
    c = corners[0]
    assert (c.start, c.end) == (190, 9)
    assert c.length(200) == 20
    assert c.inside_sign == -1
    assert c.exit == 19


def test_short_and_shallow_regions_are_discarded() -> None:
    kappa = _profile(200, [(20, 23, 0.05), (80, 110, 0.009)])
    assert detect_corners(kappa) == []


def test_constant_curvature_loop_has_no_corners() -> None:
    assert detect_corners(np.full(100, 0.02)) == []


def test_sign_comes_from_peak_sample() -> None:
    kappa = np.zeros(100)
    kappa[10:30] = 0.02
    kappa[20] = 0.09
    corner = find_corner_regions(kappa, SegmenterConfig())[0]
    assert corner.inside_sign == 1
    assert corner.peak_index == 20


def test_merge_respects_wraparound() -> None:
    n = 100
    a = Corner(90, 97, 1, 93, 0.05)
    b = Corner(2, 10, 1, 5, 0.07)
    merged = merge_corners([b, a], n, merge_gap=8)
    assert len(merged) == 1
    assert merged[0].start == 90
    assert merged[0].end == 10
    assert merged[0].peak_index == 5


def test_place_targets_wraps_indices() -> None:
    config = SegmenterConfig(entry_lead=5, exit_lead=5, late_apex_fraction=0.5)
    corner = place_targets(Corner(2, 12, 1, 4, 0.05), 50, config)
    assert corner.entry == 47
    assert corner.apex == 9
    assert corner.exit == 17


def test_invalid_thresholds_raise() -> None:
    with pytest.raises(ValueError):
        find_corner_regions(np.zeros(10), SegmenterConfig(enter_threshold=0.001, exit_threshold=0.01))


def test_s_bend_track_end_to_end() -> None:
    pts = resample_closed_path(
        s_bend_track(straight=80.0, side=60.0, radius=30.0, bend_radius=40.0, bend_angle=30.0),
        spacing=2.0,
    )
    profile = analyse_curvature(pts, half_window=5)
    config = SegmenterConfig()
    corners = detect_corners(profile.smoothed, config)
    n = pts.shape[0]

    signs = [c.inside_sign for c in corners]
    assert signs.count(-1) == 2
    assert signs.count(1) == 6
    for i, c in enumerate(corners):
        if c.inside_sign == -1:
            prev = corners[i - 1]
            assert prev.inside_sign == 1
            assert (c.start - prev.end) % n - 1 < config.merge_gap
