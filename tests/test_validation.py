import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from racing_line.geometry import compute_frames, resample_closed_path
from racing_line.line import LineConfig, build_racing_line
from racing_line.tracks import circle_track, rounded_rectangle_track
from racing_line.validation import (
    find_self_intersections,
    format_report,
    signed_offsets,
    validate_racing_line,
)


def test_built_line_is_valid() -> None:
    track = rounded_rectangle_track(200.0, 100.0, 20.0)
    line = build_racing_line(track, 12.0, LineConfig(spacing=2.0, pro_line=True))
    report = validate_racing_line(line.centreline, 12.0, line.positions)

    assert report.valid
    assert report.boundary_violations == 0
    assert report.self_intersections == 0
    assert report.is_closed_loop
    assert report.min_distance_to_edge > 0.3
    assert report.num_points == len(line)
    assert report.length == pytest.approx(line.length)
    assert report.error is None


def test_line_outside_the_road_is_reported() -> None:
    centre = resample_closed_path(rounded_rectangle_track(200.0, 100.0, 20.0), spacing=2.0)
    normals = compute_frames(centre).normal
    offset = np.zeros(centre.shape[0])
    offset[30:40] = 7.0
    positions = centre + normals * offset[:, None]

    report = validate_racing_line(centre, 10.0, positions)
    assert not report.valid
    assert report.boundary_violations == 10
    assert report.violation_indices == list(range(30, 40))
    assert report.max_boundary_penetration == pytest.approx(2.0)
    assert report.min_distance_to_edge < 0.0


def test_signed_offsets_are_positive_to_the_left() -> None:
    centre = resample_closed_path(circle_track(50.0, 200), spacing=2.0)
    inside = centre * (48.0 / 50.0)
    _, offset = signed_offsets(centre, inside)
    # Counter-clockwise circle: the inside is on the left.
    assert np.allclose(offset, 2.0, atol=0.05)


def test_bow_tie_crosses_itself() -> None:
    bow_tie = np.array([(0.0, 0.0), (10.0, 10.0), (10.0, 0.0), (0.0, 10.0)])
    pairs = find_self_intersections(bow_tie)
    assert pairs == [(0, 2)]

    square = np.array([(0.0, 0.0), (10.0, 0.0), (10.0, 10.0), (0.0, 10.0)])
    assert find_self_intersections(square) == []


def test_figure_eight_is_invalid() -> None:
    # Half-sample phase so the crossing falls mid-segment.
    t = (np.arange(200) + 0.5) * (2.0 * np.pi / 200)
    eight = np.column_stack((100.0 * np.sin(t), 50.0 * np.sin(2.0 * t)))
    report = validate_racing_line(eight, 1000.0, eight)
    assert report.self_intersections >= 1
    assert report.boundary_violations == 0
    assert not report.valid


def test_open_line_is_not_a_closed_loop() -> None:
    x = np.linspace(0.0, 100.0, 51)
    positions = np.column_stack((x, np.zeros_like(x)))
    report = validate_racing_line(positions, 10.0, positions)
    assert not report.is_closed_loop
    assert report.closing_distance == 100.0
    assert not report.valid


def test_too_few_points_sets_error() -> None:
    report = validate_racing_line(circle_track(10.0, 20), 5.0, [(0.0, 0.0), (1.0, 0.0)])
    assert not report.valid
    assert report.num_points == 2
    assert report.error
    assert format_report(report).startswith("ERROR:")


def test_format_report() -> None:
    track = circle_track(40.0, 200)
    line = build_racing_line(track, 8.0)
    text = format_report(validate_racing_line(line.centreline, 8.0, line.positions))
    assert "Self-intersections: 0" in text
    assert text.splitlines()[-1] == "Overall: VALID"
