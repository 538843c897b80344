import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from racing_line.corners import Corner, SegmenterConfig, detect_corners
from racing_line.curvature import analyse_curvature
from racing_line.geometry import TrackGeometryError, compute_frames, resample_closed_path
from racing_line.path_optim import (
    OptimiserConfig,
    RacingLineError,
    corridor_bounds,
    optimise_offsets,
    shaping_targets,
    smooth_offsets,
)
from racing_line.tracks import circle_track, rounded_rectangle_track


def _rectangle(spacing: float = 2.0):
    centre = resample_closed_path(rounded_rectangle_track(200.0, 100.0, 20.0), spacing=spacing)
    frames = compute_frames(centre)
    return centre, frames.normal


def test_offsets_stay_in_corridor_after_every_iteration() -> None:
    centre, normals = _rectangle()
    half_width = 6.0
    config = OptimiserConfig(iterations=150, margin=0.5, tol=None)
    usable = half_width - config.margin
    worst: list[float] = []

    def record(it: int, offsets: np.ndarray) -> None:
        worst.append(float(np.max(np.abs(offsets))))

    solution = optimise_offsets(centre, normals, half_width, config, callback=record)

    assert len(worst) == 150
    assert max(worst) <= usable + 1e-12
    assert np.all(np.abs(solution.offset) <= usable + 1e-12)
    assert solution.iterations == 150


def test_per_sample_half_width_is_respected() -> None:
    centre, normals = _rectangle()
    half_width = np.linspace(4.0, 8.0, centre.shape[0])
    solution = optimise_offsets(centre, normals, half_width, OptimiserConfig(iterations=100))
    assert np.all(np.abs(solution.offset) <= half_width - 0.5 + 1e-12)


def test_circle_stays_on_centreline() -> None:
    centre = resample_closed_path(circle_track(50.0, 400), spacing=2.0)
    normals = compute_frames(centre).normal
    solution = optimise_offsets(centre, normals, 5.0)
    assert np.max(np.abs(solution.offset)) < 0.05


@pytest.mark.parametrize("radius", [30.0, 50.0])
def test_circle_does_not_drift_over_long_runs(radius: float) -> None:
    centre = resample_closed_path(circle_track(radius, 400), spacing=2.0)
    normals = compute_frames(centre).normal
    config = OptimiserConfig(iterations=2000, tol=None)
    solution = optimise_offsets(centre, normals, 5.0, config)
    assert solution.iterations == 2000
    assert np.max(np.abs(solution.offset)) < 0.05


def test_min_curvature_cuts_the_corner() -> None:
    centre, normals = _rectangle()
    solution = optimise_offsets(centre, normals, 6.0, OptimiserConfig(iterations=400))
    profile = analyse_curvature(centre)
    apex = int(np.argmax(profile.smoothed))
    # Left-hand corners: the line moves toward the inside (positive side).
    assert solution.offset[apex] > 1.0
    assert solution.width_usage <= 1.0 + 1e-12
    assert solution.max_abs_offset == pytest.approx(np.max(np.abs(solution.offset)))


def test_min_curvature_reduces_bending_energy() -> None:
    centre, normals = _rectangle()
    # Wide enough that the corridor limits are never reached.
    solution = optimise_offsets(centre, normals, 20.0)
    assert solution.width_usage < 1.0
    path = centre + normals * solution.offset[:, None]

    def bending(p: np.ndarray) -> float:
        d2 = np.roll(p, 1, axis=0) - 2.0 * p + np.roll(p, -1, axis=0)
        return float(np.sum(d2**2))

    assert bending(path) < bending(centre)


def test_shaping_targets_use_inside_sign() -> None:
    usable = np.full(100, 4.0)
    corners = [Corner(20, 30, 1, 25, 0.05, entry=12, apex=28, exit=38),
               Corner(60, 70, -1, 65, 0.05, entry=52, apex=68, exit=78)]
    targets = shaping_targets(corners, usable, OptimiserConfig())
    by_index = {index: target for index, target, _ in targets}
    assert by_index[28] == 4.0 and by_index[12] == -4.0 and by_index[38] == -4.0
    assert by_index[68] == -4.0 and by_index[52] == 4.0 and by_index[78] == 4.0


def test_pro_line_shaping_pulls_toward_targets() -> None:
    centre, normals = _rectangle()
    profile = analyse_curvature(centre)
    corners = detect_corners(profile.smoothed, SegmenterConfig())
    config = OptimiserConfig(alpha=0.0)
    solution = optimise_offsets(centre, normals, 6.0, config, corners=corners)

    assert len(corners) == 4
    for c in corners:
        assert c.inside_sign == 1
        assert solution.offset[c.apex] > 0.0
        assert solution.offset[c.entry] < 0.0
        assert solution.offset[c.exit] < 0.0


def test_smooth_offsets_reduces_jitter_and_clamps() -> None:
    rng = np.random.default_rng(3)
    usable = np.full(200, 1.0)
    noisy = np.clip(rng.normal(scale=0.8, size=200), -1.0, 1.0)
    smoothed = smooth_offsets(noisy, usable, passes=5, strength=0.5)
    assert np.max(np.abs(np.diff(smoothed))) < np.max(np.abs(np.diff(noisy)))
    assert np.all(np.abs(smoothed) <= 1.0)


def test_margin_without_corridor_raises() -> None:
    with pytest.raises(TrackGeometryError):
        corridor_bounds(0.5, 0.5, 10)


def test_non_finite_offsets_raise() -> None:
    centre, normals = _rectangle()
    normals = normals.copy()
    normals[10] = np.nan
    with pytest.raises(RacingLineError):
        optimise_offsets(centre, normals, 6.0, OptimiserConfig(iterations=5))


def test_shape_mismatch_raises() -> None:
    centre, normals = _rectangle()
    with pytest.raises(ValueError):
        optimise_offsets(centre, normals[:-1], 6.0)
