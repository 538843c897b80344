import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from racing_line.curvature import (
    analyse_curvature,
    max_adjacent_jump,
    signed_curvature,
    smooth_curvature,
)
from racing_line.tracks import circle_track


def test_circle_curvature_matches_radius() -> None:
    radius = 25.0
    kappa = signed_curvature(circle_track(radius, 400))
    assert np.allclose(kappa, 1.0 / radius, rtol=1e-3)


def test_sign_convention_left_positive_right_negative() -> None:
    ccw = circle_track(10.0, 100)
    assert np.all(signed_curvature(ccw) > 0)
    assert np.all(signed_curvature(ccw[::-1]) < 0)


def test_straight_samples_have_zero_curvature() -> None:
    square = np.array([[x, 0.0] for x in range(10)] + [[9.0, y] for y in range(1, 10)]
                      + [[x, 9.0] for x in range(8, -1, -1)] + [[0.0, y] for y in range(8, 0, -1)])
    kappa = signed_curvature(square)
    corners = {9, 18, 27, 0}
    for i, k in enumerate(kappa):
        if i not in corners:
            assert k == pytest.approx(0.0, abs=1e-12)
    assert np.all(kappa[list(corners)] > 0)


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_smoothing_never_increases_adjacent_jump(seed: int) -> None:
    rng = np.random.default_rng(seed)
    raw = rng.normal(size=rng.integers(5, 200)) * rng.uniform(0.01, 1.0)
    for half_window in (1, 3, 5, 20):
        smoothed = smooth_curvature(raw, half_window)
        assert max_adjacent_jump(smoothed) <= max_adjacent_jump(raw) + 1e-12


def test_smoothing_wraps_around_the_seam() -> None:
    raw = np.zeros(50)
    raw[0] = 11.0
    smoothed = smooth_curvature(raw, 5)
    assert np.isclose(smoothed[-1], 1.0)
    assert np.isclose(smoothed[5], 1.0)
    assert np.isclose(smoothed[6], 0.0)
    assert np.isclose(smoothed.sum(), raw.sum())


def test_window_is_clipped_for_short_paths() -> None:
    raw = np.array([1.0, 2.0, 3.0])
    assert np.allclose(smooth_curvature(raw, 10), 2.0)
    with pytest.raises(ValueError):
        smooth_curvature(raw, -1)


def test_analyse_curvature_returns_both_profiles() -> None:
    profile = analyse_curvature(circle_track(40.0, 120), half_window=4)
    assert profile.raw.shape == profile.smoothed.shape == (120,)
    assert profile.half_window == 4
    assert np.allclose(profile.smoothed, profile.raw)
