"""Pure-pursuit style driver that follows a finished racing line.

Each control tick the controller

1. localises the vehicle on the line by searching a bounded window of
   samples around the previous cursor,
2. samples a lookahead point whose distance grows with speed,
3. blends the heading error to the local tangent with the heading error to
   the lookahead point and adds a dead-banded lateral correction,
4. turns the blended error into a clamped PD steering command, and
5. chooses throttle and brake from the nearest target speed and the lowest
   target speed over several samples ahead.

Units are SI throughout: positions in metres, speeds in ``m/s``, headings in
radians measured counter-clockwise from the ``x`` axis.  A positive steering
command turns left.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
import math
from typing import Dict, Mapping, Tuple

import numpy as np

from .line import RacingLine

logger = logging.getLogger(__name__)

# Distance beyond which a windowed search falls back to a full scan.
REACQUIRE_DISTANCE = 25.0


@dataclass(frozen=True)
class SkillPreset:
    """Driver parameters for one difficulty tier.

    Lookahead and braking distances are ``base + speed * gain`` in metres
    with ``gain`` in seconds.  ``corner_margin`` and ``speed_hysteresis`` are
    speeds in ``m/s``; ``max_decel`` in ``m/s^2``.
    """

    name: str
    max_throttle: float
    brake_aggression: float
    steer_p: float
    steer_d: float
    lookahead_base: float
    lookahead_gain: float
    corner_margin: float
    steer_cut_throttle: float
    search_window: int
    speed_hysteresis: float
    corner_entry_factor: float
    min_target_speed: float
    tangent_weight: float = 0.4
    lookahead_weight: float = 0.6
    lateral_gain: float = 0.05
    lateral_deadband: float = 0.3
    max_lateral_correction: float = 0.3
    brake_samples: int = 6
    brake_base: float = 20.0
    brake_gain: float = 1.2
    max_decel: float = 9.0
    speed_scale: float = 15.0


SKILL_PRESETS: Dict[str, SkillPreset] = {
    "easy": SkillPreset(
        name="easy",
        max_throttle=0.85,
        brake_aggression=0.65,
        steer_p=1.6,
        steer_d=0.06,
        lookahead_base=8.0,
        lookahead_gain=0.22,
        corner_margin=3.0,
        steer_cut_throttle=0.45,
        search_window=48,
        speed_hysteresis=1.5,
        corner_entry_factor=0.45,
        min_target_speed=8.0,
    ),
    "medium": SkillPreset(
        name="medium",
        max_throttle=0.95,
        brake_aggression=0.9,
        steer_p=2.1,
        steer_d=0.1,
        lookahead_base=10.0,
        lookahead_gain=0.32,
        corner_margin=2.0,
        steer_cut_throttle=0.3,
        search_window=56,
        speed_hysteresis=1.0,
        corner_entry_factor=0.6,
        min_target_speed=10.0,
    ),
    "hard": SkillPreset(
        name="hard",
        max_throttle=1.0,
        brake_aggression=1.15,
        steer_p=2.4,
        steer_d=0.16,
        lookahead_base=12.0,
        lookahead_gain=0.4,
        corner_margin=1.0,
        steer_cut_throttle=0.18,
        search_window=64,
        speed_hysteresis=0.7,
        corner_entry_factor=0.75,
        min_target_speed=12.0,
    ),
}


def resolve_skill(level: str | Mapping[str, float] | SkillPreset | None = None) -> SkillPreset:
    """Return the preset for ``level``.

    ``level`` may be a preset name, a :class:`SkillPreset`, or a mapping of
    overrides applied on top of the ``medium`` preset.  Unknown names and
    ``None`` give ``medium``.
    """
    if isinstance(level, SkillPreset):
        return level
    if isinstance(level, str):
        if level in SKILL_PRESETS:
            return SKILL_PRESETS[level]
        logger.warning("unknown skill level %r; using medium", level)
    elif isinstance(level, Mapping):
        return replace(SKILL_PRESETS["medium"], name="custom", **level)
    return SKILL_PRESETS["medium"]


@dataclass
class VehicleState:
    """Vehicle pose and velocity for one control tick."""

    x: float
    y: float
    heading: float
    vx: float
    vy: float
    dt: float

    @property
    def speed(self) -> float:
        return math.hypot(self.vx, self.vy)


@dataclass(frozen=True)
class ControlCommand:
    """Normalised driver inputs: throttle and brake in ``[0, 1]``, steer in ``[-1, 1]``."""

    throttle: float
    brake: float
    steer: float


FAIL_SAFE = ControlCommand(throttle=0.0, brake=1.0, steer=0.0)


@dataclass
class ControllerState:
    """Mutable per-session state of the controller.

    ``cursor`` is ``None`` until the vehicle has been localised on the line.
    """

    cursor: int | None = None
    prev_error: float = 0.0
    skill: SkillPreset = SKILL_PRESETS["medium"]

    def reset(self) -> None:
        self.cursor = None
        self.prev_error = 0.0


def normalize_angle(angle: float) -> float:
    """Wrap ``angle`` into ``[-pi, pi]``."""
    return math.atan2(math.sin(angle), math.cos(angle))


def _clip(value: float, lo: float, hi: float) -> float:
    return min(max(value, lo), hi)


def _speed_limit(value: float) -> float:
    """Undefined target speeds mean no limit."""
    return value if math.isfinite(value) else math.inf


def nearest_index(line: RacingLine, cursor: int | None, x: float, y: float, window: int) -> int:
    """Return the index of the line sample nearest to ``(x, y)``.

    With a cursor only ``cursor - window .. cursor + window`` (wrapping) is
    searched.  Without one, or if the windowed result is further away than
    :data:`REACQUIRE_DISTANCE`, every sample is searched.
    """
    n = len(line)
    if cursor is not None:
        w = max(1, int(window))
        idx = (cursor + np.arange(-w, w + 1)) % n
        d2 = (line.x[idx] - x) ** 2 + (line.y[idx] - y) ** 2
        k = int(np.argmin(d2))
        if d2[k] <= REACQUIRE_DISTANCE**2:
            return int(idx[k])
        logger.debug("vehicle lost near sample %d; rescanning the full line", cursor)
    d2 = (line.x - x) ** 2 + (line.y - y) ** 2
    return int(np.argmin(d2))


def sample_along_line(line: RacingLine, start: int, distance: float) -> Tuple[float, float, float, int]:
    """Walk ``distance`` metres forward along the line from sample ``start``.

    Returns
    -------
    Tuple[float, float, float, int]
        ``(x, y, target_speed, index)`` of the interpolated point, where
        ``index`` is the sample at the start of the containing segment.  The
        speed is linearly interpolated; it is NaN if either end is undefined.
    """
    n = len(line)
    if line.length <= 0.0:
        i = start % n
        return float(line.x[i]), float(line.y[i]), float(line.target_speed[i]), i

    target = (line.s[start % n] + max(0.0, distance)) % line.length
    i = int(np.searchsorted(line.s, target, side="right")) - 1
    i = min(max(i, 0), n - 1)
    j = (i + 1) % n
    seg_end = line.s[j] if j else line.length
    seg = seg_end - line.s[i]
    t = (target - line.s[i]) / seg if seg > 0 else 0.0
    x = line.x[i] + (line.x[j] - line.x[i]) * t
    y = line.y[i] + (line.y[j] - line.y[i]) * t
    v = line.target_speed[i] + (line.target_speed[j] - line.target_speed[i]) * t
    return float(x), float(y), float(v), i


def _valid_vehicle(vehicle: VehicleState | None) -> bool:
    if vehicle is None:
        return False
    values = (vehicle.x, vehicle.y, vehicle.heading, vehicle.vx, vehicle.vy, vehicle.dt)
    try:
        return all(math.isfinite(float(v)) for v in values)
    except (TypeError, ValueError):
        return False


def _steering(line: RacingLine, state: ControllerState, vehicle: VehicleState, speed: float) -> float:
    skill = state.skill
    i = state.cursor
    tx, ty = line.tangent[i]
    tangent_error = normalize_angle(math.atan2(ty, tx) - vehicle.heading)

    lookahead = skill.lookahead_base + speed * skill.lookahead_gain
    px, py, _, _ = sample_along_line(line, i, lookahead)
    lookahead_error = normalize_angle(math.atan2(py - vehicle.y, px - vehicle.x) - vehicle.heading)

    nx, ny = line.normal[i]
    lateral = (vehicle.x - line.x[i]) * nx + (vehicle.y - line.y[i]) * ny
    correction = 0.0
    if abs(lateral) > skill.lateral_deadband:
        excess = lateral - math.copysign(skill.lateral_deadband, lateral)
        # Left of the line (positive) steers right.
        correction = _clip(
            -skill.lateral_gain * excess, -skill.max_lateral_correction, skill.max_lateral_correction
        )

    error = skill.tangent_weight * tangent_error + skill.lookahead_weight * lookahead_error + correction
    dt = max(1e-3, vehicle.dt)
    steer = _clip(error * skill.steer_p + (error - state.prev_error) / dt * skill.steer_d, -1.0, 1.0)
    state.prev_error = error
    return steer


def _anticipation(line: RacingLine, cursor: int, speed: float, skill: SkillPreset) -> float:
    """Normalised braking demand for the slowest target speed ahead."""
    if speed <= 0.0 or skill.brake_samples <= 0:
        return 0.0
    horizon = skill.brake_base + speed * skill.brake_gain
    demand = 0.0
    for k in range(1, skill.brake_samples + 1):
        distance = horizon * k / skill.brake_samples
        _, _, v_ahead, _ = sample_along_line(line, cursor, distance)
        v_ahead = _speed_limit(v_ahead)
        if v_ahead >= speed:
            continue
        time_to_reach = distance / speed
        required = (speed - v_ahead) / time_to_reach
        demand = max(demand, _clip(required / skill.max_decel, 0.0, 1.0))
    return demand


def pursuit_step(line: RacingLine | None, state: ControllerState, vehicle: VehicleState | None) -> ControlCommand:
    """Compute one control command and advance ``state``.

    An empty line or malformed vehicle input gives :data:`FAIL_SAFE`
    instead of raising.
    """
    if line is None or len(line) == 0:
        return FAIL_SAFE
    if not _valid_vehicle(vehicle):
        logger.debug("malformed vehicle state %r; failing safe", vehicle)
        return FAIL_SAFE

    skill = state.skill
    speed = vehicle.speed
    state.cursor = nearest_index(line, state.cursor, vehicle.x, vehicle.y, skill.search_window)

    steer = _steering(line, state, vehicle, speed)

    nearest_speed = _speed_limit(float(line.target_speed[state.cursor]))
    target = max(skill.min_target_speed, nearest_speed - skill.corner_margin)
    if math.isinf(target):
        throttle, brake = skill.max_throttle, 0.0
        speed_error = math.inf
    else:
        speed_error = target - speed
        scale = max(target, skill.speed_scale)
        throttle = _clip(speed_error / scale, 0.0, 1.0) * skill.max_throttle if speed_error > 0 else 0.0
        brake = _clip(-speed_error / scale, 0.0, 1.0) * skill.brake_aggression if speed_error < 0 else 0.0

    anticipation = _anticipation(line, state.cursor, speed, skill)
    if anticipation > 0.0:
        brake = max(brake, anticipation * skill.corner_entry_factor)
        throttle *= 1.0 - 0.7 * anticipation

    steer_mag = abs(steer)
    if steer_mag > skill.steer_cut_throttle:
        cut = _clip((steer_mag - skill.steer_cut_throttle) / (1.0 - skill.steer_cut_throttle), 0.0, 1.0)
        throttle *= 1.0 - cut

    if speed_error > skill.speed_hysteresis:
        brake = min(brake, 0.2)
    if speed_error < -skill.speed_hysteresis:
        throttle = min(throttle, 0.2)

    return ControlCommand(
        throttle=_clip(throttle, 0.0, 1.0), brake=_clip(brake, 0.0, 1.0), steer=steer
    )


class PursuitController:
    """Stateful wrapper around :func:`pursuit_step` for one vehicle.

    Parameters
    ----------
    line:
        Racing line to follow, ``None`` for none yet.
    skill:
        Preset name, :class:`SkillPreset` or override mapping.
    """

    def __init__(self, line: RacingLine | None = None, skill: str | Mapping | SkillPreset | None = "medium") -> None:
        self.line = line
        self.state = ControllerState(skill=resolve_skill(skill))

    def set_line(self, line: RacingLine | None) -> None:
        """Replace the line and reset the cursor and derivative memory."""
        self.line = line
        self.state.reset()

    def set_difficulty(self, level: str | Mapping | SkillPreset | None) -> None:
        self.state.skill = resolve_skill(level)

    def update(self, vehicle: VehicleState | None) -> ControlCommand:
        return pursuit_step(self.line, self.state, vehicle)
