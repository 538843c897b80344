from __future__ import annotations

"""Utility functions for reading and writing CSV data.

This module centralises the I/O helpers used by the demo script: reading
track centrelines and ``key,value`` parameter files, writing result tables
and persisting finished racing lines.  Persisted target speeds are never
trusted on load; they are recomputed from the stored positions.
"""

from pathlib import Path
from typing import Dict, Iterable, Mapping

import csv
import logging

import pandas as pd

from .line import FRAME_COLUMNS, RacingLine, line_from_positions
from .speed_solver import SpeedConfig

logger = logging.getLogger(__name__)


def read_track_csv(path: str | Path) -> pd.DataFrame:
    """Read a track centreline CSV into a :class:`~pandas.DataFrame`.

    Parameters
    ----------
    path:
        Location of the CSV file describing the track.
    """
    return pd.read_csv(path)


def read_params_csv(path: str | Path) -> Dict[str, float | bool]:
    """Read ``key,value`` parameters from ``path``.

    Values of ``true``/``false`` are interpreted as booleans while other
    entries are parsed as floating point numbers.  Blank lines, lines starting
    with ``#`` and rows whose value cannot be parsed are skipped.
    """
    params: Dict[str, float | bool] = {}
    with Path(path).open(newline="") as f:
        reader = csv.reader(f)
        for row in reader:
            if not row or all(cell.strip() == "" for cell in row):
                continue
            key = row[0].strip()
            if key.startswith("#"):
                continue
            try:
                raw_value = row[1].strip()
            except IndexError:
                continue

            value_lower = raw_value.lower()
            if value_lower == "true":
                params[key] = True
            elif value_lower == "false":
                params[key] = False
            else:
                try:
                    params[key] = float(raw_value)
                except ValueError:
                    logger.debug("skipping unparsable parameter %s=%r", key, raw_value)
                    continue
    return params


def write_csv(data: Mapping[str, Iterable] | pd.DataFrame, file_path: str | Path) -> None:
    """Write ``data`` to ``file_path`` ensuring parent directories exist."""
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    if isinstance(data, pd.DataFrame):
        data.to_csv(file_path, index=False)
    else:
        pd.DataFrame(data).to_csv(file_path, index=False)


def save_racing_line(line: RacingLine, file_path: str | Path) -> None:
    """Persist ``line`` as a flat table of per-sample records."""
    write_csv(line.to_frame(), file_path)


def load_racing_line(
    file_path: str | Path,
    speed_config: SpeedConfig | None = None,
    curvature_window: int = 5,
) -> RacingLine:
    """Load a persisted racing line and re-derive its target speeds.

    Only the stored positions and offsets are used.  Curvature, radius and
    target speed are recomputed from the positions with ``speed_config``.
    """
    df = pd.read_csv(file_path)
    required = {"x_m", "y_m"}
    missing = required.difference(df.columns)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ValueError(f"racing line file missing required columns: {missing_str}")

    ignored = [c for c in FRAME_COLUMNS if c in df.columns and c not in {"x_m", "y_m", "offset_m"}]
    logger.debug("recomputing stored columns %s for %s", ignored, file_path)
    offset = df["offset_m"].to_numpy(float) if "offset_m" in df.columns else None
    return line_from_positions(
        df[["x_m", "y_m"]].to_numpy(float),
        speed_config,
        offset,
        curvature_window,
        meta={"source": str(file_path)},
    )
