from __future__ import annotations

"""Command line demo for the racing line pipeline.

Running ``python -m racing_line.run_demo`` reads a closed track centreline,
builds a racing line with target speeds and validates it.  Results are
written to a time-stamped directory under ``outputs``:

``centreline.csv``
    Resampled centreline with half width and left/right road edges.
``racing_line.csv``
    Per-sample racing line records as written by
    :func:`~racing_line.io_utils.save_racing_line`.
``summary.json``
    Lap time, line length, corner count and validation outcome.
"""

from pathlib import Path
from datetime import datetime
import argparse
import json
import logging
import time

import numpy as np
import pandas as pd

from .io_utils import read_params_csv, read_track_csv, save_racing_line, write_csv
from .geometry import Centreline, centreline_from_frame, compute_frames, track_edges
from .line import LineConfig, build_racing_line_with_fallback
from .tracks import build_track, sections_from_frame
from .validation import format_report, validate_racing_line

logger = logging.getLogger(__name__)


def run(
    track_file: str,
    road_width: float | None = None,
    spacing: float | None = None,
    pro_line: bool = False,
    params_file: str | None = None,
    output_root: str | Path = "outputs",
) -> tuple[dict, Path]:
    """Build and validate a racing line and write the results to disk.

    Parameters
    ----------
    track_file:
        CSV with ``x_m``, ``y_m`` and optionally ``width_m`` columns, or a
        section table as read by :func:`~racing_line.tracks.sections_from_frame`.
    road_width:
        Road width in metres.  Overrides the ``width_m`` column; required if
        the track file has none.
    spacing:
        Resampling distance in metres, overriding the parameter file.
    pro_line:
        Enable corner entry/apex/exit shaping.
    params_file:
        Optional ``key,value`` CSV applied through
        :meth:`~racing_line.line.LineConfig.from_params`.
    output_root:
        Directory under which the time-stamped output directory is created.

    Returns
    -------
    tuple[dict, Path]
        The summary written to ``summary.json`` and the output directory.
    """
    start_time = time.perf_counter()

    df = read_track_csv(track_file)
    if "section_type" in df.columns:
        centreline = Centreline(build_track(sections_from_frame(df)))
    else:
        centreline = centreline_from_frame(df)
    if road_width is not None:
        width = float(road_width)
    elif centreline.width is not None:
        width = centreline.width
    else:
        raise ValueError("road width required: pass road_width or add a width_m column")

    params = read_params_csv(params_file) if params_file else {}
    config = LineConfig.from_params(params)
    if spacing is not None:
        config.spacing = spacing
    if pro_line:
        config.pro_line = True

    line = build_racing_line_with_fallback(centreline.points, width, config)
    half_width = np.asarray(line.meta["half_width"], dtype=float)
    report = validate_racing_line(line.centreline, 2.0 * half_width, line.positions)

    frames = compute_frames(line.centreline)
    left_edge, right_edge = track_edges(line.centreline, frames.normal, half_width)

    # Write outputs
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    out_dir = Path(output_root) / timestamp
    out_dir.mkdir(parents=True, exist_ok=True)

    centreline_df = pd.DataFrame(
        {
            "x_center_m": line.centreline[:, 0],
            "y_center_m": line.centreline[:, 1],
            "half_width_m": half_width,
            "x_left_m": left_edge[:, 0],
            "y_left_m": left_edge[:, 1],
            "x_right_m": right_edge[:, 0],
            "y_right_m": right_edge[:, 1],
        }
    )
    write_csv(centreline_df, out_dir / "centreline.csv")
    save_racing_line(line, out_dir / "racing_line.csv")

    lap_time = line.lap_time()
    summary = {
        "lap_time_s": lap_time,
        "length_m": line.length,
        "n_samples": len(line),
        "n_corners": len(line.corners),
        "algorithm": line.meta["algorithm"],
        "fallback": bool(line.meta["fallback"]),
        "iterations": int(line.meta.get("iterations", 0)),
        "min_speed_mps": float(line.target_speed.min()),
        "max_speed_mps": float(line.target_speed.max()),
        "valid": bool(report.valid),
        "boundary_violations": report.boundary_violations,
        "self_intersections": report.self_intersections,
    }
    with (out_dir / "summary.json").open("w") as f:
        json.dump(summary, f, indent=2)

    total_runtime = time.perf_counter() - start_time
    logger.info("validation:\n%s", format_report(report))
    print(
        f"Racing line: {len(line)} samples, {len(line.corners)} corners, "
        f"length {line.length:.1f} m, "
        f"Total runtime: {total_runtime:.3f} s"
    )
    return summary, out_dir


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Build a racing line for a closed track")
    parser.add_argument("track", help="Track centreline CSV with x_m, y_m and optional width_m")
    parser.add_argument("--width", type=float, default=None, help="Road width in metres")
    parser.add_argument("--spacing", type=float, default=None, help="Resampling distance in metres")
    parser.add_argument("--params", default=None, help="Line parameter CSV (key,value)")
    parser.add_argument(
        "--pro-line",
        action="store_true",
        help="Shape corners with outside entry, late apex and outside exit",
    )
    parser.add_argument("--output", default="outputs", help="Output root directory")
    parser.add_argument(
        "--quiet-lap-time",
        action="store_true",
        help="Suppress lap time output",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    summary, out_dir = run(
        args.track,
        road_width=args.width,
        spacing=args.spacing,
        pro_line=args.pro_line,
        params_file=args.params,
        output_root=args.output,
    )
    if not args.quiet_lap_time:
        print(f"Lap time: {summary['lap_time_s']:.2f} s")
    if not summary["valid"]:
        print("Warning: racing line failed validation")
    print(f"Outputs written to {out_dir}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
