"""Replay a recorded run (CSV of GPS fixes) through the tracking engine.

The CSV needs ``latitude``, ``longitude`` and ``timestamp`` columns and may
carry ``accuracy`` (metres). Timestamps are epoch milliseconds or anything
``pandas.to_datetime`` understands. The replay drives a simulated clock from
the fix timestamps, so results match what the live engine would report.

Usage::

    python -m kapture replay run.csv --map run.html --store-dir kapture_runs
"""

from __future__ import annotations

import argparse
from concurrent.futures import Future
from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Tuple

import pandas as pd

from ..config import FLUSH_INTERVAL_SECONDS
from ..errors import KaptureError, PersistenceError, TrackFormatError
from ..models import LocationPoint, RunStats
from ..persistence import JsonRunStore, RunPersistenceGateway
from ..streaming import StreamingClient
from ..tracking import (
    ManualTimerFactory,
    ReplayLocationSource,
    RunTrackingEngine,
    SimulatedClock,
)
from ..utils import format_duration, format_pace
from .run_map import create_run_map

LOGGER = logging.getLogger(__name__)

_REQUIRED_COLUMNS = {"latitude", "longitude", "timestamp"}


class InlineDispatcher:
    """Executor stand-in running submitted work immediately on the caller."""

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args))
        except Exception as exc:  # noqa: BLE001
            future.set_exception(exc)
        return future

    def shutdown(self, wait: bool = True) -> None:
        return None


@dataclass(slots=True)
class ReplaySummary:
    run_id: str
    session_id: Optional[str]
    fix_count: int
    track: Tuple[LocationPoint, ...]
    stats: RunStats

    @property
    def validated_count(self) -> int:
        return len(self.track)


def _timestamps_ms(column: pd.Series) -> pd.Series:
    if pd.api.types.is_numeric_dtype(column):
        return pd.to_numeric(column, errors="coerce")
    parsed = pd.to_datetime(column, utc=True, errors="coerce")
    return (parsed - pd.Timestamp(0, tz="UTC")) // pd.Timedelta(milliseconds=1)


def fixes_from_frame(df: pd.DataFrame) -> List[LocationPoint]:
    """Convert a fixes DataFrame to points ordered by timestamp.

    Raises:
        TrackFormatError: If a required column is missing or no row is usable.
    """

    df = df.rename(columns={c: str(c).strip().lower() for c in df.columns})
    missing = _REQUIRED_COLUMNS - set(df.columns)
    if missing:
        raise TrackFormatError(
            f"Missing columns in fixes file: {', '.join(sorted(missing))}. "
            f"Present: {list(df.columns)}"
        )
    frame = pd.DataFrame(
        {
            "latitude": pd.to_numeric(df["latitude"], errors="coerce"),
            "longitude": pd.to_numeric(df["longitude"], errors="coerce"),
            "timestamp": _timestamps_ms(df["timestamp"]),
        }
    )
    if "accuracy" in df.columns:
        frame["accuracy"] = pd.to_numeric(df["accuracy"], errors="coerce")
    before = len(frame)
    frame = frame.dropna(subset=["latitude", "longitude", "timestamp"])
    if len(frame) < before:
        LOGGER.warning("Skipped %d unparseable fix rows", before - len(frame))
    if frame.empty:
        raise TrackFormatError("Fixes file contains no usable rows")
    frame = frame.sort_values("timestamp", kind="stable")

    points: List[LocationPoint] = []
    for row in frame.itertuples(index=False):
        accuracy = getattr(row, "accuracy", None)
        points.append(
            LocationPoint(
                latitude=float(row.latitude),
                longitude=float(row.longitude),
                timestamp_ms=int(row.timestamp),
                accuracy_m=None if accuracy is None or pd.isna(accuracy) else float(accuracy),
            )
        )
    return points


def load_fixes(path: str | Path) -> List[LocationPoint]:
    """Read a fixes CSV. Raises FileNotFoundError or :class:`TrackFormatError`."""

    csv_path = Path(path)
    if not csv_path.is_file():
        raise FileNotFoundError(f"Fixes file not found: {csv_path}")
    try:
        df = pd.read_csv(csv_path, float_precision="round_trip")
    except (ValueError, pd.errors.ParserError) as exc:
        raise TrackFormatError(f"Could not parse {csv_path}: {exc}") from exc
    return fixes_from_frame(df)


def replay_run(
    points: Sequence[LocationPoint],
    *,
    persistence: RunPersistenceGateway | None = None,
    streaming: Any | None = None,
    user_id: str | None = None,
    user_name: str | None = None,
    flush_interval: float = FLUSH_INTERVAL_SECONDS,
) -> ReplaySummary:
    """Feed ``points`` through a :class:`RunTrackingEngine` on simulated time."""

    if not points:
        raise TrackFormatError("No fixes to replay")
    clock = SimulatedClock(points[0].timestamp_ms)
    timers = ManualTimerFactory()
    source = ReplayLocationSource(points)
    engine = RunTrackingEngine(
        source,
        persistence=persistence,
        streaming=streaming,
        clock=clock,
        timer_factory=timers,
        dispatcher=InlineDispatcher(),
        flush_interval=flush_interval,
    )
    if not engine.start(user_id, user_name=user_name):
        raise KaptureError("Replay run could not be started")
    run_id = engine.run_id or ""
    session_id = engine.session_id

    flush_every_ms = int(flush_interval * 1000)
    last_flush_ms = clock.now_ms()
    for point in source:
        if point.timestamp_ms > clock.now_ms():
            clock.set(point.timestamp_ms)
        while clock.now_ms() - last_flush_ms >= flush_every_ms:
            timers.fire("flush")
            last_flush_ms += flush_every_ms
        timers.fire("stats")
        source.emit(point)

    track = engine.track
    stats = engine.stop()
    engine.close()
    if stats is None:  # pragma: no cover - engine was started above
        raise KaptureError("Replay run produced no stats")
    return ReplaySummary(
        run_id=run_id,
        session_id=session_id,
        fix_count=len(points),
        track=track,
        stats=stats,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kapture replay",
        description="Replay a CSV of GPS fixes and report the run summary.",
    )
    parser.add_argument("csv", type=Path, help="CSV with latitude, longitude, timestamp")
    parser.add_argument("--user-id", help="Persist the run for this user")
    parser.add_argument("--user-name", help="Runner name announced to spectators")
    parser.add_argument(
        "--store-dir",
        type=Path,
        help="Save the run to a JSON run store in this directory (needs --user-id)",
    )
    parser.add_argument("--map", type=Path, help="Write an HTML route map here")
    parser.add_argument(
        "--stream-url",
        help="Broadcast the replay to a live server, e.g. ws://localhost:3001",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point used via ``python -m kapture replay``."""

    args = _build_parser().parse_args(argv)
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=logging.INFO,
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )

    try:
        points = load_fixes(args.csv)
    except (TrackFormatError, FileNotFoundError) as exc:
        logging.error("Failed to load fixes '%s': %s", args.csv, exc)
        return 1

    store: RunPersistenceGateway | None = None
    if args.store_dir is not None:
        if not args.user_id:
            logging.error("--store-dir requires --user-id")
            return 1
        try:
            store = JsonRunStore(args.store_dir)
        except OSError as exc:
            logging.error("Cannot open run store '%s': %s", args.store_dir, exc)
            return 1

    streaming: StreamingClient | None = None
    if args.stream_url:
        streaming = StreamingClient(args.stream_url)
        streaming.connect()

    try:
        summary = replay_run(
            points,
            persistence=store,
            streaming=streaming,
            user_id=args.user_id,
            user_name=args.user_name,
        )
    except (KaptureError, PersistenceError) as exc:
        logging.error("Replay failed: %s", exc)
        return 1
    finally:
        if streaming is not None:
            streaming.disconnect()

    stats = summary.stats
    logging.info(
        "Replayed %d fixes (%d validated) run_id=%s",
        summary.fix_count,
        summary.validated_count,
        summary.run_id,
    )
    logging.info(
        "Distance %.3f km | Time %s | Pace %s | Area %.0f m²",
        stats.distance_km,
        format_duration(stats.duration_sec),
        format_pace(stats.average_pace_sec_per_km),
        stats.captured_area_m2,
    )
    if summary.session_id:
        logging.info("Saved session %s to %s", summary.session_id, store.base_dir)

    if args.map is not None:
        create_run_map(
            stats.raw_locations,
            summary.track,
            stats.captured_polygon,
            output_html_path=args.map,
        )
        logging.info("Route map written to %s", args.map)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
