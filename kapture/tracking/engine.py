"""Run tracking engine (application layer).

Owns one run's lifecycle (start / pause / resume / stop), turns raw fixes
into a validated track, recomputes :class:`RunStats` snapshots, and hands
validated points to the persistence gateway in periodic batches. Live samples
are forwarded to the streaming client.

Three event sources touch the engine state: location fixes, the stats timer
and the flush timer. All of them mutate state under ``self._lock`` so the
track, the unflushed buffer and the pace window have a single writer at a
time. Persistence calls run on a single-worker executor (batches stay in
order) and never block the fix path; failures are logged and the batch is
re-queued for the next flush.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
import logging
import threading
import uuid
from typing import Any, Callable, List, Optional, Sequence

from ..config import (
    FLUSH_INTERVAL_SECONDS,
    LOCATION_DISTANCE_INTERVAL_M,
    LOCATION_INTERVAL_MS,
    PACE_WINDOW_SIZE,
    STATS_INTERVAL_SECONDS,
)
from ..errors import LocationPermissionError
from ..geo import track_distance_km
from ..models import CapturedPolygon, LocationPoint, RunStats, RunStatus
from .area import area_m2, captured_polygon
from .location_filter import LocationFilter
from .location_source import LocationSource, LocationSubscription
from .pace import PaceEstimator
from .scheduling import RepeatingTimer, SystemClock, TimerCallback

LocationObserver = Callable[[LocationPoint], None]
StatsObserver = Callable[[RunStats], None]
TimerFactory = Callable[[float, TimerCallback, str], Any]


class EngineState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"


class RunTrackingEngine:
    def __init__(
        self,
        location_source: LocationSource,
        *,
        persistence: Any | None = None,
        streaming: Any | None = None,
        clock: Any | None = None,
        timer_factory: TimerFactory | None = None,
        dispatcher: Any | None = None,
        location_filter: LocationFilter | None = None,
        pace_window_size: int = PACE_WINDOW_SIZE,
        stats_interval: float = STATS_INTERVAL_SECONDS,
        flush_interval: float = FLUSH_INTERVAL_SECONDS,
    ) -> None:
        self._log = logging.getLogger(self.__class__.__name__)
        self._source = location_source
        self._persistence = persistence
        self._streaming = streaming
        self._clock = clock or SystemClock()
        self._timer_factory: TimerFactory = timer_factory or RepeatingTimer
        self._owns_dispatcher = dispatcher is None
        self._dispatcher = dispatcher or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="kapture-io"
        )
        self._filter = location_filter or LocationFilter()
        self._pace = PaceEstimator(pace_window_size)
        self._stats_interval = stats_interval
        self._flush_interval = flush_interval
        self._lock = threading.RLock()
        self._subscription: Optional[LocationSubscription] = None
        self._stats_timer: Any = None
        self._flush_timer: Any = None
        self._reset_state()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def state(self) -> EngineState:
        with self._lock:
            return self._state

    @property
    def session_id(self) -> Optional[str]:
        with self._lock:
            return self._session_id

    @property
    def run_id(self) -> Optional[str]:
        with self._lock:
            return self._run_id

    @property
    def paused_duration_ms(self) -> int:
        with self._lock:
            return self._paused_total_ms

    @property
    def track(self) -> tuple[LocationPoint, ...]:
        with self._lock:
            return tuple(self._track)

    @property
    def buffered_points(self) -> tuple[LocationPoint, ...]:
        with self._lock:
            return tuple(self._buffer)

    def get_stats(self) -> RunStats:
        """Return a fresh snapshot; an idle engine reports empty stats."""

        with self._lock:
            if self._state is EngineState.IDLE:
                return RunStats()
            return self._compute_stats_locked()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(
        self,
        user_id: str | None = None,
        *,
        on_location: LocationObserver | None = None,
        on_stats: StatsObserver | None = None,
        user_name: str | None = None,
    ) -> bool:
        """Begin a run. Returns False when permission is denied or setup fails."""

        with self._lock:
            if self._state is not EngineState.IDLE:
                self._log.warning("start ignored: a run is already %s", self._state.value)
                return False
        try:
            granted = bool(self._source.request_permission())
        except LocationPermissionError as exc:
            self._log.warning("Location permission refused: %s", exc)
            granted = False
        except Exception as exc:
            self._log.error("Location permission request failed: %s", exc)
            granted = False
        if not granted:
            self._log.warning("Location permission denied; run not started")
            return False

        session_id = self._open_session(user_id)
        with self._lock:
            if self._state is not EngineState.IDLE:
                return False
            self._reset_state()
            self._user_id = user_id
            self._session_id = session_id
            self._run_id = session_id or uuid.uuid4().hex
            self._on_location = on_location
            self._on_stats = on_stats
            self._start_ms = self._clock.now_ms()
            self._state = EngineState.ACTIVE
            if not self._start_observation_locked():
                self._reset_state()
                return False
            self._log.info(
                "Run started run_id=%s session=%s user=%s",
                self._run_id,
                session_id or "local-only",
                user_id or "anonymous",
            )
            self._stream("start_run", user_id or "anonymous", self._run_id, user_name)
        return True

    def pause(self) -> bool:
        with self._lock:
            if self._state is not EngineState.ACTIVE:
                self._log.debug("pause ignored in state %s", self._state.value)
                return False
            self._halt_observation_locked()
            self._pause_ms = self._clock.now_ms()
            self._state = EngineState.PAUSED
            self._dispatch_status(RunStatus.PAUSED)
            self._stream("pause_run")
            self._log.info("Run paused run_id=%s", self._run_id)
        return True

    def resume(self) -> bool:
        with self._lock:
            if self._state is not EngineState.PAUSED:
                self._log.debug("resume ignored in state %s", self._state.value)
                return False
            if self._pause_ms is not None:
                self._paused_total_ms += max(0, self._clock.now_ms() - self._pause_ms)
                self._pause_ms = None
            self._state = EngineState.ACTIVE
            self._start_observation_locked()
            self._dispatch_status(RunStatus.ACTIVE)
            self._stream("resume_run")
            self._log.info(
                "Run resumed run_id=%s paused_total_ms=%d",
                self._run_id,
                self._paused_total_ms,
            )
        return True

    def stop(self) -> Optional[RunStats]:
        """Finish the run and return its final stats (None when idle).

        Timers and the location subscription are cancelled before the final
        snapshot so a late fix cannot change it. Persistence and streaming
        outcomes do not affect the returned value.
        """

        with self._lock:
            if self._state is EngineState.IDLE:
                self._log.debug("stop ignored: no run in progress")
                return None
            self._halt_observation_locked()
            if self._pause_ms is not None:
                self._paused_total_ms += max(0, self._clock.now_ms() - self._pause_ms)
                self._pause_ms = None
            self._flush_locked()
            final_stats = self._compute_stats_locked()
            paused_total = self._paused_total_ms
            if self._session_id is not None and self._persistence is not None:
                self._dispatch(
                    self._finish_session, self._session_id, final_stats, paused_total
                )
            self._stream("finish_run", final_stats)
            self._log.info(
                "Run stopped run_id=%s distance_km=%.3f duration_sec=%d points=%d",
                self._run_id,
                final_stats.distance_km,
                final_stats.duration_sec,
                len(self._track),
            )
            self._reset_state()
        return final_stats

    def close(self) -> None:
        """Stop any run and wait for pending persistence work to finish."""

        self.stop()
        if self._owns_dispatcher:
            self._dispatcher.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------
    def on_location_fix(self, raw: LocationPoint) -> bool:
        """Handle one fix from the provider; returns True when it was validated."""

        with self._lock:
            if self._state is not EngineState.ACTIVE:
                self._log.debug("Dropping fix delivered while %s", self._state.value)
                return False
            self._raw_locations.append(raw)
            self._notify(self._on_location, raw)
            accepted = self._filter.is_valid(raw, self._track)
            if accepted:
                self._track.append(raw)
                self._buffer.append(raw)
                self._track_dirty = True
            stats = self._compute_stats_locked()
            self._notify(self._on_stats, stats)
            self._stream("send_location", raw, stats)
        return accepted

    def tick(self) -> Optional[RunStats]:
        """Timer-driven recompute so duration advances between fixes."""

        with self._lock:
            if self._state is not EngineState.ACTIVE:
                return None
            stats = self._compute_stats_locked()
            self._notify(self._on_stats, stats)
        return stats

    def flush(self) -> Optional[Future]:
        """Timer-driven batch flush; paused or idle runs do not flush."""

        with self._lock:
            if self._state is not EngineState.ACTIVE:
                return None
            return self._flush_locked()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _reset_state(self) -> None:
        self._state = EngineState.IDLE
        self._user_id: Optional[str] = None
        self._session_id: Optional[str] = None
        self._run_id: Optional[str] = None
        self._start_ms = 0
        self._pause_ms: Optional[int] = None
        self._paused_total_ms = 0
        self._raw_locations: List[LocationPoint] = []
        self._track: List[LocationPoint] = []
        self._buffer: List[LocationPoint] = []
        self._batch_index = 0
        self._max_distance_km = 0.0
        self._track_dirty = False
        self._area_m2 = 0.0
        self._polygon: Optional[CapturedPolygon] = None
        self._pace.reset()
        self._on_location: Optional[LocationObserver] = None
        self._on_stats: Optional[StatsObserver] = None

    def _open_session(self, user_id: str | None) -> Optional[str]:
        if not user_id or self._persistence is None:
            return None
        try:
            return self._persistence.start_session(user_id)
        except Exception as exc:
            self._log.warning(
                "Could not open run session for user=%s; continuing local-only: %s",
                user_id,
                exc,
            )
            return None

    def _start_observation_locked(self) -> bool:
        self._stats_timer = self._timer_factory(
            self._stats_interval, self.tick, "stats"
        )
        self._flush_timer = self._timer_factory(
            self._flush_interval, self.flush, "flush"
        )
        self._stats_timer.start()
        self._flush_timer.start()
        try:
            self._subscription = self._source.watch(
                self.on_location_fix,
                interval_ms=LOCATION_INTERVAL_MS,
                distance_m=LOCATION_DISTANCE_INTERVAL_M,
            )
        except Exception as exc:
            self._log.error("Failed to subscribe to location updates: %s", exc)
            self._halt_observation_locked()
            return False
        return True

    def _halt_observation_locked(self) -> None:
        if self._subscription is not None:
            try:
                self._subscription.remove()
            except Exception:
                self._log.debug("Location subscription removal failed", exc_info=True)
            self._subscription = None
        for timer in (self._stats_timer, self._flush_timer):
            if timer is not None:
                timer.cancel()
        self._stats_timer = None
        self._flush_timer = None

    def _active_now_ms(self) -> int:
        if self._pause_ms is not None:
            return self._pause_ms
        return self._clock.now_ms()

    def _compute_stats_locked(self) -> RunStats:
        elapsed_ms = self._active_now_ms() - self._start_ms - self._paused_total_ms
        duration_sec = max(0, elapsed_ms // 1000)
        if self._track_dirty:
            recomputed = track_distance_km(self._track)
            # Never report a shorter run than one already reported.
            self._max_distance_km = max(self._max_distance_km, recomputed)
            self._area_m2 = area_m2(self._track)
            self._polygon = captured_polygon(self._track)
            self._track_dirty = False
        pace = self._pace.update(self._max_distance_km, duration_sec)
        return RunStats(
            distance_km=self._max_distance_km,
            duration_sec=duration_sec,
            average_pace_sec_per_km=pace,
            captured_area_m2=self._area_m2,
            raw_locations=tuple(self._raw_locations),
            captured_polygon=self._polygon,
        )

    def _flush_locked(self) -> Optional[Future]:
        if not self._buffer:
            return None
        if self._session_id is None or self._persistence is None:
            # Local-only run: the track already holds these points.
            self._buffer = []
            return None
        points, self._buffer = self._buffer, []
        batch_index = self._batch_index
        self._batch_index += 1
        return self._dispatch(self._save_batch, self._session_id, points, batch_index)

    def _save_batch(
        self, session_id: str, points: Sequence[LocationPoint], batch_index: int
    ) -> None:
        try:
            self._persistence.save_location_batch(session_id, list(points), batch_index)
        except Exception as exc:
            self._log.warning(
                "Location batch %d (%d points) failed for session=%s; re-queued: %s",
                batch_index,
                len(points),
                session_id,
                exc,
            )
            self._requeue(session_id, points)
            return
        self._log.debug(
            "Saved location batch %d with %d points for session=%s",
            batch_index,
            len(points),
            session_id,
        )

    def _requeue(self, session_id: str, points: Sequence[LocationPoint]) -> None:
        with self._lock:
            if self._session_id != session_id:
                self._log.warning(
                    "Dropping %d unsaved points for finished session=%s",
                    len(points),
                    session_id,
                )
                return
            self._buffer[:0] = points

    def _finish_session(
        self, session_id: str, final_stats: RunStats, paused_duration_ms: int
    ) -> None:
        try:
            self._persistence.finish_session(
                session_id, final_stats, paused_duration_ms
            )
        except Exception as exc:
            self._log.warning("Failed to finalise session=%s: %s", session_id, exc)

    def _update_status(
        self, session_id: str, status: RunStatus, paused_duration_ms: int
    ) -> None:
        try:
            self._persistence.update_status(session_id, status, paused_duration_ms)
        except Exception as exc:
            self._log.warning(
                "Failed to update session=%s status=%s: %s",
                session_id,
                status.value,
                exc,
            )

    def _dispatch_status(self, status: RunStatus) -> None:
        if self._session_id is None or self._persistence is None:
            return
        self._dispatch(
            self._update_status, self._session_id, status, self._paused_total_ms
        )

    def _dispatch(self, fn: Callable[..., None], *args: Any) -> Optional[Future]:
        try:
            return self._dispatcher.submit(fn, *args)
        except RuntimeError as exc:
            self._log.error("Persistence dispatcher unavailable: %s", exc)
            return None

    def _stream(self, method: str, *args: Any) -> None:
        if self._streaming is None:
            return
        try:
            getattr(self._streaming, method)(*args)
        except Exception:
            self._log.debug("Streaming %s failed", method, exc_info=True)

    def _notify(self, observer: Optional[Callable[[Any], None]], value: Any) -> None:
        if observer is None:
            return
        try:
            observer(value)
        except Exception:
            self._log.error("Run observer raised", exc_info=True)


__all__ = ["EngineState", "RunTrackingEngine"]
