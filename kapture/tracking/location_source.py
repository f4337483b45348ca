"""Location provider boundary used by the tracking engine."""

from __future__ import annotations

import threading
from typing import Callable, Iterable, Iterator, List, Optional

from ..models import LocationPoint

FixCallback = Callable[[LocationPoint], None]


class LocationSubscription:
    """Handle returned by :meth:`LocationSource.watch`; ``remove`` stops delivery."""

    def __init__(
        self, on_remove: Optional[Callable[["LocationSubscription"], None]] = None
    ) -> None:
        self._on_remove = on_remove
        self.removed = False

    def remove(self) -> None:
        if self.removed:
            return
        self.removed = True
        if self._on_remove is not None:
            self._on_remove(self)


class LocationSource:
    """Interface for a device location provider.

    Implementations must grant (or refuse) foreground and background access
    in :meth:`request_permission` and deliver fixes in device order to the
    watch callback until the subscription is removed.
    """

    def request_permission(self) -> bool:
        raise NotImplementedError

    def watch(
        self, callback: FixCallback, *, interval_ms: int, distance_m: float
    ) -> LocationSubscription:
        raise NotImplementedError


class ReplayLocationSource(LocationSource):
    """Delivers pre-recorded fixes on demand.

    Used to replay recorded runs and as the device stand-in in tests. Fixes
    emitted while nobody is watching are dropped, as a real provider would.
    """

    def __init__(
        self,
        points: Iterable[LocationPoint] = (),
        *,
        permission_granted: bool = True,
    ) -> None:
        self.points: List[LocationPoint] = list(points)
        self.permission_granted = permission_granted
        self.permission_requests = 0
        self.watch_requests: List[tuple[int, float]] = []
        self._subscribers: List[tuple[LocationSubscription, FixCallback]] = []
        self._lock = threading.Lock()

    def request_permission(self) -> bool:
        self.permission_requests += 1
        return self.permission_granted

    def watch(
        self, callback: FixCallback, *, interval_ms: int, distance_m: float
    ) -> LocationSubscription:
        subscription = LocationSubscription(self._unsubscribe)
        with self._lock:
            self.watch_requests.append((interval_ms, distance_m))
            self._subscribers.append((subscription, callback))
        return subscription

    def _unsubscribe(self, subscription: LocationSubscription) -> None:
        with self._lock:
            self._subscribers = [
                (sub, cb) for sub, cb in self._subscribers if sub is not subscription
            ]

    @property
    def watching(self) -> bool:
        with self._lock:
            return bool(self._subscribers)

    def emit(self, point: LocationPoint) -> int:
        """Deliver ``point`` to live subscribers; returns how many received it."""

        with self._lock:
            callbacks = [cb for _sub, cb in self._subscribers]
        for callback in callbacks:
            callback(point)
        return len(callbacks)

    def __iter__(self) -> Iterator[LocationPoint]:
        return iter(self.points)


__all__ = [
    "FixCallback",
    "LocationSource",
    "LocationSubscription",
    "ReplayLocationSource",
]
