"""Shared temperature reading with a sub-second cache."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from thermal_scheduler.supervisor.contracts import TemperatureSource
from thermal_scheduler.supervisor.models import TemperatureReading

logger = logging.getLogger(__name__)


class CachedTemperatureSource:
    """Wraps a temperature source so close-together polls share one read.

    Failures are never cached: a SensorUnavailable from the inner source
    propagates and the next call reads again.
    """

    def __init__(
        self,
        source: TemperatureSource,
        *,
        cache_seconds: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._cache_seconds = cache_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: TemperatureReading | None = None
        self._cached_at: float | None = None

    def read(self) -> TemperatureReading:
        with self._lock:
            now = self._clock()
            if (
                self._cached is not None
                and self._cached_at is not None
                and now - self._cached_at < self._cache_seconds
            ):
                return self._cached
            reading = self._source.read()
            self._cached = reading
            self._cached_at = now
            logger.debug("Temperature read: %.1f°C status=%s", reading.temperature, reading.status)
            return reading

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None
            self._cached_at = None
