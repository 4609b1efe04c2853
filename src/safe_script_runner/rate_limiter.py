from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator

from .policy import DEFAULT_CLEANUP_INTERVAL_MS, DEFAULT_MAX_REQUESTS, DEFAULT_WINDOW_MS

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window admission control keyed by an opaque caller identifier.

    Each identifier owns a list of admission timestamps (milliseconds) that is
    pruned on every access. Access to one identifier's list is serialized by
    its own lock, so concurrent callers on different identifiers never wait on
    each other.

    Example:
        ```python
        limiter = RateLimiter(max_requests=10, window_ms=60_000)
        if limiter.is_allowed("user-1"):
            ...
        ```
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_ms: int = DEFAULT_WINDOW_MS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Create an empty limiter; `clock` returns seconds.

        Example:
            ```python
            limiter = RateLimiter(5, 1000)
            ```
        """
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._clock = clock
        self._records: dict[str, list[float]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._cleanup_stop: threading.Event | None = None
        self._cleanup_thread: threading.Thread | None = None

    def _now_ms(self) -> float:
        """Return the current clock reading in milliseconds.

        Example:
            ```python
            now = limiter._now_ms()
            ```
        """
        return self._clock() * 1000

    @contextmanager
    def _guard(self, identifier: str) -> Iterator[None]:
        """Hold the identifier's lock, retrying if cleanup retired it meanwhile.

        Example:
            ```python
            with limiter._guard("user-1"):
                ...
            ```
        """
        while True:
            with self._registry_lock:
                lock = self._locks.get(identifier)
                if lock is None:
                    lock = self._locks[identifier] = threading.Lock()
            lock.acquire()
            with self._registry_lock:
                current = self._locks.get(identifier) is lock
            if current:
                break
            lock.release()
        try:
            yield
        finally:
            lock.release()

    def _pruned(self, identifier: str, now: float) -> list[float]:
        """Return the identifier's timestamps still inside the window.

        Example:
            ```python
            live = limiter._pruned("user-1", limiter._now_ms())
            ```
        """
        return [ts for ts in self._records.get(identifier, ()) if now - ts < self.window_ms]

    def is_allowed(self, identifier: str) -> bool:
        """Record and admit one request, or deny it without recording.

        Example:
            ```python
            allowed = limiter.is_allowed("user-1")
            ```
        """
        with self._guard(identifier):
            now = self._now_ms()
            timestamps = self._pruned(identifier, now)
            if len(timestamps) >= self.max_requests:
                self._records[identifier] = timestamps
                logger.info("Rate limit reached for %s", identifier)
                return False
            timestamps.append(now)
            self._records[identifier] = timestamps
            return True

    def get_remaining(self, identifier: str) -> int:
        """Return how many more requests the identifier may make in this window.

        Example:
            ```python
            remaining = limiter.get_remaining("user-1")
            ```
        """
        with self._guard(identifier):
            live = self._pruned(identifier, self._now_ms())
        return max(0, self.max_requests - len(live))

    def reset(self, identifier: str) -> None:
        """Forget every recorded request for the identifier.

        Example:
            ```python
            limiter.reset("user-1")
            ```
        """
        with self._guard(identifier):
            self._records.pop(identifier, None)

    def cleanup(self) -> int:
        """Prune every record, drop identifiers left empty and retire idle locks.

        Returns how many identifiers with a record were dropped. Locks created
        by reads on identifiers that never recorded a request are retired too.

        Example:
            ```python
            dropped = limiter.cleanup()
            ```
        """
        with self._registry_lock:
            identifiers = set(self._records) | set(self._locks)
        dropped = 0
        for identifier in identifiers:
            with self._guard(identifier):
                live = self._pruned(identifier, self._now_ms())
                if live:
                    self._records[identifier] = live
                    continue
                # Retire the lock while holding it; waiters re-check and retry.
                with self._registry_lock:
                    had_record = self._records.pop(identifier, None) is not None
                    self._locks.pop(identifier, None)
            if had_record:
                dropped += 1
        if dropped:
            logger.debug("Rate limiter cleanup dropped %d identifier(s)", dropped)
        return dropped

    def tracked_identifiers(self) -> list[str]:
        """Return identifiers that currently hold a record.

        Example:
            ```python
            ids = limiter.tracked_identifiers()
            ```
        """
        with self._registry_lock:
            return list(self._records)

    def start_cleanup(self, interval_ms: int = DEFAULT_CLEANUP_INTERVAL_MS) -> None:
        """Run `cleanup()` every `interval_ms` on a daemon thread until stopped.

        Example:
            ```python
            limiter.start_cleanup(interval_ms=300_000)
            ```
        """
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        if self._cleanup_thread is not None and self._cleanup_thread.is_alive():
            return
        stop = threading.Event()

        def _loop() -> None:
            """Invoke cleanup on a fixed period until the stop event is set.

            Example:
                ```python
                _loop()
                ```
            """
            while not stop.wait(interval_ms / 1000):
                self.cleanup()

        self._cleanup_stop = stop
        self._cleanup_thread = threading.Thread(target=_loop, name="rate-limiter-cleanup", daemon=True)
        self._cleanup_thread.start()

    def stop_cleanup(self) -> None:
        """Stop the periodic cleanup thread if it is running.

        Example:
            ```python
            limiter.stop_cleanup()
            ```
        """
        if self._cleanup_stop is not None:
            self._cleanup_stop.set()
        if self._cleanup_thread is not None:
            self._cleanup_thread.join(timeout=1)
        self._cleanup_stop = None
        self._cleanup_thread = None

    @property
    def cleanup_running(self) -> bool:
        """Return whether the periodic cleanup thread is alive.

        Example:
            ```python
            assert not RateLimiter().cleanup_running
            ```
        """
        return self._cleanup_thread is not None and self._cleanup_thread.is_alive()
