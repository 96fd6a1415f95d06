"""Per-client fixed-window rate limiting."""

import time
from collections.abc import Callable
from dataclasses import dataclass

from overlay_relay.config import RATE_WINDOW_SECONDS


@dataclass
class RateWindow:
    """Message count for one client identity in the current window."""

    count: int
    start: float


class FixedWindowRateLimiter:
    """Fixed-window message counter keyed by client identity.

    - Each identity gets its own window, opened lazily on its first message.
    - A window resets once more than `window_seconds` have passed since it opened.
    - The call that pushes the count past `limit` is itself rejected, so exactly
      `limit` calls are allowed per window.

    The limiter only reports; closing abusive connections is up to the caller.
    Windows are never evicted, so memory grows with the number of distinct
    identities seen.

    Thread-safety: not thread-safe. Use from a single event loop.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float = RATE_WINDOW_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 0:
            raise ValueError("limit must be >= 0")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._limit = limit
        self._window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, RateWindow] = {}

    @property
    def limit(self) -> int:
        return self._limit

    def allow(self, identity: str) -> bool:
        """Count one message for `identity` and report whether it is within budget."""
        now = self._clock()
        window = self._windows.get(identity)
        if window is None:
            window = RateWindow(count=0, start=now)
            self._windows[identity] = window
        elif now - window.start > self._window_seconds:
            window.count = 0
            window.start = now

        window.count += 1
        return window.count <= self._limit

    def window_for(self, identity: str) -> RateWindow | None:
        """Return the current window for `identity`, if one exists."""
        return self._windows.get(identity)

    def __len__(self) -> int:
        return len(self._windows)
