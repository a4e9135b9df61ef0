"""In-memory sliding window rate limiter for inbound webhook calls."""

from __future__ import annotations

import time


class WebhookRateLimiter:
    """Sliding window rate limiter keyed by webhook token.

    Keeps one misbehaving sender from flooding a conversation.
    Default: 60 requests per 60 seconds per token.
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: int = 60,
    ) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._counters: dict[str, list[float]] = {}
        self._last_sweep = time.monotonic()

    def check(self, key: str) -> bool:
        """Record a hit for ``key`` and return False if it exceeds the limit."""
        now = time.monotonic()
        cutoff = now - self._window_seconds
        if now - self._last_sweep >= self._window_seconds:
            self._sweep(cutoff)
            self._last_sweep = now

        timestamps = [t for t in self._counters.get(key, []) if t > cutoff]

        if len(timestamps) >= self._max_requests:
            self._counters[key] = timestamps
            return False

        timestamps.append(now)
        self._counters[key] = timestamps
        return True

    def _sweep(self, cutoff: float) -> None:
        # Drop keys with no hits left in the window, e.g. retired tokens
        stale = [
            key for key, stamps in self._counters.items() if not stamps or stamps[-1] <= cutoff
        ]
        for key in stale:
            del self._counters[key]
