# portal/session/lifecycle.py
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Callable, Optional

from portal.logs import get_logger

logger = get_logger(__name__)


def parse_expiry(value) -> Optional[float]:
    """
    Accepts epoch seconds (int/float), datetime, ISO string, or None.
    Returns epoch seconds, or None when the value is absent or malformed.
    Naive datetimes are treated as UTC (the app stores utc-naive values).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if math.isnan(value) or math.isinf(value) or value <= 0:
            return None
        return float(value)
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            return parse_expiry(float(raw))
        except ValueError:
            pass
        try:
            value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    return None


class SessionLifecycleTracker:
    """
    Counts down to a session's absolute expiry.

    tick(now) returns whole seconds left and fires on_terminate exactly once
    when the countdown reaches zero (or when the session is invalidated
    early). With no usable expiry the tracker is inert: tick() returns None
    and nothing fires.
    """

    def __init__(self, absolute_expiry, on_terminate: Callable[[str], None]) -> None:
        self.absolute_expiry: Optional[float] = parse_expiry(absolute_expiry)
        self._on_terminate = on_terminate
        self._remaining: Optional[int] = None
        self._terminated = False

    @property
    def inert(self) -> bool:
        return self.absolute_expiry is None

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def remaining_seconds(self) -> Optional[int]:
        return self._remaining

    def remaining_at(self, now: float) -> Optional[int]:
        if self.absolute_expiry is None:
            return None
        if self._terminated:
            return 0
        return max(0, math.floor(self.absolute_expiry - now))

    def tick(self, now: float) -> Optional[int]:
        if self.inert:
            return None

        remaining = self.remaining_at(now)
        assert remaining is not None
        # clock jitter must never make the countdown go back up
        if self._remaining is not None:
            remaining = min(remaining, self._remaining)
        self._remaining = remaining

        if now >= self.absolute_expiry:
            self._remaining = 0
            self._terminate("absolute_expiry")
        return self._remaining

    def invalidate(self) -> None:
        """Session revoked upstream: behave as if expiry was reached now."""
        if self.inert:
            return
        self._remaining = 0
        self._terminate("invalidated")

    def _terminate(self, reason: str) -> None:
        if self._terminated:
            return
        self._terminated = True
        logger.info("session_countdown_finished", reason=reason)
        self._on_terminate(reason)
