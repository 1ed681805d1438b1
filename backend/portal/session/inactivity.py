# portal/session/inactivity.py
"""
Inactivity state machine.

ACTIVE -> WARNING -> EXPIRED, driven by discrete events. Every timed event
first brings the state up to date with the clock, so a late tick or an
activity signal that arrives after a deadline sees the same result as a
tick that fired exactly on time.

Only an explicit Continue leaves WARNING. Activity signals are ignored
while the warning is up and Dismiss only hides the popup.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional, Union

from portal.logs import get_logger

logger = get_logger(__name__)

REASON_INACTIVITY = "inactivity"
REASON_ABSOLUTE_EXPIRY = "absolute_expiry"


class MonitorStatus(str, Enum):
    ACTIVE = "active"
    WARNING = "warning"
    EXPIRED = "expired"


@dataclass(frozen=True)
class InactivityConfig:
    inactivity_timeout: float = 60
    warning_duration: float = 20
    debounce: float = 1.0

    def __post_init__(self) -> None:
        if self.inactivity_timeout <= 0:
            raise ValueError("inactivity_timeout must be positive")
        if not 0 <= self.warning_duration <= self.inactivity_timeout:
            raise ValueError("warning_duration must be between 0 and inactivity_timeout")
        if self.debounce < 0:
            raise ValueError("debounce must not be negative")

    @property
    def warn_after(self) -> float:
        return self.inactivity_timeout - self.warning_duration


# -------------------------------------------------------------------
# Events
# -------------------------------------------------------------------
@dataclass(frozen=True)
class Tick:
    now: float


@dataclass(frozen=True)
class Activity:
    now: float
    kind: str = "pointer"


@dataclass(frozen=True)
class Continue:
    now: float


@dataclass(frozen=True)
class Dismiss:
    now: float


@dataclass(frozen=True)
class CeilingReached:
    now: float


Event = Union[Tick, Activity, Continue, Dismiss, CeilingReached]


# -------------------------------------------------------------------
# State
# -------------------------------------------------------------------
@dataclass(frozen=True)
class MonitorState:
    status: MonitorStatus
    last_activity_at: float
    warning_started_at: Optional[float] = None
    popup_visible: bool = False
    expired_reason: Optional[str] = None

    @classmethod
    def start(cls, now: float) -> "MonitorState":
        return cls(status=MonitorStatus.ACTIVE, last_activity_at=now)

    def warning_deadline(self, config: InactivityConfig) -> Optional[float]:
        if self.status is not MonitorStatus.ACTIVE:
            return None
        return self.last_activity_at + config.warn_after

    def expiry_deadline(self, config: InactivityConfig) -> Optional[float]:
        if self.status is not MonitorStatus.WARNING or self.warning_started_at is None:
            return None
        return self.warning_started_at + config.warning_duration

    def warning_seconds_left(self, now: float, config: InactivityConfig) -> int:
        deadline = self.expiry_deadline(config)
        if deadline is None:
            return 0 if self.status is MonitorStatus.EXPIRED else int(math.ceil(config.warning_duration))
        return max(0, int(math.ceil(deadline - now)))


def _advance(state: MonitorState, now: float, config: InactivityConfig) -> MonitorState:
    if state.status is MonitorStatus.ACTIVE:
        warn_at = state.last_activity_at + config.warn_after
        if now >= warn_at:
            state = replace(
                state,
                status=MonitorStatus.WARNING,
                warning_started_at=warn_at,
                popup_visible=True,
            )

    if state.status is MonitorStatus.WARNING:
        deadline = state.expiry_deadline(config)
        if deadline is not None and now >= deadline:
            state = replace(
                state,
                status=MonitorStatus.EXPIRED,
                popup_visible=False,
                expired_reason=REASON_INACTIVITY,
            )

    return state


def reduce(state: MonitorState, event: Event, config: InactivityConfig) -> MonitorState:
    if state.status is MonitorStatus.EXPIRED:
        return state

    # absolute ceiling short-circuits everything else
    if isinstance(event, CeilingReached):
        return replace(
            state,
            status=MonitorStatus.EXPIRED,
            popup_visible=False,
            expired_reason=REASON_ABSOLUTE_EXPIRY,
        )

    state = _advance(state, event.now, config)
    if state.status is MonitorStatus.EXPIRED:
        return state

    if isinstance(event, Activity):
        if state.status is not MonitorStatus.ACTIVE:
            return state
        if event.now - state.last_activity_at <= config.debounce:
            return state
        return replace(state, last_activity_at=event.now)

    if isinstance(event, Continue):
        return MonitorState.start(event.now)

    if isinstance(event, Dismiss):
        if state.status is MonitorStatus.WARNING:
            return replace(state, popup_visible=False)
        return state

    return state


class InactivityMonitor:
    """
    Holds the current MonitorState and calls on_expired once, on the
    transition into EXPIRED.
    """

    def __init__(
        self,
        config: InactivityConfig,
        now: float,
        on_expired: Callable[[str], None],
    ) -> None:
        self.config = config
        self._state = MonitorState.start(now)
        self._on_expired = on_expired

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def status(self) -> MonitorStatus:
        return self._state.status

    def dispatch(self, event: Event) -> MonitorState:
        before = self._state
        after = reduce(before, event, self.config)
        self._state = after

        if after.status is not before.status:
            if after.status is MonitorStatus.EXPIRED:
                self._on_expired(after.expired_reason or REASON_INACTIVITY)
            logger.info(
                "inactivity_transition",
                trigger=type(event).__name__,
                before=before.status.value,
                after=after.status.value,
            )
        return after

    def next_deadline(self) -> Optional[float]:
        deadline = self._state.warning_deadline(self.config)
        if deadline is None:
            deadline = self._state.expiry_deadline(self.config)
        return deadline

    def warning_seconds_left(self, now: float) -> int:
        return self._state.warning_seconds_left(now, self.config)
