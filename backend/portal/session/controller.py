# portal/session/controller.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from portal.session.end_session import EndSessionAction
from portal.session.inactivity import (
    Activity,
    CeilingReached,
    Continue,
    Dismiss,
    Event,
    InactivityConfig,
    InactivityMonitor,
    MonitorStatus,
    Tick,
)
from portal.session.lifecycle import SessionLifecycleTracker


@dataclass(frozen=True)
class RenderState:
    """What display components consume. The controller owns no presentation."""

    remaining_seconds: Optional[int]
    warning_active: bool
    warning_seconds_left: int
    status: str
    ended: bool = False
    end_reason: Optional[str] = None


class SessionController:
    """
    One logical session: absolute countdown + inactivity monitor, both
    funnelling into the same EndSessionAction.

    Every event checks the absolute ceiling first; when it has been reached
    the monitor is told CeilingReached and the event itself is dropped.
    """

    def __init__(
        self,
        absolute_expiry,
        config: InactivityConfig,
        end_session: EndSessionAction,
        now: float,
    ) -> None:
        self.config = config
        self._end_session = end_session
        self.tracker = SessionLifecycleTracker(absolute_expiry, on_terminate=self._end_session)
        self.monitor = InactivityMonitor(config, now, on_expired=self._end_session)

    @property
    def end_session(self) -> EndSessionAction:
        return self._end_session

    @property
    def inert(self) -> bool:
        return self.tracker.inert

    @property
    def ended(self) -> bool:
        return self._end_session.ended

    @property
    def end_reason(self) -> Optional[str]:
        return self._end_session.reason

    def _dispatch(self, event: Event) -> None:
        if self.inert or self.ended:
            return

        self.tracker.tick(event.now)
        if self.tracker.terminated:
            self.monitor.dispatch(CeilingReached(event.now))
            return

        self.monitor.dispatch(event)

    def tick(self, now: float) -> None:
        self._dispatch(Tick(now))

    def activity(self, now: float, kind: str = "pointer") -> None:
        self._dispatch(Activity(now, kind))

    def continue_session(self, now: float) -> None:
        self._dispatch(Continue(now))

    def dismiss_warning(self, now: float) -> None:
        self._dispatch(Dismiss(now))

    def revoke(self, now: float) -> None:
        """Upstream invalidation: same path as reaching the ceiling."""
        if self.inert or self.ended:
            return
        self.tracker.invalidate()
        self.monitor.dispatch(CeilingReached(now))

    def logout(self) -> bool:
        return self._end_session("logout")

    def next_deadline(self) -> Optional[float]:
        """Earliest wall-clock instant at which the state can change."""
        if self.inert or self.ended:
            return None
        candidates = [self.tracker.absolute_expiry, self.monitor.next_deadline()]
        return min(c for c in candidates if c is not None)

    def render(self, now: float) -> RenderState:
        if self.inert:
            return RenderState(
                remaining_seconds=None,
                warning_active=False,
                warning_seconds_left=0,
                status=MonitorStatus.ACTIVE.value,
            )

        remaining = self.tracker.remaining_seconds
        if remaining is None:
            remaining = self.tracker.remaining_at(now)

        state = self.monitor.state
        ended = self.ended
        return RenderState(
            remaining_seconds=0 if ended else remaining,
            warning_active=(not ended and state.status is MonitorStatus.WARNING and state.popup_visible),
            warning_seconds_left=self.monitor.warning_seconds_left(now),
            status=MonitorStatus.EXPIRED.value if ended else state.status.value,
            ended=ended,
            end_reason=self.end_reason,
        )
