# portal/session/supervisor.py
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Dict, Optional, Set

from portal.logs import get_logger
from portal.session.controller import RenderState, SessionController
from portal.session.end_session import Navigator
from portal.session.inactivity import MonitorStatus

logger = get_logger(__name__)

Clock = Callable[[], float]

TIMER_COUNTDOWN = "countdown"
TIMER_WARNING = "inactivity_warning"
TIMER_EXPIRY = "warning_expiry"


class TimerScope:
    """
    Owns every timer handle belonging to one session.

    close() cancels all of them; it is called on every exit path and is
    safe to call more than once. Use as a context manager to get the same
    guarantee around a block.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._handles: Dict[str, asyncio.TimerHandle] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._background: Set[asyncio.Future] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def live(self) -> set[str]:
        names = {n for n, h in self._handles.items() if not h.cancelled()}
        names.update(n for n, t in self._tasks.items() if not t.done())
        return names

    def call_later(self, name: str, delay: float, callback: Callable[[], None]) -> None:
        """Schedule (or re-schedule) the named one-shot timer."""
        if self._closed:
            return
        self.cancel(name)

        def _fire() -> None:
            self._handles.pop(name, None)
            callback()

        self._handles[name] = self._loop.call_later(max(0.0, delay), _fire)

    def spawn(self, name: str, factory: Callable[[], Awaitable[None]]) -> None:
        if self._closed:
            return
        self.cancel(name)
        self._tasks[name] = self._loop.create_task(factory(), name=name)

    @property
    def pending(self) -> int:
        return len(self._background)

    def run_blocking(self, name: str, job: Callable[[], None]) -> None:
        """
        Run a blocking job on the loop's executor. Unlike timers these are
        not cancelled by close(); drain() waits for them.
        """
        fut = self._loop.run_in_executor(None, job)
        self._background.add(fut)

        def _done(f: asyncio.Future) -> None:
            self._background.discard(f)
            if f.cancelled():
                logger.warning("session_job_cancelled", job=name)
            elif f.exception() is not None:
                logger.error("session_job_failed", job=name, error=str(f.exception()))
            else:
                logger.info("session_job_done", job=name)

        fut.add_done_callback(_done)

    async def drain(self) -> None:
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def cancel(self, name: str) -> None:
        handle = self._handles.pop(name, None)
        if handle is not None:
            handle.cancel()
        task = self._tasks.pop(name, None)
        if task is not None and task is not _current_task():
            task.cancel()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for name in list(self._handles) + list(self._tasks):
            self.cancel(name)

    def __enter__(self) -> "TimerScope":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class SessionSupervisor:
    """
    Drives a SessionController from the event loop.

    Three timers per session: the once-a-second countdown tick, the
    inactivity-to-warning deadline and the warning-to-expired deadline.
    Deadlines are re-armed after every event. When the session ends all
    timers go away together.
    """

    def __init__(
        self,
        controller: SessionController,
        clock: Clock = time.time,
        tick_interval: float = 1.0,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        navigator: Optional[Navigator] = None,
    ) -> None:
        self.controller = controller
        self.navigator = navigator
        self._clock = clock
        self._tick_interval = tick_interval
        self._scope = TimerScope(loop)
        # the end-session db write must not block the loop
        controller.end_session.use_offload(self._scope.run_blocking)

    @property
    def scope(self) -> TimerScope:
        return self._scope

    @property
    def ended(self) -> bool:
        return self.controller.ended

    def start(self) -> None:
        if self.controller.inert:
            # no expiry -> nothing to count down
            return
        self._scope.spawn(TIMER_COUNTDOWN, self._countdown)
        self._rearm()

    async def _countdown(self) -> None:
        while not self._scope.closed:
            self.tick()
            if self._scope.closed:
                return
            await asyncio.sleep(self._tick_interval)

    def _run(self, name: str, step: Callable[[float], None]) -> None:
        if self._scope.closed:
            return
        try:
            step(self._clock())
        except Exception:
            # never let a timer callback kill the loop; the session stays as it was
            logger.exception("session_timer_callback_failed", timer=name)

        if self.controller.ended:
            self.close()
        else:
            self._rearm()

    def _rearm(self) -> None:
        if self._scope.closed:
            return
        state = self.controller.monitor.state
        config = self.controller.config
        now = self._clock()

        if state.status is MonitorStatus.ACTIVE:
            self._scope.cancel(TIMER_EXPIRY)
            deadline = state.warning_deadline(config)
            if deadline is not None:
                self._scope.call_later(TIMER_WARNING, deadline - now, self.tick)
        elif state.status is MonitorStatus.WARNING:
            self._scope.cancel(TIMER_WARNING)
            deadline = state.expiry_deadline(config)
            if deadline is not None:
                self._scope.call_later(TIMER_EXPIRY, deadline - now, self.tick)

    # -------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------
    def tick(self) -> None:
        self._run("tick", self.controller.tick)

    def activity(self, kind: str = "pointer") -> None:
        self._run("activity", lambda now: self.controller.activity(now, kind))

    def continue_session(self) -> None:
        self._run("continue", self.controller.continue_session)

    def dismiss_warning(self) -> None:
        self._run("dismiss", self.controller.dismiss_warning)

    def revoke(self) -> None:
        self._run("revoke", self.controller.revoke)

    def logout(self) -> bool:
        try:
            return self.controller.logout()
        finally:
            self.close()

    def render(self) -> RenderState:
        return self.controller.render(self._clock())

    def close(self) -> None:
        self._scope.close()


class SessionRegistry:
    """
    Live supervisors keyed by session id. Each entry is independent; the
    registry only finds them and shuts them all down on app shutdown.
    """

    def __init__(self) -> None:
        self._items: Dict[str, SessionSupervisor] = {}
        self._retired: list[TimerScope] = []

    def __contains__(self, sid: str) -> bool:
        return sid in self._items

    def __len__(self) -> int:
        return len(self._items)

    def get(self, sid: str) -> Optional[SessionSupervisor]:
        return self._items.get(sid)

    def get_or_create(self, sid: str, factory: Callable[[], SessionSupervisor]) -> SessionSupervisor:
        self._prune(keep=sid)
        sup = self._items.get(sid)
        if sup is None or (sup.scope.closed and not sup.ended):
            sup = factory()
            self._items[sid] = sup
            sup.start()
        return sup

    def _prune(self, keep: str) -> None:
        for sid, sup in list(self._items.items()):
            if sid != keep and sup.ended:
                self.discard(sid)

    def discard(self, sid: str) -> None:
        sup = self._items.pop(sid, None)
        if sup is not None:
            sup.close()
            self._retired = [s for s in self._retired if s.pending]
            if sup.scope.pending:
                self._retired.append(sup.scope)

    def close_all(self) -> None:
        for sid in list(self._items):
            self.discard(sid)

    async def shutdown(self) -> None:
        """Close every session and wait for their background jobs."""
        self.close_all()
        scopes, self._retired = self._retired, []
        await asyncio.gather(*(s.drain() for s in scopes))
