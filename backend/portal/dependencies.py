# portal/dependencies.py

from typing import Callable, Optional

from fastapi import Request

from .config import Settings
from .identity import EstablishedSession, SessionStore
from .logs import get_logger
from .public_routes import is_public_path
from .session.controller import SessionController
from .session.end_session import EndSessionAction
from .session.inactivity import InactivityConfig
from .session.supervisor import SessionRegistry, SessionSupervisor

logger = get_logger(__name__)

Clock = Callable[[], float]


class ClientNavigator:
    """
    Navigation collaborator for an HTTP client.

    The server cannot move the browser, so a redirect is recorded and handed
    back on the next /session/state read. The client reports where it is so
    the end-session action can tell whether it is already on a public page.
    """

    def __init__(self) -> None:
        self.location: Optional[str] = None
        self.redirect_to: Optional[str] = None

    def report(self, path: Optional[str]) -> None:
        if path:
            self.location = path

    def redirect(self, path: str) -> None:
        self.redirect_to = path

    def pending_redirect(self, ended: bool, login_path: str) -> Optional[str]:
        """Where the client should go now, judged by its latest location."""
        if not ended or is_public_path(self.location):
            return None
        return self.redirect_to or login_path


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def inactivity_config(settings: Settings) -> InactivityConfig:
    return InactivityConfig(
        inactivity_timeout=settings.inactivity_timeout_seconds,
        warning_duration=settings.inactivity_warning_seconds,
        debounce=settings.activity_debounce_seconds,
    )


def build_supervisor(request: Request, session: EstablishedSession) -> SessionSupervisor:
    """
    Wire one session: identity store + navigator -> end-session action ->
    controller -> supervisor. Must run on the event loop.
    """
    settings: Settings = request.app.state.settings
    clock = get_clock(request)

    navigator = ClientNavigator()
    end_session = EndSessionAction(
        SessionStore(request.app.state.database, session),
        navigator,
        login_path=settings.login_path,
        current_path=lambda: navigator.location,
    )
    controller = SessionController(
        session.absolute_expiry,
        inactivity_config(settings),
        end_session,
        now=clock(),
    )
    return SessionSupervisor(
        controller,
        clock=clock,
        tick_interval=settings.session_tick_seconds,
        navigator=navigator,
    )


def session_supervisor(request: Request, session: EstablishedSession) -> SessionSupervisor:
    registry = get_registry(request)
    created = session.sid not in registry
    sup = registry.get_or_create(session.sid, lambda: build_supervisor(request, session))
    if created:
        logger.info("session_supervisor_started", sid=session.sid, subject_id=session.subject_id)
    return sup

