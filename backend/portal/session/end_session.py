# portal/session/end_session.py
from __future__ import annotations

import threading
from typing import Callable, Optional, Protocol

from portal.logs import get_logger
from portal.public_routes import is_public_path

logger = get_logger(__name__)

# runs a blocking job somewhere that is not the caller's thread
Offload = Callable[[str, Callable[[], None]], None]


class SessionInvalidator(Protocol):
    """Identity collaborator, write side."""

    def invalidate_session(self, reason: str) -> None: ...


class Navigator(Protocol):
    def redirect(self, path: str) -> None: ...


class EndSessionAction:
    """
    Ends a session exactly once: invalidate credentials, then send the user
    to the login surface.

    Later calls are no-ops and return False. Failures in either collaborator
    are logged and swallowed so the session is still considered ended
    locally; nothing is retried.

    With an offload runner the invalidation is handed to it and the call
    returns without waiting; the session counts as ended immediately.
    """

    def __init__(
        self,
        identity: SessionInvalidator,
        navigator: Navigator,
        login_path: str = "/login",
        current_path: Callable[[], Optional[str]] = lambda: None,
        offload: Optional[Offload] = None,
    ) -> None:
        self._identity = identity
        self._navigator = navigator
        self._login_path = login_path
        self._current_path = current_path
        self._offload = offload
        self._lock = threading.Lock()
        self._ended = False
        self.reason: Optional[str] = None

    @property
    def ended(self) -> bool:
        return self._ended

    def use_offload(self, offload: Optional[Offload]) -> None:
        self._offload = offload

    def _invalidate(self, reason: str) -> None:
        try:
            self._identity.invalidate_session(reason)
        except Exception:
            logger.exception("session_invalidate_failed", reason=reason)

    def __call__(self, reason: str = "logout") -> bool:
        with self._lock:
            if self._ended:
                return False
            self._ended = True
            self.reason = reason

        logger.info("session_ending", reason=reason)

        if self._offload is not None:
            self._offload("invalidate_session", lambda: self._invalidate(reason))
        else:
            self._invalidate(reason)

        path = self._current_path()
        if is_public_path(path):
            logger.info("session_end_redirect_skipped", path=path)
            return True

        try:
            self._navigator.redirect(self._login_path)
        except Exception:
            logger.exception("session_end_redirect_failed", target=self._login_path)
        return True
