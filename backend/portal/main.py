# portal/main.py
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from dotenv import find_dotenv, load_dotenv
from fastapi import FastAPI
from fastapi.responses import RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from portal.authz_errors import http_exception_handler, portal_error_handler
from portal.config import Settings
from portal.database import Database
from portal.exceptions import PortalError
from portal.logs import get_logger, setup_logging
from portal.routers import auth, billing, checkout, dashboard, membership, payment_methods, session
from portal.session.supervisor import SessionRegistry

# -------------------------------------------------
# LOAD .env ONCE (before any settings are read)
# -------------------------------------------------
load_dotenv(find_dotenv(usecwd=True))

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    setup_logging(log_level=settings.log_level, debug=settings.debug)
    app.state.database.init()
    logger.info("portal_started", billing_enabled=settings.billing_enabled, sso_enabled=settings.sso_enabled)
    try:
        yield
    finally:
        # every live session timer goes away with the loop
        await app.state.sessions.shutdown()
        app.state.database.dispose()
        logger.info("portal_stopped")


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(title="Membership Portal", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database or Database(settings.database_url)
    app.state.clock = clock or time.time
    app.state.sessions = SessionRegistry()

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(PortalError, portal_error_handler)

    app.include_router(auth.router)
    app.include_router(session.router)
    app.include_router(dashboard.router)
    app.include_router(checkout.router)
    app.include_router(membership.router)
    app.include_router(payment_methods.router)
    app.include_router(billing.router)

    # -------------------------------------------------
    # ROOT + HEALTH
    # -------------------------------------------------
    @app.get("/", include_in_schema=False)
    def root():
        return RedirectResponse(url=settings.login_path)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
