# portal/authz_errors.py
from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from portal.exceptions import PortalError
from portal.logs import get_logger
from portal.schemas import ErrorResponse

logger = get_logger(__name__)


def _wants_html(request: Request) -> bool:
    accept = (request.headers.get("accept") or "").lower()
    # browsers usually send text/html
    return "text/html" in accept


def _login_redirect(request: Request) -> RedirectResponse:
    login_path = request.app.state.settings.login_path
    return RedirectResponse(url=login_path, status_code=303)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Unauthenticated → send to login page in browser
    if exc.status_code == 401:
        if _wants_html(request):
            return _login_redirect(request)
        return JSONResponse(
            status_code=401,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    # Everything else: normal JSON
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def portal_error_handler(request: Request, exc: PortalError):
    logger.error(
        "portal_error",
        error_code=exc.error_code,
        message=exc.message,
        detail=exc.detail,
        path=request.url.path,
    )
    body = ErrorResponse(error_code=exc.error_code, message=exc.message, detail=exc.detail)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())
