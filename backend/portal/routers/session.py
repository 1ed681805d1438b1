# portal/routers/session.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from portal import auth, identity, schemas
from portal.database import get_db
from portal.dependencies import session_supervisor
from portal.identity import EstablishedSession
from portal.session.supervisor import SessionSupervisor

# Render-state endpoints polled by the session timer and warning popup.
router = APIRouter(prefix="/session", tags=["session"])


def _supervisor(
    request: Request,
    session: EstablishedSession,
    db: Session,
    path: Optional[str] = None,
) -> SessionSupervisor:
    sup = session_supervisor(request, session)
    if sup.navigator is not None:
        sup.navigator.report(path)

    # revoked elsewhere (another tab logged out): end here too
    if not sup.ended and identity.is_revoked(db, session.sid):
        sup.revoke()
    return sup


def _state(request: Request, sup: SessionSupervisor) -> schemas.SessionStateOut:
    rs = sup.render()
    redirect_to = None
    if sup.navigator is not None:
        redirect_to = sup.navigator.pending_redirect(rs.ended, auth.get_settings(request).login_path)
    return schemas.SessionStateOut(
        remaining_seconds=rs.remaining_seconds,
        warning_active=rs.warning_active,
        warning_seconds_left=rs.warning_seconds_left,
        status=rs.status,
        ended=rs.ended,
        end_reason=rs.end_reason,
        redirect_to=redirect_to,
    )


@router.get("/state", response_model=schemas.SessionStateOut)
async def session_state(
    request: Request,
    path: Optional[str] = Query(default=None, description="Page the client is on"),
    session: EstablishedSession = Depends(auth.get_token_session),
    db: Session = Depends(get_db),
):
    sup = _supervisor(request, session, db, path)
    sup.tick()
    return _state(request, sup)


@router.post("/activity", response_model=schemas.SessionStateOut)
async def session_activity(
    payload: schemas.ActivityIn,
    request: Request,
    session: EstablishedSession = Depends(auth.get_token_session),
    db: Session = Depends(get_db),
):
    sup = _supervisor(request, session, db, payload.path)
    sup.activity(payload.kind)
    return _state(request, sup)


@router.post("/continue", response_model=schemas.SessionStateOut)
async def session_continue(
    request: Request,
    session: EstablishedSession = Depends(auth.get_token_session),
    db: Session = Depends(get_db),
):
    sup = _supervisor(request, session, db)
    sup.continue_session()
    return _state(request, sup)


@router.post("/dismiss", response_model=schemas.SessionStateOut)
async def session_dismiss(
    request: Request,
    session: EstablishedSession = Depends(auth.get_token_session),
    db: Session = Depends(get_db),
):
    sup = _supervisor(request, session, db)
    sup.dismiss_warning()
    return _state(request, sup)
