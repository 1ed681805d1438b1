# portal/routers/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portal import auth, email_templates, identity, models, schemas
from portal.database import get_db
from portal.dependencies import get_clock, get_registry, session_supervisor
from portal.emailer import send_email_if_configured
from portal.identity import EstablishedSession
from portal.logs import get_logger

router = APIRouter(prefix="/auth", tags=["auth"])
logger = get_logger(__name__)


def _token_out(session: EstablishedSession, token: str) -> schemas.TokenOut:
    return schemas.TokenOut(
        access_token=token,
        session=schemas.SessionOut(
            subject_id=session.subject_id,
            provider=session.provider,
            established_at=session.established,
            expires_at=session.expires_at,
        ),
    )


def _login(request: Request, ident: identity.ProviderIdentity) -> schemas.TokenOut:
    settings = auth.get_settings(request)
    session = identity.establish_session(
        ident,
        settings.session_max_age_seconds,
        now=get_clock(request)(),
    )
    # the inactivity clock starts at login, not at the first poll
    session_supervisor(request, session)
    return _token_out(session, auth.create_access_token(session, settings))


# -----------------------------
# Signup
# -----------------------------
@router.post("/signup", response_model=schemas.UserOut, status_code=201)
def signup(payload: schemas.SignupIn, request: Request, db: Session = Depends(get_db)):
    email = identity.normalize_email(payload.email)
    if identity.find_user_by_email(db, email):
        raise HTTPException(status_code=400, detail={"code": "EMAIL_EXISTS", "message": "User already exists"})

    user = models.User(
        name=payload.name,
        email=email,
        hashed_password=auth.hash_password(payload.password),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail={"code": "EMAIL_EXISTS", "message": "User already exists"})
    db.refresh(user)
    logger.info("user_signed_up", user_id=user.id)

    settings = auth.get_settings(request)
    parts = email_templates.welcome(settings.smtp_from_name, user.name, user.email, settings.app_base_url)
    if not send_email_if_configured(settings, user.email, parts):
        logger.info("welcome_email_not_sent", user_id=user.id)

    return user


# -----------------------------
# Login (credentials + SSO)
# -----------------------------
@router.post("/login", response_model=schemas.TokenOut)
async def login(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
):
    ident = identity.authenticate_credentials(db, form_data.username, form_data.password)
    if ident is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _login(request, ident)


@router.post("/sso", response_model=schemas.TokenOut)
async def sso_login(payload: schemas.SsoLoginIn, request: Request, db: Session = Depends(get_db)):
    settings = auth.get_settings(request)
    if not settings.sso_enabled:
        raise HTTPException(status_code=503, detail={"code": "SSO_DISABLED", "message": "SSO is not configured"})

    ident = identity.authenticate_sso(db, payload.id_token, settings)
    if ident is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="SSO login rejected",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _login(request, ident)


# -----------------------------
# Refresh / logout
# -----------------------------
@router.post("/refresh", response_model=schemas.TokenOut)
def refresh(request: Request, session: EstablishedSession = Depends(auth.get_current_session)):
    token = auth.refresh_access_token(session, auth.get_settings(request))
    return _token_out(session, token)


@router.post("/logout")
async def logout(
    request: Request,
    session: EstablishedSession = Depends(auth.get_token_session),
    db: Session = Depends(get_db),
):
    sup = get_registry(request).get(session.sid)
    if sup is not None:
        ended_now = sup.logout()
    else:
        # no live timers for this session (e.g. after a restart)
        ended_now = identity.revoke(db, session.sid, session.subject_id, "logout")

    logger.info("session_logout", sid=session.sid, subject_id=session.subject_id)
    return {"ok": True, "ended": bool(ended_now), "redirect_to": auth.get_settings(request).login_path}
