# portal/auth.py
import math
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .config import Settings
from .database import get_db
from .identity import EstablishedSession, is_revoked
from .models import User

# -------------------------------------------------------------------
# Password hashing
# -------------------------------------------------------------------
pwd_context = CryptContext(
    schemes=["bcrypt_sha256", "bcrypt"],
    deprecated="auto",
)

# Swagger will use this to send: Authorization: Bearer <token>
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

MIN_PASSWORD_LENGTH = 6


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        # unknown / corrupted hash format
        return False


# -------------------------------------------------------------------
# JWT create/verify
# -------------------------------------------------------------------
def create_access_token(session: EstablishedSession, settings: Settings) -> str:
    """
    Token claims:
      sub: email (debug/compat)
      uid: user id
      sid: session id (revocation key)
      prv: provider (credentials/sso)
      iat: when the session was established
      aex: absolute expiry, epoch seconds; copied verbatim on refresh
      exp: same instant as aex, so an expired token fails decoding
    """
    payload = {
        "sub": session.email,
        "uid": int(session.subject_id),
        "sid": session.sid,
        "prv": session.provider,
        "iat": int(session.established_at),
        "aex": float(session.absolute_expiry),
        "exp": int(math.ceil(session.absolute_expiry)),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings, verify_exp: bool = True) -> dict:
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"verify_exp": verify_exp},
        )
        if not payload.get("uid") or not payload.get("sid") or not payload.get("aex"):
            raise ValueError("Token missing required claims")
        return payload
    except (JWTError, ValueError) as e:
        raise ValueError("Invalid token") from e


def session_from_claims(payload: dict) -> EstablishedSession:
    return EstablishedSession(
        sid=str(payload["sid"]),
        subject_id=int(payload["uid"]),
        email=str(payload.get("sub") or ""),
        absolute_expiry=float(payload["aex"]),
        established_at=float(payload.get("iat") or 0),
        provider=str(payload.get("prv") or "credentials"),
    )


def refresh_access_token(session: EstablishedSession, settings: Settings) -> str:
    """
    Reissue a token for an existing session. The absolute expiry comes from
    the session itself; refresh never moves it.
    """
    return create_access_token(session, settings)


def _auth_401(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# -------------------------------------------------------------------
# Dependencies
# -------------------------------------------------------------------
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_current_session(
    request: Request,
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> EstablishedSession:
    """
    Validates the Bearer token and returns the established session.
    Revoked or past-expiry sessions are rejected.
    """
    settings = get_settings(request)
    try:
        session = session_from_claims(decode_token(token, settings))
    except (ValueError, KeyError, TypeError):
        raise _auth_401()

    now = request.app.state.clock()
    if now >= session.absolute_expiry:
        raise _auth_401("Session expired")

    # ended locally; the revocation row may still be on its way
    live = request.app.state.sessions.get(session.sid)
    if live is not None and live.ended:
        raise _auth_401("Session ended")

    if is_revoked(db, session.sid):
        raise _auth_401("Session ended")

    return session


def get_token_session(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> EstablishedSession:
    """
    Signature-checked session for the /session endpoints. Expired or revoked
    sessions are let through so the caller can be told the session ended
    and where to go next.
    """
    try:
        return session_from_claims(decode_token(token, get_settings(request), verify_exp=False))
    except (ValueError, KeyError, TypeError):
        raise _auth_401()


def get_current_user(
    session: EstablishedSession = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> User:
    user: Optional[User] = db.get(User, session.subject_id)
    if not user:
        raise _auth_401()
    return user
