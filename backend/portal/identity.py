# portal/identity.py
from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional, Union

from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portal.config import Settings
from portal.database import Database
from portal.logs import get_logger
from portal.models import RevokedSession, User

logger = get_logger(__name__)

PROVIDER_CREDENTIALS = "credentials"
PROVIDER_SSO = "sso"


# -------------------------------------------------------------------
# Provider variants
# -------------------------------------------------------------------
@dataclass(frozen=True)
class CredentialsIdentity:
    user_id: int
    email: str
    name: str
    provider: Literal["credentials"] = PROVIDER_CREDENTIALS


@dataclass(frozen=True)
class SsoIdentity:
    user_id: int
    email: str
    name: str
    # epoch seconds the issuer put on its token, if any
    provider_expires_at: Optional[float] = None
    access_token: Optional[str] = field(default=None, repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    provider: Literal["sso"] = PROVIDER_SSO


ProviderIdentity = Union[CredentialsIdentity, SsoIdentity]


@dataclass(frozen=True)
class EstablishedSession:
    """
    Provider-neutral view of a logged-in session. This is all the session
    timers ever see.
    """

    sid: str
    subject_id: int
    email: str
    absolute_expiry: float
    established_at: float
    provider: str = PROVIDER_CREDENTIALS

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.absolute_expiry, tz=timezone.utc)

    @property
    def established(self) -> datetime:
        return datetime.fromtimestamp(self.established_at, tz=timezone.utc)

    def remaining_seconds(self, now: float) -> int:
        return max(0, int(self.absolute_expiry - now))


def new_session_id() -> str:
    return secrets.token_urlsafe(24)


def establish_session(
    identity: ProviderIdentity,
    max_age_seconds: int,
    now: Optional[float] = None,
) -> EstablishedSession:
    """
    Fix the absolute expiry for a new login.

    Credentials sessions last max_age_seconds. SSO sessions use the
    issuer's expiry when it is present and still in the future, otherwise
    the same default.
    """
    now = time.time() if now is None else now
    expiry = now + max_age_seconds

    if isinstance(identity, SsoIdentity):
        if identity.provider_expires_at and identity.provider_expires_at > now:
            expiry = float(identity.provider_expires_at)

    session = EstablishedSession(
        sid=new_session_id(),
        subject_id=identity.user_id,
        email=identity.email,
        absolute_expiry=expiry,
        established_at=now,
        provider=identity.provider,
    )
    logger.info(
        "session_established",
        subject_id=session.subject_id,
        provider=session.provider,
        expires_at=session.expires_at.isoformat(),
    )
    return session


# -------------------------------------------------------------------
# Provider authentication
# -------------------------------------------------------------------
def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def find_user_by_email(db: Session, email: str) -> Optional[User]:
    email_n = normalize_email(email)
    if not email_n:
        return None
    return db.scalar(select(User).where(User.email == email_n))


def authenticate_credentials(db: Session, email: str, password: str) -> Optional[CredentialsIdentity]:
    # local import: auth imports this module
    from portal.auth import verify_password

    if not email or not password:
        return None

    user = find_user_by_email(db, email)
    if not user or not verify_password(password, user.hashed_password):
        logger.info("credentials_login_rejected", email=normalize_email(email))
        return None

    return CredentialsIdentity(user_id=user.id, email=user.email, name=user.name)


def authenticate_sso(db: Session, id_token: str, settings: Settings) -> Optional[SsoIdentity]:
    """
    Verify an id token from the configured issuer and map it to a local user.
    SSO users must have signed up first; unknown emails are refused.
    """
    if not settings.sso_enabled or not id_token:
        return None

    options = {"verify_aud": bool(settings.sso_audience)}
    try:
        claims = jwt.decode(
            id_token,
            settings.sso_public_key,
            algorithms=[settings.sso_algorithm],
            audience=settings.sso_audience or None,
            issuer=settings.sso_issuer,
            options=options,
        )
    except JWTError as e:
        logger.info("sso_token_rejected", error=str(e))
        return None

    email = normalize_email(claims.get("email"))
    user = find_user_by_email(db, email)
    if not user:
        logger.info("sso_user_not_registered", email=email)
        return None

    exp = claims.get("exp")
    return SsoIdentity(
        user_id=user.id,
        email=user.email,
        name=claims.get("name") or claims.get("preferred_username") or user.name,
        provider_expires_at=float(exp) if exp else None,
        access_token=id_token,
    )


# -------------------------------------------------------------------
# Revocation (identity collaborator, write side)
# -------------------------------------------------------------------
def is_revoked(db: Session, sid: str) -> bool:
    return db.scalar(select(RevokedSession.id).where(RevokedSession.sid == sid)) is not None


def revoke(db: Session, sid: str, subject_id: int, reason: str) -> bool:
    """Returns False if the session was already revoked."""
    if is_revoked(db, sid):
        return False
    db.add(RevokedSession(sid=sid, subject_id=subject_id, reason=reason))
    try:
        db.commit()
    except IntegrityError:
        # lost a race with another revoke of the same sid
        db.rollback()
        return False
    return True


class SessionStore:
    """
    Identity collaborator for one session: read the current session, or
    invalidate it. Opens its own short-lived db sessions so it can be used
    from timer callbacks.
    """

    def __init__(self, database: Database, session: EstablishedSession) -> None:
        self._database = database
        self._session = session

    def current_session(self) -> Optional[EstablishedSession]:
        db = self._database.session()
        try:
            if is_revoked(db, self._session.sid):
                return None
        finally:
            db.close()
        return self._session

    def invalidate_session(self, reason: str) -> None:
        db = self._database.session()
        try:
            if revoke(db, self._session.sid, self._session.subject_id, reason):
                logger.info("session_revoked", sid=self._session.sid, reason=reason)
        finally:
            db.close()
