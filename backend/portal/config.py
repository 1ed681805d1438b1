# portal/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(_env(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(_env(name, str(default)))
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    # Database
    database_url: str = "sqlite:///./portal.db"

    # JWT / sessions
    secret_key: str = "CHANGE_ME_TO_SOMETHING_RANDOM_AND_LONG"
    jwt_algorithm: str = "HS256"
    session_max_age_seconds: int = 20 * 60
    inactivity_timeout_seconds: float = 60
    inactivity_warning_seconds: float = 20
    activity_debounce_seconds: float = 1
    session_tick_seconds: float = 1
    login_path: str = "/login"

    # SSO (OIDC issuer, e.g. Keycloak)
    sso_issuer: str = ""
    sso_audience: str = ""
    sso_public_key: str = ""
    sso_algorithm: str = "RS256"

    # Stripe
    billing_enabled: bool = True
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    app_base_url: str = "http://127.0.0.1:8000"

    # Email (SMTP)
    email_enabled: bool = False
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from_name: str = "Membership Portal"
    smtp_from_email: str = ""

    # Logging
    log_level: str = "INFO"
    debug: bool = False

    @property
    def sso_enabled(self) -> bool:
        return bool(self.sso_issuer and self.sso_public_key)

    @property
    def smtp_sender(self) -> Optional[str]:
        return self.smtp_from_email or self.smtp_username or None

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from environment variables.
        Call after load_dotenv() so .env values are visible.
        """
        return cls(
            database_url=_env("DATABASE_URL", cls.database_url),
            secret_key=_env("SECRET_KEY", cls.secret_key),
            jwt_algorithm=_env("JWT_ALGORITHM", cls.jwt_algorithm),
            session_max_age_seconds=_env_int("SESSION_MAX_AGE_SECONDS", cls.session_max_age_seconds),
            inactivity_timeout_seconds=_env_float("INACTIVITY_TIMEOUT_SECONDS", cls.inactivity_timeout_seconds),
            inactivity_warning_seconds=_env_float("INACTIVITY_WARNING_SECONDS", cls.inactivity_warning_seconds),
            activity_debounce_seconds=_env_float("ACTIVITY_DEBOUNCE_SECONDS", cls.activity_debounce_seconds),
            session_tick_seconds=_env_float("SESSION_TICK_SECONDS", cls.session_tick_seconds),
            login_path=_env("LOGIN_PATH", cls.login_path),
            sso_issuer=_env("SSO_ISSUER"),
            sso_audience=_env("SSO_AUDIENCE"),
            sso_public_key=_env("SSO_PUBLIC_KEY").replace("\\n", "\n"),
            sso_algorithm=_env("SSO_ALGORITHM", cls.sso_algorithm),
            billing_enabled=_env_bool("BILLING_ENABLED", True),
            stripe_secret_key=_env("STRIPE_SECRET_KEY"),
            stripe_webhook_secret=_env("STRIPE_WEBHOOK_SECRET"),
            app_base_url=_env("APP_BASE_URL", cls.app_base_url).rstrip("/"),
            email_enabled=_env_bool("EMAIL_ENABLED", False),
            smtp_host=_env("SMTP_HOST"),
            smtp_port=_env_int("SMTP_PORT", cls.smtp_port),
            smtp_username=_env("SMTP_USERNAME"),
            smtp_password=_env("SMTP_PASSWORD"),
            smtp_from_name=_env("SMTP_FROM_NAME", cls.smtp_from_name),
            smtp_from_email=_env("SMTP_FROM_EMAIL"),
            log_level=_env("LOG_LEVEL", cls.log_level),
            debug=_env_bool("DEBUG", False),
        )
