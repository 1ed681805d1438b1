# portal/emailer.py

import smtplib
import socket
from email.message import EmailMessage

from portal.config import Settings
from portal.email_templates import EmailParts
from portal.logs import get_logger

logger = get_logger(__name__)


def email_configured(settings: Settings) -> bool:
    return bool(settings.smtp_host and settings.smtp_username and settings.smtp_password and settings.smtp_sender)


def send_email_if_configured(settings: Settings, to_email: str, parts: EmailParts) -> bool:
    """
    Sends email only if SMTP is configured.
    NEVER raises. Returns True if attempted+sent, False if skipped/failed.
    """
    if not settings.email_enabled:
        return False

    # If not configured, skip quietly
    if not email_configured(settings):
        logger.warning("email_skipped", reason="missing SMTP_* settings", to=to_email)
        return False

    try:
        msg = EmailMessage()
        msg["Subject"] = parts.subject
        msg["From"] = f"{settings.smtp_from_name} <{settings.smtp_sender}>"
        msg["To"] = to_email
        msg.set_content(parts.body)

        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=15) as server:
            server.ehlo()
            server.starttls()
            server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(msg)

        logger.info("email_sent", to=to_email, subject=parts.subject)
        return True

    except socket.gaierror as e:
        logger.error("email_failed", reason="smtp host lookup failed", host=settings.smtp_host, error=str(e))
        return False
    except (smtplib.SMTPException, OSError) as e:
        logger.error("email_failed", to=to_email, error=str(e))
        return False
