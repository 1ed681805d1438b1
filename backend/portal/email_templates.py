# portal/email_templates.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class EmailParts:
    subject: str
    body: str


def _clean(s: Optional[str]) -> str:
    return (s or "").strip()


def _line(label: str, value: Optional[str]) -> str:
    v = _clean(value) or "—"
    return f"{label}: {v}"


def _footer(org_name: str) -> str:
    return (
        "\n\n"
        "If you have any questions or need assistance, just reply to this email.\n\n"
        "Regards,\n"
        f"{org_name}\n"
    )


def _dashboard_link(base_url: str) -> str:
    base = _clean(base_url).rstrip("/")
    if not base:
        return ""
    return f"\n\nGo to your dashboard: {base}/dashboard"


def welcome(org_name: str, name: str, email: str, base_url: str = "") -> EmailParts:
    subject = f"Welcome to {org_name}"
    body = (
        f"Hello {_clean(name) or 'there'},\n\n"
        "Your account has been created. Choose a membership plan from your dashboard "
        "to activate your membership.\n\n"
        f"{_line('Account', email)}"
        f"{_dashboard_link(base_url)}"
        f"{_footer(org_name)}"
    )
    return EmailParts(subject=subject, body=body)


def membership_activated(
    org_name: str,
    name: str,
    tier_name: str,
    amount: Optional[float],
    currency: Optional[str],
    period_end: Optional[datetime],
    receipt_url: Optional[str] = None,
    base_url: str = "",
) -> EmailParts:
    subject = f"{org_name} — {tier_name} activated"
    paid = f"{amount:.2f} {(currency or '').upper()}".strip() if amount is not None else None
    body = (
        f"Hello {_clean(name) or 'there'},\n\n"
        "Thank you for your payment. Your membership is now active.\n\n"
        f"{_line('Plan', tier_name)}\n"
        f"{_line('Amount', paid)}\n"
        f"{_line('Valid until', period_end.strftime('%m/%d/%Y') if period_end else None)}"
        + (f"\n{_line('Receipt', receipt_url)}" if receipt_url else "")
        + f"{_dashboard_link(base_url)}"
        f"{_footer(org_name)}"
    )
    return EmailParts(subject=subject, body=body)
