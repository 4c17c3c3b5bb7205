"""
Email delivery orchestrator — SMTP (primary) with Brevo (fallback).

Delivery order:
  1. SMTP (aiosmtplib) — if configured
  2. Brevo REST API    — if SMTP fails or is not configured

With no provider configured the send is skipped with a warning, so local
development works without a mail server.  When providers are configured and
all of them fail, EmailDeliveryFailed is raised; callers on a best-effort path
catch it, callers whose response depends on the email let it propagate.
"""
from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from urllib.parse import urlencode

from identity.config import Settings
from identity.email import brevo, smtp
from identity.exceptions import EmailDeliveryFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    ok: bool
    provider: str | None = None
    skipped: bool = False


class Mailer:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def send(self, to: str, subject: str, text: str, html_body: str = "") -> DeliveryResult:
        s = self._settings
        attempted = False

        if smtp.is_configured(s):
            attempted = True
            if await smtp.deliver(to, subject, text, html_body, s):
                return DeliveryResult(ok=True, provider="smtp")
            logger.warning("SMTP failed for %s, falling back to Brevo", to)

        if brevo.is_configured(s):
            attempted = True
            if await brevo.deliver(to, subject, text, html_body, s):
                return DeliveryResult(ok=True, provider="brevo")
            logger.error("Brevo fallback also failed for %s", to)

        if attempted:
            raise EmailDeliveryFailed()

        logger.warning("No email provider configured, skipping email to %s", to)
        return DeliveryResult(ok=False, skipped=True)


# ── Templates ────────────────────────────────────────────────────────────────


def verification_link(settings: Settings, email: str, token: str) -> str:
    query = urlencode({"email": email, "token": token})
    return f"{settings.app_base_url.rstrip('/')}/verify-email?{query}"


async def send_email_verification(
    mailer: Mailer,
    to_email: str,
    name: str | None,
    verification_url: str,
    expires_hours: int,
) -> DeliveryResult:
    greeting = f"Hi {name}," if name else "Hi,"
    text = (
        f"{greeting}\n\n"
        "Please verify your email address by opening the link below:\n\n"
        f"{verification_url}\n\n"
        f"This link expires in {expires_hours} hours. "
        "If you did not create an account, you can safely ignore this email.\n"
    )
    url = html.escape(verification_url, quote=True)
    body = (
        f"<p>{html.escape(greeting)}</p>"
        "<p>Please verify your email address by clicking the button below.</p>"
        f"<p style='text-align:center;margin:32px 0'>"
        f"<a href='{url}' "
        f"style='background:#2563eb;color:#fff;padding:14px 28px;border-radius:6px;"
        f"text-decoration:none;font-weight:bold'>Verify Email Address</a></p>"
        "<p>Or copy and paste this link into your browser:</p>"
        f"<p style='word-break:break-all;color:#6b7280'>{url}</p>"
        f"<p>This link expires in <strong>{expires_hours} hours</strong>. "
        "If you did not create an account, you can safely ignore this email.</p>"
    )
    return await mailer.send(to_email, "Verify your email address", text, body)


async def send_password_reset_code(
    mailer: Mailer,
    to_email: str,
    code: str,
    expires_minutes: int,
) -> DeliveryResult:
    text = (
        "We received a request to reset your password.\n\n"
        f"Your reset code: {code}\n\n"
        f"This code expires in {expires_minutes} minutes. "
        "If you did not request a password reset, you can safely ignore this email.\n"
    )
    body = (
        "<p>We received a request to reset your password.</p>"
        f"<p>Your reset code: <strong style='font-size:24px;letter-spacing:4px'>"
        f"{html.escape(code)}</strong></p>"
        f"<p>This code expires in <strong>{expires_minutes} minutes</strong>.</p>"
        "<p style='color:#6b7280;font-size:13px;margin-top:32px'>"
        "If you did not request a password reset, you can safely ignore this email. "
        "Your password will not change.</p>"
    )
    return await mailer.send(to_email, "Your password reset code", text, body)
