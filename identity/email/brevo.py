"""
Brevo (Sendinblue) transactional email client — async httpx REST calls.

Fallback provider behind SMTP.  ``deliver`` logs on failure and reports
it through its return value; it never raises.
"""
from __future__ import annotations

import logging

import httpx

from identity.config import Settings

logger = logging.getLogger(__name__)
_BREVO_URL = "https://api.brevo.com/v3/smtp/email"


def is_configured(settings: Settings) -> bool:
    return bool(settings.brevo_api_key and settings.brevo_from_email)


def _payload(to_email: str, subject: str, text: str, html: str, s: Settings) -> dict:
    payload = {
        "sender": {"email": s.brevo_from_email, "name": s.brevo_from_name},
        "to": [{"email": to_email}],
        "subject": subject,
        "textContent": text,
    }
    if html:
        payload["htmlContent"] = html
    return payload


async def deliver(
    to_email: str,
    subject: str,
    text: str,
    html: str,
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    if not is_configured(settings):
        return False
    try:
        async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
            r = await client.post(
                _BREVO_URL,
                json=_payload(to_email, subject, text, html, settings),
                headers={"api-key": settings.brevo_api_key, "Content-Type": "application/json"},
            )
    except httpx.HTTPError as exc:
        logger.error("Brevo request failed: %s", exc)
        return False
    if r.status_code >= 400:
        logger.error("Brevo error %s: %s", r.status_code, r.text[:300])
        return False
    return True
