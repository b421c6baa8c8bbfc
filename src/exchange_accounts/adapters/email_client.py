"""
exchange_accounts/adapters/email_client.py — Отправка уведомлений по email.

Письма отправляются через HTTP API Resend. Каждая функция возвращает
``True``/``False`` и никогда не бросает исключений: сбой доставки
логируется и не прерывает основную операцию.

Если ``RESEND_API_KEY`` не задан, отправка отключена (dev-режим).
"""

from __future__ import annotations

import logging
import re
from html import escape, unescape

import httpx

from exchange_accounts.config import get_settings

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")


def _strip_html(html: str) -> str:
    return unescape(re.sub(r"\s+", " ", _TAG_RE.sub(" ", html)).strip())


async def send_email(to: str, subject: str, html: str) -> bool:
    """Отправляет одно письмо. Возвращает признак успешной отправки."""
    settings = get_settings()
    if not settings.resend_api_key:
        logger.warning("Email service is not configured. Skipping email to %s", to)
        return False

    payload = {
        "from": f"{settings.email_from_name} <{settings.email_from}>",
        "to": [to],
        "subject": subject,
        "html": html,
        "text": _strip_html(html),
    }
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(
                settings.resend_api_url,
                json=payload,
                headers={"Authorization": f"Bearer {settings.resend_api_key}"},
            )
        if response.status_code >= 400:
            logger.error(
                "Failed to send email to %s: HTTP %s %s",
                to, response.status_code, response.text[:200],
            )
            return False
    except httpx.HTTPError as exc:
        logger.error("Error sending email to %s: %s", to, exc)
        return False

    logger.info("Email sent successfully to %s", to)
    return True


# ── Уведомления домена ───────────────────────────────────────────────────

async def send_verification_email(to: str, name: str, link: str) -> bool:
    app = get_settings().email_from_name
    html = (
        f"<p>Hello {escape(name)},</p>"
        f"<p>Please confirm your email address for {escape(app)}:</p>"
        f'<p><a href="{escape(link)}">{escape(link)}</a></p>'
        "<p>The link is valid for 24 hours.</p>"
    )
    return await send_email(to, f"Verify Your Email - {app}", html)


async def send_password_reset_email(to: str, name: str, link: str) -> bool:
    app = get_settings().email_from_name
    html = (
        f"<p>Hello {escape(name)},</p>"
        "<p>A password reset was requested for your account:</p>"
        f'<p><a href="{escape(link)}">{escape(link)}</a></p>'
        "<p>The link is valid for 1 hour. If you did not request it, ignore this email.</p>"
    )
    return await send_email(to, f"Reset Your Password - {app}", html)


async def send_two_factor_enabled(to: str, name: str) -> bool:
    app = get_settings().email_from_name
    html = (
        f"<p>Hello {escape(name)},</p>"
        "<p>Two-factor authentication has been enabled on your account.</p>"
        "<p>If this wasn't you, contact support immediately.</p>"
    )
    return await send_email(to, f"2FA Enabled - {app}", html)


async def send_kyc_status_update(to: str, status: str, level: str, name: str) -> bool:
    if status == "approved":
        body = "Your identity has been verified. Higher withdrawal limits are now available."
    elif status == "rejected":
        body = "Your KYC verification was rejected. Please review your documents and try again."
    else:
        body = "Your KYC verification is under review."
    html = (
        f"<p>Hello {escape(name)},</p>"
        f"<p>Your KYC verification ({escape(level)}) status: <b>{escape(status.upper())}</b></p>"
        f"<p>{body}</p>"
    )
    return await send_email(to, f"KYC Status Update - {status}", html)
