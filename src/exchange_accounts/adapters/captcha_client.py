"""
exchange_accounts/adapters/captcha_client.py — Проверка reCAPTCHA.

Если ``RECAPTCHA_SECRET_KEY`` не задан или клиент не прислал токен,
проверка пропускается. reCAPTCHA v2 возвращает только ``success``,
v3 дополнительно ``score`` — он сравнивается с порогом
``CAPTCHA_SCORE_THRESHOLD``.
"""

from __future__ import annotations

import logging

import httpx

from exchange_accounts.config import get_settings
from exchange_accounts.exceptions import CaptchaError

logger = logging.getLogger(__name__)


def is_enabled() -> bool:
    return bool(get_settings().recaptcha_secret_key)


async def verify_token(token: str, remote_ip: str | None = None) -> bool:
    """Спрашивает у Google, прошёл ли клиент проверку."""
    settings = get_settings()
    params = {"secret": settings.recaptcha_secret_key, "response": token}
    if remote_ip:
        params["remoteip"] = remote_ip
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(settings.recaptcha_verify_url, data=params)
            response.raise_for_status()
            data = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("CAPTCHA verification error: %s", exc)
        raise CaptchaError() from exc

    if data.get("success") is not True:
        return False
    score = data.get("score")
    if isinstance(score, (int, float)):
        return score >= settings.captcha_score_threshold
    return True


async def check_captcha(token: str | None, remote_ip: str | None = None) -> None:
    """Проверяет токен, если CAPTCHA настроена и токен передан."""
    if not is_enabled():
        return
    if not token:
        logger.debug("No CAPTCHA token provided — skipping check")
        return
    if not await verify_token(token, remote_ip):
        logger.warning("CAPTCHA rejected for %s", remote_ip or "unknown client")
        raise CaptchaError()
