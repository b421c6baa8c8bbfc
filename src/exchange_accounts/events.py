"""
exchange_accounts/events.py — NATS Event Publisher.

Публикует доменные события сервиса в NATS:
    • ``exchange.account.registered``   — новая учётная запись
    • ``exchange.account.email_verified`` — email подтверждён
    • ``exchange.kyc.submitted``        — поданы данные KYC-уровня
    • ``exchange.kyc.reviewed``         — решение администратора по KYC

Graceful degradation: если NATS недоступен (или ``NATS_URL`` пуст) —
событие пропускается с предупреждением в лог (не ломает основной
бизнес-процесс).
"""

from __future__ import annotations

import json
import logging
from typing import Any

import nats
from nats.aio.client import Client as NATSClient

from exchange_accounts.config import get_settings

logger = logging.getLogger(__name__)

# ── Singleton NATS connection ─────────────────────────────────────────────

_nc: NATSClient | None = None


async def connect() -> NATSClient | None:
    """Подключается к NATS (если ещё не подключён)."""
    global _nc
    if _nc is not None and _nc.is_connected:
        return _nc
    settings = get_settings()
    if not settings.nats_url:
        return None
    try:
        _nc = await nats.connect(
            settings.nats_url,
            connect_timeout=2,
            allow_reconnect=False,
        )
        logger.info("NATS publisher connected: %s", settings.nats_url)
        return _nc
    except Exception as exc:
        logger.warning("NATS connect failed (events will be skipped): %s", exc)
        _nc = None
        return None


async def disconnect() -> None:
    """Закрывает соединение с NATS."""
    global _nc
    if _nc and _nc.is_connected:
        await _nc.drain()
        logger.info("NATS publisher disconnected")
    _nc = None


# ── Публикация событий ───────────────────────────────────────────────────

async def publish(subject: str, data: dict[str, Any]) -> None:
    """
    Публикует JSON-событие в NATS.

    Args:
        subject: Тема сообщения (e.g. ``exchange.account.registered``).
        data: Payload (сериализуется в JSON).
    """
    nc = await connect()
    if nc is None:
        logger.debug("NATS unavailable — skipping event %s", subject)
        return
    try:
        payload = json.dumps(data, default=str).encode("utf-8")
        await nc.publish(subject, payload)
        logger.info("NATS event published: %s", subject)
    except Exception as exc:
        logger.warning("NATS publish failed for %s: %s", subject, exc)


# ── Удобные функции домена ───────────────────────────────────────────────

async def emit_account_registered(account_id: str, email: str, role: str) -> None:
    """Событие: зарегистрирована учётная запись."""
    await publish("exchange.account.registered", {
        "event": "account.registered",
        "account_id": account_id,
        "email": email,
        "role": role,
    })


async def emit_email_verified(account_id: str) -> None:
    await publish("exchange.account.email_verified", {
        "event": "account.email_verified",
        "account_id": account_id,
    })


async def emit_kyc_submitted(user_id: str, level: str) -> None:
    await publish("exchange.kyc.submitted", {
        "event": "kyc.submitted",
        "user_id": user_id,
        "level": level,
    })


async def emit_kyc_reviewed(
    user_id: str, level: str, status: str, daily_withdraw_limit: float,
) -> None:
    """Событие: администратор принял решение по KYC (лимит вывода изменился)."""
    await publish("exchange.kyc.reviewed", {
        "event": "kyc.reviewed",
        "user_id": user_id,
        "level": level,
        "status": status,
        "daily_withdraw_limit": daily_withdraw_limit,
    })
