"""
exchange_accounts/services/side_effects.py — Побочные эффекты «по возможности».

Уведомления, события и аудит не должны прерывать основную операцию:
любой сбой логируется и поглощается.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable

logger = logging.getLogger(__name__)


async def best_effort(action: Awaitable[Any], description: str) -> None:
    """Выполнить ``action``; ошибки и ``False`` только логируются."""
    try:
        result = await action
    except Exception as exc:
        logger.warning("%s failed: %s", description, exc)
        return
    if result is False:
        logger.warning("%s was not delivered", description)
