"""
exchange_accounts/services/audit_logger.py — Аудит-лог учётных записей.

Действия домена:
    • account.register, account.login, account.login_failed
    • account.email_verified, account.password_reset, account.password_changed
    • account.updated (администратором)
    • two_factor.enabled, two_factor.disabled, two_factor.recovery_code_used
    • kyc.submit, kyc.review

Пишет в таблицу audit_log (или in-memory хранилище), при сбое —
в локальный буфер; дублирует событие в NATS.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from exchange_accounts.db.repositories import audit_repo

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Типы аудируемых действий."""

    # Auth
    ACCOUNT_REGISTER = "account.register"
    ACCOUNT_LOGIN = "account.login"
    ACCOUNT_LOGIN_FAILED = "account.login_failed"
    ACCOUNT_EMAIL_VERIFIED = "account.email_verified"
    ACCOUNT_PASSWORD_RESET = "account.password_reset"
    ACCOUNT_PASSWORD_CHANGED = "account.password_changed"
    ACCOUNT_UPDATED = "account.updated"
    ACCOUNT_CREATED = "account.created"
    ACCOUNT_DELETED = "account.deleted"

    # 2FA
    TWO_FACTOR_ENABLED = "two_factor.enabled"
    TWO_FACTOR_DISABLED = "two_factor.disabled"
    TWO_FACTOR_RECOVERY_USED = "two_factor.recovery_code_used"

    # KYC
    KYC_SUBMIT = "kyc.submit"
    KYC_REVIEW = "kyc.review"


class AccountAuditLogger:
    """
    Аудит-логгер сервиса учётных записей.

    Поддерживает:
    - PostgreSQL (audit_log) через audit_repo
    - In-memory буфер (fallback)
    - NATS-публикацию аудит-событий
    """

    def __init__(self, max_buffer_size: int = 10000) -> None:
        self._buffer: list[dict[str, Any]] = []
        self._max_buffer = max_buffer_size

    async def log(
        self,
        action: AuditAction | str,
        entity_type: str,
        entity_id: str,
        user_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Записать аудит-событие."""
        action_str = action.value if isinstance(action, AuditAction) else action
        record = {
            "action": action_str,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "user_id": user_id,
            "details": details or {},
            "created_at": datetime.now(timezone.utc).isoformat(),
        }

        try:
            await audit_repo.insert_audit_record(record)
        except Exception as e:
            logger.warning("Audit DB write failed, buffering: %s", e)
            self._write_to_buffer(record)

        # NATS-публикация (graceful degradation)
        try:
            from exchange_accounts.events import publish
            await publish(f"exchange.audit.{action_str}", record)
        except Exception as e:
            logger.debug("Audit NATS publish failed: %s", e)

    def _write_to_buffer(self, record: dict[str, Any]) -> None:
        """Fallback в in-memory буфер."""
        if len(self._buffer) >= self._max_buffer:
            self._buffer.pop(0)
        self._buffer.append(record)

    async def flush_buffer(self) -> int:
        """Попытаться записать буферизованные события в БД."""
        if not self._buffer:
            return 0
        flushed = 0
        remaining: list[dict[str, Any]] = []
        for record in self._buffer:
            try:
                await audit_repo.insert_audit_record(record)
                flushed += 1
            except Exception:
                remaining.append(record)
        self._buffer = remaining
        if flushed:
            logger.info("Flushed %d audit records from buffer", flushed)
        return flushed

    @property
    def buffer_size(self) -> int:
        return len(self._buffer)


# ═══════════════════════════════════════════════════════════════════════════════
# Singleton
# ═══════════════════════════════════════════════════════════════════════════════

_audit_logger: AccountAuditLogger | None = None


def get_audit_logger() -> AccountAuditLogger:
    """Получить единственный экземпляр AccountAuditLogger."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AccountAuditLogger()
    return _audit_logger
