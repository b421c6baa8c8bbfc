"""
exchange_accounts/services/two_factor_service.py — TOTP 2FA (RFC 6238).

Подключение двухфазное: ``generate_secret`` кладёт секрет-кандидат
в отдельный слот ``two_factor_pending_secret`` со сроком жизни, и только
успешный ``enable`` переносит его в ``two_factor_secret``. Брошенная
настройка не оставляет «висящего» активного секрета.

При включении выдаются одноразовые коды восстановления; в БД хранятся
только их bcrypt-хеши, использованный код удаляется.

Защиты от повторного использования кода внутри окна ±1 шага нет:
один и тот же код принимается, пока он действителен.
"""

from __future__ import annotations

import base64
import io
import logging
import re
import secrets
import string
from datetime import datetime, timedelta, timezone
from uuid import UUID

import pyotp
import qrcode
import qrcode.image.svg

from exchange_accounts.adapters import email_client
from exchange_accounts.config import get_settings
from exchange_accounts.db.repositories import account_repo
from exchange_accounts.exceptions import (
    ConflictError,
    Invalid2FACodeError,
    NotFoundError,
    TwoFactorNotInitiatedError,
)
from exchange_accounts.models.auth import TwoFactorEnabledResult, TwoFactorSetup
from exchange_accounts.models.common import MessageResponse
from exchange_accounts.services.audit_logger import AuditAction, get_audit_logger
from exchange_accounts.services.passwords import hash_password, verify_password
from exchange_accounts.services.side_effects import best_effort

logger = logging.getLogger(__name__)

TOTP_DIGITS = 6
TOTP_INTERVAL = 30
RECOVERY_CODE_RE = re.compile(r"^[A-Z0-9]{4}-[A-Z0-9]{4}$")
_RECOVERY_ALPHABET = string.ascii_uppercase + string.digits


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _load_account(account_id: UUID) -> dict:
    account = await account_repo.get_account_by_id(account_id)
    if not account:
        raise NotFoundError("Account", str(account_id))
    return account


# ═══════════════════════════════════════════════════════════════════════════
# TOTP
# ═══════════════════════════════════════════════════════════════════════════


def verify_code(secret: str | None, code: str | None, for_time=None) -> bool:
    """
    Проверяет 6-значный TOTP-код: шаг 30 секунд, окно дрейфа
    ``TOTP_VALID_WINDOW`` шагов в каждую сторону.
    """
    if not secret or not code:
        return False
    code = code.strip().replace(" ", "")
    if len(code) != TOTP_DIGITS or not code.isdigit():
        return False
    totp = pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL)
    return totp.verify(code, for_time=for_time, valid_window=get_settings().totp_valid_window)


def _qr_data_url(uri: str) -> str:
    """QR-код provisioning URI в виде SVG data URL."""
    img = qrcode.make(uri, image_factory=qrcode.image.svg.SvgPathImage)
    buf = io.BytesIO()
    img.save(buf)
    encoded = base64.b64encode(buf.getvalue()).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


async def generate_secret(account_id: UUID) -> TwoFactorSetup:
    """Создаёт секрет-кандидат и данные для аутентификатора."""
    settings = get_settings()
    account = await _load_account(account_id)
    if account.get("two_factor_enabled"):
        raise ConflictError("2FA is already enabled", code="TWO_FACTOR_ALREADY_ENABLED")

    secret = pyotp.random_base32()  # 32 символа base32 = 160 бит
    uri = pyotp.TOTP(secret).provisioning_uri(
        name=account["email"],
        issuer_name=settings.two_factor_app_name,
    )
    await account_repo.update_account(
        account_id,
        two_factor_pending_secret=secret,
        two_factor_pending_expires=_utcnow()
        + timedelta(minutes=settings.two_factor_pending_ttl_minutes),
    )
    logger.info("2FA secret generated (pending) for account %s", account_id)
    return TwoFactorSetup(secret=secret, otpauth_url=uri, qr_code=_qr_data_url(uri))


# ═══════════════════════════════════════════════════════════════════════════
# КОДЫ ВОССТАНОВЛЕНИЯ
# ═══════════════════════════════════════════════════════════════════════════


def generate_recovery_codes(count: int) -> list[str]:
    """Коды формата XXXX-XXXX (заглавные буквы и цифры), без повторов."""
    codes: set[str] = set()
    while len(codes) < count:
        raw = "".join(secrets.choice(_RECOVERY_ALPHABET) for _ in range(8))
        codes.add(f"{raw[:4]}-{raw[4:]}")
    return list(codes)


async def consume_recovery_code(account: dict, code: str | None) -> bool:
    """
    Проверяет код восстановления и удаляет его при совпадении.

    Удаление условное (хеш должен ещё присутствовать в хранилище), поэтому
    из двух одновременных запросов с одним кодом проходит только один.
    """
    if not code:
        return False
    normalized = code.strip().upper()
    if not RECOVERY_CODE_RE.match(normalized):
        return False

    for hashed in account.get("two_factor_recovery_codes") or []:
        if verify_password(normalized, hashed):
            remaining = await account_repo.remove_recovery_code(account["id"], hashed)
            if remaining is None:
                logger.warning("Recovery code for account %s was already used", account["id"])
                return False
            account["two_factor_recovery_codes"] = remaining
            logger.warning(
                "Recovery code used for account %s (%d left)", account["id"], len(remaining),
            )
            await best_effort(
                get_audit_logger().log(
                    AuditAction.TWO_FACTOR_RECOVERY_USED, "account", str(account["id"]),
                    user_id=str(account["id"]), details={"remaining": len(remaining)},
                ),
                "Audit two_factor.recovery_code_used",
            )
            return True
    return False


async def verify_second_factor(account: dict, code: str | None) -> bool:
    """Второй фактор: действующий TOTP-код или неиспользованный код восстановления."""
    if verify_code(account.get("two_factor_secret"), code):
        return True
    return await consume_recovery_code(account, code)


# ═══════════════════════════════════════════════════════════════════════════
# ВКЛЮЧЕНИЕ / ОТКЛЮЧЕНИЕ
# ═══════════════════════════════════════════════════════════════════════════


async def enable(account_id: UUID, code: str) -> TwoFactorEnabledResult:
    """Подтверждает секрет-кандидат кодом и включает 2FA."""
    settings = get_settings()
    account = await _load_account(account_id)
    if account.get("two_factor_enabled"):
        raise ConflictError("2FA is already enabled", code="TWO_FACTOR_ALREADY_ENABLED")

    pending = account.get("two_factor_pending_secret")
    expires = account.get("two_factor_pending_expires")
    if not pending or expires is None or expires < _utcnow():
        raise TwoFactorNotInitiatedError()

    if not verify_code(pending, code):
        raise Invalid2FACodeError()

    recovery_codes = generate_recovery_codes(settings.recovery_codes_count)
    await account_repo.update_account(
        account_id,
        two_factor_secret=pending,
        two_factor_enabled=True,
        two_factor_pending_secret=None,
        two_factor_pending_expires=None,
        two_factor_recovery_codes=[hash_password(c) for c in recovery_codes],
    )
    logger.info("2FA enabled for account %s", account_id)

    await best_effort(
        email_client.send_two_factor_enabled(
            account["email"], account.get("first_name") or account["email"],
        ),
        f"2FA enabled notification to {account['email']}",
    )
    await best_effort(
        get_audit_logger().log(
            AuditAction.TWO_FACTOR_ENABLED, "account", str(account_id),
            user_id=str(account_id),
        ),
        "Audit two_factor.enabled",
    )
    return TwoFactorEnabledResult(recovery_codes=recovery_codes)


async def disable(account_id: UUID, code: str) -> MessageResponse:
    """Отключает 2FA по действующему коду (TOTP или восстановления)."""
    account = await _load_account(account_id)
    if not account.get("two_factor_enabled"):
        raise ConflictError("2FA is not enabled", code="TWO_FACTOR_NOT_ENABLED")

    if not await verify_second_factor(account, code):
        raise Invalid2FACodeError()

    await account_repo.update_account(
        account_id,
        two_factor_enabled=False,
        two_factor_secret=None,
        two_factor_pending_secret=None,
        two_factor_pending_expires=None,
        two_factor_recovery_codes=[],
    )
    logger.info("2FA disabled for account %s", account_id)
    await best_effort(
        get_audit_logger().log(
            AuditAction.TWO_FACTOR_DISABLED, "account", str(account_id),
            user_id=str(account_id),
        ),
        "Audit two_factor.disabled",
    )
    return MessageResponse(message="2FA disabled successfully")
