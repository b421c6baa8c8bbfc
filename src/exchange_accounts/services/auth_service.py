"""
exchange_accounts/services/auth_service.py — Оркестратор аутентификации.

Последовательность входа: пароль → статус → подтверждение email →
вызов 2FA → выпуск токенов. Здесь же жизненные циклы токена
подтверждения email и токена сброса пароля.

Операции, по ответу которых можно перечислить учётные записи
(forgot-password, resend-by-email), всегда возвращают одно и то же
сообщение. Погашение токенов, наоборот, сообщает конкретную причину:
погасить токен может только его владелец.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from uuid import UUID

from exchange_accounts import events
from exchange_accounts.adapters import email_client
from exchange_accounts.config import get_settings
from exchange_accounts.db.repositories import account_repo
from exchange_accounts.exceptions import (
    AccountSuspendedError,
    AlreadyVerifiedError,
    DuplicateAccountError,
    EmailNotVerifiedError,
    ExchangeError,
    Invalid2FACodeError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    InvalidRefreshTokenError,
    InvalidTokenError,
    NotFoundError,
    TokenExpiredError,
)
from exchange_accounts.models.account import RegisterRequest, RegistrationResult
from exchange_accounts.models.auth import (
    AccessTokenResult,
    LoginResult,
    TwoFactorChallenge,
    UserProjection,
)
from exchange_accounts.models.common import MessageResponse
from exchange_accounts.models.enums import AccountRole, AccountStatus
from exchange_accounts.services import token_service, two_factor_service
from exchange_accounts.services.account_service import public_account, to_account_read
from exchange_accounts.services.audit_logger import AuditAction, get_audit_logger
from exchange_accounts.services.passwords import (
    hash_password,
    validate_password_policy,
    verify_password,
)
from exchange_accounts.services.side_effects import best_effort

logger = logging.getLogger(__name__)

REGISTERED_MESSAGE = "Registration successful. Please check your email to verify your account."
RESEND_GENERIC_MESSAGE = (
    "If an account with this email exists and is not verified, "
    "a verification email has been sent."
)
FORGOT_GENERIC_MESSAGE = "If an account with this email exists, a password reset link has been sent."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_token() -> str:
    """Одноразовый токен: 32 случайных байта в hex (64 символа)."""
    return secrets.token_hex(32)


def _display_name(account: dict) -> str:
    return account.get("first_name") or account["email"]


async def _audit(action: AuditAction, account_id, details: dict | None = None) -> None:
    await best_effort(
        get_audit_logger().log(
            action, "account", str(account_id), user_id=str(account_id), details=details,
        ),
        f"Audit {action.value}",
    )


# ═══════════════════════════════════════════════════════════════════════════
# ПОДТВЕРЖДЕНИЕ EMAIL: ВЫПУСК И ОТПРАВКА ТОКЕНА
# ═══════════════════════════════════════════════════════════════════════════


def _new_verification_token() -> tuple[str, datetime]:
    ttl = timedelta(hours=get_settings().email_verification_ttl_hours)
    return generate_token(), _utcnow() + ttl


async def _send_verification(account: dict, token: str) -> None:
    link = f"{get_settings().frontend_url}/verify-email?token={token}"
    await best_effort(
        email_client.send_verification_email(account["email"], _display_name(account), link),
        f"Verification email to {account['email']}",
    )


# ═══════════════════════════════════════════════════════════════════════════
# РЕГИСТРАЦИЯ
# ═══════════════════════════════════════════════════════════════════════════


async def register(data: RegisterRequest) -> RegistrationResult:
    """
    Регистрирует учётную запись.

    Первая учётная запись в системе получает роль ``admin``, остальные —
    ``user``; роль выбирает хранилище в момент вставки. Проверка
    существования email здесь только предварительная: гонку двух
    одновременных регистраций разрешает UNIQUE-ограничение хранилища
    (``DuplicateAccountError`` из репозитория).
    """
    if await account_repo.get_account_by_email(data.email):
        raise DuplicateAccountError(data.email)
    validate_password_policy(data.password)

    token, expiry = _new_verification_token()

    account = await account_repo.create_account(
        email=data.email,
        password_hash=hash_password(data.password),
        role=None,
        email_verification_token=token,
        email_verification_token_expiry=expiry,
        first_name=data.first_name,
        last_name=data.last_name,
        phone=data.phone,
    )
    role = account["role"]
    logger.info("Account registered: %s (role=%s)", account["id"], role)

    await _send_verification(account, token)
    await best_effort(
        events.emit_account_registered(str(account["id"]), account["email"], role),
        "Event account.registered",
    )
    await _audit(AuditAction.ACCOUNT_REGISTER, account["id"], {"role": role})

    return RegistrationResult(message=REGISTERED_MESSAGE, user=to_account_read(account))


# ═══════════════════════════════════════════════════════════════════════════
# ВХОД
# ═══════════════════════════════════════════════════════════════════════════


async def validate_user(email: str, password: str) -> dict:
    """
    Проверяет пароль, статус и подтверждение email.

    Неизвестный email и неверный пароль дают одну и ту же ошибку;
    причина пишется только в лог.
    """
    account = await account_repo.get_account_by_email(email)
    if account is None:
        logger.info("Login failed: unknown email")
        raise InvalidCredentialsError()
    if not verify_password(password, account.get("password_hash")):
        logger.info("Login failed: wrong password for account %s", account["id"])
        await _audit(AuditAction.ACCOUNT_LOGIN_FAILED, account["id"], {"reason": "password"})
        raise InvalidCredentialsError()

    if account.get("status") != AccountStatus.ACTIVE.value:
        logger.info("Login refused: account %s is %s", account["id"], account.get("status"))
        raise AccountSuspendedError()
    if not account.get("email_verified"):
        raise EmailNotVerifiedError()

    return public_account(account)


async def _record_login(account_id: UUID, client_ip: str | None) -> None:
    try:
        await account_repo.update_account(
            account_id, last_login_at=_utcnow(), last_login_ip=client_ip,
        )
    except Exception as exc:
        logger.warning("Failed to record last login for %s: %s", account_id, exc)


async def login(
    account: dict,
    two_factor_code: str | None = None,
    client_ip: str | None = None,
) -> LoginResult | TwoFactorChallenge:
    """
    Выдаёт пару токенов для проверенной учётной записи.

    При включённой 2FA без кода возвращает ``TwoFactorChallenge``
    (не ошибка) и токены не выпускаются.
    """
    await _record_login(account["id"], client_ip)

    if account.get("two_factor_enabled"):
        if not two_factor_code:
            return TwoFactorChallenge()
        # секрет и коды восстановления не входят в публичную проекцию
        full = await account_repo.get_account_by_id(account["id"])
        if full is None or not await two_factor_service.verify_second_factor(full, two_factor_code):
            await _audit(AuditAction.ACCOUNT_LOGIN_FAILED, account["id"], {"reason": "2fa"})
            raise Invalid2FACodeError()

    await _audit(AuditAction.ACCOUNT_LOGIN, account["id"], {"ip": client_ip})
    return LoginResult(
        access_token=token_service.create_access_token(account),
        refresh_token=token_service.create_refresh_token(account),
        user=UserProjection(
            id=account["id"],
            email=account["email"],
            role=account["role"],
            two_factor_enabled=bool(account.get("two_factor_enabled")),
        ),
    )


async def refresh_access_token(refresh_token: str) -> AccessTokenResult:
    """
    Новый access-токен по refresh-токену (refresh-токен не ротируется).

    Любая ошибка проверки токена или учётной записи снаружи выглядит
    одинаково: ``InvalidRefreshTokenError``.
    """
    try:
        payload = token_service.decode_refresh_token(refresh_token)
        account = await account_repo.get_account_by_id(UUID(payload["sub"]))
    except (ExchangeError, ValueError) as exc:
        logger.info("Refresh rejected: %s", exc)
        raise InvalidRefreshTokenError() from exc

    if account is None:
        logger.info("Refresh rejected: account %s not found", payload["sub"])
        raise InvalidRefreshTokenError()
    if account.get("status") != AccountStatus.ACTIVE.value:
        logger.info("Refresh rejected: account %s is %s", account["id"], account.get("status"))
        raise InvalidRefreshTokenError()
    if not account.get("email_verified"):
        raise EmailNotVerifiedError()

    return AccessTokenResult(access_token=token_service.create_access_token(account))


# ═══════════════════════════════════════════════════════════════════════════
# ПОДТВЕРЖДЕНИЕ EMAIL
# ═══════════════════════════════════════════════════════════════════════════


async def verify_email(token: str) -> MessageResponse:
    account = await account_repo.get_account_by_verification_token(token)
    if account is None:
        raise InvalidTokenError("Invalid verification token")
    if account.get("email_verified"):
        raise AlreadyVerifiedError()
    expiry = account.get("email_verification_token_expiry")
    if expiry is None or expiry < _utcnow():
        raise TokenExpiredError("Verification token has expired")

    await account_repo.update_account(
        account["id"],
        email_verified=True,
        email_verified_at=_utcnow(),
        email_verification_token=None,
        email_verification_token_expiry=None,
    )
    logger.info("Email verified for account %s", account["id"])
    await best_effort(events.emit_email_verified(str(account["id"])), "Event account.email_verified")
    await _audit(AuditAction.ACCOUNT_EMAIL_VERIFIED, account["id"])
    return MessageResponse(message="Email verified successfully")


async def resend_verification(account_id: UUID) -> MessageResponse:
    """Повторная отправка для аутентифицированного пользователя; новый токен и новые 24 часа."""
    account = await account_repo.get_account_by_id(account_id)
    if account is None:
        raise NotFoundError("Account", str(account_id))
    if account.get("email_verified"):
        raise AlreadyVerifiedError()

    token, expiry = _new_verification_token()
    await account_repo.update_account(
        account_id,
        email_verification_token=token,
        email_verification_token_expiry=expiry,
    )
    await _send_verification(account, token)
    return MessageResponse(message="Verification email sent")


async def resend_verification_by_email(email: str) -> MessageResponse:
    account = await account_repo.get_account_by_email(email)
    if account is not None and not account.get("email_verified"):
        token, expiry = _new_verification_token()
        await account_repo.update_account(
            account["id"],
            email_verification_token=token,
            email_verification_token_expiry=expiry,
        )
        await _send_verification(account, token)
    else:
        logger.info("Resend-by-email: nothing to send")
    return MessageResponse(message=RESEND_GENERIC_MESSAGE)


# ═══════════════════════════════════════════════════════════════════════════
# СБРОС ПАРОЛЯ
# ═══════════════════════════════════════════════════════════════════════════


async def forgot_password(email: str) -> MessageResponse:
    """
    Выпускает токен сброса (1 час) и отправляет ссылку.

    Операторы самостоятельный сброс не используют: их пароль меняет
    администратор. Ответ одинаков во всех случаях.
    """
    settings = get_settings()
    account = await account_repo.get_account_by_email(email)
    if account is None:
        logger.info("Forgot-password: unknown email")
    elif account.get("role") == AccountRole.OPERATOR.value:
        logger.info("Forgot-password: operator %s excluded from self-service reset", account["id"])
    else:
        token = generate_token()
        await account_repo.update_account(
            account["id"],
            password_reset_token=token,
            password_reset_expires=_utcnow() + timedelta(minutes=settings.password_reset_ttl_minutes),
        )
        link = f"{settings.frontend_url}/reset-password?token={token}"
        await best_effort(
            email_client.send_password_reset_email(account["email"], _display_name(account), link),
            f"Password reset email to {account['email']}",
        )
    return MessageResponse(message=FORGOT_GENERIC_MESSAGE)


async def reset_password(token: str, new_password: str) -> MessageResponse:
    """Токен действителен до момента ``password_reset_expires`` включительно."""
    validate_password_policy(new_password)
    account = await account_repo.get_account_by_reset_token(token)
    if account is None:
        raise InvalidOrExpiredTokenError()
    expires = account.get("password_reset_expires")
    if expires is None or _utcnow() > expires:
        raise TokenExpiredError("Password reset token has expired")

    await account_repo.update_account(
        account["id"],
        password_hash=hash_password(new_password),
        password_reset_token=None,
        password_reset_expires=None,
    )
    logger.info("Password reset for account %s", account["id"])
    await _audit(AuditAction.ACCOUNT_PASSWORD_RESET, account["id"])
    return MessageResponse(message="Password reset successfully")
