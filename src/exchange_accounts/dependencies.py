"""
═══════════════════════════════════════════════════════════════════════════════
Exchange Accounts — Зависимости FastAPI (Dependency Injection)
═══════════════════════════════════════════════════════════════════════════════

    • ``get_current_account`` — учётная запись по Bearer access-токену
    • ``get_verified_account`` — то же, но с подтверждённым email
    • ``rate_limit(scope)`` — ограничение частоты по адресу клиента
    • ``client_ip`` — адрес клиента (X-Forwarded-For только от доверенного прокси)
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import Depends, Header, Request

from exchange_accounts.config import get_settings
from exchange_accounts.db.repositories import account_repo
from exchange_accounts.exceptions import (
    AccountSuspendedError,
    AuthenticationError,
    EmailNotVerifiedError,
    ExchangeError,
    TooManyRequestsError,
)
from exchange_accounts.models.enums import AccountRole, AccountStatus
from exchange_accounts.services.account_service import public_account
from exchange_accounts.services.rate_limiter import RateLimiter, get_rate_limiter
from exchange_accounts.services.token_service import decode_access_token

logger = logging.getLogger(__name__)


def client_ip(request: Request) -> str:
    """
    Адрес клиента для ограничения частоты и аудита.

    ``X-Forwarded-For`` учитывается только если соединение пришло от
    прокси из ``TRUSTED_PROXIES``; иначе берётся адрес сокета.
    """
    peer = request.client.host if request.client else "unknown"
    if peer not in get_settings().trusted_proxies:
        return peer
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or peer
    return peer


async def get_current_account(authorization: str | None = Header(None)) -> dict:
    """
    Извлекает и валидирует JWT-токен из заголовка ``Authorization``.

    Алгоритм:
        1. Проверяет наличие и формат заголовка ``Bearer <token>``.
        2. Декодирует access-токен (подпись, срок, тип).
        3. Загружает учётную запись по claim ``sub``.
        4. Требует статус ``active``.

    Returns:
        Учётная запись без секретов.

    Raises:
        AuthenticationError(401): токен отсутствует, невалиден, учётная запись не найдена.
        AccountSuspendedError(401): учётная запись заблокирована.
    """
    # ── Шаг 1: заголовок ──
    if not authorization:
        raise AuthenticationError("Authorization header is required", code="NOT_AUTHENTICATED")
    if not authorization.startswith("Bearer "):
        raise AuthenticationError(
            "Authorization header must start with 'Bearer'", code="NOT_AUTHENTICATED",
        )

    # ── Шаг 2: декодирование JWT ──
    try:
        payload = decode_access_token(authorization[7:])
        account_id = UUID(payload["sub"])
    except ExchangeError as exc:
        raise AuthenticationError(exc.message, code=exc.code) from exc
    except ValueError as exc:
        raise AuthenticationError("Token payload has malformed 'sub'", code="INVALID_TOKEN") from exc

    # ── Шаг 3: загрузка учётной записи ──
    account = await account_repo.get_account_by_id(account_id)
    if not account:
        raise AuthenticationError("Account not found", code="INVALID_TOKEN")

    # ── Шаг 4: статус ──
    if account.get("status") != AccountStatus.ACTIVE.value:
        raise AccountSuspendedError()

    return public_account(account)


async def get_verified_account(account: dict = Depends(get_current_account)) -> dict:
    """Требует подтверждённый email; администраторы и операторы освобождены."""
    if account.get("role") in (AccountRole.ADMIN.value, AccountRole.OPERATOR.value):
        return account
    if not account.get("email_verified"):
        raise EmailNotVerifiedError("Please verify your email address to continue.")
    return account


def rate_limit(scope: str, sensitive: bool = False):
    """
    Ограничение частоты для маршрута.

    ``sensitive=True`` — жёсткий лимит (по умолчанию 3 запроса за 15 минут)
    для forgot-password и повторной отправки письма; иначе
    ``RATE_LIMIT_AUTH_RPM`` запросов в минуту.
    """
    async def _check(
        request: Request,
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> None:
        settings = get_settings()
        if sensitive:
            window, max_requests = (
                settings.rate_limit_sensitive_window_seconds,
                settings.rate_limit_sensitive_max,
            )
        else:
            window, max_requests = 60, settings.rate_limit_auth_rpm

        key = f"{scope}:{client_ip(request)}"
        allowed, retry_after = limiter.check(key, window, max_requests)
        if not allowed:
            logger.warning("Rate limit exceeded for %s (retry after %ss)", key, retry_after)
            raise TooManyRequestsError(retry_after)

    return _check
