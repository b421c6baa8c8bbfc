"""
exchange_accounts/services/token_service.py — Выпуск и проверка JWT.

Access- и refresh-токены имеют одинаковый набор claims
(``sub``, ``email``, ``role``) и подписываются РАЗНЫМИ секретами:
утечка секрета access-токенов не позволяет подделать refresh-токены
и наоборот.

Проверка — чистая функция подписи и срока действия. Серверного
хранилища сессий нет, поэтому досрочно отозвать выданный токен
невозможно: он действителен до истечения ``exp``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from exchange_accounts.config import get_settings
from exchange_accounts.exceptions import InvalidTokenError, TokenExpiredError

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def _build_payload(account: dict, token_type: str, expires_delta: timedelta) -> dict:
    now = datetime.now(timezone.utc)
    return {
        "sub": str(account["id"]),
        "email": account["email"],
        "role": str(getattr(account["role"], "value", account["role"])),
        "type": token_type,
        "iat": now,
        "exp": now + expires_delta,
    }


# ═══════════════════════════════════════════════════════════════════════════
# ВЫПУСК
# ═══════════════════════════════════════════════════════════════════════════


def create_access_token(account: dict, expires_delta: timedelta | None = None) -> str:
    """Создаёт короткоживущий access-токен."""
    settings = get_settings()
    payload = _build_payload(
        account,
        ACCESS_TOKEN_TYPE,
        expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes),
    )
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_refresh_token(account: dict, expires_delta: timedelta | None = None) -> str:
    """Создаёт refresh-токен (отдельный секрет, срок жизни в днях)."""
    settings = get_settings()
    payload = _build_payload(
        account,
        REFRESH_TOKEN_TYPE,
        expires_delta or timedelta(days=settings.jwt_refresh_token_expire_days),
    )
    return jwt.encode(payload, settings.jwt_refresh_secret_key, algorithm=settings.jwt_algorithm)


# ═══════════════════════════════════════════════════════════════════════════
# ПРОВЕРКА
# ═══════════════════════════════════════════════════════════════════════════


def _decode(token: str, key: str, expected_type: str) -> dict:
    settings = get_settings()
    try:
        payload = jwt.decode(token, key, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError as exc:
        raise TokenExpiredError("Token has expired") from exc
    except JWTError as exc:
        raise InvalidTokenError(f"Invalid token: {exc}") from exc

    if payload.get("type") != expected_type:
        raise InvalidTokenError(f"Token type must be '{expected_type}'")
    if not payload.get("sub"):
        raise InvalidTokenError("Token payload missing 'sub'")
    return payload


def decode_access_token(token: str) -> dict:
    """Проверяет подпись и срок access-токена, возвращает claims."""
    return _decode(token, get_settings().jwt_secret_key, ACCESS_TOKEN_TYPE)


def decode_refresh_token(token: str) -> dict:
    """Проверяет подпись и срок refresh-токена, возвращает claims."""
    return _decode(token, get_settings().jwt_refresh_secret_key, REFRESH_TOKEN_TYPE)
