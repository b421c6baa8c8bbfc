"""
exchange_accounts/services/passwords.py — Хеширование паролей (bcrypt).

Стоимость (cost factor) берётся из настроек ``BCRYPT_ROUNDS``.
Этими же функциями хешируются коды восстановления 2FA.
"""

from __future__ import annotations

import bcrypt

from exchange_accounts.config import get_settings
from exchange_accounts.exceptions import ValidationError


def hash_password(password: str) -> str:
    """Хеширует пароль с помощью bcrypt."""
    rounds = get_settings().bcrypt_rounds
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Сравнивает открытый пароль с хешем из БД."""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Повреждённый хеш в БД не должен превращаться в 500
        return False


def validate_password_policy(password: str) -> None:
    """Минимальная длина пароля (``PASSWORD_MIN_LENGTH``)."""
    min_length = get_settings().password_min_length
    if len(password) < min_length:
        raise ValidationError(
            f"Password must be at least {min_length} characters long",
            details={"field": "password", "min_length": min_length},
        )
