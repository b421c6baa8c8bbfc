"""
exchange_accounts/models/account.py — Модели учётной записи.

Схемы запросов регистрации/профиля и проекции учётной записи
без секретов (хеш пароля, токены, 2FA-секрет не покидают сервис).
"""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from exchange_accounts.models.common import ExchangeBase
from exchange_accounts.models.enums import AccountRole, AccountStatus


class RegisterRequest(ExchangeBase):
    """Схема регистрации новой учётной записи."""
    email: str = Field(..., min_length=3, max_length=255, examples=["alice@example.com"])
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=32)
    captcha_token: str | None = Field(default=None, description="reCAPTCHA token")


class AccountRead(ExchangeBase):
    """Схема для возврата данных учётной записи (без секретов)."""
    id: UUID
    email: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    role: AccountRole = AccountRole.USER
    status: AccountStatus = AccountStatus.ACTIVE
    email_verified: bool = False
    email_verified_at: datetime | None = None
    two_factor_enabled: bool = False
    last_login_at: datetime | None = None
    last_login_ip: str | None = None
    created_at: datetime | None = None


class RegistrationResult(ExchangeBase):
    message: str
    user: AccountRead


class ProfileUpdate(ExchangeBase):
    """Поля профиля, которые владелец может менять сам."""
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=32)


class AdminAccountUpdate(ProfileUpdate):
    """Изменения, доступные администратору."""
    role: AccountRole | None = None
    status: AccountStatus | None = None
    new_password: str | None = Field(
        default=None, min_length=8, max_length=128,
        description="Set a new password (e.g. for an operator locked out of self-service reset)",
    )


class AdminAccountCreate(ExchangeBase):
    """Учётная запись, создаваемая администратором (например, оператор)."""
    email: str = Field(..., min_length=3, max_length=255, examples=["operator@example.com"])
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=32)
    role: AccountRole = AccountRole.USER
    email_verified: bool = True


class ChangePasswordRequest(ExchangeBase):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=128)
    two_factor_code: str | None = Field(default=None, description="Required when 2FA is enabled")
