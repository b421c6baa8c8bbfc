"""
exchange_accounts/models/auth.py — Модели входа, токенов и 2FA.

Формат ответа-вызова 2FA (``{"requires2FA": true, "message": ...}``) и
поле ``twoFactorEnabled`` в проекции пользователя — часть протокола
с фронтендом: поля объявлены через alias (ответы FastAPI отдаются by_alias).
"""

from uuid import UUID

from pydantic import Field

from exchange_accounts.models.common import ExchangeBase
from exchange_accounts.models.enums import AccountRole


class LoginRequest(ExchangeBase):
    email: str = Field(..., examples=["alice@example.com"])
    password: str
    two_factor_code: str | None = Field(default=None, examples=["123456"])
    captcha_token: str | None = None


class RefreshTokenRequest(ExchangeBase):
    refresh_token: str


class EmailRequest(ExchangeBase):
    email: str = Field(..., examples=["alice@example.com"])


class ResetPasswordRequest(ExchangeBase):
    token: str = Field(..., description="Password reset token from email")
    new_password: str = Field(..., min_length=8, max_length=128)


class TwoFactorCodeRequest(ExchangeBase):
    code: str = Field(..., min_length=6, max_length=14, examples=["123456"])


class UserProjection(ExchangeBase):
    """Проекция пользователя, возвращаемая вместе с токенами."""
    model_config = {"populate_by_name": True}

    id: UUID
    email: str
    role: AccountRole
    two_factor_enabled: bool = Field(default=False, alias="twoFactorEnabled")


class LoginResult(ExchangeBase):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserProjection


class TwoFactorChallenge(ExchangeBase):
    """Промежуточный ответ: пароль верный, нужен код 2FA. Не ошибка."""
    model_config = {"populate_by_name": True}

    requires_2fa: bool = Field(default=True, alias="requires2FA")
    message: str = "2FA code required"


class AccessTokenResult(ExchangeBase):
    access_token: str
    token_type: str = "bearer"


class TwoFactorSetup(ExchangeBase):
    """Данные для подключения аутентификатора."""
    secret: str
    otpauth_url: str
    qr_code: str = Field(..., description="SVG QR code as a data URL")


class TwoFactorEnabledResult(ExchangeBase):
    message: str = "2FA enabled successfully"
    recovery_codes: list[str] = Field(
        default_factory=list,
        description="One-time recovery codes, shown only once",
    )
