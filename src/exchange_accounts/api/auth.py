"""
exchange_accounts/api/auth.py — Эндпоинты аутентификации.

Регистрация, вход (с вызовом 2FA), обновление access-токена,
подтверждение email, сброс пароля, управление 2FA.
"""

from fastapi import APIRouter, Depends, Query, Request, status

from exchange_accounts.adapters import captcha_client
from exchange_accounts.dependencies import client_ip, get_current_account, rate_limit
from exchange_accounts.models.account import RegisterRequest, RegistrationResult
from exchange_accounts.models.auth import (
    AccessTokenResult,
    EmailRequest,
    LoginRequest,
    LoginResult,
    RefreshTokenRequest,
    ResetPasswordRequest,
    TwoFactorChallenge,
    TwoFactorCodeRequest,
    TwoFactorEnabledResult,
    TwoFactorSetup,
)
from exchange_accounts.models.common import MessageResponse
from exchange_accounts.services import auth_service, two_factor_service
from exchange_accounts.services.rbac import TWO_FACTOR_MANAGE, require_permission

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/register",
    response_model=RegistrationResult,
    status_code=status.HTTP_201_CREATED,
    summary="Регистрация учётной записи",
    dependencies=[Depends(rate_limit("register"))],
)
async def register(body: RegisterRequest, request: Request):
    """Создаёт неподтверждённую учётную запись и отправляет письмо со ссылкой."""
    await captcha_client.check_captcha(body.captcha_token, client_ip(request))
    return await auth_service.register(body)


@router.post(
    "/login",
    response_model=LoginResult | TwoFactorChallenge,
    summary="Вход по email + пароль (+ код 2FA)",
    dependencies=[Depends(rate_limit("login"))],
)
async def login(body: LoginRequest, request: Request):
    """
    email + пароль → JWT access + refresh.

    Если включена 2FA и код не передан — ``{"requires2FA": true}``.
    """
    ip = client_ip(request)
    await captcha_client.check_captcha(body.captcha_token, ip)
    account = await auth_service.validate_user(body.email, body.password)
    return await auth_service.login(account, body.two_factor_code, ip)


@router.post("/refresh", response_model=AccessTokenResult, summary="Обновить access-токен")
async def refresh(body: RefreshTokenRequest):
    return await auth_service.refresh_access_token(body.refresh_token)


# ── Подтверждение email ─────────────────────────────────────────────────────


@router.get("/verify-email", response_model=MessageResponse, summary="Подтверждение email")
async def verify_email(token: str = Query(..., min_length=1)):
    return await auth_service.verify_email(token)


@router.post(
    "/resend-verification",
    response_model=MessageResponse,
    summary="Повторно отправить письмо (авторизованный пользователь)",
)
async def resend_verification(account: dict = Depends(get_current_account)):
    return await auth_service.resend_verification(account["id"])


@router.post(
    "/resend-verification-by-email",
    response_model=MessageResponse,
    summary="Повторно отправить письмо по email",
    dependencies=[Depends(rate_limit("resend-verification", sensitive=True))],
)
async def resend_verification_by_email(body: EmailRequest):
    """Ответ одинаков для любого email."""
    return await auth_service.resend_verification_by_email(body.email)


# ── Сброс пароля ─────────────────────────────────────────────────────────────


@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    summary="Запросить ссылку для сброса пароля",
    dependencies=[Depends(rate_limit("forgot-password", sensitive=True))],
)
async def forgot_password(body: EmailRequest):
    """Ответ одинаков для любого email."""
    return await auth_service.forgot_password(body.email)


@router.post("/reset-password", response_model=MessageResponse, summary="Сброс пароля по токену")
async def reset_password(body: ResetPasswordRequest):
    return await auth_service.reset_password(body.token, body.new_password)


# ── 2FA ──────────────────────────────────────────────────────────────────────


@router.get("/2fa/generate", response_model=TwoFactorSetup, summary="Новый секрет TOTP")
async def generate_two_factor(account: dict = Depends(require_permission(TWO_FACTOR_MANAGE))):
    """Секрет действует 10 минут и становится активным только после enable."""
    return await two_factor_service.generate_secret(account["id"])


@router.post("/2fa/enable", response_model=TwoFactorEnabledResult, summary="Включить 2FA")
async def enable_two_factor(
    body: TwoFactorCodeRequest,
    account: dict = Depends(require_permission(TWO_FACTOR_MANAGE)),
):
    """Возвращает коды восстановления — показываются один раз."""
    return await two_factor_service.enable(account["id"], body.code)


@router.post("/2fa/disable", response_model=MessageResponse, summary="Отключить 2FA")
async def disable_two_factor(
    body: TwoFactorCodeRequest,
    account: dict = Depends(require_permission(TWO_FACTOR_MANAGE)),
):
    return await two_factor_service.disable(account["id"], body.code)
