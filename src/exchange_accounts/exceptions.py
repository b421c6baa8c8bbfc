"""
═══════════════════════════════════════════════════════════════════════════════
Exchange Accounts — Иерархия доменных ошибок (Custom Exception Hierarchy)
═══════════════════════════════════════════════════════════════════════════════

Базовый класс ``ExchangeError``; категории (401/403/404/409/422/429)
задают HTTP-статус через атрибут ``status_code``.
HTTP-ответ формируется в ``exchange_accounts.main:exchange_error_handler``.
"""


class ExchangeError(Exception):
    """
    Базовое исключение для всех доменных ошибок сервиса.

    Атрибуты
    ────────
        message (str):  Описание ошибки. Передаётся клиенту в JSON.
        code (str):     Стабильный машинно-читаемый код.
        details (dict): Дополнительные данные (entity, id и т.д.).
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str = "EXCHANGE_ERROR",
        details: dict | None = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)


# ═══════════════════════════════════════════════════════════════════════════════
# Категории
# ═══════════════════════════════════════════════════════════════════════════════


class AuthenticationError(ExchangeError):
    """Ошибка аутентификации: 401 Unauthorized."""

    status_code = 401

    def __init__(
        self,
        message: str = "Authentication failed",
        code: str = "AUTH_ERROR",
        details: dict | None = None,
    ):
        super().__init__(message, code=code, details=details)


class AuthorizationError(ExchangeError):
    """Ошибка авторизации: 403 Forbidden."""

    status_code = 403

    def __init__(
        self,
        message: str = "Insufficient permissions",
        code: str = "AUTHZ_ERROR",
        details: dict | None = None,
    ):
        super().__init__(message, code=code, details=details)


class BadRequestError(ExchangeError):
    """Некорректный запрос: 400 Bad Request."""

    status_code = 400

    def __init__(self, message: str, code: str = "BAD_REQUEST", details: dict | None = None):
        super().__init__(message, code=code, details=details)


class NotFoundError(ExchangeError):
    """Сущность не найдена: 404 Not Found."""

    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            message=f"{entity} not found: {entity_id}",
            code="NOT_FOUND",
            details={"entity": entity, "id": entity_id},
        )


class ConflictError(ExchangeError):
    """Конфликт с текущим состоянием: 409 Conflict."""

    status_code = 409

    def __init__(self, message: str, code: str = "CONFLICT", details: dict | None = None):
        super().__init__(message, code=code, details=details)


class ValidationError(ExchangeError):
    """Ошибка доменной валидации: 422 Unprocessable Entity."""

    status_code = 422

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: dict | None = None,
    ):
        super().__init__(message, code=code, details=details)


class TooManyRequestsError(ExchangeError):
    """Превышен лимит запросов: 429 Too Many Requests."""

    status_code = 429

    def __init__(self, retry_after: int | None = None):
        super().__init__(
            "Too many requests. Please try again later.",
            code="TOO_MANY_REQUESTS",
            details={"retry_after": retry_after} if retry_after else None,
        )
        self.retry_after = retry_after


# ═══════════════════════════════════════════════════════════════════════════════
# Аутентификация и учётные данные
# ═══════════════════════════════════════════════════════════════════════════════


class InvalidCredentialsError(AuthenticationError):
    """Неверный email или пароль (без раскрытия, что именно)."""

    def __init__(self):
        super().__init__("Invalid credentials", code="INVALID_CREDENTIALS")


class AccountSuspendedError(AuthenticationError):
    def __init__(self):
        super().__init__("Account is suspended or banned", code="ACCOUNT_SUSPENDED")


class EmailNotVerifiedError(AuthenticationError):
    """
    Email не подтверждён.

    Код ``EMAIL_NOT_VERIFIED`` стабилен: клиент по нему предлагает
    повторно отправить письмо.
    """

    def __init__(
        self,
        detail: str = (
            "Please verify your email address before logging in. "
            "Check your inbox for the verification link."
        ),
    ):
        super().__init__(
            "Email verification required",
            code="EMAIL_NOT_VERIFIED",
            details={"error": "EMAIL_NOT_VERIFIED", "detail": detail},
        )


class Invalid2FACodeError(AuthenticationError):
    def __init__(self):
        super().__init__("Invalid 2FA code", code="INVALID_2FA_CODE")


class InvalidRefreshTokenError(AuthenticationError):
    """Любая ошибка проверки refresh-токена (подпись, срок, статус)."""

    def __init__(self):
        super().__init__("Invalid refresh token", code="INVALID_TOKEN")


class InsufficientPermissionsError(AuthorizationError):
    def __init__(self, permission: str, role: str):
        super().__init__(
            f"Permission '{permission}' required",
            code="INSUFFICIENT_PERMISSIONS",
            details={"permission": permission, "role": role},
        )


class DuplicateAccountError(ConflictError):
    def __init__(self, email: str):
        super().__init__(
            f"User with email '{email}' already exists",
            code="DUPLICATE_ACCOUNT",
            details={"field": "email"},
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Одноразовые токены (верификация email, сброс пароля, JWT)
# ═══════════════════════════════════════════════════════════════════════════════


class InvalidTokenError(BadRequestError):
    def __init__(self, message: str = "Invalid verification token"):
        super().__init__(message, code="INVALID_TOKEN")


class TokenExpiredError(BadRequestError):
    def __init__(self, message: str = "Token has expired"):
        super().__init__(message, code="TOKEN_EXPIRED")


class InvalidOrExpiredTokenError(BadRequestError):
    def __init__(self, message: str = "Invalid or expired reset token"):
        super().__init__(message, code="INVALID_OR_EXPIRED_TOKEN")


class AlreadyVerifiedError(BadRequestError):
    def __init__(self):
        super().__init__("Email already verified", code="ALREADY_VERIFIED")


class TwoFactorNotInitiatedError(BadRequestError):
    def __init__(self):
        super().__init__("2FA secret not generated", code="TWO_FACTOR_NOT_INITIATED")


class CaptchaError(BadRequestError):
    def __init__(self, message: str = "CAPTCHA verification failed"):
        super().__init__(message, code="CAPTCHA_FAILED")


# ═══════════════════════════════════════════════════════════════════════════════
# KYC
# ═══════════════════════════════════════════════════════════════════════════════


class AlreadySubmittedError(ConflictError):
    def __init__(self):
        super().__init__("KYC record already exists", code="KYC_ALREADY_SUBMITTED")


class LevelAlreadyApprovedError(ConflictError):
    def __init__(self, level: str):
        super().__init__(
            f"KYC {level} is already approved and cannot be resubmitted",
            code="KYC_LEVEL_ALREADY_APPROVED",
            details={"level": level},
        )


class LevelNotApprovedError(ValidationError):
    def __init__(self, required_level: str, requested_level: str):
        super().__init__(
            f"KYC {required_level} must be approved before submitting {requested_level}",
            code="KYC_LEVEL_NOT_APPROVED",
            details={"required": required_level, "requested": requested_level},
        )


__all__ = [
    "ExchangeError",
    "AuthenticationError",
    "AuthorizationError",
    "BadRequestError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "TooManyRequestsError",
    "InvalidCredentialsError",
    "AccountSuspendedError",
    "EmailNotVerifiedError",
    "Invalid2FACodeError",
    "InvalidRefreshTokenError",
    "InsufficientPermissionsError",
    "DuplicateAccountError",
    "InvalidTokenError",
    "TokenExpiredError",
    "InvalidOrExpiredTokenError",
    "AlreadyVerifiedError",
    "TwoFactorNotInitiatedError",
    "CaptchaError",
    "AlreadySubmittedError",
    "LevelAlreadyApprovedError",
    "LevelNotApprovedError",
]
