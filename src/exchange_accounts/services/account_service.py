"""
exchange_accounts/services/account_service.py — Профиль и администрирование учётных записей.

Владелец меняет профиль, пароль; администратор создаёт и удаляет учётные
записи, меняет роль, статус и пароль.
Оператор видит только учётные записи с ролью ``user``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from exchange_accounts.db.repositories import account_repo
from exchange_accounts.exceptions import (
    ConflictError,
    DuplicateAccountError,
    Invalid2FACodeError,
    NotFoundError,
    ValidationError,
)
from exchange_accounts.models.account import (
    AccountRead,
    AdminAccountCreate,
    AdminAccountUpdate,
    ChangePasswordRequest,
    ProfileUpdate,
)
from exchange_accounts.models.common import MessageResponse
from exchange_accounts.models.enums import AccountRole
from exchange_accounts.services import two_factor_service
from exchange_accounts.services.audit_logger import AuditAction, get_audit_logger
from exchange_accounts.services.passwords import (
    hash_password,
    validate_password_policy,
    verify_password,
)
from exchange_accounts.services.side_effects import best_effort

logger = logging.getLogger(__name__)

SECRET_FIELDS = frozenset({
    "password_hash",
    "email_verification_token",
    "email_verification_token_expiry",
    "password_reset_token",
    "password_reset_expires",
    "two_factor_secret",
    "two_factor_pending_secret",
    "two_factor_pending_expires",
    "two_factor_recovery_codes",
})


def public_account(account: dict) -> dict:
    """Копия учётной записи без секретов."""
    return {k: v for k, v in account.items() if k not in SECRET_FIELDS}


def to_account_read(account: dict) -> AccountRead:
    return AccountRead.model_validate(public_account(account))


async def _load_account(account_id: UUID) -> dict:
    account = await account_repo.get_account_by_id(account_id)
    if not account:
        raise NotFoundError("Account", str(account_id))
    return account


# ═══════════════════════════════════════════════════════════════════════════
# ПРОФИЛЬ ВЛАДЕЛЬЦА
# ═══════════════════════════════════════════════════════════════════════════


async def get_profile(account_id: UUID) -> AccountRead:
    return to_account_read(await _load_account(account_id))


async def update_profile(account_id: UUID, data: ProfileUpdate) -> AccountRead:
    """Обновляет имя, фамилию, телефон (только переданные поля)."""
    await _load_account(account_id)
    fields = data.model_dump(exclude_unset=True)
    if not fields:
        return await get_profile(account_id)
    updated = await account_repo.update_account(account_id, **fields)
    logger.info("Profile updated for account %s: %s", account_id, sorted(fields))
    return to_account_read(updated)


async def change_password(account_id: UUID, data: ChangePasswordRequest) -> MessageResponse:
    """
    Смена пароля владельцем.

    Требует текущий пароль; при включённой 2FA — ещё и второй фактор
    (TOTP или код восстановления).
    """
    account = await _load_account(account_id)
    if not verify_password(data.current_password, account.get("password_hash")):
        raise ValidationError("Current password is incorrect", code="INVALID_CURRENT_PASSWORD")

    if account.get("two_factor_enabled"):
        if not await two_factor_service.verify_second_factor(account, data.two_factor_code):
            raise Invalid2FACodeError()

    validate_password_policy(data.new_password)
    await account_repo.update_account(
        account_id, password_hash=hash_password(data.new_password),
    )
    logger.info("Password changed for account %s", account_id)
    await best_effort(
        get_audit_logger().log(
            AuditAction.ACCOUNT_PASSWORD_CHANGED, "account", str(account_id),
            user_id=str(account_id),
        ),
        "Audit account.password_changed",
    )
    return MessageResponse(message="Password changed successfully")


# ═══════════════════════════════════════════════════════════════════════════
# АДМИНИСТРИРОВАНИЕ
# ═══════════════════════════════════════════════════════════════════════════


async def list_accounts(viewer_role: str) -> list[AccountRead]:
    role_filter = AccountRole.USER.value if viewer_role == AccountRole.OPERATOR.value else None
    rows = await account_repo.list_accounts(role=role_filter)
    return [to_account_read(r) for r in rows]


async def get_account(account_id: UUID, viewer_role: str) -> AccountRead:
    account = await _load_account(account_id)
    if viewer_role == AccountRole.OPERATOR.value and account["role"] != AccountRole.USER.value:
        raise NotFoundError("Account", str(account_id))
    return to_account_read(account)


async def admin_update_account(
    account_id: UUID, data: AdminAccountUpdate, admin_id: UUID,
) -> AccountRead:
    """
    Администратор меняет роль, статус, профиль и/или пароль учётной записи.

    ``new_password`` — путь восстановления доступа для операторов, которым
    самостоятельный сброс пароля недоступен. Новый пароль проходит
    проверку политики; незавершённый сброс по ссылке аннулируется.
    """
    await _load_account(account_id)
    fields = data.model_dump(exclude_unset=True, exclude_none=True)
    for key in ("role", "status"):
        if key in fields:
            fields[key] = getattr(fields[key], "value", fields[key])
    new_password = fields.pop("new_password", None)
    changed = sorted(fields) + (["password"] if new_password else [])
    if new_password:
        validate_password_policy(new_password)
        fields.update(
            password_hash=hash_password(new_password),
            password_reset_token=None,
            password_reset_expires=None,
        )
    if not fields:
        return to_account_read(await _load_account(account_id))

    updated = await account_repo.update_account(account_id, **fields)
    logger.info("Account %s updated by admin %s: %s", account_id, admin_id, changed)
    await best_effort(
        get_audit_logger().log(
            AuditAction.ACCOUNT_UPDATED, "account", str(account_id),
            user_id=str(admin_id), details={"fields": changed},
        ),
        "Audit account.updated",
    )
    return to_account_read(updated)


async def admin_create_account(data: AdminAccountCreate, admin_id: UUID) -> AccountRead:
    """
    Создаёт учётную запись с заданной ролью (например, оператора).

    По умолчанию email считается подтверждённым администратором. Если
    ``email_verified=False``, ссылку пользователь запрашивает сам через
    resend-verification-by-email.
    """
    if await account_repo.get_account_by_email(data.email):
        raise DuplicateAccountError(data.email)
    validate_password_policy(data.password)

    account = await account_repo.create_account(
        email=data.email,
        password_hash=hash_password(data.password),
        role=data.role.value,
        email_verification_token=None,
        email_verification_token_expiry=None,
        first_name=data.first_name,
        last_name=data.last_name,
        phone=data.phone,
    )
    if data.email_verified:
        account = await account_repo.update_account(
            account["id"], email_verified=True, email_verified_at=datetime.now(timezone.utc),
        )
    logger.info("Account %s (role=%s) created by admin %s", account["id"], account["role"], admin_id)
    await best_effort(
        get_audit_logger().log(
            AuditAction.ACCOUNT_CREATED, "account", str(account["id"]),
            user_id=str(admin_id), details={"role": account["role"]},
        ),
        "Audit account.created",
    )
    return to_account_read(account)


async def admin_delete_account(account_id: UUID, admin_id: UUID) -> None:
    """Удаляет учётную запись вместе с KYC-записью; себя удалить нельзя."""
    if account_id == admin_id:
        raise ConflictError("Administrators cannot delete their own account", code="CANNOT_DELETE_SELF")
    account = await _load_account(account_id)
    if not await account_repo.delete_account(account_id):
        raise NotFoundError("Account", str(account_id))
    logger.info("Account %s deleted by admin %s", account_id, admin_id)
    await best_effort(
        get_audit_logger().log(
            AuditAction.ACCOUNT_DELETED, "account", str(account_id),
            user_id=str(admin_id), details={"email": account["email"], "role": account["role"]},
        ),
        "Audit account.deleted",
    )
