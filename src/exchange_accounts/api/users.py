"""
exchange_accounts/api/users.py — Профиль и администрирование учётных записей.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status

from exchange_accounts.models.account import (
    AccountRead,
    AdminAccountCreate,
    AdminAccountUpdate,
    ChangePasswordRequest,
    ProfileUpdate,
)
from exchange_accounts.models.common import MessageResponse
from exchange_accounts.services import account_service
from exchange_accounts.services.rbac import (
    PASSWORD_CHANGE,
    PROFILE_READ,
    PROFILE_UPDATE,
    USERS_LIST,
    USERS_MANAGE,
    require_permission,
)

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/profile", response_model=AccountRead, summary="Профиль текущего пользователя")
async def get_profile(account: dict = Depends(require_permission(PROFILE_READ))):
    return await account_service.get_profile(account["id"])


@router.patch("/profile", response_model=AccountRead, summary="Изменить профиль")
async def update_profile(
    body: ProfileUpdate,
    account: dict = Depends(require_permission(PROFILE_UPDATE)),
):
    return await account_service.update_profile(account["id"], body)


@router.post("/change-password", response_model=MessageResponse, summary="Сменить пароль")
async def change_password(
    body: ChangePasswordRequest,
    account: dict = Depends(require_permission(PASSWORD_CHANGE)),
):
    """При включённой 2FA требуется ``two_factor_code``."""
    return await account_service.change_password(account["id"], body)


# ── Администрирование ─────────────────────────────────────────────────────────


@router.get("", response_model=list[AccountRead], summary="Список учётных записей")
async def list_accounts(account: dict = Depends(require_permission(USERS_LIST))):
    """Оператор видит только пользователей с ролью ``user``."""
    return await account_service.list_accounts(account["role"])


@router.get("/{account_id}", response_model=AccountRead, summary="Учётная запись по ID")
async def get_account(
    account_id: UUID,
    account: dict = Depends(require_permission(USERS_LIST)),
):
    return await account_service.get_account(account_id, account["role"])


@router.patch("/{account_id}", response_model=AccountRead, summary="Изменить учётную запись")
async def update_account(
    account_id: UUID,
    body: AdminAccountUpdate,
    account: dict = Depends(require_permission(USERS_MANAGE)),
):
    return await account_service.admin_update_account(account_id, body, account["id"])


@router.post(
    "",
    response_model=AccountRead,
    status_code=status.HTTP_201_CREATED,
    summary="Создать учётную запись (например, оператора)",
)
async def create_account(
    body: AdminAccountCreate,
    account: dict = Depends(require_permission(USERS_MANAGE)),
):
    return await account_service.admin_create_account(body, account["id"])


@router.delete(
    "/{account_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Удалить учётную запись",
)
async def delete_account(
    account_id: UUID,
    account: dict = Depends(require_permission(USERS_MANAGE)),
) -> Response:
    await account_service.admin_delete_account(account_id, account["id"])
    return Response(status_code=status.HTTP_204_NO_CONTENT)
