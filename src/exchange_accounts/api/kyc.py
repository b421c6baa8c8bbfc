"""
exchange_accounts/api/kyc.py — Эндпоинты KYC.

Пользователь подаёт данные уровней (нужен подтверждённый email),
администратор одобряет или отклоняет.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from exchange_accounts.dependencies import get_verified_account
from exchange_accounts.models.enums import KycStatus
from exchange_accounts.models.kyc import KycCreate, KycRead, KycRejection, KycReview, KycUpdate
from exchange_accounts.services import kyc_service
from exchange_accounts.services.rbac import KYC_REVIEW, KYC_SUBMIT, require_permission

router = APIRouter(prefix="/kyc", tags=["kyc"])


@router.post(
    "",
    response_model=KycRead,
    status_code=status.HTTP_201_CREATED,
    summary="Подать KYC уровня 1",
    dependencies=[Depends(get_verified_account)],
)
async def submit_kyc(body: KycCreate, account: dict = Depends(require_permission(KYC_SUBMIT))):
    return await kyc_service.submit_level1(account["id"], body.level1_data)


@router.get(
    "",
    response_model=KycRead,
    summary="Своя KYC-запись",
    dependencies=[Depends(get_verified_account)],
)
async def get_kyc(account: dict = Depends(require_permission(KYC_SUBMIT))):
    return await kyc_service.get(account["id"])


@router.patch(
    "",
    response_model=KycRead,
    summary="Подать данные уровня (ровно один из level1/2/3_data)",
    dependencies=[Depends(get_verified_account)],
)
async def update_kyc(body: KycUpdate, account: dict = Depends(require_permission(KYC_SUBMIT))):
    return await kyc_service.update(account["id"], body)


# ── Администрирование ─────────────────────────────────────────────────────────


@router.get("/all", response_model=list[KycRead], summary="Все KYC-записи")
async def list_kyc(
    status_filter: KycStatus | None = Query(default=None, alias="status"),
    _admin: dict = Depends(require_permission(KYC_REVIEW)),
):
    return await kyc_service.list_records(status_filter)


@router.post("/{user_id}/approve", response_model=KycRead, summary="Одобрить KYC")
async def approve_kyc(
    user_id: UUID,
    body: KycReview | None = None,
    admin: dict = Depends(require_permission(KYC_REVIEW)),
):
    return await kyc_service.approve(user_id, admin["id"], body.notes if body else None)


@router.post("/{user_id}/reject", response_model=KycRead, summary="Отклонить KYC")
async def reject_kyc(
    user_id: UUID,
    body: KycRejection,
    admin: dict = Depends(require_permission(KYC_REVIEW)),
):
    return await kyc_service.reject(user_id, admin["id"], body.notes)
