"""
exchange_accounts/services/kyc_service.py — Трёхуровневый KYC.

Машина состояний одной записи на пользователя:

    level1 (данные личности) ──approve──▶ level2 (документы) ──approve──▶ level3

    • подача данных любого уровня возвращает status в ``pending``;
    • следующий уровень подаётся только после одобрения предыдущего;
    • одобренный уровень неизменяем (``LevelAlreadyApprovedError``);
    • отклонение не понижает уровень: пользователь может подать данные
      того же уровня повторно;
    • ``daily_withdraw_limit`` всегда вычисляется из ``level``.

Решение администратора (approve/reject) принимается только по записи
в статусе ``pending``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from exchange_accounts import events
from exchange_accounts.adapters import email_client
from exchange_accounts.config import get_settings
from exchange_accounts.db.repositories import account_repo, kyc_repo
from exchange_accounts.exceptions import (
    ConflictError,
    LevelAlreadyApprovedError,
    LevelNotApprovedError,
    NotFoundError,
    ValidationError,
)
from exchange_accounts.models.enums import KYC_LEVEL_ORDER, KycLevel, KycStatus
from exchange_accounts.models.kyc import KycRead, KycUpdate, Level1Data
from exchange_accounts.services.audit_logger import AuditAction, get_audit_logger
from exchange_accounts.services.side_effects import best_effort

logger = logging.getLogger(__name__)


def daily_limit_for(level: KycLevel | str) -> float:
    """Дневной лимит вывода для уровня (из настроек)."""
    settings = get_settings()
    limits = {
        KycLevel.LEVEL1: settings.kyc_level1_daily_limit,
        KycLevel.LEVEL2: settings.kyc_level2_daily_limit,
        KycLevel.LEVEL3: settings.kyc_level3_daily_limit,
    }
    return float(limits[KycLevel(level)])


def _to_read(record: dict) -> KycRead:
    return KycRead.model_validate(record)


async def _load(user_id: UUID) -> dict:
    record = await kyc_repo.get_kyc_by_user_id(user_id)
    if record is None:
        raise NotFoundError("KYC record", str(user_id))
    return record


async def _audit(action: AuditAction, user_id: UUID, actor_id: UUID, details: dict) -> None:
    await best_effort(
        get_audit_logger().log(
            action, "kyc", str(user_id), user_id=str(actor_id), details=details,
        ),
        f"Audit {action.value}",
    )


# ═══════════════════════════════════════════════════════════════════════════
# ПОДАЧА ДАННЫХ
# ═══════════════════════════════════════════════════════════════════════════


async def submit_level1(user_id: UUID, data: Level1Data) -> KycRead:
    """
    Создаёт KYC-запись (level1, pending).

    Повторная подача при существующей записи — ``AlreadySubmittedError``;
    одновременные подачи разводит UNIQUE(user_id) хранилища.
    """
    record = await kyc_repo.create_kyc(
        user_id=user_id,
        level=KycLevel.LEVEL1.value,
        status=KycStatus.PENDING.value,
        level1_data=data.model_dump(),
        daily_withdraw_limit=daily_limit_for(KycLevel.LEVEL1),
    )
    logger.info("KYC level1 submitted for user %s", user_id)
    await best_effort(
        events.emit_kyc_submitted(str(user_id), KycLevel.LEVEL1.value),
        "Event kyc.submitted",
    )
    await _audit(AuditAction.KYC_SUBMIT, user_id, user_id, {"level": KycLevel.LEVEL1.value})
    return _to_read(record)


def _check_transition(record: dict, target: KycLevel) -> None:
    """Разрешена ли подача данных уровня ``target`` для текущей записи."""
    level = KycLevel(record["level"])
    status = KycStatus(record["status"])

    if target is KycLevel.LEVEL1:
        if level is not KycLevel.LEVEL1 or status is KycStatus.APPROVED:
            raise LevelAlreadyApprovedError(KycLevel.LEVEL1.value)
        return

    previous = KycLevel.LEVEL2 if target is KycLevel.LEVEL3 else KycLevel.LEVEL1
    if level is previous:
        if status is not KycStatus.APPROVED:
            raise LevelNotApprovedError(previous.value, target.value)
        return
    if level is target:
        if status is KycStatus.APPROVED:
            raise LevelAlreadyApprovedError(target.value)
        return
    if KYC_LEVEL_ORDER[level] < KYC_LEVEL_ORDER[target]:
        # запись ещё на два уровня ниже
        raise LevelNotApprovedError(previous.value, target.value)
    raise LevelAlreadyApprovedError(target.value)


async def update(user_id: UUID, data: KycUpdate) -> KycRead:
    """Подача данных одного уровня (level1 повторно, level2 или level3)."""
    record = await _load(user_id)

    if data.level1_data is not None:
        target, column, payload = KycLevel.LEVEL1, "level1_data", data.level1_data
    elif data.level2_data is not None:
        target, column, payload = KycLevel.LEVEL2, "level2_data", data.level2_data
    elif data.level3_data is not None:
        target, column, payload = KycLevel.LEVEL3, "level3_data", data.level3_data
    else:
        raise ValidationError("Exactly one level's data is required")

    _check_transition(record, target)

    updated = await kyc_repo.update_kyc(
        user_id,
        level=target.value,
        status=KycStatus.PENDING.value,
        daily_withdraw_limit=daily_limit_for(target),
        **{column: payload.model_dump()},
    )
    logger.info("KYC %s submitted for user %s", target.value, user_id)
    await best_effort(events.emit_kyc_submitted(str(user_id), target.value), "Event kyc.submitted")
    await _audit(AuditAction.KYC_SUBMIT, user_id, user_id, {"level": target.value})
    return _to_read(updated)


async def get(user_id: UUID) -> KycRead:
    return _to_read(await _load(user_id))


async def list_records(status: KycStatus | None = None) -> list[KycRead]:
    """Все записи, новые первыми; опционально по статусу."""
    rows = await kyc_repo.list_kyc(status=status.value if status else None)
    return [_to_read(r) for r in rows]


# ═══════════════════════════════════════════════════════════════════════════
# РЕШЕНИЕ АДМИНИСТРАТОРА
# ═══════════════════════════════════════════════════════════════════════════


async def _review(
    user_id: UUID, reviewer_id: UUID, decision: KycStatus, notes: str | None,
) -> KycRead:
    record = await _load(user_id)
    if record["status"] != KycStatus.PENDING.value:
        raise ConflictError(
            f"KYC record is {record['status']}, only pending records can be reviewed",
            code="KYC_NOT_PENDING",
            details={"status": record["status"]},
        )

    updated = await kyc_repo.update_kyc(
        user_id,
        status=decision.value,
        reviewed_by=reviewer_id,
        review_notes=notes,
        reviewed_at=datetime.now(timezone.utc),
        daily_withdraw_limit=daily_limit_for(record["level"]),
    )
    logger.info(
        "KYC %s for user %s %s by %s", record["level"], user_id, decision.value, reviewer_id,
    )

    account = await account_repo.get_account_by_id(user_id)
    if account is not None:
        await best_effort(
            email_client.send_kyc_status_update(
                account["email"], decision.value, record["level"],
                account.get("first_name") or account["email"],
            ),
            f"KYC status notification to {account['email']}",
        )
    await best_effort(
        events.emit_kyc_reviewed(
            str(user_id), record["level"], decision.value, updated["daily_withdraw_limit"],
        ),
        "Event kyc.reviewed",
    )
    await _audit(
        AuditAction.KYC_REVIEW, user_id, reviewer_id,
        {"level": record["level"], "status": decision.value},
    )
    return _to_read(updated)


async def approve(user_id: UUID, reviewer_id: UUID, notes: str | None = None) -> KycRead:
    return await _review(user_id, reviewer_id, KycStatus.APPROVED, notes)


async def reject(user_id: UUID, reviewer_id: UUID, notes: str) -> KycRead:
    return await _review(user_id, reviewer_id, KycStatus.REJECTED, notes)
