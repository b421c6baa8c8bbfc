"""
═══════════════════════════════════════════════════════════════════════════════
Exchange Accounts — In-Memory хранилище (замена БД для локальной разработки)
═══════════════════════════════════════════════════════════════════════════════

In-memory реализации account_repo, kyc_repo и audit_repo +
функция ``activate_memory_store()`` для monkey-patching.

Проверка уникальности и вставка выполняются без ``await`` между ними,
поэтому в пределах одного event loop они атомарны — так же, как
UNIQUE-ограничения в PostgreSQL.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from exchange_accounts.exceptions import AlreadySubmittedError, DuplicateAccountError

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════
# Хранилища данных
# ═══════════════════════════════════════════════════════════════════════════════
_accounts: dict[UUID, dict] = {}
_kyc: dict[UUID, dict] = {}
_audit: list[dict[str, Any]] = []
_active = False

_now = lambda: datetime.now(timezone.utc)  # noqa: E731


def _copy(row: dict | None) -> dict | None:
    return copy.deepcopy(row) if row is not None else None


def reset_memory_store() -> None:
    """Очищает все in-memory данные (используется в тестах)."""
    _accounts.clear()
    _kyc.clear()
    _audit.clear()


def audit_records() -> list[dict[str, Any]]:
    return list(_audit)


def is_active() -> bool:
    """Активировано ли in-memory хранилище вместо PostgreSQL."""
    return _active


# ═══════════════════════════════════════════════════════════════════════════════
# account_repo in-memory
# ═══════════════════════════════════════════════════════════════════════════════

async def create_account(
    email: str,
    password_hash: str,
    role: str | None,
    email_verification_token: str | None,
    email_verification_token_expiry,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
) -> dict:
    """Создаёт учётную запись в памяти (``role=None`` — admin для первой)."""
    if any(a["email"] == email for a in _accounts.values()):
        raise DuplicateAccountError(email)
    if role is None:
        role = "user" if _accounts else "admin"
    uid = uuid4()
    now = _now()
    account = {
        "id": uid, "email": email, "password_hash": password_hash,
        "first_name": first_name, "last_name": last_name, "phone": phone,
        "role": role, "status": "active",
        "email_verified": False, "email_verified_at": None,
        "email_verification_token": email_verification_token,
        "email_verification_token_expiry": email_verification_token_expiry,
        "password_reset_token": None, "password_reset_expires": None,
        "two_factor_secret": None, "two_factor_enabled": False,
        "two_factor_pending_secret": None, "two_factor_pending_expires": None,
        "two_factor_recovery_codes": [],
        "last_login_at": None, "last_login_ip": None,
        "created_at": now, "updated_at": now,
    }
    _accounts[uid] = account
    logger.info("Memory store: created account %s", uid)
    return _copy(account)


async def get_account_by_id(account_id: UUID) -> dict | None:
    return _copy(_accounts.get(account_id))


async def get_account_by_email(email: str) -> dict | None:
    for a in _accounts.values():
        if a["email"] == email:
            return _copy(a)
    return None


async def get_account_by_verification_token(token: str) -> dict | None:
    for a in _accounts.values():
        if a["email_verification_token"] == token:
            return _copy(a)
    return None


async def get_account_by_reset_token(token: str) -> dict | None:
    for a in _accounts.values():
        if a["password_reset_token"] == token:
            return _copy(a)
    return None


async def update_account(account_id: UUID, **fields) -> dict | None:
    from exchange_accounts.db.repositories.account_repo import UPDATABLE_COLUMNS

    unknown = set(fields) - UPDATABLE_COLUMNS
    if unknown:
        raise ValueError(f"Unknown account columns: {sorted(unknown)}")
    account = _accounts.get(account_id)
    if account is None:
        return None
    account.update(copy.deepcopy(fields))
    account["updated_at"] = _now()
    return _copy(account)


async def list_accounts(role: str | None = None) -> list[dict]:
    rows = [a for a in _accounts.values() if role is None or a["role"] == role]
    return [_copy(a) for a in sorted(rows, key=lambda a: a["created_at"])]


async def remove_recovery_code(account_id: UUID, code_hash: str) -> list[str] | None:
    account = _accounts.get(account_id)
    if account is None or code_hash not in account["two_factor_recovery_codes"]:
        return None
    account["two_factor_recovery_codes"].remove(code_hash)
    account["updated_at"] = _now()
    return list(account["two_factor_recovery_codes"])


async def delete_account(account_id: UUID) -> bool:
    if _accounts.pop(account_id, None) is None:
        return False
    _kyc.pop(account_id, None)
    return True


# ═══════════════════════════════════════════════════════════════════════════════
# kyc_repo in-memory
# ═══════════════════════════════════════════════════════════════════════════════

async def create_kyc(
    user_id: UUID,
    level: str,
    status: str,
    level1_data: dict | None,
    daily_withdraw_limit: float,
) -> dict:
    if user_id in _kyc:
        raise AlreadySubmittedError()
    now = _now()
    record = {
        "id": uuid4(), "user_id": user_id, "level": level, "status": status,
        "level1_data": level1_data, "level2_data": None, "level3_data": None,
        "daily_withdraw_limit": daily_withdraw_limit,
        "reviewed_by": None, "review_notes": None, "reviewed_at": None,
        "created_at": now, "updated_at": now,
    }
    _kyc[user_id] = record
    logger.info("Memory store: created KYC record for %s", user_id)
    return _copy(record)


async def get_kyc_by_user_id(user_id: UUID) -> dict | None:
    return _copy(_kyc.get(user_id))


async def update_kyc(user_id: UUID, **fields) -> dict | None:
    from exchange_accounts.db.repositories.kyc_repo import UPDATABLE_COLUMNS

    unknown = set(fields) - UPDATABLE_COLUMNS
    if unknown:
        raise ValueError(f"Unknown KYC columns: {sorted(unknown)}")
    record = _kyc.get(user_id)
    if record is None:
        return None
    record.update(copy.deepcopy(fields))
    record["updated_at"] = _now()
    return _copy(record)


async def list_kyc(status: str | None = None) -> list[dict]:
    rows = [r for r in _kyc.values() if status is None or r["status"] == status]
    return [_copy(r) for r in sorted(rows, key=lambda r: r["created_at"], reverse=True)]


# ═══════════════════════════════════════════════════════════════════════════════
# audit_repo in-memory
# ═══════════════════════════════════════════════════════════════════════════════

async def insert_audit_record(record: dict[str, Any]) -> None:
    _audit.append(copy.deepcopy(record))


# ═══════════════════════════════════════════════════════════════════════════════
# Активация in-memory хранилища (monkey-patching)
# ═══════════════════════════════════════════════════════════════════════════════

def activate_memory_store() -> None:
    """
    Подменяет функции в exchange_accounts.db.repositories.* на in-memory
    реализации.

    Вызывается из exchange_accounts.main → lifespan() при недоступности БД
    и из тестов.
    """
    global _active
    from exchange_accounts.db.repositories import account_repo, audit_repo, kyc_repo

    # ── account_repo ──
    account_repo.create_account = create_account
    account_repo.get_account_by_id = get_account_by_id
    account_repo.get_account_by_email = get_account_by_email
    account_repo.get_account_by_verification_token = get_account_by_verification_token
    account_repo.get_account_by_reset_token = get_account_by_reset_token
    account_repo.update_account = update_account
    account_repo.list_accounts = list_accounts
    account_repo.remove_recovery_code = remove_recovery_code
    account_repo.delete_account = delete_account

    # ── kyc_repo ──
    kyc_repo.create_kyc = create_kyc
    kyc_repo.get_kyc_by_user_id = get_kyc_by_user_id
    kyc_repo.update_kyc = update_kyc
    kyc_repo.list_kyc = list_kyc

    # ── audit_repo ──
    audit_repo.insert_audit_record = insert_audit_record
    _active = True

    logger.warning(
        "🧠 Memory store ACTIVATED — all data is in-memory (lost on restart)."
    )
