"""
exchange_accounts/db/repositories/kyc_repo.py — Репозиторий KYC-записей.

Одна запись на учётную запись (ограничение ``kyc_records_user_id_key``);
гонка двух первичных подач разрешается на уровне БД.
"""

from __future__ import annotations

import json
from uuid import UUID

import asyncpg

from exchange_accounts.database import get_connection
from exchange_accounts.exceptions import AlreadySubmittedError

_JSON_COLUMNS = ("level1_data", "level2_data", "level3_data")

UPDATABLE_COLUMNS = frozenset({
    "level",
    "status",
    "level1_data",
    "level2_data",
    "level3_data",
    "daily_withdraw_limit",
    "reviewed_by",
    "review_notes",
    "reviewed_at",
})


def _row_to_dict(row) -> dict:
    record = dict(row)
    for col in _JSON_COLUMNS:
        if isinstance(record.get(col), str):
            record[col] = json.loads(record[col])
    if record.get("daily_withdraw_limit") is not None:
        record["daily_withdraw_limit"] = float(record["daily_withdraw_limit"])
    return record


def _encode(column: str, value):
    if column in _JSON_COLUMNS and value is not None:
        return json.dumps(value)
    return value


async def create_kyc(
    user_id: UUID,
    level: str,
    status: str,
    level1_data: dict | None,
    daily_withdraw_limit: float,
) -> dict:
    """Создать KYC-запись."""
    async with get_connection() as conn:
        try:
            row = await conn.fetchrow(
                """
                INSERT INTO kyc_records (user_id, level, status, level1_data, daily_withdraw_limit)
                VALUES ($1, $2, $3, $4::jsonb, $5)
                RETURNING *
                """,
                user_id, level, status, _encode("level1_data", level1_data),
                daily_withdraw_limit,
            )
        except asyncpg.UniqueViolationError as exc:
            raise AlreadySubmittedError() from exc
        return _row_to_dict(row) if row else {}


async def get_kyc_by_user_id(user_id: UUID) -> dict | None:
    async with get_connection() as conn:
        row = await conn.fetchrow("SELECT * FROM kyc_records WHERE user_id = $1", user_id)
        return _row_to_dict(row) if row else None


async def update_kyc(user_id: UUID, **fields) -> dict | None:
    """Обновить перечисленные поля KYC-записи пользователя."""
    unknown = set(fields) - UPDATABLE_COLUMNS
    if unknown:
        raise ValueError(f"Unknown KYC columns: {sorted(unknown)}")
    if not fields:
        return await get_kyc_by_user_id(user_id)

    columns = list(fields)
    assignments = ", ".join(
        f"{col} = ${i}::jsonb" if col in _JSON_COLUMNS else f"{col} = ${i}"
        for i, col in enumerate(columns, start=2)
    )
    async with get_connection() as conn:
        row = await conn.fetchrow(
            f"UPDATE kyc_records SET {assignments}, updated_at = NOW() "
            f"WHERE user_id = $1 RETURNING *",
            user_id, *[_encode(c, fields[c]) for c in columns],
        )
        return _row_to_dict(row) if row else None


async def list_kyc(status: str | None = None) -> list[dict]:
    """Все KYC-записи (новые первыми), опционально по статусу."""
    async with get_connection() as conn:
        if status is None:
            rows = await conn.fetch("SELECT * FROM kyc_records ORDER BY created_at DESC")
        else:
            rows = await conn.fetch(
                "SELECT * FROM kyc_records WHERE status = $1 ORDER BY created_at DESC",
                status,
            )
        return [_row_to_dict(r) for r in rows]
