"""
exchange_accounts/db/repositories/account_repo.py — Репозиторий учётных записей.

Уникальность email гарантирует ограничение ``accounts_email_key``;
нарушение переводится в ``DuplicateAccountError``.
"""

from __future__ import annotations

from uuid import UUID

import asyncpg

from exchange_accounts.database import get_connection
from exchange_accounts.exceptions import DuplicateAccountError

UPDATABLE_COLUMNS = frozenset({
    "password_hash",
    "first_name",
    "last_name",
    "phone",
    "role",
    "status",
    "email_verified",
    "email_verified_at",
    "email_verification_token",
    "email_verification_token_expiry",
    "password_reset_token",
    "password_reset_expires",
    "two_factor_secret",
    "two_factor_enabled",
    "two_factor_pending_secret",
    "two_factor_pending_expires",
    "two_factor_recovery_codes",
    "last_login_at",
    "last_login_ip",
})


# Ключ advisory-блокировки, сериализующей вставку при выборе роли первой учётной записи
_FIRST_ACCOUNT_LOCK = 7_301_001


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
    """
    Создать учётную запись (без подтверждённого email).

    ``role=None``: ``admin``, если таблица пуста, иначе ``user``. Проверка и
    вставка идут в одной транзакции под advisory-блокировкой, поэтому две
    одновременные первые регистрации не получат ``admin`` обе.
    """
    async with get_connection() as conn:
        try:
            async with conn.transaction():
                if role is None:
                    await conn.execute("SELECT pg_advisory_xact_lock($1)", _FIRST_ACCOUNT_LOCK)
                    has_accounts = await conn.fetchval("SELECT EXISTS (SELECT 1 FROM accounts)")
                    role = "user" if has_accounts else "admin"
                row = await conn.fetchrow(
                    """
                    INSERT INTO accounts (
                        email, password_hash, role, first_name, last_name, phone,
                        email_verification_token, email_verification_token_expiry
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    RETURNING *
                    """,
                    email, password_hash, role, first_name, last_name, phone,
                    email_verification_token, email_verification_token_expiry,
                )
        except asyncpg.UniqueViolationError as exc:
            raise DuplicateAccountError(email) from exc
        return dict(row) if row else {}


async def get_account_by_id(account_id: UUID) -> dict | None:
    """Найти учётную запись по UUID."""
    async with get_connection() as conn:
        row = await conn.fetchrow("SELECT * FROM accounts WHERE id = $1", account_id)
        return dict(row) if row else None


async def get_account_by_email(email: str) -> dict | None:
    """Найти учётную запись по email."""
    async with get_connection() as conn:
        row = await conn.fetchrow("SELECT * FROM accounts WHERE email = $1", email)
        return dict(row) if row else None


async def get_account_by_verification_token(token: str) -> dict | None:
    async with get_connection() as conn:
        row = await conn.fetchrow(
            "SELECT * FROM accounts WHERE email_verification_token = $1", token
        )
        return dict(row) if row else None


async def get_account_by_reset_token(token: str) -> dict | None:
    async with get_connection() as conn:
        row = await conn.fetchrow(
            "SELECT * FROM accounts WHERE password_reset_token = $1", token
        )
        return dict(row) if row else None


async def update_account(account_id: UUID, **fields) -> dict | None:
    """Обновить перечисленные поля учётной записи, вернуть новую строку."""
    unknown = set(fields) - UPDATABLE_COLUMNS
    if unknown:
        raise ValueError(f"Unknown account columns: {sorted(unknown)}")
    if not fields:
        return await get_account_by_id(account_id)

    columns = list(fields)
    assignments = ", ".join(f"{col} = ${i}" for i, col in enumerate(columns, start=2))
    async with get_connection() as conn:
        row = await conn.fetchrow(
            f"UPDATE accounts SET {assignments}, updated_at = NOW() "
            f"WHERE id = $1 RETURNING *",
            account_id, *[fields[c] for c in columns],
        )
        return dict(row) if row else None


async def list_accounts(role: str | None = None) -> list[dict]:
    """Список учётных записей (опционально — только с указанной ролью)."""
    async with get_connection() as conn:
        if role is None:
            rows = await conn.fetch("SELECT * FROM accounts ORDER BY created_at")
        else:
            rows = await conn.fetch(
                "SELECT * FROM accounts WHERE role = $1 ORDER BY created_at", role
            )
        return [dict(r) for r in rows]


async def remove_recovery_code(account_id: UUID, code_hash: str) -> list[str] | None:
    """
    Атомарно удаляет хеш кода восстановления.

    Возвращает оставшиеся хеши или ``None``, если хеша уже нет (код
    израсходован параллельным запросом).
    """
    async with get_connection() as conn:
        row = await conn.fetchrow(
            """
            UPDATE accounts
            SET two_factor_recovery_codes = array_remove(two_factor_recovery_codes, $2),
                updated_at = NOW()
            WHERE id = $1 AND $2 = ANY(two_factor_recovery_codes)
            RETURNING two_factor_recovery_codes
            """,
            account_id, code_hash,
        )
        return list(row["two_factor_recovery_codes"]) if row else None


async def delete_account(account_id: UUID) -> bool:
    """Удалить учётную запись (KYC-запись удаляется каскадно)."""
    async with get_connection() as conn:
        result = await conn.execute("DELETE FROM accounts WHERE id = $1", account_id)
        return result == "DELETE 1"
