"""
exchange_accounts/db/repositories/audit_repo.py — Запись аудит-событий.
"""

from __future__ import annotations

import json
from typing import Any

from exchange_accounts.database import get_connection


async def insert_audit_record(record: dict[str, Any]) -> None:
    """Записать аудит-событие в ``audit_log``."""
    async with get_connection() as conn:
        await conn.execute(
            """
            INSERT INTO audit_log (action, entity_type, entity_id, user_id, details)
            VALUES ($1, $2, $3, $4, $5::jsonb)
            """,
            record["action"],
            record["entity_type"],
            record["entity_id"],
            record["user_id"],
            json.dumps(record["details"], default=str),
        )
