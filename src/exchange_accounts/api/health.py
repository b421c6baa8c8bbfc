"""
exchange_accounts/api/health.py — Health check сервиса учётных записей.

GET /api/v1/health — проверяет доступность PostgreSQL.
"""

from fastapi import APIRouter

from exchange_accounts import memory_store
from exchange_accounts.database import check_connection

router = APIRouter(tags=["health"])


@router.get("/health", summary="Health check сервиса")
async def health():
    """При in-memory хранилище БД не опрашивается — статус ``degraded``."""
    if memory_store.is_active():
        return {"status": "degraded", "database": "memory", "service": "exchange-accounts"}
    db_ok = await check_connection()
    return {
        "status": "healthy" if db_ok else "degraded",
        "database": "connected" if db_ok else "disconnected",
        "service": "exchange-accounts",
    }
