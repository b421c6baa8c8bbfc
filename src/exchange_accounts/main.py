"""
═══════════════════════════════════════════════════════════════════════════════
Exchange Accounts — Главная точка входа сервиса (Application Entry Point)
═══════════════════════════════════════════════════════════════════════════════

Фабрика приложения (Application Factory Pattern) для сервиса учётных
записей биржи: регистрация, вход, 2FA, подтверждение email, сброс
пароля, KYC.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from exchange_accounts import __version__
from exchange_accounts.api.auth import router as auth_router
from exchange_accounts.api.health import router as health_router
from exchange_accounts.api.kyc import router as kyc_router
from exchange_accounts.api.users import router as users_router
from exchange_accounts.config import get_settings
from exchange_accounts.database import apply_migrations, close_pool, get_pool
from exchange_accounts.exceptions import ExchangeError, TooManyRequestsError

# ═══════════════════════════════════════════════════════════════════════════════
# Настройка логирования
# ═══════════════════════════════════════════════════════════════════════════════
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Lifespan — управление жизненным циклом
# ═══════════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
        1. Пул соединений к PostgreSQL и миграции.
        2. При недоступности БД — in-memory хранилище.
        3. NATS publisher.

    Shutdown: NATS, затем пул БД.
    """
    settings = get_settings()
    logger.info("🚀 Exchange Accounts v%s starting (env=%s)", __version__, settings.app_env)

    pool = None
    try:
        pool = await get_pool()
        logger.info("✅ Accounts database pool initialized")
    except Exception as e:
        logger.warning("⚠️  Accounts DB not available — activating memory store: %s", e)
        from exchange_accounts.memory_store import activate_memory_store
        activate_memory_store()

    if pool is not None:
        try:
            await apply_migrations(pool)
        except Exception as e:
            logger.warning("⚠️  Migration apply failed (non-fatal): %s", e)

    from exchange_accounts import events
    await events.connect()

    yield

    try:
        await events.disconnect()
    except Exception as e:
        logger.warning("NATS disconnect failed: %s", e)
    await close_pool()
    logger.info("🛑 Exchange Accounts stopped")


# ═══════════════════════════════════════════════════════════════════════════════
# Фабрика приложения
# ═══════════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    """Создаёт и конфигурирует FastAPI-приложение."""
    settings = get_settings()

    _is_production = settings.app_env == "production"

    app = FastAPI(
        redirect_slashes=False,
        title="Exchange Accounts",
        description=(
            "Account service for the digital exchange: registration, login, "
            "JWT tokens, TOTP 2FA, email verification, password reset and KYC tiers."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url=None if _is_production else "/docs",
        redoc_url=None if _is_production else "/redoc",
        openapi_url=None if _is_production else "/api/v1/openapi.json",
    )

    # ── CORS middleware ──────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "X-Request-ID"],
    )

    # ── Подключение API-роутеров ─────────────────────────────────────────
    v1_router = APIRouter(prefix="/api/v1")
    v1_router.include_router(auth_router)
    v1_router.include_router(users_router)
    v1_router.include_router(kyc_router)
    v1_router.include_router(health_router)
    app.include_router(v1_router)

    # ── Глобальный обработчик ExchangeError ──────────────────────────────
    @app.exception_handler(ExchangeError)
    async def exchange_error_handler(request: Request, exc: ExchangeError) -> JSONResponse:
        """HTTP-статус берётся из категории исключения."""
        if exc.status_code >= 500:
            logger.error("Unhandled domain error on %s: %s", request.url.path, exc.message)
        headers = None
        if isinstance(exc, TooManyRequestsError) and exc.retry_after:
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "code": exc.code,
                    "message": exc.message,
                    "details": exc.details,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                }
            },
            headers=headers,
        )

    # ── Корневой эндпоинт ────────────────────────────────────────────────
    @app.get("/")
    async def root():
        return {
            "name": "Exchange Accounts",
            "version": __version__,
            "docs": "/docs",
            "api": {
                "v1": {
                    "health": "/api/v1/health",
                    "register": "/api/v1/auth/register",
                    "login": "/api/v1/auth/login",
                    "profile": "/api/v1/users/profile",
                    "kyc": "/api/v1/kyc",
                },
            },
        }

    return app


# ═══════════════════════════════════════════════════════════════════════════════
# Module-level singleton
# ═══════════════════════════════════════════════════════════════════════════════
app = create_app()


def main() -> None:
    """Запускает сервис через Uvicorn."""
    settings = get_settings()
    logger.info("Starting Exchange Accounts on %s:%s", settings.api_host, settings.api_port)
    uvicorn.run(
        "exchange_accounts.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
