"""
exchange_accounts/services/rbac.py — Таблица разрешений по ролям.

Права проверяются один раз на входе в маршрут через
``require_permission(...)``; сервисы ролей не проверяют.
"""

from __future__ import annotations

import logging

from fastapi import Depends

from exchange_accounts.exceptions import InsufficientPermissionsError
from exchange_accounts.models.enums import AccountRole

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Разрешения
# ═══════════════════════════════════════════════════════════════════════════════

PROFILE_READ = "profile.read"
PROFILE_UPDATE = "profile.update"
PASSWORD_CHANGE = "password.change"
TWO_FACTOR_MANAGE = "two_factor.manage"
KYC_SUBMIT = "kyc.submit"
KYC_REVIEW = "kyc.review"
USERS_LIST = "users.list"
USERS_MANAGE = "users.manage"

_ALL_ROLES = frozenset(AccountRole)

ROLE_PERMISSIONS: dict[str, frozenset[AccountRole]] = {
    PROFILE_READ: frozenset({AccountRole.USER, AccountRole.MARKET_MAKER, AccountRole.ADMIN}),
    PROFILE_UPDATE: frozenset({AccountRole.USER, AccountRole.MARKET_MAKER, AccountRole.ADMIN}),
    PASSWORD_CHANGE: _ALL_ROLES,
    TWO_FACTOR_MANAGE: _ALL_ROLES,
    KYC_SUBMIT: frozenset({AccountRole.USER, AccountRole.MARKET_MAKER}),
    USERS_LIST: frozenset({AccountRole.OPERATOR, AccountRole.ADMIN}),
    USERS_MANAGE: frozenset({AccountRole.ADMIN}),
    KYC_REVIEW: frozenset({AccountRole.ADMIN}),
}


# ═══════════════════════════════════════════════════════════════════════════════
# Вспомогательные функции
# ═══════════════════════════════════════════════════════════════════════════════

def has_permission(role: str | AccountRole | None, permission: str) -> bool:
    """Проверяет, есть ли у роли указанное разрешение."""
    allowed = ROLE_PERMISSIONS.get(permission)
    if allowed is None:
        logger.warning("Unknown permission requested: %s", permission)
        return False
    try:
        return AccountRole(role) in allowed
    except ValueError:
        return False


def require_permission(permission: str):
    """FastAPI dependency: требует разрешение, возвращает текущую учётную запись."""
    from exchange_accounts.dependencies import get_current_account

    async def _check(account: dict = Depends(get_current_account)) -> dict:
        if not has_permission(account.get("role"), permission):
            logger.warning(
                "RBAC: account %s (role=%s) denied permission '%s'",
                account.get("id"), account.get("role"), permission,
            )
            raise InsufficientPermissionsError(permission, str(account.get("role")))
        return account
    return _check
