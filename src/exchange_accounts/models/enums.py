"""
exchange_accounts/models/enums.py — Перечисления домена учётных записей.

    • AccountRole — роль учётной записи
    • AccountStatus — статус учётной записи
    • KycLevel / KycStatus — уровень и статус KYC
"""

from enum import Enum


class AccountRole(str, Enum):
    """Роль учётной записи."""
    USER = "user"
    OPERATOR = "operator"
    ADMIN = "admin"
    MARKET_MAKER = "market_maker"


class AccountStatus(str, Enum):
    """Статус учётной записи."""
    ACTIVE = "active"
    SUSPENDED = "suspended"
    BANNED = "banned"


class KycLevel(str, Enum):
    """Уровень KYC (строго возрастающее доверие)."""
    LEVEL1 = "level1"
    LEVEL2 = "level2"
    LEVEL3 = "level3"


class KycStatus(str, Enum):
    """Статус рассмотрения KYC."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


KYC_LEVEL_ORDER: dict[KycLevel, int] = {
    KycLevel.LEVEL1: 1,
    KycLevel.LEVEL2: 2,
    KycLevel.LEVEL3: 3,
}
