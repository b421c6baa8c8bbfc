"""
exchange_accounts.models — Модели данных сервиса.

Реэкспорт основных классов для удобства:
    from exchange_accounts.models import AccountRead, KycRead
"""

from exchange_accounts.models.enums import (  # noqa: F401
    AccountRole,
    AccountStatus,
    KycLevel,
    KycStatus,
)
from exchange_accounts.models.common import MessageResponse  # noqa: F401
from exchange_accounts.models.account import (  # noqa: F401
    AccountRead,
    AdminAccountCreate,
    AdminAccountUpdate,
    ChangePasswordRequest,
    ProfileUpdate,
    RegisterRequest,
    RegistrationResult,
)
from exchange_accounts.models.auth import (  # noqa: F401
    AccessTokenResult,
    LoginResult,
    TwoFactorChallenge,
    TwoFactorEnabledResult,
    TwoFactorSetup,
    UserProjection,
)
from exchange_accounts.models.kyc import (  # noqa: F401
    KycCreate,
    KycRead,
    KycUpdate,
    Level1Data,
    Level2Data,
    Level3Data,
)
