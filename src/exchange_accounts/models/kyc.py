"""
exchange_accounts/models/kyc.py — Модели KYC.

Документы уровней 2 и 3 передаются ссылками (URL из файлового хранилища);
байты файлов через сервис не проходят.
"""

from datetime import datetime
from uuid import UUID

from pydantic import Field, model_validator

from exchange_accounts.models.common import ExchangeBase
from exchange_accounts.models.enums import KycLevel, KycStatus


class Level1Data(ExchangeBase):
    """Самостоятельно заявленные данные личности."""
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    date_of_birth: str | None = Field(default=None, examples=["1990-01-31"])
    nationality: str | None = Field(default=None, max_length=100)


class Level2Data(ExchangeBase):
    """Документ, удостоверяющий личность, и селфи."""
    national_card_front: str | None = None
    national_card_back: str | None = None
    selfie: str | None = None


class Level3Data(ExchangeBase):
    additional_documents: list[str] = Field(default_factory=list)
    notes: str | None = Field(default=None, max_length=2000)


class KycCreate(ExchangeBase):
    level1_data: Level1Data = Field(default_factory=Level1Data)


class KycUpdate(ExchangeBase):
    """Данные ровно одного уровня."""
    level1_data: Level1Data | None = None
    level2_data: Level2Data | None = None
    level3_data: Level3Data | None = None

    @model_validator(mode="after")
    def _exactly_one_level(self) -> "KycUpdate":
        provided = [
            d for d in (self.level1_data, self.level2_data, self.level3_data)
            if d is not None
        ]
        if len(provided) != 1:
            raise ValueError("Exactly one of level1_data, level2_data, level3_data is required")
        return self


class KycReview(ExchangeBase):
    notes: str | None = Field(default=None, max_length=2000)


class KycRejection(ExchangeBase):
    notes: str = Field(..., min_length=1, max_length=2000)


class KycRead(ExchangeBase):
    id: UUID
    user_id: UUID
    level: KycLevel
    status: KycStatus
    level1_data: Level1Data | None = None
    level2_data: Level2Data | None = None
    level3_data: Level3Data | None = None
    daily_withdraw_limit: float
    reviewed_by: UUID | None = None
    review_notes: str | None = None
    reviewed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
