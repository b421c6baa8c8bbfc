"""
exchange_accounts/models/common.py — Базовые типы сервиса.
"""

from pydantic import BaseModel, Field


class ExchangeBase(BaseModel):
    """Базовая Pydantic-модель для схем сервиса."""

    model_config = {"str_strip_whitespace": True}


class MessageResponse(ExchangeBase):
    """Ответ, состоящий из одного сообщения."""
    message: str = Field(..., examples=["Email verified successfully"])
