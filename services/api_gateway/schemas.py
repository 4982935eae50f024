# services/api_gateway/schemas.py
"""Pydantic DTO-models used by *API Gateway*.

Отделяем их от `main.py`, чтобы:
1. Избежать циклических импортов (если понадобятся вспомогательные схемы).
2. Упростить автогенерацию OpenAPI-документации.
"""
from __future__ import annotations

import datetime as _dt
import uuid
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from libs.models import Direction, FixedCharge


class RawSMSPayload(BaseModel):
    """Входящее SMS-сообщение от устройства (webhook SMS-forwarder)."""

    model_config = ConfigDict(
        json_schema_extra={"description": "Raw Mobile Money SMS as sent by the device."}
    )

    user_id: str = Field(..., min_length=1)
    device_id: str = Field(...)  # example="android-pixel-8a"
    message: str = Field(..., min_length=1)  # example="Transfert de 10000F ..."
    sender: Optional[str] = Field(None)  # example="AirtelMoney"
    timestamp: int = Field(...)
    source: Literal["device", "paste"] = Field("device")


class RawSMSResponse(BaseModel):
    """Упрощённый ответ API после приёма сообщения."""

    result: str = Field("queued", description="always 'queued' if 202 accepted")


class ImportRequest(BaseModel):
    """Ручная вставка: одно SMS или несколько, разделённых пустой строкой."""

    user_id: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)


class SmsImportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    raw_text: str
    transaction_id: Optional[str] = None
    parsed_type: str
    parsed_amount: int
    parsed_fees: int
    parsed_balance: Optional[int] = None
    parsed_recipient: Optional[str] = None
    parsed_reference: Optional[str] = None
    status: str
    linked_transaction_id: Optional[str] = None
    created_at: _dt.datetime


class ConfirmRequest(BaseModel):
    payment_method_id: str
    category_id: Optional[str] = None
    label: Optional[str] = None
    date: Optional[_dt.date] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    payment_method_id: str
    category_id: Optional[str] = None
    amount: int
    label: str
    date: _dt.date
    sms_reference: Optional[str] = None


class SuggestRequest(BaseModel):
    user_id: str
    label: str
    direction: Direction = Direction.EXPENSE


class SuggestResponse(BaseModel):
    category_id: Optional[str] = None


class BalanceCheckRequest(BaseModel):
    """Чистая проверка без обращения к БД (подсказка для формы)."""

    current_balance: int
    amount: int = Field(..., description="Знаковая сумма: расход < 0, приход > 0")
    allow_negative_balance: bool = False
    account_name: Optional[str] = None


class BalanceCheckResponse(BaseModel):
    allowed: bool
    current_balance: int
    requested_amount: int
    account_name: Optional[str] = None
    message: Optional[str] = None


class TransactionIn(BaseModel):
    """Ручная проводка; client_ref делает повторную отправку безопасной."""

    client_ref: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str = Field(..., min_length=1)
    payment_method_id: str
    category_id: Optional[str] = None
    amount: int = Field(..., description="Знаковая сумма: расход < 0, приход > 0")
    label: str = Field(..., min_length=1)
    date: _dt.date = Field(default_factory=_dt.date.today)
    sms_reference: Optional[str] = None


class QueuedResponse(BaseModel):
    result: str = "queued"
    client_ref: str


class NextChargeRequest(BaseModel):
    charges: list[FixedCharge]
    today: Optional[_dt.date] = None
    paid_ids: list[str] = Field(default_factory=list)


class NextChargeResponse(BaseModel):
    charge: Optional[FixedCharge] = None
    due_date: Optional[_dt.date] = None
