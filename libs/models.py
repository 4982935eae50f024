# libs/models.py
"""Domain models shared by all services.

The system intentionally passes around *only* these objects (JSON-serialised)
across NATS subjects and HTTP so every component speaks the same language.

Levels
------
1. **RawSMS** – exactly what пришло в шлюз: минимальная нормализация, никаких
   выводов о типе операции.
2. **ParsedSms** – результат детерминированного разбора регулярками. Это
   tagged union: одна модель на каждый :class:`SmsType`, дискриминатор – поле
   ``type``. В базу напрямую не пишется, только через ``SmsImport``.

Дизайн-оговорка: мы используем Pydantic v2 (BaseModel) для полной валидации и
удобного JSON-dump (`model_dump_json()`).
"""
from __future__ import annotations

import datetime as _dt
import hashlib
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "RawSMS",
    "SmsType",
    "SmsStatus",
    "CategoryType",
    "Direction",
    "TransferOut",
    "TransferIn",
    "MerchantPayment",
    "Bundle",
    "BillPayment",
    "ParsedSms",
    "BulkItem",
    "BalanceCheck",
    "CategoryRef",
    "PastTransaction",
    "FixedCharge",
    "ChargeFrequency",
    "QueuedTransaction",
    "get_md5_hash",
]


class SmsType(str, Enum):
    """Классификация СМС после парсинга."""

    TRANSFER_OUT = "transfer_out"  # envoi
    TRANSFER_IN = "transfer_in"  # réception
    MERCHANT_PAYMENT = "merchant_payment"
    BUNDLE = "bundle"  # forfait data / crédit
    BILL_PAYMENT = "bill_payment"  # facture (SEEG, ...)


class SmsStatus(str, Enum):
    PENDING_REVIEW = "pending_review"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    DUPLICATE = "duplicate"


class CategoryType(str, Enum):
    INCOME = "Income"
    EXPENSE = "Expense"


class Direction(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class RawSMS(BaseModel):
    """Что отдает *любой* инжестер."""

    msg_id: str = Field(..., description="Уникальный ID сообщения")
    user_id: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    sender: Optional[str] = Field(None, description="Отправитель, например AirtelMoney")
    date: str = Field("", description="Дата/время на телефоне")
    source: Literal["device", "paste"] = Field(
        "device", description="Откуда пришло сообщение"
    )


# ---------------------------------------------------------------------------
# Parsed SMS – tagged union
# ---------------------------------------------------------------------------


class _ParsedBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount: int = Field(..., ge=0)
    fees: int = Field(0, ge=0)
    balance: Optional[int] = None  # после операции (если доступно)
    recipient: Optional[str] = None
    tid: Optional[str] = None

    reference: Optional[str] = None
    label: str = ""
    suggested_category: Optional[str] = None
    notes: Optional[str] = None

    @property
    def is_income(self) -> bool:
        return self.type == SmsType.TRANSFER_IN.value  # type: ignore[attr-defined]

    @property
    def signed_amount(self) -> int:
        """Сумма для проводки: приход положительный, расход отрицательный."""
        return self.amount if self.is_income else -self.amount


class TransferOut(_ParsedBase):
    type: Literal["transfer_out"] = "transfer_out"


class TransferIn(_ParsedBase):
    type: Literal["transfer_in"] = "transfer_in"


class MerchantPayment(_ParsedBase):
    type: Literal["merchant_payment"] = "merchant_payment"


class Bundle(_ParsedBase):
    type: Literal["bundle"] = "bundle"


class BillPayment(_ParsedBase):
    type: Literal["bill_payment"] = "bill_payment"


ParsedSms = Annotated[
    Union[TransferOut, TransferIn, MerchantPayment, Bundle, BillPayment],
    Field(discriminator="type"),
]


class BulkItem(BaseModel):
    """Один сегмент массового импорта; ``parsed`` = None, если не распознан."""

    raw: str
    parsed: Optional[ParsedSms] = None


# ---------------------------------------------------------------------------
# Ledger / suggestion inputs
# ---------------------------------------------------------------------------


class BalanceCheck(BaseModel):
    allowed: bool
    current_balance: int
    requested_amount: int
    account_name: Optional[str] = None

    @property
    def message(self) -> Optional[str]:
        if self.allowed:
            return None
        where = f" sur {self.account_name}" if self.account_name else ""
        return (
            f"Solde insuffisant{where}. Solde actuel : {self.current_balance} FCFA. "
            f"Montant requis : {self.requested_amount} FCFA."
        )


class CategoryRef(BaseModel):
    id: str
    name: str
    type: CategoryType


class PastTransaction(BaseModel):
    label: str
    category_id: Optional[str] = None


class ChargeFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class FixedCharge(BaseModel):
    id: str
    name: str
    amount: int = Field(..., ge=0)
    frequency: ChargeFrequency = ChargeFrequency.MONTHLY
    due_day: int = Field(..., ge=1, le=31)
    start_date: Optional[_dt.date] = None
    is_active: bool = True


class QueuedTransaction(BaseModel):
    """Проводка, отложенная в offline-очередь до появления связи."""

    client_ref: str
    user_id: str
    payment_method_id: str
    category_id: Optional[str] = None
    amount: int
    label: str
    date: _dt.date
    sms_reference: Optional[str] = None
    queued_at: _dt.datetime = Field(default_factory=lambda: _dt.datetime.now(_dt.timezone.utc))


def get_md5_hash(text: str) -> str:
    """Стабильный msg_id для SMS без собственного идентификатора."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()
