import uuid
from datetime import date as dt_date
from datetime import datetime as dt
from datetime import timezone

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> dt:
    return dt.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class PaymentMethod(Base):
    __tablename__ = "payment_methods"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    # cash | bank_account | mobile_money | credit_card | check
    method_type: Mapped[str] = mapped_column(String, nullable=False, default="mobile_money")

    initial_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Текущий остаток; меняется только условным UPDATE (см. db.repository)
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    allow_negative_balance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[dt] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("idx_pm_user", "user_id"),)


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)  # Income | Expense

    __table_args__ = (Index("idx_category_user", "user_id"),)


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    payment_method_id: Mapped[str] = mapped_column(ForeignKey("payment_methods.id"), nullable=False)
    category_id: Mapped[str | None] = mapped_column(ForeignKey("categories.id"))

    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # >0 приход, <0 расход
    label: Mapped[str] = mapped_column(String, nullable=False)
    date: Mapped[dt_date] = mapped_column(Date, nullable=False)

    sms_reference: Mapped[str | None] = mapped_column(String)
    # Ключ идемпотентности для offline-очереди
    client_ref: Mapped[str | None] = mapped_column(String, unique=True)

    created_at: Mapped[dt] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_tx_user_date", "user_id", "date"),
        Index("idx_tx_payment_method", "payment_method_id"),
    )


class SmsImport(Base):
    __tablename__ = "sms_imports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    raw_text: Mapped[str] = mapped_column(Text, nullable=False)
    transaction_id: Mapped[str | None] = mapped_column(String)  # TID из SMS

    parsed_type: Mapped[str] = mapped_column(String, nullable=False)
    parsed_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    parsed_fees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    parsed_balance: Mapped[int | None] = mapped_column(Integer)
    parsed_recipient: Mapped[str | None] = mapped_column(String)
    parsed_reference: Mapped[str | None] = mapped_column(String)

    # pending_review | confirmed | rejected | duplicate
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending_review")
    linked_transaction_id: Mapped[str | None] = mapped_column(ForeignKey("transactions.id"))

    created_at: Mapped[dt] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_sms_user_tid", "user_id", "transaction_id"),
        Index("idx_sms_status", "status"),
    )
