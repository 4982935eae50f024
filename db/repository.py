"""Persistence operations of the SMS import pipeline and the ledger.

Все функции принимают открытую :class:`AsyncSession` – сессией управляет
вызывающий (FastAPI dependency, воркер, offline-очередь).

Списание с баланса – **одна** условная операция::

    UPDATE payment_methods SET balance = balance + :delta
     WHERE id = :id AND is_active
       AND (allow_negative_balance OR balance + :delta >= 0)

Ноль затронутых строк = отказ. Никакого "прочитать баланс, потом записать".
"""
from __future__ import annotations

import datetime as _dt
import logging
from typing import Iterable, Optional

from pydantic import BaseModel
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.models import Category, PaymentMethod, SmsImport, Transaction
from libs.balance import InsufficientBalance, check_balance, current_balance
from libs.categories import resolve_category_id
from libs.dedup import DuplicateGuard
from libs.models import (
    BalanceCheck,
    CategoryRef,
    Direction,
    ParsedSms,
    PastTransaction,
    QueuedTransaction,
    SmsStatus,
    SmsType,
)
from libs.regexes import parse_sms, split_bulk_sms

logger = logging.getLogger(__name__)

__all__ = [
    "BulkLimitExceeded",
    "ImportNotFound",
    "ImportStateError",
    "IngestResult",
    "tid_exists",
    "create_sms_import",
    "ingest_sms",
    "ingest_bulk",
    "list_imports",
    "add_payment_method",
    "apply_balance_delta",
    "commit_transaction",
    "confirm_sms_import",
    "reject_sms_import",
    "check_debit",
    "payment_method_balance",
    "suggest_category_for",
    "queued_committer",
]


class ImportNotFound(LookupError):
    pass


class ImportStateError(Exception):
    """Transition not allowed: only pending_review imports can be confirmed/rejected."""


class BulkLimitExceeded(ValueError):
    def __init__(self, count: int, limit: int) -> None:
        super().__init__(f"{count} SMS in one paste, at most {limit} allowed")
        self.count = count
        self.limit = limit


class IngestResult(BaseModel):
    raw: str
    parsed: Optional[ParsedSms] = None
    status: Optional[SmsStatus] = None  # None → SMS не распознан
    import_id: Optional[str] = None


# ---------------------------------------------------------------------------
# SMS imports
# ---------------------------------------------------------------------------
async def tid_exists(sess: AsyncSession, tid: Optional[str], user_id: str) -> bool:
    """Was this TID already imported by *user_id* (any status)?"""
    if not tid:
        return False
    stmt = (
        select(func.count())
        .select_from(SmsImport)
        .where(SmsImport.user_id == user_id, SmsImport.transaction_id == tid)
    )
    return (await sess.scalar(stmt) or 0) > 0


async def _known_tids(sess: AsyncSession, user_id: str, tids: Iterable[Optional[str]]) -> set[str]:
    wanted = {t for t in tids if t}
    if not wanted:
        return set()
    rows = await sess.scalars(
        select(SmsImport.transaction_id).where(
            SmsImport.user_id == user_id, SmsImport.transaction_id.in_(wanted)
        )
    )
    return {t for t in rows if t}


async def create_sms_import(
    sess: AsyncSession,
    *,
    user_id: str,
    raw_text: str,
    parsed: ParsedSms,
    status: SmsStatus,
) -> SmsImport:
    row = SmsImport(
        user_id=user_id,
        raw_text=raw_text,
        transaction_id=parsed.tid,
        parsed_type=parsed.type,
        parsed_amount=parsed.amount,
        parsed_fees=parsed.fees,
        parsed_balance=parsed.balance,
        parsed_recipient=parsed.recipient,
        parsed_reference=parsed.reference,
        status=status.value,
    )
    sess.add(row)
    await sess.flush()
    return row


async def ingest_sms(sess: AsyncSession, user_id: str, text: str) -> IngestResult:
    """Parse one SMS, run the duplicate check and persist the candidate."""
    raw = text.strip()
    parsed = parse_sms(raw)
    if parsed is None:
        logger.info("Unrecognised SMS for user %s: %s", user_id, raw[:60])
        return IngestResult(raw=raw)

    status = (
        SmsStatus.DUPLICATE
        if await tid_exists(sess, parsed.tid, user_id)
        else SmsStatus.PENDING_REVIEW
    )
    row = await create_sms_import(sess, user_id=user_id, raw_text=raw, parsed=parsed, status=status)
    await sess.commit()
    logger.info("SMS %s imported as %s (tid=%s)", row.id, status.value, parsed.tid)
    return IngestResult(raw=raw, parsed=parsed, status=status, import_id=row.id)


async def ingest_bulk(
    sess: AsyncSession,
    user_id: str,
    blob: str,
    *,
    max_messages: Optional[int] = None,
) -> list[IngestResult]:
    """Bulk paste: one result per segment, source order, nothing dropped.

    A paste with more than *max_messages* segments is refused as a whole
    before anything is written.
    """
    items = split_bulk_sms(blob)
    if max_messages is not None and len(items) > max_messages:
        raise BulkLimitExceeded(len(items), max_messages)
    guard = DuplicateGuard(
        await _known_tids(sess, user_id, (i.parsed.tid for i in items if i.parsed))
    )

    results: list[IngestResult] = []
    for item in items:
        if item.parsed is None:
            results.append(IngestResult(raw=item.raw))
            continue
        status = guard.status_for(item.parsed.tid)
        row = await create_sms_import(
            sess, user_id=user_id, raw_text=item.raw, parsed=item.parsed, status=status
        )
        results.append(
            IngestResult(raw=item.raw, parsed=item.parsed, status=status, import_id=row.id)
        )

    await sess.commit()
    logger.info(
        "Bulk import for %s: %d segment(s), %d recognised",
        user_id, len(results), sum(1 for r in results if r.parsed),
    )
    return results


async def list_imports(
    sess: AsyncSession,
    user_id: str,
    status: Optional[SmsStatus] = None,
    limit: int = 50,
) -> list[SmsImport]:
    stmt = select(SmsImport).where(SmsImport.user_id == user_id)
    if status is not None:
        stmt = stmt.where(SmsImport.status == status.value)
    stmt = stmt.order_by(SmsImport.created_at.desc()).limit(limit)
    return list(await sess.scalars(stmt))


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------
async def add_payment_method(
    sess: AsyncSession,
    *,
    user_id: str,
    name: str,
    method_type: str = "mobile_money",
    initial_balance: int = 0,
    allow_negative_balance: bool = False,
) -> PaymentMethod:
    pm = PaymentMethod(
        user_id=user_id,
        name=name,
        method_type=method_type,
        initial_balance=initial_balance,
        balance=initial_balance,
        allow_negative_balance=allow_negative_balance,
    )
    sess.add(pm)
    await sess.commit()
    return pm


async def apply_balance_delta(sess: AsyncSession, payment_method_id: str, delta: int) -> None:
    """Atomic conditional balance mutation; raises instead of overdrawing."""
    conditions = [PaymentMethod.id == payment_method_id, PaymentMethod.is_active.is_(True)]
    if delta < 0:
        conditions.append(
            or_(
                PaymentMethod.allow_negative_balance.is_(True),
                PaymentMethod.balance + delta >= 0,
            )
        )
    stmt = (
        update(PaymentMethod)
        .where(*conditions)
        .values(balance=PaymentMethod.balance + delta)
        .execution_options(synchronize_session=False)
    )
    result = await sess.execute(stmt)
    if result.rowcount == 1:
        return

    pm = await sess.get(PaymentMethod, payment_method_id, populate_existing=True)
    if pm is None or not pm.is_active:
        raise LookupError(f"Payment method {payment_method_id} not found or inactive")
    raise InsufficientBalance(
        check_balance(pm.balance, delta, pm.allow_negative_balance, pm.name)
    )


async def commit_transaction(
    sess: AsyncSession,
    *,
    user_id: str,
    payment_method_id: str,
    amount: int,
    label: str,
    date: _dt.date,
    category_id: Optional[str] = None,
    sms_reference: Optional[str] = None,
    client_ref: Optional[str] = None,
    commit: bool = True,
) -> Transaction:
    """Write a ledger entry and move the payment method balance with it.

    Idempotent per *client_ref*: a ref that is already stored returns the
    existing row and leaves the balance alone.
    """
    if client_ref:
        existing = await sess.scalar(select(Transaction).where(Transaction.client_ref == client_ref))
        if existing is not None:
            logger.info("Transaction %s already committed, skipping", client_ref)
            return existing

    try:
        await apply_balance_delta(sess, payment_method_id, amount)
        tx = Transaction(
            user_id=user_id,
            payment_method_id=payment_method_id,
            category_id=category_id,
            amount=amount,
            label=label,
            date=date,
            sms_reference=sms_reference,
            client_ref=client_ref,
        )
        sess.add(tx)
        await sess.flush()
    except Exception:
        await sess.rollback()
        raise

    if commit:
        await sess.commit()
    return tx


async def _claim_import(sess: AsyncSession, import_id: str, new_status: SmsStatus) -> SmsImport:
    """Conditional pending_review → *new_status* switch; the loser of a race gets ImportStateError.

    Изменение не коммитится: откат транзакции возвращает импорт в очередь.
    """
    result = await sess.execute(
        update(SmsImport)
        .where(SmsImport.id == import_id, SmsImport.status == SmsStatus.PENDING_REVIEW.value)
        .values(status=new_status.value)
        .execution_options(synchronize_session=False)
    )
    imp = await sess.get(SmsImport, import_id, populate_existing=True)
    if result.rowcount == 1:
        return imp

    if imp is None:
        await sess.rollback()
        raise ImportNotFound(import_id)
    current = imp.status
    await sess.rollback()
    raise ImportStateError(f"SMS import {import_id} is already {current}")


async def confirm_sms_import(
    sess: AsyncSession,
    import_id: str,
    *,
    payment_method_id: str,
    category_id: Optional[str] = None,
    label: Optional[str] = None,
    on_date: Optional[_dt.date] = None,
) -> Transaction:
    """pending_review → confirmed: claim + ledger entry + balance + link, one DB transaction."""
    imp = await _claim_import(sess, import_id, SmsStatus.CONFIRMED)
    user_id = imp.user_id

    try:
        parsed = parse_sms(imp.raw_text)
        is_income = imp.parsed_type == SmsType.TRANSFER_IN.value
        direction = Direction.INCOME if is_income else Direction.EXPENSE
        label = label or (parsed.label if parsed else None) or imp.parsed_recipient or imp.parsed_type

        if category_id is None:
            category_id = await suggest_category_for(
                sess, user_id, label, direction,
                hint=parsed.suggested_category if parsed else None,
            )

        tx = await commit_transaction(
            sess,
            user_id=user_id,
            payment_method_id=payment_method_id,
            amount=imp.parsed_amount if is_income else -imp.parsed_amount,
            label=label,
            date=on_date or _dt.date.today(),
            category_id=category_id,
            sms_reference=imp.transaction_id,
            commit=False,
        )
        imp.linked_transaction_id = tx.id
        await sess.commit()
    except Exception:
        await sess.rollback()
        raise

    logger.info("SMS import %s confirmed as transaction %s", import_id, tx.id)
    return tx


async def reject_sms_import(sess: AsyncSession, import_id: str) -> SmsImport:
    imp = await _claim_import(sess, import_id, SmsStatus.REJECTED)
    await sess.commit()
    logger.info("SMS import %s rejected", import_id)
    return imp


async def check_debit(sess: AsyncSession, payment_method_id: str, signed_amount: int) -> BalanceCheck:
    """Advisory check for the UI; the commit path re-validates atomically."""
    pm = await sess.get(PaymentMethod, payment_method_id, populate_existing=True)
    if pm is None:
        raise LookupError(f"Payment method {payment_method_id} not found")
    return check_balance(pm.balance, signed_amount, pm.allow_negative_balance, pm.name)


async def payment_method_balance(sess: AsyncSession, payment_method_id: str) -> int:
    """Reconciliation view: initial_balance + Σ transactions."""
    pm = await sess.get(PaymentMethod, payment_method_id)
    if pm is None:
        raise LookupError(f"Payment method {payment_method_id} not found")
    amounts = await sess.scalars(
        select(Transaction.amount).where(Transaction.payment_method_id == payment_method_id)
    )
    return current_balance(pm.initial_balance, amounts)


# ---------------------------------------------------------------------------
# Category suggestion / offline replay glue
# ---------------------------------------------------------------------------
async def suggest_category_for(
    sess: AsyncSession,
    user_id: str,
    label: str,
    direction: Direction,
    hint: Optional[str] = None,
    history_limit: int = 500,
) -> Optional[str]:
    categories = [
        CategoryRef(id=c.id, name=c.name, type=c.type)
        for c in await sess.scalars(select(Category).where(Category.user_id == user_id))
    ]
    history_rows = await sess.execute(
        select(Transaction.label, Transaction.category_id)
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.date.desc(), Transaction.created_at.desc())
        .limit(history_limit)
    )
    history = [PastTransaction(label=lbl, category_id=cat) for lbl, cat in history_rows]
    return resolve_category_id(label, categories, history, direction, hint=hint)


def queued_committer(session_factory: async_sessionmaker[AsyncSession]):
    """Commit callback for :meth:`libs.offline_queue.OfflineQueue.flush`."""

    async def _commit(item: QueuedTransaction) -> Transaction:
        async with session_factory() as sess:
            return await commit_transaction(
                sess,
                user_id=item.user_id,
                payment_method_id=item.payment_method_id,
                amount=item.amount,
                label=item.label,
                date=item.date,
                category_id=item.category_id,
                sms_reference=item.sms_reference,
                client_ref=item.client_ref,
            )

    return _commit
