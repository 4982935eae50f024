# tests/test_repository.py
from datetime import date

import pytest
from sqlalchemy import func, select

from db.models import Category, PaymentMethod, SmsImport, Transaction
from db.repository import (
    BulkLimitExceeded,
    ImportNotFound,
    ImportStateError,
    add_payment_method,
    check_debit,
    commit_transaction,
    confirm_sms_import,
    ingest_bulk,
    ingest_sms,
    list_imports,
    payment_method_balance,
    queued_committer,
    reject_sms_import,
    suggest_category_for,
    tid_exists,
)
from libs.balance import InsufficientBalance
from libs.models import Direction, QueuedTransaction, SmsStatus

from conftest import BUNDLE_SMS, TRANSFER_IN_SMS, TRANSFER_OUT_SMS

pytestmark = pytest.mark.asyncio

USER = "user-1"


async def _balance(sess, pm_id: str) -> int:
    return await sess.scalar(select(PaymentMethod.balance).where(PaymentMethod.id == pm_id))


async def _add_category(sess, name: str, type_: str = "Expense") -> Category:
    cat = Category(user_id=USER, name=name, type=type_)
    sess.add(cat)
    await sess.commit()
    return cat


# ---------------------------------------------------------------------------
# Ingest / dedup
# ---------------------------------------------------------------------------
async def test_ingest_creates_pending_import(session):
    result = await ingest_sms(session, USER, TRANSFER_OUT_SMS)

    assert result.status is SmsStatus.PENDING_REVIEW
    assert result.parsed.tid == "ABC123456"

    row = await session.get(SmsImport, result.import_id)
    assert row.raw_text == TRANSFER_OUT_SMS
    assert row.transaction_id == "ABC123456"
    assert row.parsed_type == "transfer_out"
    assert row.parsed_amount == 10300
    assert row.parsed_fees == 200
    assert row.parsed_balance == 45000
    assert await tid_exists(session, "ABC123456", USER)
    assert not await tid_exists(session, "ABC123456", "someone-else")
    assert not await tid_exists(session, None, USER)


async def test_same_tid_twice_is_duplicate(session):
    first = await ingest_sms(session, USER, TRANSFER_OUT_SMS)
    second = await ingest_sms(session, USER, TRANSFER_OUT_SMS)

    assert first.status is SmsStatus.PENDING_REVIEW
    assert second.status is SmsStatus.DUPLICATE
    assert second.import_id != first.import_id


async def test_unrecognised_sms_is_not_persisted(session):
    result = await ingest_sms(session, USER, "Hello, how are you?")

    assert result.status is None
    assert result.import_id is None
    assert await session.scalar(select(func.count()).select_from(SmsImport)) == 0


async def test_bulk_import_marks_repeats_inside_batch(session):
    blob = f"{TRANSFER_OUT_SMS}\n\nHello\n\n{TRANSFER_OUT_SMS}\n\n{BUNDLE_SMS}"
    results = await ingest_bulk(session, USER, blob)

    assert [r.status for r in results] == [
        SmsStatus.PENDING_REVIEW,
        None,
        SmsStatus.DUPLICATE,
        SmsStatus.PENDING_REVIEW,
    ]

    again = await ingest_bulk(session, USER, BUNDLE_SMS)
    assert again[0].status is SmsStatus.DUPLICATE


async def test_bulk_over_limit_writes_nothing(session):
    blob = f"{TRANSFER_OUT_SMS}\n\n{BUNDLE_SMS}\n\nHello"

    with pytest.raises(BulkLimitExceeded) as exc_info:
        await ingest_bulk(session, USER, blob, max_messages=2)

    assert exc_info.value.count == 3
    assert await session.scalar(select(func.count()).select_from(SmsImport)) == 0

    results = await ingest_bulk(session, USER, blob, max_messages=3)
    assert len(results) == 3


async def test_list_imports_filters_by_status(session):
    await ingest_bulk(session, USER, f"{TRANSFER_OUT_SMS}\n\n{TRANSFER_OUT_SMS}")

    assert len(await list_imports(session, USER)) == 2
    pending = await list_imports(session, USER, status=SmsStatus.PENDING_REVIEW)
    assert [r.status for r in pending] == ["pending_review"]
    assert await list_imports(session, "nobody") == []


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------
async def test_confirm_transfer_in_credits_balance(session):
    pm = await add_payment_method(session, user_id=USER, name="Airtel Money", initial_balance=1000)
    imported = await ingest_sms(session, USER, TRANSFER_IN_SMS)

    tx = await confirm_sms_import(
        session, imported.import_id, payment_method_id=pm.id, on_date=date(2026, 10, 19)
    )

    assert tx.amount == 20000
    assert tx.sms_reference == "XYZ789"
    assert tx.label == "Reçu de 077654321"
    assert await _balance(session, pm.id) == 21000

    imp = await session.get(SmsImport, imported.import_id)
    assert imp.status == "confirmed"
    assert imp.linked_transaction_id == tx.id


async def test_confirm_uses_parser_category_hint(session):
    momo = await _add_category(session, "Mobile Money")
    pm = await add_payment_method(session, user_id=USER, name="Airtel", initial_balance=50000)
    imported = await ingest_sms(session, USER, TRANSFER_OUT_SMS)

    tx = await confirm_sms_import(session, imported.import_id, payment_method_id=pm.id)

    assert tx.amount == -10300
    assert tx.category_id == momo.id
    assert tx.label == "Envoi à Jean Dupont"
    assert await _balance(session, pm.id) == 39700


async def test_confirm_insufficient_balance_leaves_everything_untouched(session):
    pm = await add_payment_method(session, user_id=USER, name="Airtel Money", initial_balance=1000)
    imported = await ingest_sms(session, USER, TRANSFER_OUT_SMS)

    with pytest.raises(InsufficientBalance) as exc_info:
        await confirm_sms_import(session, imported.import_id, payment_method_id=pm.id)

    check = exc_info.value.check
    assert check.current_balance == 1000
    assert check.requested_amount == 10300
    assert check.account_name == "Airtel Money"

    assert await _balance(session, pm.id) == 1000
    assert await session.scalar(select(func.count()).select_from(Transaction)) == 0
    imp = await session.get(SmsImport, imported.import_id)
    assert imp.status == "pending_review"


async def test_overdraft_allowed_when_policy_permits(session):
    pm = await add_payment_method(
        session, user_id=USER, name="Carte", initial_balance=1000, allow_negative_balance=True
    )
    await commit_transaction(
        session, user_id=USER, payment_method_id=pm.id, amount=-1500, label="Pharmacie",
        date=date(2026, 10, 19),
    )
    assert await _balance(session, pm.id) == -500


async def test_inactive_payment_method_is_rejected(session):
    pm = await add_payment_method(session, user_id=USER, name="Old", initial_balance=1000)
    pm.is_active = False
    await session.commit()

    with pytest.raises(LookupError):
        await commit_transaction(
            session, user_id=USER, payment_method_id=pm.id, amount=500, label="x",
            date=date(2026, 10, 19),
        )


async def test_confirm_and_reject_state_transitions(session):
    pm = await add_payment_method(session, user_id=USER, name="Airtel", initial_balance=0)
    first = await ingest_sms(session, USER, TRANSFER_IN_SMS)
    duplicate = await ingest_sms(session, USER, TRANSFER_IN_SMS)

    rejected = await reject_sms_import(session, first.import_id)
    assert rejected.status == "rejected"

    with pytest.raises(ImportStateError):
        await reject_sms_import(session, first.import_id)
    with pytest.raises(ImportStateError):
        await confirm_sms_import(session, duplicate.import_id, payment_method_id=pm.id)
    with pytest.raises(ImportNotFound):
        await confirm_sms_import(session, "missing", payment_method_id=pm.id)


async def test_check_debit_and_reconciliation(session):
    pm = await add_payment_method(session, user_id=USER, name="Airtel", initial_balance=50000)
    for amount in (-10300, 20000):
        await commit_transaction(
            session, user_id=USER, payment_method_id=pm.id, amount=amount, label="op",
            date=date(2026, 10, 19),
        )

    assert await payment_method_balance(session, pm.id) == 59700
    assert await _balance(session, pm.id) == 59700

    check = await check_debit(session, pm.id, -60000)
    assert not check.allowed
    assert (await check_debit(session, pm.id, -59700)).allowed

    with pytest.raises(LookupError):
        await check_debit(session, "missing", -1)


async def test_suggest_category_from_history(session):
    food = await _add_category(session, "Alimentation")
    shop = await _add_category(session, "Shopping")
    pm = await add_payment_method(session, user_id=USER, name="Cash", initial_balance=100000)

    assert await suggest_category_for(session, USER, "Carrefour", Direction.EXPENSE) == food.id

    await commit_transaction(
        session, user_id=USER, payment_method_id=pm.id, amount=-5000, label="Carrefour",
        date=date(2026, 10, 1), category_id=shop.id,
    )
    assert await suggest_category_for(session, USER, "carrefour", Direction.EXPENSE) == shop.id


async def test_concurrent_confirm_debits_once(session_factory):
    async with session_factory() as setup:
        pm = await add_payment_method(setup, user_id=USER, name="Airtel", initial_balance=50000)
        imported = await ingest_sms(setup, USER, TRANSFER_OUT_SMS)

    async with session_factory() as first, session_factory() as second:
        seen = await first.get(SmsImport, imported.import_id)
        assert seen.status == "pending_review"

        await confirm_sms_import(second, imported.import_id, payment_method_id=pm.id)

        with pytest.raises(ImportStateError):
            await confirm_sms_import(first, imported.import_id, payment_method_id=pm.id)

    async with session_factory() as check:
        assert await _balance(check, pm.id) == 39700
        assert await check.scalar(select(func.count()).select_from(Transaction)) == 1
        imp = await check.get(SmsImport, imported.import_id)
        assert imp.status == "confirmed"


async def test_reject_after_confirm_elsewhere_is_refused(session_factory):
    async with session_factory() as setup:
        pm = await add_payment_method(setup, user_id=USER, name="Airtel", initial_balance=0)
        imported = await ingest_sms(setup, USER, TRANSFER_IN_SMS)

    async with session_factory() as first, session_factory() as second:
        await first.get(SmsImport, imported.import_id)
        await confirm_sms_import(second, imported.import_id, payment_method_id=pm.id)

        with pytest.raises(ImportStateError):
            await reject_sms_import(first, imported.import_id)

    async with session_factory() as check:
        imp = await check.get(SmsImport, imported.import_id)
        assert imp.status == "confirmed"
        assert imp.linked_transaction_id is not None


# ---------------------------------------------------------------------------
# Offline replay
# ---------------------------------------------------------------------------
async def test_queued_committer_is_idempotent(session_factory):
    async with session_factory() as sess:
        pm = await add_payment_method(sess, user_id=USER, name="Airtel", initial_balance=10000)

    commit = queued_committer(session_factory)
    item = QueuedTransaction(
        client_ref="offline-1",
        user_id=USER,
        payment_method_id=pm.id,
        amount=-3000,
        label="Taxi",
        date=date(2026, 10, 18),
    )

    first = await commit(item)
    second = await commit(item)

    assert first.id == second.id
    async with session_factory() as sess:
        assert await _balance(sess, pm.id) == 7000
        assert await sess.scalar(select(func.count()).select_from(Transaction)) == 1
