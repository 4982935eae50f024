# services/api_gateway/main.py
"""FastAPI шлюз Mobile Money SMS.

* **POST  /sms/raw**                    сообщения от мобильного устройства → NATS.
* **POST  /sms/import**                 ручная вставка (одно SMS или пачка).
* **GET   /sms/imports**                очередь на проверку пользователем.
* **POST  /sms/imports/{id}/confirm**   создаёт проводку и двигает баланс.
* **POST  /sms/imports/{id}/reject**
* **POST  /categories/suggest**
* **POST  /balance/check**
* **POST  /transactions**               ручная проводка; БД недоступна → offline-очередь (202).
* **POST  /transactions/sync**          воспроизводит offline-очередь.
* **POST  /charges/next**               ближайшая неоплаченная фиксированная платёжка.
* **GET   /health**                     простая проверка живости (ping NATS).

❗ DTO-модели вынесены в `services.api_gateway.schemas`, чтобы избежать
циклических импортов и централизовать OpenAPI-описание.
"""
from __future__ import annotations

import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from db import repository
from db.repository import (
    BulkLimitExceeded,
    ImportNotFound,
    ImportStateError,
    IngestResult,
    queued_committer,
)
from db.session import SessionLocal, get_session, init_models
from libs.balance import InsufficientBalance, check_balance
from libs.charges import next_due_charge
from libs.config import get_settings
from libs.models import QueuedTransaction, RawSMS, SmsStatus, get_md5_hash
from libs.nats_utils import get_nats_connection, publish_raw_sms
from libs.offline_queue import FlushReport, OfflineQueue
from libs.sentry import init_sentry, sentry_capture
from services.api_gateway.schemas import (
    BalanceCheckRequest,
    BalanceCheckResponse,
    ConfirmRequest,
    ImportRequest,
    NextChargeRequest,
    NextChargeResponse,
    QueuedResponse,
    RawSMSPayload,
    RawSMSResponse,
    SmsImportOut,
    SuggestRequest,
    SuggestResponse,
    TransactionIn,
    TransactionOut,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------#
# Graceful shutdown helpers (optional)                                       #
# ---------------------------------------------------------------------------#
shutdown_event = asyncio.Event()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_sentry(release="api_gateway@1.0.0")
    app.state.offline_queue = OfflineQueue().open()
    logger.info("API Gateway started")
    yield
    logger.info("API Gateway shutting down…")
    app.state.offline_queue.close()
    shutdown_event.set()


app = FastAPI(title="Mobile Money SMS Gateway", version="1.0.0", lifespan=lifespan)


# ──────────────────────────────────────────────────────────────────────────
# ✨  Файловое логирование (только если задан LOG_DIR)
# ──────────────────────────────────────────────────────────────────────────
_log_dir = get_settings().log_dir
if _log_dir is not None:
    _file_handler = logging.FileHandler(_log_dir / "api_gateway.log", encoding="utf-8")
    _file_handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    logger.addHandler(_file_handler)


# ---------------------------------------------------------------------------#
# Domain errors → HTTP                                                       #
# ---------------------------------------------------------------------------#
@app.exception_handler(InsufficientBalance)
async def _insufficient_balance(_: Request, exc: InsufficientBalance) -> JSONResponse:
    check = exc.check
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": check.message, **check.model_dump()},
    )


@app.exception_handler(ImportStateError)
async def _import_state(_: Request, exc: ImportStateError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(ImportNotFound)
async def _import_not_found(_: Request, exc: ImportNotFound) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": f"SMS import {exc} not found"},
    )


# ---------------------------------------------------------------------------#
# Routes                                                                     #
# ---------------------------------------------------------------------------#
@app.post("/sms/raw", status_code=status.HTTP_202_ACCEPTED, response_model=RawSMSResponse)
async def post_raw_sms(payload: RawSMSPayload) -> JSONResponse:  # noqa: D401
    """Принимаем сырое SMS-сообщение и кладём в JetStream `sms.raw`."""
    logger.debug("↘︎ /sms/raw payload: %s", payload.model_dump())
    raw_sms = RawSMS(
        msg_id=get_md5_hash(payload.message),
        user_id=payload.user_id,
        sender=payload.sender,
        body=payload.message,
        date=str(payload.timestamp),
        source=payload.source,
    )

    try:
        nc = await get_nats_connection()
        await publish_raw_sms(nc, raw_sms)
    except Exception as exc:  # pragma: no cover – network
        sentry_capture(exc)
        logger.exception("Failed to push to NATS")
        raise HTTPException(status_code=500, detail="Internal error") from exc

    logger.info("Queued raw SMS %s", raw_sms.msg_id)
    return JSONResponse(content={"result": "queued"}, status_code=status.HTTP_202_ACCEPTED)


@app.post("/sms/import", response_model=list[IngestResult])
async def import_sms(
    body: ImportRequest,
    sess: AsyncSession = Depends(get_session),
) -> list[IngestResult]:
    """Синхронный импорт вставленного текста; нераспознанные сегменты → status=null."""
    try:
        return await repository.ingest_bulk(
            sess, body.user_id, body.text, max_messages=get_settings().bulk_max_messages
        )
    except BulkLimitExceeded as exc:
        logger.warning("Bulk import refused for %s: %s", body.user_id, exc)
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@app.get("/sms/imports", response_model=list[SmsImportOut])
async def get_imports(
    user_id: str,
    status_: Optional[SmsStatus] = Query(None, alias="status"),
    sess: AsyncSession = Depends(get_session),
) -> list[SmsImportOut]:
    rows = await repository.list_imports(sess, user_id, status=status_)
    return [SmsImportOut.model_validate(r) for r in rows]


@app.post("/sms/imports/{import_id}/confirm", response_model=TransactionOut)
async def confirm_import(
    import_id: str,
    body: ConfirmRequest,
    sess: AsyncSession = Depends(get_session),
) -> TransactionOut:
    """pending_review → confirmed. 409 + баланс, если средств недостаточно."""
    try:
        tx = await repository.confirm_sms_import(
            sess,
            import_id,
            payment_method_id=body.payment_method_id,
            category_id=body.category_id,
            label=body.label,
            on_date=body.date,
        )
    except ImportNotFound:
        raise
    except LookupError as exc:  # неизвестный или неактивный счёт
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return TransactionOut.model_validate(tx)


@app.post("/sms/imports/{import_id}/reject", response_model=SmsImportOut)
async def reject_import(import_id: str, sess: AsyncSession = Depends(get_session)) -> SmsImportOut:
    imp = await repository.reject_sms_import(sess, import_id)
    return SmsImportOut.model_validate(imp)


@app.post("/categories/suggest", response_model=SuggestResponse)
async def suggest_category(
    body: SuggestRequest,
    sess: AsyncSession = Depends(get_session),
) -> SuggestResponse:
    category_id = await repository.suggest_category_for(sess, body.user_id, body.label, body.direction)
    return SuggestResponse(category_id=category_id)


@app.post("/balance/check", response_model=BalanceCheckResponse)
async def balance_check(body: BalanceCheckRequest) -> BalanceCheckResponse:
    check = check_balance(
        body.current_balance, body.amount, body.allow_negative_balance, body.account_name
    )
    return BalanceCheckResponse(**check.model_dump(), message=check.message)


@app.post(
    "/transactions",
    status_code=status.HTTP_201_CREATED,
    response_model=TransactionOut,
    responses={status.HTTP_202_ACCEPTED: {"model": QueuedResponse}},
)
async def create_transaction(
    body: TransactionIn,
    request: Request,
    sess: AsyncSession = Depends(get_session),
) -> TransactionOut | JSONResponse:
    """Проводка в журнал; если БД недоступна – откладываем в offline-очередь."""
    try:
        tx = await repository.commit_transaction(sess, **body.model_dump())
    except OperationalError as exc:
        logger.warning("DB unavailable, queueing transaction %s: %s", body.client_ref, exc)
        request.app.state.offline_queue.enqueue(QueuedTransaction(**body.model_dump()))
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"result": "queued", "client_ref": body.client_ref},
        )
    except LookupError as exc:  # неизвестный или неактивный счёт
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return TransactionOut.model_validate(tx)


@app.post("/transactions/sync", response_model=FlushReport)
async def sync_transactions(request: Request) -> FlushReport:
    """Replay the offline queue in date order."""
    return await request.app.state.offline_queue.flush(queued_committer(SessionLocal))


@app.post("/charges/next", response_model=NextChargeResponse)
async def next_charge(body: NextChargeRequest) -> NextChargeResponse:
    found = next_due_charge(
        body.charges, body.today or date.today(), paid_ids=frozenset(body.paid_ids)
    )
    if found is None:
        return NextChargeResponse()
    charge, due = found
    return NextChargeResponse(charge=charge, due_date=due)


@app.get("/health", status_code=status.HTTP_200_OK, response_model=None)
async def health() -> Dict[str, Any] | JSONResponse:  # noqa: D401
    """Проверка готовности. Легковесна: просто ping к NATS."""
    try:
        nc = await get_nats_connection()
        logger.debug("NATS connected: %s", nc.is_connected)
        return {"status": "ok"}
    except Exception as e:
        logger.error("NATS is unavailable: %s", e)
        sentry_capture(e)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "nats_down"},
        )


# ---------------------------------------------------------------------------#
# Entrypoint                                                                 #
# ---------------------------------------------------------------------------#
if __name__ == "__main__":  # pragma: no cover
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    settings = get_settings()

    # Таблицы создаём до старта сервера (dev / первый запуск)
    asyncio.run(init_models())

    def _graceful_exit(*_sig: object) -> None:  # noqa: D401
        logger.info("SIGTERM/SIGINT caught, shutting down uvicorn…")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, _graceful_exit)
    signal.signal(signal.SIGINT, _graceful_exit)

    uvicorn.run(
        "services.api_gateway.main:app",
        host=settings.api_host,
        port=settings.api_port,
        lifespan="on",
    )
