# services/parser_worker/worker.py
"""Parser worker: `sms.raw` → parse → dedup → `sms_imports` row.

Результат публикуется в `sms.imported` (pending_review / duplicate) или в
DLQ `sms.failed` (нераспознанный текст, битый payload, ошибка БД).
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from contextlib import suppress
from typing import Any

from nats.aio.client import Client as NATS
from nats.aio.msg import Msg
from sqlalchemy.exc import OperationalError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from db.repository import IngestResult, ingest_sms
from db.session import SessionLocal
from libs.config import get_settings
from libs.models import RawSMS, SmsStatus
from libs.nats_utils import (
    STREAM_NAME,
    SUBJECT_FAILED,
    SUBJECT_IMPORTED,
    SUBJECT_RAW,
    ensure_stream,
    get_nats_connection,
)
from libs.sentry import init_sentry, sentry_capture
from services.parser_worker.metrics import (
    IMPORTED_DUPLICATE,
    IMPORTED_OK,
    PARSED_FAIL,
    PROCESSING_TIME,
    UNMATCHED,
    start_metrics_server,
)

logger = logging.getLogger("parser_worker")


# ---------------------------------------------------------------------------
# Core processing logic
# ---------------------------------------------------------------------------

@retry(
    retry=retry_if_exception_type(OperationalError),
    wait=wait_exponential(min=1, max=20),
    stop=stop_after_attempt(5),
    reraise=True,
)
async def _safe_ingest(raw_sms: RawSMS) -> IngestResult:
    """Ingest с бэк-оффом на временные ошибки БД; повтор безопасен (дедуп по TID)."""
    async with SessionLocal() as sess:
        return await ingest_sms(sess, raw_sms.user_id, raw_sms.body)


async def _fail(js, payload: dict[str, Any]) -> None:
    await js.publish(SUBJECT_FAILED, json.dumps(payload, default=str).encode())
    PARSED_FAIL.inc()


async def _process_one(nc: NATS, msg: Msg) -> None:
    """Ingest *one* raw SMS from a NATS message and publish the outcome."""
    js = nc.jetstream()

    try:
        raw_sms = RawSMS.model_validate_json(msg.data)
    except Exception as err:
        logger.error("Invalid raw SMS payload: %s", err)
        sentry_capture(err, extras={"raw_data": msg.data.decode(errors="ignore")})
        await _fail(js, {"err": str(err), "entry": msg.data.decode(errors="ignore")})
        await msg.ack()
        return

    with PROCESSING_TIME.time():
        try:
            result = await _safe_ingest(raw_sms)
        except Exception as err:
            logger.exception("Ingest failed for %s", raw_sms.msg_id)
            sentry_capture(err, extras={"raw_sms": raw_sms.model_dump()})
            await _fail(js, {"err": str(err), "entry": raw_sms.model_dump()})
            await msg.ack()
            return

    if result.status is None:
        # Нераспознанный формат – в DLQ без stacktrace
        logger.warning("Unrecognised SMS → DLQ: %s", raw_sms.body[:60])
        UNMATCHED.inc()
        await js.publish(
            SUBJECT_FAILED,
            json.dumps({"reason": "unmatched", "raw": raw_sms.model_dump()}).encode(),
        )
        await msg.ack()
        return

    if result.status is SmsStatus.DUPLICATE:
        IMPORTED_DUPLICATE.inc()
    else:
        IMPORTED_OK.inc()
    await js.publish(SUBJECT_IMPORTED, result.model_dump_json().encode())
    logger.info("SMS %s → %s (%s)", raw_sms.msg_id, result.status.value, result.import_id)
    await msg.ack()


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

async def _worker_loop(nc: NATS, consumer_group: str) -> None:  # pragma: no cover – infinite loop
    js = nc.jetstream()
    # durable-подписчик: несколько воркеров одной группы делят нагрузку
    sub = await js.subscribe(SUBJECT_RAW, durable=consumer_group, stream=STREAM_NAME)
    logger.info("Worker started. Group '%s', subject '%s'", consumer_group, SUBJECT_RAW)

    async for msg in sub.messages:
        await _process_one(nc, msg)


# ---------------------------------------------------------------------------
# Entrypoint helpers
# ---------------------------------------------------------------------------

def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Parser Worker for the Mobile Money SMS pipeline")
    p.add_argument("--group", default="parser_worker", help="Имя группы консьюмеров (durable name)")
    return p.parse_args(argv)


async def _amain(argv: list[str] | None = None) -> None:  # pragma: no cover
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    _ = get_settings()

    start_metrics_server()
    init_sentry(release="parser_worker@1.0.0")

    nc = await get_nats_connection()
    await ensure_stream(nc=nc)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _sig_handler(*_: Any) -> None:
        logger.info("Stop signal received, shutting down…")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _sig_handler)

    worker_task = asyncio.create_task(_worker_loop(nc, args.group))
    await stop_event.wait()

    worker_task.cancel()
    with suppress(asyncio.CancelledError):
        await worker_task

    await nc.drain()
    logger.info("NATS connection closed. Bye.")


def main() -> None:  # pragma: no cover – CLI
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        asyncio.run(_amain())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
