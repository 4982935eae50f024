"""JetStream plumbing for the SMS pipeline.

Один стрим `MOMO_SMS` на три субъекта: сырые SMS от устройства, результат
импорта и DLQ. Модели уходят в NATS только как JSON (`model_dump_json`).
"""
from __future__ import annotations

import logging

import nats
from async_lru import alru_cache
from nats.aio.client import Client as NATS
from nats.js.api import PubAck, RetentionPolicy, StorageType, StreamConfig
from nats.js.errors import NotFoundError
from pydantic import BaseModel

from libs.config import get_settings
from libs.models import RawSMS

# ---------------------------------------------------------------------------
# Constants / settings
# ---------------------------------------------------------------------------
STREAM_NAME = "MOMO_SMS"
SUBJECT_RAW = "sms.raw"            # Сырые SMS от устройства
SUBJECT_IMPORTED = "sms.imported"  # Сохранены как pending_review / duplicate
SUBJECT_FAILED = "sms.failed"      # DLQ: не распознано или ошибка

SUBJECTS = [SUBJECT_RAW, SUBJECT_IMPORTED, SUBJECT_FAILED]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# NATS connection singleton
# ---------------------------------------------------------------------------
@alru_cache(maxsize=1)
async def get_nats_connection() -> NATS:  # pragma: no cover – network
    """Singleton-подключение к NATS."""
    settings = get_settings()
    logger.info("Connecting to NATS %s", settings.nats_dsn)
    nc = await nats.connect(settings.nats_dsn)
    return nc


async def ensure_stream(nc: NATS) -> None:
    """Создаёт стрим или обновляет список субъектов. Идемпотентна."""
    jsm = nc.jetstream()
    config = StreamConfig(
        name=STREAM_NAME,
        subjects=SUBJECTS,
        storage=StorageType.FILE,
        retention=RetentionPolicy.LIMITS,
        max_age=60 * 60 * 24 * 7,  # 7 дней в секундах
    )

    try:
        stream_info = await jsm.stream_info(STREAM_NAME)
    except NotFoundError:
        logger.info("Stream '%s' not found, creating", STREAM_NAME)
        await jsm.add_stream(config)
        return

    if sorted(stream_info.config.subjects or []) != sorted(SUBJECTS):
        logger.warning("Stream '%s' config is outdated, updating", STREAM_NAME)
        await jsm.update_stream(config)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
async def publish_model(nc: NATS | None, subject: str, model: BaseModel) -> PubAck:
    """Publish any pydantic model as JSON bytes on a JetStream *subject*."""
    if nc is None:  # pragma: no cover – convenience
        nc = await get_nats_connection()

    await ensure_stream(nc=nc)

    js = nc.jetstream()
    return await js.publish(subject, model.model_dump_json().encode("utf-8"))


async def publish_raw_sms(
    nc: NATS | None,
    sms: RawSMS,
    *,
    subject: str = SUBJECT_RAW,
) -> PubAck:
    """Publish an *unparsed* SMS for the parser worker."""
    return await publish_model(nc, subject, sms)


__all__ = [
    "publish_model",
    "publish_raw_sms",
    "get_nats_connection",
    "ensure_stream",
    "STREAM_NAME",
    "SUBJECT_RAW",
    "SUBJECT_IMPORTED",
    "SUBJECT_FAILED",
]
