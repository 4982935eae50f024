# services/parser_worker/metrics.py
"""Prometheus-метрики для *Parser Worker*.

1. **Business** – сколько SMS сохранено как pending / duplicate, сколько не
   распознано, сколько упало с ошибкой.
2. **Runtime**  – время обработки одного сообщения.

> Запуск: вызовите `start_metrics_server()` один раз при старте процесса – он
> поднимет HTTP-endpoint `/metrics` на `PARSER_METRICS_PORT` (по умолчанию 9102).
"""
from __future__ import annotations

import contextlib
import logging

from prometheus_client import Counter, Histogram, start_http_server

from libs.config import get_settings

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Metric objects (module-level singletons)
# ---------------------------------------------------------------------------
IMPORTED_OK = Counter(
    "sms_imported_total",
    "SMS сохранённые как pending_review",
)
IMPORTED_DUPLICATE = Counter(
    "sms_imported_duplicate_total",
    "SMS с уже известным TID",
)
UNMATCHED = Counter(
    "sms_unmatched_total",
    "SMS, не подошедшие ни под один паттерн",
)
PARSED_FAIL = Counter(
    "sms_parsed_fail_total",
    "SMS, отправленные в DLQ из-за ошибок валидации / БД",
)
PROCESSING_TIME = Histogram(
    "sms_parser_processing_seconds",
    "Время (сек) обработки одного сообщения",
    buckets=(0.001, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------

def start_metrics_server(port: int | None = None) -> None:  # pragma: no cover – network
    """Запускает HTTP-эндпоинт `/metrics` в отдельном треде."""
    port = port or get_settings().parser_metrics_port
    with contextlib.suppress(OSError):  # идемпотентность при повторном запуске
        start_http_server(port)
        log.info("Prometheus metrics available on http://0.0.0.0:%s/metrics", port)
