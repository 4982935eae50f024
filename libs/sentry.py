# libs/sentry.py
"""Sentry glue shared by the gateway and the parser worker.

Пока DSN не задан (локально, в тестах), оба хелпера ничего не делают, так что
вызывать :func:`sentry_capture` можно безусловно:

```python
init_sentry(release="api_gateway@1.0.0")
try:
    await confirm_sms_import(...)
except Exception as exc:
    sentry_capture(exc, extras={"import_id": import_id})
    raise
```
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Optional

import sentry_sdk

from libs.config import get_settings


@lru_cache(maxsize=1)
def init_sentry(*, release: str | None = None, env: str | None = None) -> None:
    """One ``sentry_sdk.init`` per process; no DSN → no-op."""
    settings = get_settings()
    dsn = os.getenv("SENTRY_DSN") or settings.sentry_dsn
    if not dsn:
        return

    sentry_sdk.init(
        dsn=dsn,
        release=release,
        environment=env or settings.env,
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
        # тексты SMS и пачки вставок бывают длинными
        max_value_length=8_192,
        send_default_pii=False,
    )


def sentry_capture(exc: BaseException, *, extras: Optional[dict[str, Any]] = None) -> None:
    """Report *exc* with *extras* attached to an isolated scope."""
    if not sentry_sdk.get_client().is_active():
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in (extras or {}).items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exc)
