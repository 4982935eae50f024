# tests/test_nats_utils.py
import pytest
from unittest.mock import AsyncMock, MagicMock

from nats.js.errors import NotFoundError

from libs.models import RawSMS
from libs.nats_utils import (
    SUBJECT_RAW,
    SUBJECTS,
    ensure_stream,
    get_nats_connection,
    publish_raw_sms,
)

# Все тесты, использующие async/await, должны быть помечены этим маркером
pytestmark = pytest.mark.asyncio


@pytest.fixture
def sample_sms() -> RawSMS:
    """Фикстура, создающая тестовый объект RawSMS."""
    return RawSMS(
        msg_id="test",
        user_id="user-1",
        sender="AirtelMoney",
        body="Recu 20000FCFA du 077654321. TID:XYZ789",
        date="1749808562",
    )


@pytest.fixture(autouse=True)
def clear_cache():
    """Очищаем кеш синглтона после каждого теста."""
    yield
    get_nats_connection.cache_clear()


def _mock_nc() -> tuple[MagicMock, MagicMock]:
    jsm = MagicMock()
    jsm.stream_info = AsyncMock()
    jsm.add_stream = AsyncMock()
    jsm.update_stream = AsyncMock()
    jsm.publish = AsyncMock(return_value=MagicMock(seq=1))
    nc = MagicMock()
    nc.jetstream.return_value = jsm
    return nc, jsm


async def test_get_nats_connection_is_singleton(mocker):
    mock_connect = mocker.patch("nats.connect", new_callable=AsyncMock)
    mock_connect.return_value = "fake_connection_object"

    conn1 = await get_nats_connection()
    conn2 = await get_nats_connection()

    assert conn1 is conn2
    mock_connect.assert_called_once()


async def test_ensure_stream_creates_missing_stream():
    nc, jsm = _mock_nc()
    jsm.stream_info.side_effect = NotFoundError()

    await ensure_stream(nc)

    jsm.add_stream.assert_awaited_once()
    config = jsm.add_stream.await_args.args[0]
    assert sorted(config.subjects) == sorted(SUBJECTS)
    jsm.update_stream.assert_not_awaited()


async def test_ensure_stream_updates_outdated_subjects():
    nc, jsm = _mock_nc()
    jsm.stream_info.return_value = MagicMock(config=MagicMock(subjects=["sms.raw"]))

    await ensure_stream(nc)

    jsm.update_stream.assert_awaited_once()
    jsm.add_stream.assert_not_awaited()


async def test_ensure_stream_is_noop_when_up_to_date():
    nc, jsm = _mock_nc()
    jsm.stream_info.return_value = MagicMock(config=MagicMock(subjects=list(reversed(SUBJECTS))))

    await ensure_stream(nc)

    jsm.add_stream.assert_not_awaited()
    jsm.update_stream.assert_not_awaited()


async def test_publish_raw_sms(sample_sms: RawSMS, mocker):
    nc, jsm = _mock_nc()
    mocker.patch("libs.nats_utils.ensure_stream", new_callable=AsyncMock)

    ack = await publish_raw_sms(nc, sample_sms)

    assert ack.seq == 1
    jsm.publish.assert_awaited_once_with(SUBJECT_RAW, sample_sms.model_dump_json().encode("utf-8"))
