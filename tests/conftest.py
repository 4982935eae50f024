# tests/conftest.py
import os
import tempfile

# До импорта db.session: движок создаётся при импорте модуля
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("OFFLINE_QUEUE_DIR", tempfile.mkdtemp(prefix="momogate-queue-"))

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from db.models import Base

TRANSFER_OUT_SMS = (
    "Vous avez envoye 10300F au 077123456 Jean Dupont.Frais 200F. "
    "Nouveau Solde 45000F.TID:ABC123456."
)
TRANSFER_IN_SMS = (
    "Recu 20000FCFA du 077654321. Solde actuel 65000FCFA. TID:XYZ789. Promo GIMACPAY blabla"
)
BUNDLE_SMS = (
    "Paiement de 2000 F BUNDLE DATA pour ref REF001 a ete effectue avec succes. "
    "Cout: 0 FCFA. Solde 43000F. TID: BND001."
)
BILL_SMS = "Vous avez PAYE 34155 FCFA a SEEG ... TID: BILL001...Solde: 10000 FCFA."
MERCHANT_SMS = (
    "Paiement de 5000F CARTE pour ref CMD42 de CARREFOUR a ete effectue avec succes. "
    "Cout: 100F. Nouveau Solde: 38000F. TID: MP0042."
)


@pytest.fixture
def sms_samples() -> dict[str, str]:
    return {
        "transfer_out": TRANSFER_OUT_SMS,
        "transfer_in": TRANSFER_IN_SMS,
        "bundle": BUNDLE_SMS,
        "bill_payment": BILL_SMS,
        "merchant_payment": MERCHANT_SMS,
    }


@pytest_asyncio.fixture
async def session_factory():
    """Отдельная in-memory SQLite на каждый тест."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as sess:
        yield sess
