from decimal import Decimal

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from db import build_engine
from main import create_app
from app.auth import IdentityProvider
from app.schemas import AccountCreate
from app.services.ledger import LedgerService
from app.services.loans import LoanService
from app.store import Store

OWNER = "user-alice"
OTHER_OWNER = "user-bob"


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"


@pytest_asyncio.fixture
async def store(db_url):
    s = Store(build_engine(db_url), timeout=5.0)
    await s.create_schema()
    yield s
    await s.dispose()


@pytest.fixture
def ledger(store):
    return LedgerService(store)


@pytest.fixture
def loans(store):
    return LoanService(store)


@pytest.fixture
def identity():
    return IdentityProvider("test-secret", expire_minutes=5)


@pytest.fixture
def client(db_url, identity):
    app = create_app(store=Store(build_engine(db_url)), identity=identity)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers(identity):
    return {"Authorization": f"Bearer {identity.issue_token(OWNER)}"}


async def make_account(ledger, name="Checking", balance="1000.00", owner=OWNER, type="checking"):
    return await ledger.create_account(
        owner, AccountCreate(name=name, type=type, balance=Decimal(balance))
    )


async def balance_of(ledger, account, owner=OWNER):
    return (await ledger.get_account(owner, account.id)).balance
