"""Test fixtures: a fresh SQLite ledger per test, a controllable clock and seeded accounts."""

import datetime

import pytest

from autoledger.api import create_app
from autoledger.config import Settings
from autoledger.database import Database
from autoledger.engine import LedgerEngine
from autoledger.schema import create_database

USER_ID = 1
OTHER_USER_ID = 2


class FrozenClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def set(self, *args):
        self.now = datetime.datetime(*args)

    def advance(self, **kwargs):
        self.now += datetime.timedelta(**kwargs)


@pytest.fixture
def clock():
    # Wednesday
    return FrozenClock(datetime.datetime(2025, 1, 15, 10, 0, 0))


@pytest.fixture
def db(tmp_path):
    database = Database.sqlite(tmp_path / "ledger.db")
    create_database(database)
    return database


@pytest.fixture
def engine(db, clock):
    return LedgerEngine(db, clock=clock, settings=Settings(db_path=db.sqlite_path))


@pytest.fixture
def bank(engine):
    return engine.accounts.create(USER_ID, "Checking", "bank", balance="1000.00")


@pytest.fixture
def wallet(engine):
    return engine.accounts.create(USER_ID, "Wallet", "cash")


@pytest.fixture
def card(engine):
    return engine.accounts.create(USER_ID, "Visa", "credit", credit_limit="5000", billing_day=5, due_day=20)


@pytest.fixture
def fund(engine):
    view = engine.investments.create_investment_account(USER_ID, "Index Fund", "2.0000")
    return engine.accounts.get(USER_ID, view['id'])


@pytest.fixture
def app(engine):
    application = create_app(engine)
    application.config['TESTING'] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()


def balance_of(engine, account):
    return engine.accounts.get(account.user_id, account.id).balance
