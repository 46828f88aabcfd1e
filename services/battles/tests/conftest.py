import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from predikt.actions import BattleActions
from predikt.db import SubmissionJournal, ensure_schema
from predikt.ledger.stub_ledger import StubLedger
from predikt.repository import BattleRepository
from predikt.wallet.stub_wallet import StubWallet

BASE_CHAIN_ID = 8453
START = 1_700_000_000

# Digit-only addresses are their own checksum form.
ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"
CAROL = "0x3333333333333333333333333333333333333333"


class FakeClock:
    def __init__(self, now: float = START):
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def ledger(clock):
    return StubLedger(chain_id=BASE_CHAIN_ID, clock=clock)


@pytest.fixture()
def repository(ledger, clock):
    return BattleRepository(ledger, ttl=0, clock=clock)


@pytest.fixture()
def make_actions(ledger, clock):
    """
    One BattleActions per account, each with its own repository, the way
    separate users each hold their own client against the same ledger.
    """

    def _make(address, *, chain_id=BASE_CHAIN_ID, journal=None, **wallet_kwargs):
        wallet = StubWallet(address, chain_id=chain_id, **wallet_kwargs)
        repo = BattleRepository(ledger, ttl=0, clock=clock)
        return BattleActions(
            ledger,
            repo,
            wallet,
            chain_id=BASE_CHAIN_ID,
            journal=journal,
            clock=clock,
        )

    return _make


@pytest.fixture()
def db_engine():
    """
    Use an in-memory SQLite DB for unit tests. StaticPool keeps the single
    connection alive across the TestClient worker threads.
    """
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    ensure_schema(engine)
    return engine


@pytest.fixture()
def db_session(db_engine):
    SessionLocal = sessionmaker(bind=db_engine, autoflush=False, autocommit=False)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def journal(db_engine):
    return SubmissionJournal(sessionmaker(bind=db_engine, autoflush=False, autocommit=False))


@pytest.fixture()
def api_context(ledger, clock, journal):
    from predikt.api import BattleContext

    repo = BattleRepository(ledger, ttl=0, clock=clock)
    actions = BattleActions(
        ledger,
        repo,
        StubWallet(ALICE, chain_id=BASE_CHAIN_ID),
        chain_id=BASE_CHAIN_ID,
        journal=journal,
        clock=clock,
    )
    return BattleContext(
        ledger=ledger, repository=repo, actions=actions, journal=journal, clock=clock
    )


@pytest.fixture()
def client(api_context):
    from predikt.api import app, get_context

    app.dependency_overrides[get_context] = lambda: api_context
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
