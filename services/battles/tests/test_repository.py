import asyncio

import pytest

from predikt.errors import FetchError, LedgerNoData, LedgerTransportError, NotFoundError, ValidationError
from predikt.ledger.stub_ledger import StubLedger
from predikt.models import ZERO_ADDRESS, BattleStatus, UserStats
from predikt.repository import BATTLES_KEY, BattleRepository, battle_key
from predikt.wallet.stub_wallet import StubWallet

START = 1_700_000_000
ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"
CAROL = "0x3333333333333333333333333333333333333333"
DAVE = "0x4444444444444444444444444444444444444444"


async def seed(ledger, n=1, challenger=ALICE):
    wallet = StubWallet(challenger)
    for i in range(n):
        await ledger.create_battle(
            wallet,
            prediction=f"prediction {i}",
            description=f"resolution criteria {i}",
            end_time=START + 7200,
            challenger_says_yes=True,
            opponent=ZERO_ADDRESS,
            value=10**16,
            gas=500_000,
        )


class CountingLedger(StubLedger):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.calls = 0
        self.battle_calls = 0

    async def get_all_battles(self):
        self.calls += 1
        return await super().get_all_battles()

    async def get_battle(self, battle_id):
        self.battle_calls += 1
        return await super().get_battle(battle_id)


class GatedLedger(StubLedger):
    """
    getAllBattles reads state when issued but only returns once its gate
    is opened, so the test controls completion order.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.gates = []

    async def get_all_battles(self):
        result = await super().get_all_battles()
        gate = asyncio.Event()
        self.gates.append(gate)
        await gate.wait()
        return result


# ---------------------------------------------------------------------
# Battle list
# ---------------------------------------------------------------------

def test_list_battles_empty_ledger(repository):
    assert asyncio.run(repository.list_battles()) == []


def test_list_battles_no_data_is_empty(repository, ledger, monkeypatch):
    async def no_data():
        raise LedgerNoData("returned no data (0x)")

    monkeypatch.setattr(ledger, "get_all_battles", no_data)
    assert asyncio.run(repository.list_battles()) == []


def test_list_battles_transport_error_is_fetch_error(repository, ledger, monkeypatch):
    async def down():
        raise LedgerTransportError("connection refused")

    monkeypatch.setattr(ledger, "get_all_battles", down)
    with pytest.raises(FetchError):
        asyncio.run(repository.list_battles())


def test_list_battles_decodes_ledger_state(repository, ledger):
    asyncio.run(seed(ledger, 2))
    battles = asyncio.run(repository.list_battles())
    assert [b.id for b in battles] == [0, 1]
    assert all(b.status is BattleStatus.OPEN for b in battles)
    assert battles[0].challenger == ALICE


# ---------------------------------------------------------------------
# Single battle
# ---------------------------------------------------------------------

@pytest.mark.parametrize("battle_id", [-1, 0, 5])
def test_get_battle_not_found(repository, battle_id):
    with pytest.raises(NotFoundError):
        asyncio.run(repository.get_battle(battle_id))


def test_get_battle_rejects_non_integer_id(repository):
    with pytest.raises(NotFoundError):
        asyncio.run(repository.get_battle("1"))


def test_get_battle(repository, ledger):
    asyncio.run(seed(ledger, 2))
    b = asyncio.run(repository.get_battle(1))
    assert b.id == 1
    assert b.prediction == "prediction 1"


# ---------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------

def _set_stats(ledger, address, **values):
    ledger._stats_for(address).update(values)


def test_leaderboard_keeps_ledger_order_and_limit(repository, ledger):
    _set_stats(ledger, ALICE, totalBattles=3, wins=1, losses=2, totalWinnings=5)
    _set_stats(ledger, BOB, totalBattles=3, wins=2, losses=1, totalWinnings=1)
    _set_stats(ledger, CAROL, totalBattles=2, wins=1, losses=1, totalWinnings=9)
    _set_stats(ledger, DAVE, totalStaked=10)

    entries = asyncio.run(repository.get_leaderboard(10))
    assert [e.address for e in entries] == [BOB, CAROL, ALICE]
    assert [e.rank for e in entries] == [1, 2, 3]
    assert entries[0].stats.wins == 2

    top = asyncio.run(repository.get_leaderboard(2))
    assert [e.address for e in top] == [BOB, CAROL]


@pytest.mark.parametrize("limit", [0, -3, True, "5"])
def test_leaderboard_limit_validation(repository, limit):
    with pytest.raises(ValidationError):
        asyncio.run(repository.get_leaderboard(limit))


def test_leaderboard_mismatched_arrays(repository, ledger, monkeypatch):
    async def broken(limit):
        return [ALICE, BOB], [(1, 1, 0, 0, 0)]

    monkeypatch.setattr(ledger, "get_leaderboard", broken)
    with pytest.raises(FetchError):
        asyncio.run(repository.get_leaderboard(5))


# ---------------------------------------------------------------------
# Users / config
# ---------------------------------------------------------------------

def test_user_battles_and_stats(repository, ledger):
    asyncio.run(seed(ledger, 2))
    battles = asyncio.run(repository.get_user_battles(ALICE))
    assert [b.id for b in battles] == [0, 1]

    stats = asyncio.run(repository.get_user_stats(ALICE))
    assert stats.total_staked == 2 * 10**16
    assert asyncio.run(repository.get_user_stats(BOB)) == UserStats()


def test_user_reads_reject_bad_address(repository):
    with pytest.raises(ValidationError):
        asyncio.run(repository.get_user_battles("not-an-address"))
    with pytest.raises(ValidationError):
        asyncio.run(repository.get_user_stats("0x123"))


def test_config(repository, ledger):
    asyncio.run(seed(ledger, 3))
    ledger.is_paused = True
    config = asyncio.run(repository.get_config())
    assert config.platform_fee_bps == 250
    assert config.paused is True
    assert config.battles_count == 3
    assert config.chain_id == 8453


# ---------------------------------------------------------------------
# Caching / refresh
# ---------------------------------------------------------------------

def test_reads_are_cached_until_refresh(clock):
    ledger = CountingLedger(clock=clock)
    repo = BattleRepository(ledger, ttl=0, clock=clock)

    async def scenario():
        await repo.list_battles()
        await repo.list_battles()
        assert ledger.calls == 1

        await seed(ledger)
        assert await repo.list_battles() == []

        failures = await repo.refresh()
        assert failures == {}
        assert ledger.calls == 2
        assert len(repo.battles) == 1

    asyncio.run(scenario())


def test_ttl_expiry_refetches(clock):
    ledger = CountingLedger(clock=clock)
    repo = BattleRepository(ledger, ttl=15, clock=clock)

    async def scenario():
        await repo.list_battles()
        clock.advance(10)
        await repo.list_battles()
        assert ledger.calls == 1
        clock.advance(10)
        await repo.list_battles()
        assert ledger.calls == 2

    asyncio.run(scenario())


def test_refresh_reports_failures(repository, ledger, monkeypatch):
    asyncio.run(repository.list_battles())

    async def down():
        raise LedgerTransportError("timeout")

    monkeypatch.setattr(ledger, "get_all_battles", down)
    failures = asyncio.run(repository.refresh())
    assert set(failures) == {BATTLES_KEY}
    assert isinstance(failures[BATTLES_KEY], FetchError)


def test_stale_fetch_never_overwrites_newer_refresh(clock):
    ledger = GatedLedger(clock=clock)
    repo = BattleRepository(ledger, ttl=0, clock=clock)

    async def scenario():
        await seed(ledger, 1)
        first = asyncio.ensure_future(repo.list_battles())
        while len(ledger.gates) < 1:
            await asyncio.sleep(0)

        await seed(ledger, 1)
        second = asyncio.ensure_future(repo.refresh())
        while len(ledger.gates) < 2:
            await asyncio.sleep(0)

        # The refresh finishes first.
        ledger.gates[1].set()
        assert await second == {}
        assert len(repo.battles) == 2

        # The older fetch lands afterwards and is discarded.
        ledger.gates[0].set()
        stale_caller_sees = await first
        assert len(repo.battles) == 2
        assert len(stale_caller_sees) == 2

    asyncio.run(scenario())


def test_overlapping_refreshes_latest_wins(clock):
    ledger = GatedLedger(clock=clock)
    repo = BattleRepository(ledger, ttl=0, clock=clock)

    async def scenario():
        initial = asyncio.ensure_future(repo.list_battles())
        while len(ledger.gates) < 1:
            await asyncio.sleep(0)
        ledger.gates[0].set()
        assert await initial == []

        await seed(ledger, 1)
        older = asyncio.ensure_future(repo.refresh())
        while len(ledger.gates) < 2:
            await asyncio.sleep(0)

        await seed(ledger, 2)
        newer = asyncio.ensure_future(repo.refresh())
        while len(ledger.gates) < 3:
            await asyncio.sleep(0)

        ledger.gates[2].set()
        assert await newer == {}
        assert len(repo.battles) == 3

        # The older refresh completes last and must not roll the list back.
        ledger.gates[1].set()
        assert await older == {}
        assert len(repo.battles) == 3
        assert len(await repo.list_battles()) == 3

    asyncio.run(scenario())


def test_refresh_reruns_a_bounded_set_of_queries(clock):
    ledger = CountingLedger(clock=clock)
    repo = BattleRepository(ledger, ttl=0, clock=clock, max_queries=8)

    async def scenario():
        await seed(ledger, 50)
        await repo.list_battles()
        for i in range(50):
            await repo.get_battle(i)

        assert len(repo.tracked_queries) <= 8 + 1
        assert BATTLES_KEY in repo.tracked_queries
        assert repo.snapshot(battle_key(0)) is None
        assert repo.snapshot(battle_key(49)) is not None

        ledger.calls = 0
        ledger.battle_calls = 0
        assert await repo.refresh() == {}
        assert ledger.calls == 1
        assert ledger.battle_calls <= 8

        # Evicted reads still work; they just load again.
        assert (await repo.get_battle(0)).id == 0
        assert ledger.battle_calls <= 9

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------

def test_sync_events_refreshes_on_new_events(repository, ledger):
    async def scenario():
        await seed(ledger, 1)
        assert len(await repository.list_battles()) == 1

        await seed(ledger, 1)
        assert len(await repository.list_battles()) == 1

        events = await repository.sync_events()
        assert [e.name for e in events] == ["BattleCreated", "BattleCreated"]
        assert len(repository.battles) == 2

        assert await repository.sync_events() == []

    asyncio.run(scenario())
