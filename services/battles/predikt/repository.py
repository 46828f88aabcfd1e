from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Tuple

from predikt.config import CACHE_TTL_SECS, QUERY_CACHE_MAX
from predikt.errors import (
    FetchError,
    LedgerError,
    LedgerNoData,
    LedgerRevert,
    NotFoundError,
    ValidationError,
)
from predikt.ledger.base import LedgerProvider
from predikt.models import (
    Battle,
    LeaderboardEntry,
    LedgerConfig,
    LedgerEvent,
    Snapshot,
    UserStats,
    is_zero_address,
    normalize_address,
)

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[Any]]

BATTLES_KEY: Tuple[str, ...] = ("battles",)
CONFIG_KEY: Tuple[str, ...] = ("config",)

# Always re-run by refresh(); never evicted.
PINNED_KEYS = frozenset({BATTLES_KEY, CONFIG_KEY})


def battle_key(battle_id: int) -> Tuple[Any, ...]:
    return ("battle", battle_id)


def leaderboard_key(limit: int) -> Tuple[Any, ...]:
    return ("leaderboard", limit)


class BattleRepository:
    """
    Typed, cached read access to ledger state.

    Ordering rule: every fetch takes a generation token from one counter at
    issue time. A result commits only if its token is newer than both the
    snapshot already committed for that key and the last invalidation.
    So a slow fetch issued before refresh() can never overwrite data from a
    fetch issued after it, whatever order they complete in.

    refresh() re-runs the pinned list/config queries plus at most
    `max_queries` of the most recently read per-item queries. Older ones
    are forgotten along with their snapshot and load again on next read.
    """

    def __init__(
        self,
        ledger: LedgerProvider,
        *,
        ttl: float = CACHE_TTL_SECS,
        clock: Callable[[], float] = time.time,
        max_queries: int = QUERY_CACHE_MAX,
    ):
        self.ledger = ledger
        self.ttl = ttl
        self.clock = clock
        self.max_queries = max(1, max_queries)

        self._generation = itertools.count(1)
        self._floor = 0
        self._snapshots: Dict[Hashable, Snapshot] = {}
        self._queries: "OrderedDict[Hashable, Loader]" = OrderedDict()
        self._last_event_block = 0

    # -------------------------------------------------------------------
    # Cache core
    # -------------------------------------------------------------------

    def _is_fresh(self, snap: Snapshot) -> bool:
        if snap.generation <= self._floor:
            return False
        if self.ttl > 0 and self.clock() - snap.fetched_at > self.ttl:
            return False
        return True

    def snapshot(self, key: Hashable) -> Optional[Snapshot]:
        """Currently committed snapshot for `key`, fresh or not."""
        return self._snapshots.get(key)

    @property
    def battles(self) -> Optional[List[Battle]]:
        snap = self._snapshots.get(BATTLES_KEY)
        return snap.value if snap else None

    @property
    def tracked_queries(self) -> List[Hashable]:
        """Keys refresh() would re-run, oldest first."""
        return list(self._queries)

    def _remember(self, key: Hashable, loader: Loader) -> None:
        self._queries[key] = loader
        self._queries.move_to_end(key)

        items = [k for k in self._queries if k not in PINNED_KEYS]
        for old in items[: max(0, len(items) - self.max_queries)]:
            del self._queries[old]
            self._snapshots.pop(old, None)

    async def _read(self, key: Hashable, loader: Loader, *, force: bool = False) -> Any:
        snap = self._snapshots.get(key)
        if not force and snap is not None and self._is_fresh(snap):
            if key in self._queries:
                self._queries.move_to_end(key)
            return snap.value

        self._remember(key, loader)
        token = next(self._generation)
        value = await loader()

        committed = self._snapshots.get(key)
        if token <= self._floor or (committed is not None and committed.generation > token):
            logger.debug("Discarding superseded result for %s (gen %s)", key, token)
            if committed is not None and committed.generation > self._floor:
                return committed.value
            return value

        if key not in self._queries:
            # Evicted while in flight
            return value

        self._snapshots[key] = Snapshot(value=value, fetched_at=self.clock(), generation=token)
        return value

    def invalidate(self) -> None:
        self._floor = next(self._generation)

    async def refresh(self) -> Dict[Hashable, Exception]:
        """
        Invalidate every cached read and re-run the last issued queries.
        Returns the failures keyed by query; successful keys are omitted.
        """
        self.invalidate()
        queries = list(self._queries.items())
        results = await asyncio.gather(
            *(self._read(key, loader, force=True) for key, loader in queries),
            return_exceptions=True,
        )

        failures: Dict[Hashable, Exception] = {}
        for (key, _), result in zip(queries, results):
            if isinstance(result, Exception):
                logger.warning("Refresh of %s failed: %s", key, result)
                failures[key] = result
        return failures

    # -------------------------------------------------------------------
    # Loaders
    # -------------------------------------------------------------------

    async def _load_battles(self) -> List[Battle]:
        try:
            raw = await self.ledger.get_all_battles()
        except LedgerNoData:
            return []
        except LedgerError as e:
            raise FetchError(f"getAllBattles failed: {e}") from e

        try:
            return [Battle.from_raw(r) for r in raw]
        except (TypeError, ValueError) as e:
            raise FetchError(f"Could not decode battles: {e}") from e

    async def _load_battle(self, battle_id: int) -> Battle:
        try:
            raw = await self.ledger.get_battle(battle_id)
        except (LedgerRevert, LedgerNoData) as e:
            raise NotFoundError(f"Battle {battle_id} not found") from e
        except LedgerError as e:
            raise FetchError(f"getBattle({battle_id}) failed: {e}") from e

        try:
            battle = Battle.from_raw(raw)
        except (TypeError, ValueError) as e:
            raise FetchError(f"Could not decode battle {battle_id}: {e}") from e

        # Unset storage slot
        if is_zero_address(battle.challenger):
            raise NotFoundError(f"Battle {battle_id} not found")
        return battle

    async def _load_leaderboard(self, limit: int) -> List[LeaderboardEntry]:
        try:
            addresses, stats = await self.ledger.get_leaderboard(limit)
        except LedgerNoData:
            return []
        except LedgerError as e:
            raise FetchError(f"getLeaderboard({limit}) failed: {e}") from e

        if len(addresses) != len(stats):
            raise FetchError("getLeaderboard returned mismatched arrays")

        try:
            entries = [
                LeaderboardEntry(rank=i + 1, address=normalize_address(a), stats=UserStats.from_raw(s))
                for i, (a, s) in enumerate(zip(addresses, stats))
            ]
        except (TypeError, ValueError) as e:
            raise FetchError(f"Could not decode leaderboard: {e}") from e
        # Ledger order is authoritative.
        return entries[:limit]

    async def _load_user_battle_ids(self, address: str) -> List[int]:
        try:
            return await self.ledger.get_user_battles(address)
        except LedgerNoData:
            return []
        except LedgerError as e:
            raise FetchError(f"getUserBattles({address}) failed: {e}") from e

    async def _load_user_stats(self, address: str) -> UserStats:
        try:
            raw = await self.ledger.get_user_stats(address)
        except LedgerNoData:
            return UserStats()
        except LedgerError as e:
            raise FetchError(f"getUserStats({address}) failed: {e}") from e

        try:
            return UserStats.from_raw(raw)
        except (TypeError, ValueError) as e:
            raise FetchError(f"Could not decode stats for {address}: {e}") from e

    async def _load_config(self) -> LedgerConfig:
        try:
            fee, paused, count, chain_id = await asyncio.gather(
                self.ledger.platform_fee(),
                self.ledger.paused(),
                self.ledger.get_battles_count(),
                self.ledger.chain_id(),
            )
        except LedgerError as e:
            raise FetchError(f"Ledger config read failed: {e}") from e

        return LedgerConfig(
            platform_fee_bps=int(fee),
            paused=bool(paused),
            battles_count=int(count),
            chain_id=int(chain_id),
        )

    # -------------------------------------------------------------------
    # Public reads
    # -------------------------------------------------------------------

    async def list_battles(self, *, force: bool = False) -> List[Battle]:
        return await self._read(BATTLES_KEY, self._load_battles, force=force)

    async def get_battle(self, battle_id: int, *, force: bool = False) -> Battle:
        if isinstance(battle_id, bool) or not isinstance(battle_id, int) or battle_id < 0:
            raise NotFoundError(f"Battle {battle_id!r} not found")
        return await self._read(
            battle_key(battle_id), lambda: self._load_battle(battle_id), force=force
        )

    async def get_leaderboard(self, limit: int, *, force: bool = False) -> List[LeaderboardEntry]:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError("limit must be a positive integer")
        return await self._read(
            leaderboard_key(limit), lambda: self._load_leaderboard(limit), force=force
        )

    async def get_user_battles(self, address: str, *, force: bool = False) -> List[Battle]:
        try:
            address = normalize_address(address)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        ids = await self._read(
            ("user_battles", address.lower()),
            lambda: self._load_user_battle_ids(address),
            force=force,
        )
        return list(await asyncio.gather(*(self.get_battle(i, force=force) for i in ids)))

    async def get_user_stats(self, address: str, *, force: bool = False) -> UserStats:
        try:
            address = normalize_address(address)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        return await self._read(
            ("user_stats", address.lower()),
            lambda: self._load_user_stats(address),
            force=force,
        )

    async def get_config(self, *, force: bool = False) -> LedgerConfig:
        return await self._read(CONFIG_KEY, self._load_config, force=force)

    # -------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------

    async def sync_events(self) -> List[LedgerEvent]:
        """
        Pull battle events since the last seen block; refresh cached reads
        if anything new happened on the ledger.
        """
        try:
            events = await self.ledger.get_events(self._last_event_block + 1)
        except LedgerError as e:
            raise FetchError(f"Event query failed: {e}") from e

        if events:
            self._last_event_block = max(ev.block_number for ev in events)
            logger.info("Saw %d ledger event(s) up to block %s", len(events), self._last_event_block)
            await self.refresh()
        return events
