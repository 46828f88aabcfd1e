import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from predikt.errors import LedgerRevert
from predikt.ledger.base import LedgerProvider, TxResult
from predikt.models import ZERO_ADDRESS, BattleStatus, LedgerEvent, is_zero_address


def _key(address: str) -> str:
    return address.lower()


class StubLedger(LedgerProvider):
    """
    In-memory emulation of the FrameBattles contract for tests/dev.

    Mirrors the contract's checks and revert reasons closely enough to
    exercise the client. Fee is in basis points (250 = 2.5%). `clock`
    returns unix seconds and stands in for block.timestamp.
    """

    def __init__(
        self,
        *,
        chain_id: int = 8453,
        platform_fee_bps: int = 250,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._chain_id = chain_id
        self.platform_fee_bps = platform_fee_bps
        self.is_paused = False
        self.clock = clock or time.time

        self.battles: List[Dict[str, Any]] = []
        self.user_battles: Dict[str, List[int]] = {}
        self.stats: Dict[str, Dict[str, int]] = {}
        self.checksummed: Dict[str, str] = {}
        self.credits: Dict[str, int] = {}
        self.fees_collected = 0
        self.events: List[LedgerEvent] = []
        self.block_number = 0

    @property
    def name(self) -> str:
        return "stub"

    def now(self) -> int:
        return int(self.clock())

    # -------------------------------------------------------------------
    # Internal state helpers
    # -------------------------------------------------------------------

    def _stats_for(self, address: str) -> Dict[str, int]:
        k = _key(address)
        self.checksummed.setdefault(k, address)
        return self.stats.setdefault(
            k,
            {"totalBattles": 0, "wins": 0, "losses": 0, "totalStaked": 0, "totalWinnings": 0},
        )

    def _battle(self, battle_id: int) -> Dict[str, Any]:
        if battle_id < 0 or battle_id >= len(self.battles):
            raise LedgerRevert("Battle does not exist")
        return self.battles[battle_id]

    @staticmethod
    def _as_tuple(b: Dict[str, Any]) -> Tuple[Any, ...]:
        return (
            b["id"], b["prediction"], b["description"], b["stakeAmount"],
            b["challenger"], b["opponent"], b["endTime"], int(b["status"]),
            b["winner"], b["createdAt"], b["challengerSaysYes"],
        )

    @staticmethod
    def _stats_tuple(s: Dict[str, int]) -> Tuple[int, ...]:
        return (s["totalBattles"], s["wins"], s["losses"], s["totalStaked"], s["totalWinnings"])

    def _emit(self, name: str, battle_id: int, **args) -> None:
        self.block_number += 1
        self.events.append(
            LedgerEvent(
                name=name,
                battle_id=battle_id,
                block_number=self.block_number,
                args={"battleId": battle_id, **args},
            )
        )

    async def _send(self, wallet, function: str, args: Sequence[Any], value: int, gas: int) -> str:
        sender = wallet.address
        if not sender:
            raise LedgerRevert("No sender")
        wallet_chain = await wallet.chain_id()
        if wallet_chain != self._chain_id:
            raise LedgerRevert(f"Wrong chain {wallet_chain}")
        return await wallet.send_transaction(
            {
                "from": sender,
                "function": function,
                "args": list(args),
                "value": value,
                "gas": gas,
                "chainId": wallet_chain,
            }
        )

    # -------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------

    async def chain_id(self) -> int:
        return self._chain_id

    async def get_battle(self, battle_id: int) -> Sequence[Any]:
        return self._as_tuple(self._battle(battle_id))

    async def get_all_battles(self) -> List[Sequence[Any]]:
        return [self._as_tuple(b) for b in self.battles]

    async def get_battles_count(self) -> int:
        return len(self.battles)

    async def get_user_battles(self, address: str) -> List[int]:
        return list(self.user_battles.get(_key(address), []))

    async def get_user_stats(self, address: str) -> Sequence[Any]:
        s = self.stats.get(_key(address))
        if s is None:
            return (0, 0, 0, 0, 0)
        return self._stats_tuple(s)

    async def get_leaderboard(self, limit: int) -> Tuple[List[str], List[Sequence[Any]]]:
        ranked = sorted(
            (k for k, s in self.stats.items() if s["totalBattles"] > 0),
            key=lambda k: (-self.stats[k]["wins"], -self.stats[k]["totalWinnings"]),
        )[:limit]
        return (
            [self.checksummed[k] for k in ranked],
            [self._stats_tuple(self.stats[k]) for k in ranked],
        )

    async def platform_fee(self) -> int:
        return self.platform_fee_bps

    async def paused(self) -> bool:
        return self.is_paused

    async def get_events(self, from_block: int = 0) -> List[LedgerEvent]:
        return [ev for ev in self.events if ev.block_number >= from_block]

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------

    async def create_battle(
        self,
        wallet,
        *,
        prediction: str,
        description: str,
        end_time: int,
        challenger_says_yes: bool,
        opponent: str,
        value: int,
        gas: int,
    ) -> TxResult:
        sender = wallet.address
        if self.is_paused:
            raise LedgerRevert("Pausable: paused")
        if value <= 0:
            raise LedgerRevert("Stake must be greater than 0")
        if end_time <= self.now():
            raise LedgerRevert("End time must be in the future")
        if not is_zero_address(opponent) and _key(opponent) == _key(sender):
            raise LedgerRevert("Cannot challenge yourself")

        tx_hash = await self._send(
            wallet,
            "createBattle",
            [prediction, description, end_time, challenger_says_yes, opponent],
            value,
            gas,
        )

        battle_id = len(self.battles)
        self.battles.append(
            {
                "id": battle_id,
                "prediction": prediction,
                "description": description,
                "stakeAmount": value,
                "challenger": sender,
                "opponent": opponent if not is_zero_address(opponent) else ZERO_ADDRESS,
                "endTime": end_time,
                "status": BattleStatus.OPEN,
                "winner": ZERO_ADDRESS,
                "createdAt": self.now(),
                "challengerSaysYes": challenger_says_yes,
            }
        )
        self.user_battles.setdefault(_key(sender), []).append(battle_id)
        self._stats_for(sender)["totalStaked"] += value
        self._emit(
            "BattleCreated",
            battle_id,
            challenger=sender,
            prediction=prediction,
            stakeAmount=value,
            endTime=end_time,
        )
        return TxResult(tx_hash=tx_hash, battle_id=battle_id)

    async def accept_battle(self, wallet, *, battle_id: int, value: int, gas: int) -> TxResult:
        sender = wallet.address
        if self.is_paused:
            raise LedgerRevert("Pausable: paused")
        b = self._battle(battle_id)
        if b["status"] != BattleStatus.OPEN:
            raise LedgerRevert("Battle is not open")
        if _key(b["challenger"]) == _key(sender):
            raise LedgerRevert("Cannot accept your own battle")
        if not is_zero_address(b["opponent"]) and _key(b["opponent"]) != _key(sender):
            raise LedgerRevert("Not the invited opponent")
        if value != b["stakeAmount"]:
            raise LedgerRevert("Incorrect stake amount")
        if self.now() >= b["endTime"]:
            raise LedgerRevert("Battle has ended")

        tx_hash = await self._send(wallet, "acceptBattle", [battle_id], value, gas)

        b["opponent"] = sender
        b["status"] = BattleStatus.ACTIVE
        self.user_battles.setdefault(_key(sender), []).append(battle_id)
        self._stats_for(sender)["totalStaked"] += value
        self._stats_for(sender)["totalBattles"] += 1
        self._stats_for(b["challenger"])["totalBattles"] += 1
        self._emit("BattleAccepted", battle_id, opponent=sender)
        return TxResult(tx_hash=tx_hash, battle_id=battle_id)

    async def resolve_battle(
        self, wallet, *, battle_id: int, prediction_came_true: bool, gas: int
    ) -> TxResult:
        sender = wallet.address
        if self.is_paused:
            raise LedgerRevert("Pausable: paused")
        b = self._battle(battle_id)
        if b["status"] != BattleStatus.ACTIVE:
            raise LedgerRevert("Battle is not active")
        if _key(b["challenger"]) != _key(sender):
            raise LedgerRevert("Only challenger can resolve")
        if self.now() < b["endTime"]:
            raise LedgerRevert("Battle has not ended yet")

        tx_hash = await self._send(
            wallet, "resolveBattle", [battle_id, prediction_came_true], 0, gas
        )

        if prediction_came_true == b["challengerSaysYes"]:
            winner, loser = b["challenger"], b["opponent"]
        else:
            winner, loser = b["opponent"], b["challenger"]

        pool = b["stakeAmount"] * 2
        fee = pool * self.platform_fee_bps // 10_000
        payout = pool - fee

        b["winner"] = winner
        b["status"] = BattleStatus.RESOLVED
        self.fees_collected += fee
        self.credits[_key(winner)] = self.credits.get(_key(winner), 0) + payout
        self._stats_for(winner)["wins"] += 1
        self._stats_for(winner)["totalWinnings"] += payout
        self._stats_for(loser)["losses"] += 1
        self._emit("BattleResolved", battle_id, winner=winner, payout=payout)
        return TxResult(tx_hash=tx_hash, battle_id=battle_id)

    async def cancel_battle(self, wallet, *, battle_id: int, gas: int) -> TxResult:
        sender = wallet.address
        b = self._battle(battle_id)
        if b["status"] != BattleStatus.OPEN:
            raise LedgerRevert("Battle is not open")
        if _key(b["challenger"]) != _key(sender):
            raise LedgerRevert("Only challenger can cancel")

        tx_hash = await self._send(wallet, "cancelBattle", [battle_id], 0, gas)

        b["status"] = BattleStatus.CANCELLED
        self.credits[_key(sender)] = self.credits.get(_key(sender), 0) + b["stakeAmount"]
        self._emit("BattleCancelled", battle_id)
        return TxResult(tx_hash=tx_hash, battle_id=battle_id)
