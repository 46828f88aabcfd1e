from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Optional, Sequence, TypeVar

from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

T = TypeVar("T")


class BattleStatus(int, Enum):
    OPEN = 0
    ACTIVE = 1
    RESOLVED = 2
    CANCELLED = 3


def is_zero_address(address: Optional[str]) -> bool:
    return not address or int(address, 16) == 0


def normalize_address(address: str) -> str:
    """
    Checksum an address. Raises ValueError for anything that is not a
    0x-prefixed 20-byte hex string.
    """
    if not isinstance(address, str) or not address.startswith("0x"):
        raise ValueError(f"Not a 0x-prefixed address: {address!r}")
    if not Web3.is_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    return Web3.to_checksum_address(address)


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.lower() == b.lower()


@dataclass(frozen=True)
class Battle:
    id: int
    prediction: str
    description: str
    stake_amount: int
    challenger: str
    opponent: str
    end_time: int
    status: BattleStatus
    winner: str
    created_at: int
    challenger_says_yes: bool

    @classmethod
    def from_raw(cls, raw: Sequence[Any]) -> "Battle":
        """
        Decode the 11-field tuple returned by `battles(id)`, `getBattle(id)`
        and each element of `getAllBattles()`.
        """
        if len(raw) != 11:
            raise ValueError(f"Battle tuple must have 11 fields, got {len(raw)}")

        (
            id_, prediction, description, stake, challenger, opponent,
            end_time, status, winner, created_at, says_yes,
        ) = raw

        return cls(
            id=int(id_),
            prediction=str(prediction),
            description=str(description),
            stake_amount=int(stake),
            challenger=normalize_address(challenger),
            opponent=normalize_address(opponent),
            end_time=int(end_time),
            status=BattleStatus(int(status)),
            winner=normalize_address(winner),
            created_at=int(created_at),
            challenger_says_yes=bool(says_yes),
        )


@dataclass(frozen=True)
class UserStats:
    total_battles: int = 0
    wins: int = 0
    losses: int = 0
    total_staked: int = 0
    total_winnings: int = 0

    @classmethod
    def from_raw(cls, raw: Sequence[Any]) -> "UserStats":
        total, wins, losses, staked, winnings = raw
        return cls(
            total_battles=int(total),
            wins=int(wins),
            losses=int(losses),
            total_staked=int(staked),
            total_winnings=int(winnings),
        )

    @property
    def win_rate(self) -> int:
        # Display only; never used for ranking.
        if self.total_battles == 0:
            return 0
        return self.wins * 100 // self.total_battles


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    address: str
    stats: UserStats


@dataclass(frozen=True)
class LedgerConfig:
    platform_fee_bps: int
    paused: bool
    battles_count: int
    chain_id: int


@dataclass(frozen=True)
class LedgerEvent:
    name: str
    battle_id: int
    block_number: int
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Snapshot(Generic[T]):
    value: T
    fetched_at: float
    generation: int
