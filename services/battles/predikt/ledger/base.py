from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from predikt.models import LedgerEvent


@dataclass(frozen=True)
class TxResult:
    tx_hash: str
    battle_id: Optional[int] = None


class LedgerProvider(ABC):
    """
    Minimal async interface to the FrameBattles contract.

    Reads return raw contract values (tuples / ints); decoding into typed
    records is the repository's job. Failures are raised as LedgerError
    subclasses (LedgerRevert, LedgerNoData, LedgerTransportError).
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    # --- views ---

    @abstractmethod
    async def chain_id(self) -> int:
        ...

    @abstractmethod
    async def get_battle(self, battle_id: int) -> Sequence[Any]:
        ...

    @abstractmethod
    async def get_all_battles(self) -> List[Sequence[Any]]:
        ...

    @abstractmethod
    async def get_battles_count(self) -> int:
        ...

    @abstractmethod
    async def get_user_battles(self, address: str) -> List[int]:
        ...

    @abstractmethod
    async def get_user_stats(self, address: str) -> Sequence[Any]:
        ...

    @abstractmethod
    async def get_leaderboard(self, limit: int) -> Tuple[List[str], List[Sequence[Any]]]:
        ...

    @abstractmethod
    async def platform_fee(self) -> int:
        ...

    @abstractmethod
    async def paused(self) -> bool:
        ...

    @abstractmethod
    async def get_events(self, from_block: int = 0) -> List[LedgerEvent]:
        ...

    # --- writes ---
    # Each write hands the transaction to `wallet` and waits for the
    # ledger's confirmation.

    @abstractmethod
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
        ...

    @abstractmethod
    async def accept_battle(self, wallet, *, battle_id: int, value: int, gas: int) -> TxResult:
        ...

    @abstractmethod
    async def resolve_battle(
        self, wallet, *, battle_id: int, prediction_came_true: bool, gas: int
    ) -> TxResult:
        ...

    @abstractmethod
    async def cancel_battle(self, wallet, *, battle_id: int, gas: int) -> TxResult:
        ...
