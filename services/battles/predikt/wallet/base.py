from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class WalletSession(ABC):
    """
    Connected-account context handed explicitly to BattleActions.

    switch_chain / send_transaction raise WalletRejected when the signer
    refuses; any other exception is treated as a wallet failure.
    """

    @property
    @abstractmethod
    def address(self) -> Optional[str]:
        """Connected account, or None when disconnected."""

    @abstractmethod
    async def chain_id(self) -> int:
        ...

    @abstractmethod
    async def switch_chain(self, chain_id: int) -> None:
        ...

    @abstractmethod
    async def send_transaction(self, tx: Dict[str, Any]) -> str:
        """Sign and broadcast `tx`; returns the transaction hash (hex)."""
