import hashlib
from typing import Any, Dict, List, Optional

from predikt.errors import WalletRejected
from predikt.wallet.base import WalletSession


class StubWallet(WalletSession):
    """
    In-process wallet for tests/dev. Never signs anything; it only records
    what it was asked to send and returns a deterministic fake hash.
    """

    def __init__(
        self,
        address: Optional[str],
        *,
        chain_id: int = 8453,
        reject_switch: bool = False,
        reject_send: bool = False,
    ):
        self._address = address
        self._chain_id = chain_id
        self.reject_switch = reject_switch
        self.reject_send = reject_send
        self.switch_requests: List[int] = []
        self.sent: List[Dict[str, Any]] = []

    @property
    def address(self) -> Optional[str]:
        return self._address

    async def chain_id(self) -> int:
        return self._chain_id

    async def switch_chain(self, chain_id: int) -> None:
        self.switch_requests.append(chain_id)
        if self.reject_switch:
            raise WalletRejected("User rejected the network switch")
        self._chain_id = chain_id

    async def send_transaction(self, tx: Dict[str, Any]) -> str:
        if self.reject_send:
            raise WalletRejected("User rejected the request")
        self.sent.append(tx)
        h = hashlib.sha256(f"{self._address}:{len(self.sent)}:{tx!r}".encode("utf-8"))
        return "0x" + h.hexdigest()
