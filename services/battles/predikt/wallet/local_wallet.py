import logging
from typing import Any, Dict, Optional

from eth_account import Account
from web3 import AsyncWeb3, Web3

from predikt.errors import WalletRejected
from predikt.wallet.base import WalletSession

logger = logging.getLogger(__name__)


class LocalAccountWallet(WalletSession):
    """
    Signs with a private key held by the service (relayer-style).

    A local signer cannot move its RPC endpoint to another network, so a
    switch request only succeeds when the endpoint already serves the
    requested chain.
    """

    def __init__(self, private_key: str, w3: AsyncWeb3):
        if not private_key:
            raise RuntimeError("WALLET_PRIVATE_KEY is not set")

        self.w3 = w3
        self.account = Account.from_key(private_key)
        self._chain_id: Optional[int] = None

    @property
    def address(self) -> Optional[str]:
        return self.account.address

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(await self.w3.eth.chain_id)
        return self._chain_id

    async def switch_chain(self, chain_id: int) -> None:
        rpc_chain = int(await self.w3.eth.chain_id)
        if rpc_chain != chain_id:
            raise WalletRejected(
                f"RPC endpoint serves chain {rpc_chain}; cannot switch to {chain_id}"
            )
        self._chain_id = rpc_chain

    async def send_transaction(self, tx: Dict[str, Any]) -> str:
        tx = dict(tx)
        tx.setdefault("from", self.account.address)
        if "nonce" not in tx:
            tx["nonce"] = await self.w3.eth.get_transaction_count(self.account.address, "pending")
        if "gasPrice" not in tx and "maxFeePerGas" not in tx:
            tx["gasPrice"] = await self.w3.eth.gas_price

        signed = self.account.sign_transaction(tx)
        tx_hash = Web3.to_hex(await self.w3.eth.send_raw_transaction(signed.raw_transaction))
        logger.info("Broadcast tx %s from %s", tx_hash, self.account.address)
        return tx_hash
