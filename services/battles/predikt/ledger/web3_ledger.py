import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from predikt.config import CONTRACT_ADDRESS, RPC_URL, TX_RECEIPT_TIMEOUT_SECS
from predikt.errors import LedgerError, LedgerNoData, LedgerRevert, LedgerTransportError
from predikt.ledger.abi import BATTLE_EVENTS, FRAME_BATTLES_ABI
from predikt.ledger.base import LedgerProvider, TxResult
from predikt.models import LedgerEvent

logger = logging.getLogger(__name__)

_REVERT_PREFIX = "execution reverted:"


def _revert_reason(e: ContractLogicError) -> str:
    msg = getattr(e, "message", None) or str(e)
    if msg.startswith(_REVERT_PREFIX):
        msg = msg[len(_REVERT_PREFIX):].strip()
    return msg or "execution reverted"


class Web3Ledger(LedgerProvider):
    def __init__(
        self,
        rpc_url: str = RPC_URL,
        contract_address: str = CONTRACT_ADDRESS,
        *,
        w3: Optional[AsyncWeb3] = None,
    ):
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self.contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=FRAME_BATTLES_ABI,
        )

    @property
    def name(self) -> str:
        return "web3"

    # -------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------

    async def _view(self, fn) -> Any:
        try:
            return await fn.call()
        except ContractLogicError as e:
            raise LedgerRevert(_revert_reason(e)) from e
        except BadFunctionCallOutput as e:
            raise LedgerNoData(str(e)) from e
        except Exception as e:
            raise LedgerTransportError(f"Ledger read failed: {e}") from e

    async def chain_id(self) -> int:
        try:
            return int(await self.w3.eth.chain_id)
        except Exception as e:
            raise LedgerTransportError(f"chain_id failed: {e}") from e

    async def get_battle(self, battle_id: int) -> Sequence[Any]:
        return await self._view(self.contract.functions.getBattle(battle_id))

    async def get_all_battles(self) -> List[Sequence[Any]]:
        return list(await self._view(self.contract.functions.getAllBattles()))

    async def get_battles_count(self) -> int:
        return int(await self._view(self.contract.functions.getBattlesCount()))

    async def get_user_battles(self, address: str) -> List[int]:
        ids = await self._view(
            self.contract.functions.getUserBattles(Web3.to_checksum_address(address))
        )
        return [int(i) for i in ids]

    async def get_user_stats(self, address: str) -> Sequence[Any]:
        return await self._view(
            self.contract.functions.getUserStats(Web3.to_checksum_address(address))
        )

    async def get_leaderboard(self, limit: int) -> Tuple[List[str], List[Sequence[Any]]]:
        addresses, stats = await self._view(self.contract.functions.getLeaderboard(limit))
        return list(addresses), list(stats)

    async def platform_fee(self) -> int:
        return int(await self._view(self.contract.functions.platformFee()))

    async def paused(self) -> bool:
        return bool(await self._view(self.contract.functions.paused()))

    async def get_events(self, from_block: int = 0) -> List[LedgerEvent]:
        events: List[LedgerEvent] = []
        try:
            for name in BATTLE_EVENTS:
                logs = await getattr(self.contract.events, name).get_logs(from_block=from_block)
                for log in logs:
                    args = dict(log["args"])
                    events.append(
                        LedgerEvent(
                            name=name,
                            battle_id=int(args["battleId"]),
                            block_number=int(log["blockNumber"]),
                            args=args,
                        )
                    )
        except Exception as e:
            raise LedgerTransportError(f"Event query failed: {e}") from e

        events.sort(key=lambda ev: (ev.block_number, ev.battle_id))
        return events

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------

    async def _submit(self, wallet, fn, *, value: int, gas: int) -> Dict[str, Any]:
        """
        Dry-run the call to surface the revert reason, then hand the built
        transaction to the wallet and wait for the receipt.
        """
        sender = wallet.address
        params = {"from": sender, "value": value}

        try:
            await fn.call(params)
        except ContractLogicError as e:
            raise LedgerRevert(_revert_reason(e)) from e
        except BadFunctionCallOutput:
            # Nothing to decode for void functions on some nodes.
            pass

        try:
            tx = await fn.build_transaction(
                {
                    "from": sender,
                    "value": value,
                    "gas": gas,
                    "chainId": await wallet.chain_id(),
                }
            )
        except ContractLogicError as e:
            raise LedgerRevert(_revert_reason(e)) from e
        except Exception as e:
            raise LedgerTransportError(f"Transaction build failed: {e}") from e

        tx_hash = await wallet.send_transaction(tx)

        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=TX_RECEIPT_TIMEOUT_SECS
            )
        except Exception as e:
            raise LedgerTransportError(f"No receipt for {tx_hash}: {e}") from e

        if receipt.get("status") != 1:
            raise LedgerRevert(f"Transaction {tx_hash} reverted")
        return receipt

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
        fn = self.contract.functions.createBattle(
            prediction,
            description,
            end_time,
            challenger_says_yes,
            Web3.to_checksum_address(opponent),
        )
        receipt = await self._submit(wallet, fn, value=value, gas=gas)

        created = self.contract.events.BattleCreated().process_receipt(receipt)
        if not created:
            raise LedgerError("BattleCreated event missing from receipt")

        return TxResult(
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            battle_id=int(created[0]["args"]["battleId"]),
        )

    async def accept_battle(self, wallet, *, battle_id: int, value: int, gas: int) -> TxResult:
        receipt = await self._submit(
            wallet, self.contract.functions.acceptBattle(battle_id), value=value, gas=gas
        )
        return TxResult(tx_hash=Web3.to_hex(receipt["transactionHash"]), battle_id=battle_id)

    async def resolve_battle(
        self, wallet, *, battle_id: int, prediction_came_true: bool, gas: int
    ) -> TxResult:
        receipt = await self._submit(
            wallet,
            self.contract.functions.resolveBattle(battle_id, prediction_came_true),
            value=0,
            gas=gas,
        )
        return TxResult(tx_hash=Web3.to_hex(receipt["transactionHash"]), battle_id=battle_id)

    async def cancel_battle(self, wallet, *, battle_id: int, gas: int) -> TxResult:
        receipt = await self._submit(
            wallet, self.contract.functions.cancelBattle(battle_id), value=0, gas=gas
        )
        return TxResult(tx_hash=Web3.to_hex(receipt["transactionHash"]), battle_id=battle_id)
