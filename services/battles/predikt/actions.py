from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from predikt.config import (
    CHAIN_ID,
    DESCRIPTION_MAX_LEN,
    GAS_ACCEPT,
    GAS_CANCEL,
    GAS_CREATE,
    GAS_RESOLVE,
    MIN_BATTLE_DURATION_SECS,
    PREDICTION_MAX_LEN,
)
from predikt.errors import (
    BattleClientError,
    ChainSwitchError,
    DuplicateSubmissionError,
    InvalidStateError,
    LedgerError,
    LedgerRevert,
    SubmissionError,
    ValidationError,
    WalletRejected,
)
from predikt.ledger.base import LedgerProvider, TxResult
from predikt.lifecycle import Action, require_action
from predikt.models import ZERO_ADDRESS, Battle, BattleStatus, is_zero_address, normalize_address, same_address
from predikt.repository import BattleRepository
from predikt.wallet.base import WalletSession

logger = logging.getLogger(__name__)

CREATE = "create"

DEFAULT_GAS: Dict[str, int] = {
    CREATE: GAS_CREATE,
    Action.ACCEPT.value: GAS_ACCEPT,
    Action.RESOLVE.value: GAS_RESOLVE,
    Action.CANCEL.value: GAS_CANCEL,
}

PendingKey = Tuple[str, Optional[int]]


def validate_create(
    *,
    prediction: str,
    description: str,
    end_time: int,
    stake_amount: int,
    opponent: Optional[str],
    sender: str,
    now: float,
    min_duration: int = MIN_BATTLE_DURATION_SECS,
) -> Tuple[str, str, str]:
    """
    Client-side checks for createBattle. Returns the cleaned
    (prediction, description, opponent) to submit.
    """
    prediction = (prediction or "").strip()
    description = (description or "").strip()

    if not prediction:
        raise ValidationError("Prediction is required")
    if len(prediction) > PREDICTION_MAX_LEN:
        raise ValidationError(f"Prediction must be at most {PREDICTION_MAX_LEN} characters")
    if not description:
        raise ValidationError("Description is required")
    if len(description) > DESCRIPTION_MAX_LEN:
        raise ValidationError(f"Description must be at most {DESCRIPTION_MAX_LEN} characters")

    if isinstance(end_time, bool) or not isinstance(end_time, int):
        raise ValidationError("End time must be a unix timestamp in seconds")
    if end_time <= now + min_duration:
        raise ValidationError("Battle must last more than 1 hour")

    if isinstance(stake_amount, bool) or not isinstance(stake_amount, int) or stake_amount <= 0:
        raise ValidationError("Stake amount must be greater than 0")

    if opponent is None or opponent.strip() == "":
        return prediction, description, ZERO_ADDRESS

    try:
        opponent = normalize_address(opponent.strip())
    except ValueError as e:
        raise ValidationError(f"Opponent address is invalid: {e}") from e

    if is_zero_address(opponent):
        return prediction, description, ZERO_ADDRESS
    if same_address(opponent, sender):
        raise ValidationError("You cannot challenge yourself")
    return prediction, description, opponent


class BattleActions:
    """
    Validates and submits the four mutating calls.

    Wallet and chain context are explicit constructor arguments. Each
    submission runs as a task owned by this object and shielded from the
    caller, so it is tracked to completion (journal + repository refresh)
    even if the request that started it goes away.
    """

    def __init__(
        self,
        ledger: LedgerProvider,
        repository: BattleRepository,
        wallet: WalletSession,
        *,
        chain_id: int = CHAIN_ID,
        journal=None,
        gas: Optional[Dict[str, int]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.ledger = ledger
        self.repository = repository
        self.wallet = wallet
        self.chain_id = chain_id
        self.journal = journal
        self.gas = {**DEFAULT_GAS, **(gas or {})}
        self.clock = clock

        self._pending: Dict[PendingKey, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()

    # -------------------------------------------------------------------
    # Pending state
    # -------------------------------------------------------------------

    def is_pending(self, action: str, battle_id: Optional[int] = None) -> bool:
        return (str(action), battle_id) in self._pending

    def pending(self) -> List[PendingKey]:
        return list(self._pending)

    async def drain(self) -> None:
        """Wait for every in-flight submission to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _guard(self, key: PendingKey) -> None:
        if key in self._pending:
            raise DuplicateSubmissionError(
                f"{key[0]} already pending" + (f" for battle {key[1]}" if key[1] is not None else ""),
                reason="pending",
            )

    # -------------------------------------------------------------------
    # Preconditions
    # -------------------------------------------------------------------

    def _require_account(self) -> str:
        address = self.wallet.address
        if not address:
            raise ValidationError("Please connect your wallet first")
        return address

    async def _ensure_chain(self) -> None:
        try:
            current = await self.wallet.chain_id()
        except Exception as e:
            raise ChainSwitchError(f"Could not read wallet network: {e}") from e

        if current == self.chain_id:
            return

        logger.info("Switching wallet from chain %s to %s", current, self.chain_id)
        try:
            await self.wallet.switch_chain(self.chain_id)
            current = await self.wallet.chain_id()
        except Exception as e:
            raise ChainSwitchError(f"Failed to switch to chain {self.chain_id}: {e}") from e

        if current != self.chain_id:
            raise ChainSwitchError(f"Wallet is still on chain {current}")

    async def _ensure_not_paused(self) -> None:
        config = await self.repository.get_config(force=True)
        if config.paused:
            raise SubmissionError("Contract is paused", reason="paused")

    async def _preflight(self, battle_id: int, action: Action) -> Battle:
        viewer = self._require_account()
        self._guard((action.value, battle_id))

        battle = await self.repository.get_battle(battle_id, force=True)
        try:
            require_action(battle, viewer, self.clock(), action)
        except InvalidStateError as e:
            raise self._recoverable(battle, action, e) from None

        await self._ensure_chain()
        await self._ensure_not_paused()
        return battle

    @staticmethod
    def _recoverable(battle: Battle, action: Action, err: InvalidStateError) -> InvalidStateError:
        if action is Action.ACCEPT and battle.status == BattleStatus.ACTIVE:
            return InvalidStateError(
                f"Battle {battle.id} was already accepted by someone else",
                reason="already_taken",
                recoverable=True,
            )
        return err

    # -------------------------------------------------------------------
    # Submission tracking
    # -------------------------------------------------------------------

    async def _submit(
        self,
        action: str,
        battle_id: Optional[int],
        send: Callable[[], Awaitable[TxResult]],
    ) -> TxResult:
        key = (action, battle_id)
        self._guard(key)

        task = asyncio.ensure_future(self._track(action, battle_id, send))
        self._pending[key] = task
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if self._pending.get(key) is t:
                del self._pending[key]

        task.add_done_callback(_done)
        return await asyncio.shield(task)

    def _journal_record(self, action: str, battle_id: Optional[int], account: str) -> Optional[int]:
        if self.journal is None:
            return None
        try:
            return self.journal.record(action=action, battle_id=battle_id, account=account)
        except Exception:
            logger.exception("Journal write failed for %s on battle %s", action, battle_id)
            return None

    def _journal_finish(self, entry_id: Optional[int], **kwargs) -> None:
        if entry_id is None:
            return
        try:
            self.journal.finish(entry_id, **kwargs)
        except Exception:
            logger.exception("Journal update failed for submission %s", entry_id)

    async def _track(
        self,
        action: str,
        battle_id: Optional[int],
        send: Callable[[], Awaitable[TxResult]],
    ) -> TxResult:
        account = self.wallet.address or ""
        entry_id = self._journal_record(action, battle_id, account)

        try:
            result = await send()
        except Exception as e:
            err = await self._translate(action, battle_id, e)
            logger.warning("%s on battle %s failed: %s", action, battle_id, err)
            self._journal_finish(entry_id, status="failed", error=str(err))
            await self.repository.refresh()
            if err is e:
                raise
            raise err from e

        logger.info("%s confirmed: battle=%s tx=%s", action, result.battle_id, result.tx_hash)
        self._journal_finish(
            entry_id, status="confirmed", tx_hash=result.tx_hash, battle_id=result.battle_id
        )
        await self.repository.refresh()
        return result

    async def _translate(self, action: str, battle_id: Optional[int], e: Exception) -> BattleClientError:
        if isinstance(e, BattleClientError):
            return e
        if isinstance(e, WalletRejected):
            return SubmissionError(f"Transaction rejected: {e}", reason="rejected")

        if isinstance(e, LedgerRevert):
            # The ledger is authoritative: re-read and decide whether the
            # rejection was a lifecycle race or something else.
            if battle_id is not None and action != CREATE:
                try:
                    battle = await self.repository.get_battle(battle_id, force=True)
                except BattleClientError as read_err:
                    logger.warning("Could not re-read battle %s: %s", battle_id, read_err)
                else:
                    try:
                        require_action(battle, self.wallet.address, self.clock(), Action(action))
                    except InvalidStateError as state_err:
                        return self._recoverable(battle, Action(action), state_err)
            return SubmissionError(f"Ledger rejected {action}: {e.reason}", reason=e.reason)

        if isinstance(e, LedgerError):
            return SubmissionError(f"{action} failed: {e}", reason="ledger_error")

        logger.exception("Unexpected error during %s", action)
        return SubmissionError(f"{action} failed: {e}", reason="unexpected")

    # -------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------

    async def create_battle(
        self,
        prediction: str,
        description: str,
        end_time: int,
        challenger_says_yes: bool,
        stake_amount: int,
        opponent: Optional[str] = None,
    ) -> int:
        sender = self._require_account()
        prediction, description, opponent_address = validate_create(
            prediction=prediction,
            description=description,
            end_time=end_time,
            stake_amount=stake_amount,
            opponent=opponent,
            sender=sender,
            now=self.clock(),
        )
        self._guard((CREATE, None))

        await self._ensure_chain()
        await self._ensure_not_paused()

        async def send() -> TxResult:
            return await self.ledger.create_battle(
                self.wallet,
                prediction=prediction,
                description=description,
                end_time=end_time,
                challenger_says_yes=bool(challenger_says_yes),
                opponent=opponent_address,
                value=stake_amount,
                gas=self.gas[CREATE],
            )

        result = await self._submit(CREATE, None, send)
        if result.battle_id is None:
            raise SubmissionError("Ledger did not report the new battle id", reason="no_battle_id")
        return result.battle_id

    async def accept_battle(self, battle_id: int) -> None:
        battle = await self._preflight(battle_id, Action.ACCEPT)

        async def send() -> TxResult:
            return await self.ledger.accept_battle(
                self.wallet,
                battle_id=battle_id,
                value=battle.stake_amount,
                gas=self.gas[Action.ACCEPT.value],
            )

        await self._submit(Action.ACCEPT.value, battle_id, send)

    async def resolve_battle(self, battle_id: int, prediction_came_true: bool) -> None:
        await self._preflight(battle_id, Action.RESOLVE)

        async def send() -> TxResult:
            return await self.ledger.resolve_battle(
                self.wallet,
                battle_id=battle_id,
                prediction_came_true=bool(prediction_came_true),
                gas=self.gas[Action.RESOLVE.value],
            )

        await self._submit(Action.RESOLVE.value, battle_id, send)

    async def cancel_battle(self, battle_id: int) -> None:
        await self._preflight(battle_id, Action.CANCEL)

        async def send() -> TxResult:
            return await self.ledger.cancel_battle(
                self.wallet,
                battle_id=battle_id,
                gas=self.gas[Action.CANCEL.value],
            )

        await self._submit(Action.CANCEL.value, battle_id, send)
