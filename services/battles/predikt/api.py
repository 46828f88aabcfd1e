import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional

from eth_account import Account
from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field
from web3 import Web3

from predikt.actions import BattleActions
from predikt.config import CHAIN_ID, LEADERBOARD_DEFAULT_LIMIT, WALLET_PRIVATE_KEY
from predikt.db import get_journal
from predikt.errors import (
    BattleClientError,
    ChainSwitchError,
    FetchError,
    InvalidStateError,
    NotFoundError,
    SubmissionError,
    ValidationError,
)
from predikt.ledger.base import LedgerProvider
from predikt.ledger.provider import get_ledger_provider
from predikt.ledger.stub_ledger import StubLedger
from predikt.lifecycle import BattleView, describe, fee_rate
from predikt.models import LeaderboardEntry, UserStats, is_zero_address, normalize_address
from predikt.repository import BattleRepository
from predikt.wallet.local_wallet import LocalAccountWallet
from predikt.wallet.stub_wallet import StubWallet

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------
# Context (ledger, repository, actions)
# ---------------------------------------------------------------------

@dataclass
class BattleContext:
    ledger: LedgerProvider
    repository: BattleRepository
    actions: Optional[BattleActions] = None
    journal: Any = None
    clock: Callable[[], float] = field(default=time.time)


def make_wallet(ledger: LedgerProvider):
    if not WALLET_PRIVATE_KEY:
        return None
    if isinstance(ledger, StubLedger):
        return StubWallet(Account.from_key(WALLET_PRIVATE_KEY).address, chain_id=CHAIN_ID)
    return LocalAccountWallet(WALLET_PRIVATE_KEY, ledger.w3)


_context: Optional[BattleContext] = None


def get_context() -> BattleContext:
    global _context
    if _context is not None:
        return _context

    try:
        ledger = get_ledger_provider()
    except Exception as e:
        raise RuntimeError(f"Ledger provider misconfigured: {e}") from e

    repository = BattleRepository(ledger)
    journal = get_journal()
    wallet = make_wallet(ledger)
    actions = (
        BattleActions(ledger, repository, wallet, chain_id=CHAIN_ID, journal=journal)
        if wallet is not None
        else None
    )
    _context = BattleContext(ledger=ledger, repository=repository, actions=actions, journal=journal)
    return _context


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # In-flight submissions are tracked to completion before exit.
    override = app.dependency_overrides.get(get_context)
    ctx = override() if override is not None else _context
    if ctx is not None and ctx.actions is not None:
        await ctx.actions.drain()


app = FastAPI(title="PrediKt Battles", lifespan=lifespan)


# ---------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------

class CreateBattleRequest(BaseModel):
    prediction: str
    description: str
    end_time: int
    challenger_says_yes: bool = True
    stake_amount_eth: str = Field(description="Decimal ether amount, e.g. '0.01'")
    opponent: Optional[str] = None


class ResolveBattleRequest(BaseModel):
    prediction_came_true: bool


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def eth(wei: int) -> str:
    return str(Web3.from_wei(wei, "ether"))


def parse_eth(amount: str) -> int:
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation as e:
        raise ValidationError(f"Invalid stake amount {amount!r}") from e
    if not value.is_finite() or value <= 0:
        raise ValidationError("Stake amount must be greater than 0")
    try:
        return int(Web3.to_wei(value, "ether"))
    except ValueError as e:
        raise ValidationError(f"Stake amount out of range: {e}") from e


def to_http(e: BattleClientError) -> HTTPException:
    if isinstance(e, ValidationError):
        status = 422
    elif isinstance(e, NotFoundError):
        status = 404
    elif isinstance(e, (InvalidStateError, ChainSwitchError)):
        status = 409
    elif isinstance(e, SubmissionError) and e.reason == "paused":
        status = 503
    else:
        status = 502

    detail: Dict[str, Any] = {"error": type(e).__name__, "message": str(e)}
    if isinstance(e, InvalidStateError):
        detail["reason"] = e.reason
        detail["recoverable"] = e.recoverable
    elif isinstance(e, SubmissionError):
        detail["reason"] = e.reason
    return HTTPException(status_code=status, detail=detail)


def view_to_dict(view: BattleView) -> Dict[str, Any]:
    b = view.battle
    return {
        "id": b.id,
        "prediction": b.prediction,
        "description": b.description,
        "challenger": b.challenger,
        "opponent": b.opponent if view.has_opponent else None,
        "winner": None if is_zero_address(b.winner) else b.winner,
        "status": b.status.name.lower(),
        "status_label": view.status_label,
        "phase": view.phase.value,
        "viewer_role": view.viewer_role.value,
        "legal_actions": sorted(a.value for a in view.legal_actions),
        "challenger_says_yes": b.challenger_says_yes,
        "opponent_says_yes": view.opponent_says_yes,
        "end_time": b.end_time,
        "created_at": b.created_at,
        "is_expired": view.is_expired,
        "has_opponent": view.has_opponent,
        "time_remaining": view.time_remaining,
        "stake_amount_wei": b.stake_amount,
        "stake_amount_eth": eth(b.stake_amount),
        "prize_pool_wei": view.prize_pool,
        "prize_pool_eth": eth(view.prize_pool),
        "platform_fee_wei": view.platform_fee,
        "winner_payout_wei": view.winner_payout,
        "winner_payout_eth": eth(view.winner_payout),
    }


def stats_to_dict(stats: UserStats) -> Dict[str, Any]:
    return {
        "total_battles": stats.total_battles,
        "wins": stats.wins,
        "losses": stats.losses,
        "win_rate": stats.win_rate,
        "total_staked_wei": stats.total_staked,
        "total_staked_eth": eth(stats.total_staked),
        "total_winnings_wei": stats.total_winnings,
        "total_winnings_eth": eth(stats.total_winnings),
    }


def entry_to_dict(entry: LeaderboardEntry) -> Dict[str, Any]:
    return {"rank": entry.rank, "address": entry.address, **stats_to_dict(entry.stats)}


def _viewer(viewer: Optional[str]) -> Optional[str]:
    if not viewer:
        return None
    try:
        return normalize_address(viewer)
    except ValueError as e:
        raise to_http(ValidationError(str(e))) from e


def _require_actions(ctx: BattleContext) -> BattleActions:
    if ctx.actions is None:
        raise HTTPException(
            status_code=503,
            detail={"error": "NoWallet", "message": "No signing wallet configured (WALLET_PRIVATE_KEY)"},
        )
    return ctx.actions


async def _battle_response(ctx: BattleContext, battle_id: int, viewer: Optional[str]) -> Dict[str, Any]:
    battle = await ctx.repository.get_battle(battle_id)
    config = await ctx.repository.get_config()
    return view_to_dict(describe(battle, viewer, ctx.clock(), config.platform_fee_bps))


# ---------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------

@app.get("/health")
def health():
    return {"ok": True}


@app.get("/config")
async def get_config(ctx: BattleContext = Depends(get_context)):
    try:
        config = await ctx.repository.get_config()
    except BattleClientError as e:
        raise to_http(e) from e

    return {
        "provider": ctx.ledger.name,
        "chain_id": config.chain_id,
        "target_chain_id": CHAIN_ID,
        "platform_fee_bps": config.platform_fee_bps,
        "fee_rate": str(fee_rate(config.platform_fee_bps)),
        "paused": config.paused,
        "battles_count": config.battles_count,
        "read_only": ctx.actions is None,
    }


@app.get("/battles")
async def list_battles(
    viewer: Optional[str] = Query(default=None),
    ctx: BattleContext = Depends(get_context),
):
    viewer = _viewer(viewer)
    try:
        battles = await ctx.repository.list_battles()
        config = await ctx.repository.get_config()
    except FetchError as e:
        logger.warning("Battle list degraded: %s", e)
        return {"battles": [], "degraded": True, "error": str(e)}

    now = ctx.clock()
    return {
        "battles": [view_to_dict(describe(b, viewer, now, config.platform_fee_bps)) for b in battles],
        "degraded": False,
    }


@app.get("/battles/{battle_id}")
async def get_battle(
    battle_id: int,
    viewer: Optional[str] = Query(default=None),
    ctx: BattleContext = Depends(get_context),
):
    viewer = _viewer(viewer)
    try:
        return await _battle_response(ctx, battle_id, viewer)
    except BattleClientError as e:
        raise to_http(e) from e


@app.get("/leaderboard")
async def leaderboard(
    limit: int = Query(default=LEADERBOARD_DEFAULT_LIMIT, ge=1, le=100),
    ctx: BattleContext = Depends(get_context),
):
    try:
        entries = await ctx.repository.get_leaderboard(limit)
    except FetchError as e:
        logger.warning("Leaderboard degraded: %s", e)
        return {"entries": [], "degraded": True, "error": str(e)}
    except BattleClientError as e:
        raise to_http(e) from e

    return {"entries": [entry_to_dict(x) for x in entries], "degraded": False}


@app.get("/users/{address}/battles")
async def user_battles(address: str, ctx: BattleContext = Depends(get_context)):
    try:
        battles = await ctx.repository.get_user_battles(address)
        config = await ctx.repository.get_config()
    except BattleClientError as e:
        raise to_http(e) from e

    viewer = normalize_address(address)
    now = ctx.clock()
    return {
        "address": viewer,
        "battles": [view_to_dict(describe(b, viewer, now, config.platform_fee_bps)) for b in battles],
    }


@app.get("/users/{address}/stats")
async def user_stats(address: str, ctx: BattleContext = Depends(get_context)):
    try:
        stats = await ctx.repository.get_user_stats(address)
    except BattleClientError as e:
        raise to_http(e) from e
    return {"address": normalize_address(address), **stats_to_dict(stats)}


@app.get("/submissions")
def submissions(
    account: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    ctx: BattleContext = Depends(get_context),
):
    if ctx.journal is None:
        return {"submissions": []}
    return {"submissions": ctx.journal.list(account=account, limit=limit)}


@app.post("/refresh")
async def refresh(ctx: BattleContext = Depends(get_context)):
    failures = await ctx.repository.refresh()
    return {"ok": not failures, "failed": [str(k) for k in failures]}


@app.post("/sync")
async def sync(ctx: BattleContext = Depends(get_context)):
    try:
        events = await ctx.repository.sync_events()
    except BattleClientError as e:
        raise to_http(e) from e

    return {
        "events": [
            {"name": ev.name, "battle_id": ev.battle_id, "block_number": ev.block_number}
            for ev in events
        ]
    }


@app.get("/pending")
def pending(ctx: BattleContext = Depends(get_context)):
    if ctx.actions is None:
        return {"pending": []}
    return {
        "pending": [
            {"action": action, "battle_id": battle_id}
            for action, battle_id in ctx.actions.pending()
        ]
    }


# ---------------------------------------------------------------------
# Write endpoints
# ---------------------------------------------------------------------

@app.post("/battles")
async def create_battle(req: CreateBattleRequest, ctx: BattleContext = Depends(get_context)):
    actions = _require_actions(ctx)
    try:
        stake = parse_eth(req.stake_amount_eth)
        battle_id = await actions.create_battle(
            req.prediction,
            req.description,
            req.end_time,
            req.challenger_says_yes,
            stake,
            req.opponent,
        )
        return await _battle_response(ctx, battle_id, actions.wallet.address)
    except BattleClientError as e:
        raise to_http(e) from e


@app.post("/battles/{battle_id}/accept")
async def accept_battle(battle_id: int, ctx: BattleContext = Depends(get_context)):
    actions = _require_actions(ctx)
    try:
        await actions.accept_battle(battle_id)
        return await _battle_response(ctx, battle_id, actions.wallet.address)
    except BattleClientError as e:
        raise to_http(e) from e


@app.post("/battles/{battle_id}/resolve")
async def resolve_battle(
    battle_id: int,
    req: ResolveBattleRequest,
    ctx: BattleContext = Depends(get_context),
):
    actions = _require_actions(ctx)
    try:
        await actions.resolve_battle(battle_id, req.prediction_came_true)
        return await _battle_response(ctx, battle_id, actions.wallet.address)
    except BattleClientError as e:
        raise to_http(e) from e


@app.post("/battles/{battle_id}/cancel")
async def cancel_battle(battle_id: int, ctx: BattleContext = Depends(get_context)):
    actions = _require_actions(ctx)
    try:
        await actions.cancel_battle(battle_id)
        return await _battle_response(ctx, battle_id, actions.wallet.address)
    except BattleClientError as e:
        raise to_http(e) from e
