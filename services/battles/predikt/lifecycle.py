"""
Battle lifecycle: state machine, legal actions and derived display values.

Everything here is a pure function of (battle, viewer, now[, fee]).
No I/O, safe to call on every render.

    Open ──accept──▶ Active ──resolve──▶ Resolved
      │
      └──cancel──▶ Cancelled

Resolved and Cancelled are terminal; nothing re-enters Open.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Optional

from predikt.errors import InvalidStateError
from predikt.models import Battle, BattleStatus, is_zero_address, same_address

FEE_DENOMINATOR = 10_000  # platformFee() is in basis points


class Action(str, Enum):
    ACCEPT = "accept"
    CANCEL = "cancel"
    RESOLVE = "resolve"


class Phase(str, Enum):
    OPEN = "open"
    LIVE = "live"
    AWAITING_RESOLUTION = "awaiting_resolution"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class ViewerRole(str, Enum):
    CHALLENGER = "challenger"
    OPPONENT = "opponent"
    SPECTATOR = "spectator"


TRANSITIONS: Dict[BattleStatus, FrozenSet[BattleStatus]] = {
    BattleStatus.OPEN: frozenset({BattleStatus.ACTIVE, BattleStatus.CANCELLED}),
    BattleStatus.ACTIVE: frozenset({BattleStatus.RESOLVED}),
    BattleStatus.RESOLVED: frozenset(),
    BattleStatus.CANCELLED: frozenset(),
}

STATUS_LABELS: Dict[BattleStatus, str] = {
    BattleStatus.OPEN: "Open",
    BattleStatus.ACTIVE: "Active",
    BattleStatus.RESOLVED: "Resolved",
    BattleStatus.CANCELLED: "Cancelled",
}


def can_transition(current: BattleStatus, new: BattleStatus) -> bool:
    return new in TRANSITIONS[current]


def is_terminal(status: BattleStatus) -> bool:
    return not TRANSITIONS[status]


# -------------------------------------------------------------------
# Predicates
# -------------------------------------------------------------------

def is_expired(battle: Battle, now: float) -> bool:
    return now >= battle.end_time


def has_opponent(battle: Battle) -> bool:
    return not is_zero_address(battle.opponent)


def is_directed(battle: Battle) -> bool:
    """An Open battle whose opponent slot already names the invited account."""
    return battle.status == BattleStatus.OPEN and has_opponent(battle)


def viewer_role(battle: Battle, viewer: Optional[str]) -> ViewerRole:
    if same_address(viewer, battle.challenger):
        return ViewerRole.CHALLENGER
    if has_opponent(battle) and same_address(viewer, battle.opponent):
        return ViewerRole.OPPONENT
    return ViewerRole.SPECTATOR


def _check(battle: Battle, viewer: Optional[str], now: float, action: Action) -> Optional[InvalidStateError]:
    """Returns the reason `action` is illegal, or None when it is legal."""
    is_challenger = same_address(viewer, battle.challenger)

    if action is Action.ACCEPT:
        if battle.status != BattleStatus.OPEN:
            return InvalidStateError(
                f"Battle {battle.id} is {STATUS_LABELS[battle.status]}, not Open",
                reason="not_open",
            )
        if not viewer:
            return InvalidStateError("Connect a wallet to accept", reason="no_viewer")
        if is_challenger:
            return InvalidStateError("Cannot accept your own battle", reason="own_battle")
        if is_directed(battle) and not same_address(viewer, battle.opponent):
            return InvalidStateError(
                "Battle is reserved for the invited opponent", reason="not_invited"
            )
        return None

    if action is Action.CANCEL:
        if battle.status != BattleStatus.OPEN:
            return InvalidStateError(
                f"Battle {battle.id} is {STATUS_LABELS[battle.status]}, not Open",
                reason="not_open",
            )
        if not is_challenger:
            return InvalidStateError("Only the challenger can cancel", reason="not_challenger")
        return None

    if action is Action.RESOLVE:
        if battle.status != BattleStatus.ACTIVE:
            return InvalidStateError(
                f"Battle {battle.id} is {STATUS_LABELS[battle.status]}, not Active",
                reason="not_active",
            )
        if not is_expired(battle, now):
            return InvalidStateError("Battle has not ended yet", reason="not_expired")
        if not is_challenger:
            return InvalidStateError("Only the challenger can resolve", reason="not_challenger")
        return None

    raise ValueError(f"Unknown action {action!r}")


def legal_actions(battle: Battle, viewer: Optional[str], now: float) -> FrozenSet[Action]:
    return frozenset(a for a in Action if _check(battle, viewer, now, a) is None)


def require_action(battle: Battle, viewer: Optional[str], now: float, action: Action) -> None:
    err = _check(battle, viewer, now, action)
    if err is not None:
        raise err


# -------------------------------------------------------------------
# Amounts (wei)
# -------------------------------------------------------------------

def prize_pool(stake_amount: int) -> int:
    return 2 * stake_amount


def fee_rate(fee_bps: int) -> Decimal:
    return Decimal(fee_bps) / FEE_DENOMINATOR


def platform_fee_amount(stake_amount: int, fee_bps: int) -> int:
    return prize_pool(stake_amount) * fee_bps // FEE_DENOMINATOR


def winner_payout(stake_amount: int, fee_bps: int) -> int:
    return prize_pool(stake_amount) - platform_fee_amount(stake_amount, fee_bps)


# -------------------------------------------------------------------
# Outcome / display
# -------------------------------------------------------------------

def opponent_says_yes(battle: Battle) -> bool:
    return not battle.challenger_says_yes


def expected_winner(battle: Battle, prediction_came_true: bool) -> str:
    if prediction_came_true == battle.challenger_says_yes:
        return battle.challenger
    return battle.opponent


def phase(battle: Battle, now: float) -> Phase:
    if battle.status == BattleStatus.OPEN:
        return Phase.OPEN
    if battle.status == BattleStatus.ACTIVE:
        return Phase.AWAITING_RESOLUTION if is_expired(battle, now) else Phase.LIVE
    if battle.status == BattleStatus.RESOLVED:
        return Phase.RESOLVED
    return Phase.CANCELLED


def time_remaining(battle: Battle, now: float) -> int:
    return max(0, int(battle.end_time - now))


@dataclass(frozen=True)
class BattleView:
    battle: Battle
    status_label: str
    phase: Phase
    viewer_role: ViewerRole
    legal_actions: FrozenSet[Action]
    is_expired: bool
    has_opponent: bool
    opponent_says_yes: bool
    time_remaining: int
    prize_pool: int
    platform_fee: int
    winner_payout: int


def describe(battle: Battle, viewer: Optional[str], now: float, fee_bps: int) -> BattleView:
    return BattleView(
        battle=battle,
        status_label=STATUS_LABELS[battle.status],
        phase=phase(battle, now),
        viewer_role=viewer_role(battle, viewer),
        legal_actions=legal_actions(battle, viewer, now),
        is_expired=is_expired(battle, now),
        has_opponent=has_opponent(battle),
        opponent_says_yes=opponent_says_yes(battle),
        time_remaining=time_remaining(battle, now),
        prize_pool=prize_pool(battle.stake_amount),
        platform_fee=platform_fee_amount(battle.stake_amount, fee_bps),
        winner_payout=winner_payout(battle.stake_amount, fee_bps),
    )
