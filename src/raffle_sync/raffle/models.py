"""Core data models for the raffle sync client."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from raffle_sync.utils.common import to_display_units


class EventKind(str, Enum):
    """Contract events the client reconciles, valued by their ABI name."""

    JOINED = "PlayerJoined"
    WINNER_PICKED = "WinnerPicked"
    PRIZE_FUNDED = "PrizeFunded"
    PLAYERS_ADDED_BY_ADMIN = "PlayersAddedByAdmin"
    GAME_RESET = "GameReset"


class ActionKind(str, Enum):
    """User commands driven by the transaction orchestrator."""

    JOIN = "join"
    PICK_WINNER = "pickWinner"
    FUND_PRIZE = "fundPrize"
    ADD_PLAYER = "addPlayer"
    ADD_PLAYERS_BATCH = "addPlayersBatch"
    RESET_GAME = "resetGame"
    EMERGENCY_RESET = "emergencyReset"


OWNER_ACTIONS = frozenset(
    {
        ActionKind.PICK_WINNER,
        ActionKind.FUND_PRIZE,
        ActionKind.ADD_PLAYER,
        ActionKind.ADD_PLAYERS_BATCH,
        ActionKind.RESET_GAME,
        ActionKind.EMERGENCY_RESET,
    }
)


class ActionState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    CONFIRMING = "confirming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ActionState.SUCCEEDED, ActionState.FAILED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RaffleSnapshot:
    """Point-in-time view of the raffle contract, replaced wholesale on refresh."""

    is_open: bool = True
    entry_count: int = 0
    prize_pool_minor_units: int = 0
    owner_address: str = ""
    refreshed_at: datetime = field(default_factory=_utcnow, compare=False)

    def __post_init__(self) -> None:
        if self.entry_count < 0:
            raise ValueError("entry_count must be non-negative")
        if self.prize_pool_minor_units < 0:
            raise ValueError("prize_pool_minor_units must be non-negative")
        object.__setattr__(self, "owner_address", (self.owner_address or "").lower())

    @property
    def prize_pool_display(self) -> Decimal:
        return to_display_units(self.prize_pool_minor_units)

    def is_owned_by(self, address: Optional[str]) -> bool:
        """Case-insensitive owner check; an unknown owner never matches."""
        if not address or not self.owner_address:
            return False
        return address.lower() == self.owner_address


@dataclass(frozen=True)
class PlayerEntry:
    """Number of entries held by one address in the current round."""

    address: str
    entry_count: int


@dataclass(frozen=True)
class DomainEvent:
    """Typed record derived from one contract event log."""

    kind: EventKind
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    player: Optional[str] = None
    winner: Optional[str] = None
    funder: Optional[str] = None
    admin: Optional[str] = None
    players: Tuple[str, ...] = ()
    amount: Optional[int] = None
    chain_timestamp: Optional[int] = None
    observed_at: datetime = field(default_factory=_utcnow)

    @property
    def subject(self) -> Optional[str]:
        """Address most relevant for display."""
        if self.kind is EventKind.WINNER_PICKED:
            return self.winner
        if self.kind is EventKind.PRIZE_FUNDED:
            return self.funder
        if self.kind in (EventKind.PLAYERS_ADDED_BY_ADMIN, EventKind.GAME_RESET):
            return self.admin
        return self.player


@dataclass(frozen=True)
class ActionStatus:
    """One transition in an action's lifecycle."""

    kind: ActionKind
    state: ActionState
    step: Optional[str] = None
    tx_hashes: Tuple[str, ...] = ()
    error: Optional[BaseException] = field(default=None, compare=False)
    detail: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict, compare=False)
    at: datetime = field(default_factory=_utcnow, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.state is ActionState.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.state is ActionState.FAILED


@dataclass(frozen=True)
class ContractCall:
    """A state-changing call to submit, addressed to the raffle or the token contract."""

    target: str
    function: str
    args: Tuple = ()
    step: Optional[str] = None


@dataclass(frozen=True)
class TransactionReceipt:
    tx_hash: str
    status: int
    block_number: int
    gas_used: int = 0

    @property
    def ok(self) -> bool:
        return self.status == 1
