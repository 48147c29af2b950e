"""Notification dispatcher: lifecycle transitions turned into user-facing messages."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from raffle_sync.raffle.errors import ReadError, RaffleSyncError
from raffle_sync.raffle.models import ActionKind, ActionState, ActionStatus, DomainEvent, EventKind
from raffle_sync.utils.common import format_token_amount, shorten_address
from raffle_sync.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_DURATION = 4.0
WINNER_DURATION = 8.0


class NotificationLevel(str, Enum):
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    id: int
    level: NotificationLevel
    message: str
    key: Optional[str] = None
    duration: Optional[float] = DEFAULT_DURATION
    replaces: Optional[int] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "level": self.level.value,
            "message": self.message,
            "key": self.key,
            "duration": self.duration,
            "replaces": self.replaces,
            "createdAt": self.created_at.isoformat(),
        }


Sink = Callable[[Notification], None]


# (kind, step) -> (submitting message, confirming message)
_PROGRESS: Dict[tuple, tuple] = {
    (ActionKind.JOIN, None): ("Joining raffle...", "Confirming entry..."),
    (ActionKind.PICK_WINNER, None): ("Picking winner...", "Confirming winner selection..."),
    (ActionKind.FUND_PRIZE, "approve"): ("Approving USDC...", "Confirming USDC approval..."),
    (ActionKind.FUND_PRIZE, "fund"): ("Funding prize pool...", "Confirming funding..."),
    (ActionKind.ADD_PLAYER, None): ("Adding player...", "Confirming player addition..."),
    (ActionKind.ADD_PLAYERS_BATCH, None): ("Adding {count} players...", "Confirming batch addition..."),
    (ActionKind.RESET_GAME, None): ("Resetting game...", "Confirming reset..."),
    (ActionKind.EMERGENCY_RESET, None): ("Emergency reset in progress...", "Confirming emergency reset..."),
}

_SUCCESS = {
    ActionKind.JOIN: "Entry confirmed!",
    ActionKind.PICK_WINNER: "Winner selection confirmed!",
    ActionKind.FUND_PRIZE: "Prize pool funded with {whole_units} USDC!",
    ActionKind.ADD_PLAYER: "Player {short_address} added successfully!",
    ActionKind.ADD_PLAYERS_BATCH: "{count} players added successfully!",
    ActionKind.RESET_GAME: "Game reset successfully! Ready for new round.",
    ActionKind.EMERGENCY_RESET: "Emergency reset complete. Game restarted.",
}

_FAILURE = {
    ActionKind.JOIN: "Failed to join. Please try again.",
    ActionKind.PICK_WINNER: "Failed to pick winner. Please try again.",
    ActionKind.FUND_PRIZE: "Failed to fund prize. Please try again.",
    ActionKind.ADD_PLAYER: "Failed to add player. Please try again.",
    ActionKind.ADD_PLAYERS_BATCH: "Failed to add players. Please try again.",
    ActionKind.RESET_GAME: "Failed to reset game. Please try again.",
    ActionKind.EMERGENCY_RESET: "Emergency reset failed. Please try again.",
}


def describe_event(event: DomainEvent) -> str:
    """One-line history entry for an event."""
    if event.kind is EventKind.JOINED:
        return "Player joined the raffle"
    if event.kind is EventKind.PLAYERS_ADDED_BY_ADMIN:
        count = len(event.players)
        return "Player added by admin" if count == 1 else f"{count} players added by admin"
    if event.kind is EventKind.WINNER_PICKED:
        return f"Winner selected! Prize: {format_token_amount(event.amount or 0)} USDC"
    if event.kind is EventKind.PRIZE_FUNDED:
        return f"Prize pool funded: {format_token_amount(event.amount or 0)} USDC"
    if event.kind is EventKind.GAME_RESET:
        return "Game reset"
    return "Unknown event"


def event_toast(event: DomainEvent) -> str:
    """Notification text announcing an event as it arrives."""
    if event.kind is EventKind.JOINED:
        return f"Player joined: {shorten_address(event.player)}"
    if event.kind is EventKind.WINNER_PICKED:
        return f"🎉 Winner: {shorten_address(event.winner)} won {format_token_amount(event.amount or 0)} USDC!"
    if event.kind is EventKind.PRIZE_FUNDED:
        return (
            f"Prize funded: {format_token_amount(event.amount or 0)} USDC added by "
            f"{shorten_address(event.funder)}"
        )
    if event.kind is EventKind.PLAYERS_ADDED_BY_ADMIN:
        if len(event.players) == 1:
            return f"Admin added 1 player: {shorten_address(event.players[0])}"
        return f"Admin added {len(event.players)} players to the raffle"
    if event.kind is EventKind.GAME_RESET:
        return f"Game has been reset by {shorten_address(event.admin)}"
    return describe_event(event)


class NotificationDispatcher:
    """Turns action transitions and domain events into one-shot notifications.

    Each action kind has at most one pending in-progress notification; the
    next stage of the same action supersedes it through ``replaces``.
    Delivery is fire-and-forget: a failing sink is logged and ignored.
    """

    def __init__(self) -> None:
        self._sinks: List[Sink] = []
        self._pending: Dict[ActionKind, Notification] = {}
        self._ids = itertools.count(1)
        self._history: List[Notification] = []
        self._history_capacity = 200

    def add_sink(self, sink: Sink) -> None:
        self._sinks.append(sink)

    def remove_sink(self, sink: Sink) -> None:
        if sink in self._sinks:
            self._sinks.remove(sink)

    def pending(self, kind: ActionKind) -> Optional[Notification]:
        return self._pending.get(kind)

    @property
    def history(self) -> List[Notification]:
        return list(self._history)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------
    def on_action_status(self, status: ActionStatus) -> Optional[Notification]:
        if status.state is ActionState.IDLE:
            return None

        if status.state in (ActionState.SUBMITTING, ActionState.CONFIRMING):
            submitting, confirming = _PROGRESS[(status.kind, status.step)]
            template = submitting if status.state is ActionState.SUBMITTING else confirming
            return self._publish(NotificationLevel.LOADING, self._render(template, status), status.kind, duration=None)

        if status.state is ActionState.SUCCEEDED:
            message = self._render(_SUCCESS[status.kind], status)
            if status.detail:
                message = f"{message} ({status.detail})"
            return self._publish(NotificationLevel.SUCCESS, message, status.kind)

        message = _FAILURE[status.kind]
        if status.detail:
            message = f"{message} ({status.detail})"
        return self._publish(NotificationLevel.ERROR, message, status.kind)

    def on_domain_event(self, event: DomainEvent) -> Notification:
        duration = WINNER_DURATION if event.kind is EventKind.WINNER_PICKED else DEFAULT_DURATION
        return self._publish(NotificationLevel.SUCCESS, event_toast(event), None, duration=duration)

    def on_validation_error(self, kind: Optional[ActionKind], error: RaffleSyncError) -> Notification:
        # Refers to a rejected call, not to the one whose toast may be pending
        return self._publish(NotificationLevel.ERROR, str(error), kind, supersede=False)

    def on_read_alert(self, error: ReadError) -> Notification:
        return self._publish(
            NotificationLevel.ERROR, f"Raffle data is stale: {error.function_name}() keeps failing", None
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @staticmethod
    def _render(template: str, status: ActionStatus) -> str:
        params = dict(status.params)
        address = params.get("address")
        params.setdefault("short_address", shorten_address(address) if address else "")
        try:
            return template.format(**params)
        except (KeyError, IndexError, ValueError):
            return template

    def _publish(
        self,
        level: NotificationLevel,
        message: str,
        kind: Optional[ActionKind],
        *,
        duration: Optional[float] = DEFAULT_DURATION,
        supersede: bool = True,
    ) -> Notification:
        replaces = None
        if kind is not None and supersede:
            previous = self._pending.pop(kind, None)
            replaces = previous.id if previous else None

        notification = Notification(
            id=next(self._ids),
            level=level,
            message=message,
            key=kind.value if kind is not None else None,
            duration=duration,
            replaces=replaces,
        )
        if kind is not None and level is NotificationLevel.LOADING:
            self._pending[kind] = notification

        self._history.append(notification)
        del self._history[: -self._history_capacity]

        logger.info("Notification [%s] %s", level.value, message)
        for sink in list(self._sinks):
            try:
                sink(notification)
            except Exception as exc:
                logger.error("Notification sink %s failed: %s", sink, exc)
        return notification
