"""Event reconciler: contract logs folded into the in-memory event history."""

from __future__ import annotations

from typing import Any, List, Sequence, Tuple

from raffle_sync.raffle.models import DomainEvent, EventKind
from raffle_sync.raffle.snapshot import SnapshotBuilder
from raffle_sync.utils.listeners import ListenerRegistry
from raffle_sync.utils.logger import get_logger

logger = get_logger(__name__)

EVENT_APPENDED = "event_appended"
EVENT_NOTIFY = "event_notify"
HISTORY_CLEARED = "history_cleared"

# Kinds that notify once per delivered batch, using the batch's first log.
# The remaining kinds notify once per log.
NOTIFY_FIRST_LOG_ONLY = frozenset({EventKind.JOINED, EventKind.WINNER_PICKED, EventKind.PRIZE_FUNDED})


def translate_log(kind: EventKind, log: Any) -> DomainEvent:
    """Build the DomainEvent for one decoded log; raises KeyError on missing arguments."""
    args = getattr(log, "args", None) or {}
    common = {
        "transaction_hash": getattr(log, "transaction_hash", None),
        "block_number": getattr(log, "block_number", None),
    }

    if kind is EventKind.JOINED:
        return DomainEvent(kind=kind, player=str(args["player"]), **common)
    if kind is EventKind.WINNER_PICKED:
        return DomainEvent(kind=kind, winner=str(args["winner"]), amount=int(args["prize"]), **common)
    if kind is EventKind.PRIZE_FUNDED:
        return DomainEvent(kind=kind, funder=str(args["funder"]), amount=int(args["amount"]), **common)
    if kind is EventKind.PLAYERS_ADDED_BY_ADMIN:
        return DomainEvent(
            kind=kind,
            players=tuple(str(p) for p in args["players"]),
            admin=str(args["admin"]),
            **common,
        )
    if kind is EventKind.GAME_RESET:
        return DomainEvent(
            kind=kind, admin=str(args["admin"]), chain_timestamp=int(args["timestamp"]), **common
        )
    raise ValueError(f"Unsupported event kind {kind}")


class EventReconciler:
    """Owns the session's ordered event log.

    Each delivered batch is translated log by log, appended in delivery order
    and followed by one snapshot refresh. ``GameReset`` is the only kind that
    removes anything: it clears the event log and the aggregated entries.
    """

    def __init__(self, builder: SnapshotBuilder) -> None:
        self._builder = builder
        self._events: List[DomainEvent] = []
        self.listeners = ListenerRegistry()

    @property
    def events(self) -> Tuple[DomainEvent, ...]:
        return tuple(self._events)

    def __len__(self) -> int:
        return len(self._events)

    async def reconcile(self, event_name: str, logs: Sequence[Any]) -> List[DomainEvent]:
        """Fold one subscription batch into the history and refresh the snapshot.

        Returns the translated events, in delivery order.
        """
        kind = EventKind(event_name)
        translated: List[DomainEvent] = []
        for log in logs:
            try:
                translated.append(translate_log(kind, log))
            except (KeyError, TypeError, ValueError) as exc:
                logger.error("Skipping undecodable %s log %s: %s", event_name, log, exc)

        if not translated:
            return translated
        logger.info("Reconciling %d %s event(s)", len(translated), event_name)

        if kind is EventKind.GAME_RESET:
            self._clear()
        else:
            for event in translated:
                self._events.append(event)
                self.listeners.emit(EVENT_APPENDED, event)

        to_notify = translated[:1] if kind in NOTIFY_FIRST_LOG_ONLY else translated
        for event in to_notify:
            self.listeners.emit(EVENT_NOTIFY, event)

        try:
            await self._builder.refresh()
        except Exception as exc:
            logger.error("Snapshot refresh after %s failed: %s", event_name, exc)
        return translated

    def _clear(self) -> None:
        self._events.clear()
        self._builder.clear_entries()
        self.listeners.emit(HISTORY_CLEARED, None)
        logger.info("Event history and player entries cleared after GameReset")
