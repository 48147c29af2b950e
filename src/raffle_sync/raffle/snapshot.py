"""Snapshot builder: polled contract reads folded into one immutable view."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from raffle_sync.raffle.entries import aggregate_entries
from raffle_sync.raffle.errors import ReadError
from raffle_sync.raffle.models import PlayerEntry, RaffleSnapshot
from raffle_sync.utils.listeners import ListenerRegistry
from raffle_sync.utils.logger import get_logger

logger = get_logger(__name__)

# Consecutive failures of one read before the user is told about it
READ_FAILURE_ALERT_THRESHOLD = 6

SNAPSHOT_UPDATE = "snapshot_update"
ENTRIES_UPDATE = "entries_update"
READ_ALERT = "read_alert"


@dataclass
class ReadSlot:
    """Outcome tracking for one independently polled read."""

    function_name: str
    default: Any
    sticky: bool = False
    value: Any = None
    has_value: bool = False
    consecutive_failures: int = 0
    last_error: Optional[ReadError] = None
    alerted: bool = False

    def succeed(self, value: Any) -> None:
        self.value = value
        self.has_value = True
        self.consecutive_failures = 0
        self.last_error = None
        self.alerted = False

    def fail(self, error: ReadError) -> None:
        self.consecutive_failures += 1
        self.last_error = error

    def current(self) -> Any:
        """Value to put in the snapshot for the latest outcome of this read."""
        if self.last_error is None and self.has_value:
            return self.value
        if self.sticky and self.has_value:
            return self.value
        return self.default


class SnapshotBuilder:
    """Owns the current RaffleSnapshot and the aggregated player entries.

    Every refresh issues all reads concurrently; each read succeeds or fails on
    its own and a failed read contributes its default, so a refresh always
    produces a complete snapshot. The most recently completed refresh wins.
    """

    def __init__(self, client, *, failure_alert_threshold: int = READ_FAILURE_ALERT_THRESHOLD) -> None:
        self._client = client
        self._threshold = max(1, int(failure_alert_threshold))
        self.listeners = ListenerRegistry()

        self._slots = {
            "is_open": ReadSlot("gameOpen", default=True, sticky=True),
            "entry_count": ReadSlot("getPlayerCount", default=0),
            "prize_pool": ReadSlot("getPrizePool", default=0),
            "owner": ReadSlot("owner", default=""),
            "players": ReadSlot("getPlayers", default=()),
        }
        self._snapshot = RaffleSnapshot()
        self._participants: Tuple[str, ...] = ()
        self._entries: Tuple[PlayerEntry, ...] = ()
        self._refresh_count = 0

    @property
    def current(self) -> RaffleSnapshot:
        return self._snapshot

    @property
    def participants(self) -> Tuple[str, ...]:
        return self._participants

    @property
    def entries(self) -> Tuple[PlayerEntry, ...]:
        return self._entries

    @property
    def refresh_count(self) -> int:
        return self._refresh_count

    def read_health(self) -> dict:
        return {
            slot.function_name: {
                "ok": slot.last_error is None,
                "consecutiveFailures": slot.consecutive_failures,
            }
            for slot in self._slots.values()
        }

    async def refresh(self) -> RaffleSnapshot:
        reads = {
            "is_open": self._client.game_open(),
            "entry_count": self._client.get_player_count(),
            "prize_pool": self._client.get_prize_pool(),
            "owner": self._client.get_owner(),
            "players": self._client.get_players(),
        }
        results = await asyncio.gather(*reads.values(), return_exceptions=True)

        for key, result in zip(reads.keys(), results):
            slot = self._slots[key]
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                self._record_failure(slot, result)
            else:
                slot.succeed(result)

        snapshot = self._assemble()
        self._snapshot = snapshot
        self._refresh_count += 1
        self.listeners.emit(SNAPSHOT_UPDATE, snapshot)

        players_slot = self._slots["players"]
        if players_slot.last_error is None:
            self._set_participants(tuple(players_slot.value or ()))
        return snapshot

    def clear_entries(self) -> None:
        """Forget the aggregated player list until the next successful participant read."""
        self._set_participants(())

    def _set_participants(self, participants: Tuple[str, ...]) -> None:
        if participants == self._participants:
            return
        self._participants = participants
        self._entries = tuple(aggregate_entries(participants))
        self.listeners.emit(ENTRIES_UPDATE, self._entries)

    def _record_failure(self, slot: ReadSlot, exc: BaseException) -> None:
        error = exc if isinstance(exc, ReadError) else ReadError(slot.function_name, exc)
        slot.fail(error)
        logger.warning(
            "Read %s failed (%d in a row), using fallback: %s",
            slot.function_name,
            slot.consecutive_failures,
            error.cause,
        )
        if slot.consecutive_failures >= self._threshold and not slot.alerted:
            slot.alerted = True
            self.listeners.emit(READ_ALERT, error)

    def _assemble(self) -> RaffleSnapshot:
        return RaffleSnapshot(
            is_open=bool(self._slots["is_open"].current()),
            entry_count=max(0, int(self._slots["entry_count"].current())),
            prize_pool_minor_units=max(0, int(self._slots["prize_pool"].current())),
            owner_address=str(self._slots["owner"].current() or ""),
        )
