"""Participant record aggregation and leaderboard helpers."""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from raffle_sync.raffle.models import PlayerEntry

LEADERBOARD_SIZE = 5


def aggregate_entries(addresses: Iterable[str]) -> List[PlayerEntry]:
    """Collapse the raw participant list into one entry per distinct address.

    Addresses are compared exactly as emitted. The result keeps the order in
    which each address first appears, so ranking ties resolve the same way on
    every call.
    """
    counts: Dict[str, int] = {}
    for address in addresses:
        counts[address] = counts.get(address, 0) + 1
    return [PlayerEntry(address=address, entry_count=count) for address, count in counts.items()]


def rank_entries(entries: Sequence[PlayerEntry], limit: Optional[int] = None) -> List[PlayerEntry]:
    """Order entries by descending count; the sort is stable so ties keep input order."""
    ranked = sorted(entries, key=lambda entry: entry.entry_count, reverse=True)
    if limit is not None:
        return ranked[:limit]
    return ranked


def win_chance(entry: PlayerEntry, total_entries: int) -> Decimal:
    """Percentage chance for `entry` to be drawn, rounded to one decimal."""
    if total_entries <= 0:
        return Decimal("0.0")
    chance = Decimal(entry.entry_count) * 100 / Decimal(total_entries)
    return chance.quantize(Decimal("0.1"))


def leaderboard(entries: Sequence[PlayerEntry], total_entries: int, limit: int = LEADERBOARD_SIZE) -> List[dict]:
    return [
        {
            "rank": position,
            "address": entry.address,
            "entryCount": entry.entry_count,
            "winChance": str(win_chance(entry, total_entries)),
        }
        for position, entry in enumerate(rank_entries(entries, limit), start=1)
    ]
