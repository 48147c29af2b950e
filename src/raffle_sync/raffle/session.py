"""Connected-session wiring for the sync engine."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from raffle_sync.blockchain.subscriptions import EventSubscription
from raffle_sync.raffle.entries import leaderboard
from raffle_sync.raffle.event_manager import EVENT_NOTIFY, EventReconciler
from raffle_sync.raffle.models import ActionKind, EventKind
from raffle_sync.raffle.notifications import NotificationDispatcher
from raffle_sync.raffle.orchestrator import ACTION_STATUS, VALIDATION_ERROR, TransactionOrchestrator
from raffle_sync.raffle.snapshot import READ_ALERT, READ_FAILURE_ALERT_THRESHOLD, SnapshotBuilder
from raffle_sync.utils.config import get_config_value
from raffle_sync.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_EVENT_POLL_INTERVAL = 2.0


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("0", "false", "no", "off", "")
    return bool(value)


class RaffleSession:
    """Everything that lives for as long as a wallet is connected.

    ``start()`` performs a first refresh, then runs the snapshot poll loop and
    one log subscription per contract event kind. ``stop()`` cancels the poll
    loop and closes every subscription; transactions already broadcast are
    not affected.
    """

    def __init__(self, client, config: Optional[Dict[str, Any]] = None) -> None:
        config = config or {}
        self.client = client

        self._poll_interval = float(get_config_value(config, "sync.poll_interval_sec", DEFAULT_POLL_INTERVAL))
        self._event_interval = float(
            get_config_value(config, "sync.event_poll_interval_sec", DEFAULT_EVENT_POLL_INTERVAL)
        )
        threshold = int(get_config_value(config, "sync.read_failure_alert_threshold", READ_FAILURE_ALERT_THRESHOLD))
        enforce_access = _as_bool(get_config_value(config, "sync.enforce_access", True))
        tx_timeout = float(get_config_value(config, "blockchain.tx_timeout", 180))

        self.builder = SnapshotBuilder(client, failure_alert_threshold=threshold)
        self.reconciler = EventReconciler(self.builder)
        self.orchestrator = TransactionOrchestrator(
            client,
            snapshot_provider=(lambda: self.builder.current) if enforce_access else None,
            on_complete=self.builder.refresh,
            tx_timeout=tx_timeout,
        )
        self.dispatcher = NotificationDispatcher()

        self.orchestrator.listeners.add_listener(ACTION_STATUS, self.dispatcher.on_action_status)
        self.orchestrator.listeners.add_listener(
            VALIDATION_ERROR, lambda payload: self.dispatcher.on_validation_error(*payload)
        )
        self.reconciler.listeners.add_listener(EVENT_NOTIFY, self.dispatcher.on_domain_event)
        self.builder.listeners.add_listener(READ_ALERT, self.dispatcher.on_read_alert)

        self._subscriptions: List[EventSubscription] = []
        self._poll_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._poll_task is not None

    @property
    def subscriptions(self) -> List[EventSubscription]:
        return list(self._subscriptions)

    async def start(self) -> None:
        if self._poll_task is not None:
            logger.warning("Raffle session already running")
            return
        self._stop_event.clear()

        await self.builder.refresh()

        try:
            start_block: Optional[int] = await self.client.get_latest_block() + 1
        except Exception as exc:
            logger.warning("Could not read latest block, subscriptions will start on first poll: %s", exc)
            start_block = None

        loop = asyncio.get_running_loop()
        self._poll_task = loop.create_task(self._poll_loop(), name="raffle-snapshot-poll")
        for kind in EventKind:
            subscription = EventSubscription(
                self.client,
                kind.value,
                self.reconciler.reconcile,
                interval=self._event_interval,
                start_block=start_block,
            )
            self._subscriptions.append(subscription.start())
        logger.info("Raffle session started (%d subscriptions)", len(self._subscriptions))

    async def stop(self) -> None:
        self._stop_event.set()
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        for subscription in self._subscriptions:
            try:
                await subscription.close()
            except Exception as exc:
                logger.error("Error closing %s subscription: %s", subscription.event_name, exc)
        self._subscriptions = []
        logger.info("Raffle session stopped")

    async def __aenter__(self) -> "RaffleSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.builder.refresh()
            except Exception as exc:
                logger.error("Snapshot poll error: %s", exc)

    # ------------------------------------------------------------------
    # Read-only views for the presentation layer
    # ------------------------------------------------------------------
    @property
    def is_owner(self) -> bool:
        return self.builder.current.is_owned_by(getattr(self.client, "caller", None))

    def status(self) -> Dict[str, Any]:
        snapshot = self.builder.current
        entries = self.builder.entries
        return {
            "snapshot": snapshot,
            "entries": entries,
            "uniquePlayers": len(entries),
            "leaderboard": leaderboard(entries, snapshot.entry_count),
            "events": self.reconciler.events,
            "actions": {kind.value: self.orchestrator.state(kind).value for kind in ActionKind},
            "isOwner": self.is_owner,
            "reads": self.builder.read_health(),
        }
