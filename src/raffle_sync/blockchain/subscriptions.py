"""Polling log subscriptions with explicit teardown."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional

from raffle_sync.blockchain.client import BlockchainEvent
from raffle_sync.utils.logger import get_logger

logger = get_logger(__name__)

LogBatchHandler = Callable[[str, List[BlockchainEvent]], Awaitable[None]]


class EventSubscription:
    """Handle for one contract event kind.

    Each tick fetches the logs of ``event_name`` mined since the previous tick
    and hands them to ``handler`` as one batch, in the order the node returned
    them. The handle is acquired with ``start()`` and released with
    ``close()``; a closed handle cannot be restarted.
    """

    def __init__(
        self,
        client,
        event_name: str,
        handler: LogBatchHandler,
        *,
        interval: float = 2.0,
        start_block: Optional[int] = None,
    ) -> None:
        self._client = client
        self.event_name = event_name
        self._handler = handler
        self._interval = interval
        self._from_block = start_block
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._closed = False

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> "EventSubscription":
        if self._closed:
            raise RuntimeError(f"Subscription for {self.event_name} already closed")
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(
                self._run(), name=f"subscription-{self.event_name}"
            )
            logger.info("Subscribed to %s", self.event_name)
        return self

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Unsubscribed from %s", self.event_name)

    async def poll_once(self) -> int:
        """Fetch and deliver logs mined since the last poll; returns how many were delivered."""
        latest = await self._client.get_latest_block()
        if self._from_block is None:
            # Only logs mined after the subscription started are delivered
            self._from_block = latest + 1
            return 0
        if latest < self._from_block:
            return 0

        logs = await self._client.get_event_logs(self.event_name, self._from_block, latest)
        self._from_block = latest + 1
        if logs:
            await self._handler(self.event_name, logs)
        return len(logs)

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Subscription %s poll error: %s", self.event_name, exc)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                continue
