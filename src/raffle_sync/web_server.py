"""FastAPI gateway exposing the raffle session to a front-end."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from raffle_sync.blockchain.constants import explorer_tx_url
from raffle_sync.raffle.entries import leaderboard
from raffle_sync.raffle.errors import ActionInProgressError, ValidationError
from raffle_sync.raffle.event_manager import EVENT_APPENDED, HISTORY_CLEARED
from raffle_sync.raffle.models import ActionKind, ActionStatus, DomainEvent, PlayerEntry, RaffleSnapshot
from raffle_sync.raffle.notifications import Notification, describe_event
from raffle_sync.raffle.session import RaffleSession
from raffle_sync.raffle.snapshot import ENTRIES_UPDATE, SNAPSHOT_UPDATE
from raffle_sync.utils.common import format_token_amount, prize_fill_percentage
from raffle_sync.utils.logger import get_logger

logger = get_logger(__name__)


class ActionRequest(BaseModel):
    address: Optional[str] = None
    addresses: Optional[Union[str, List[str]]] = None
    amount: Optional[str] = None
    confirm: bool = False


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def serialize_snapshot(snapshot: RaffleSnapshot) -> Dict[str, Any]:
    return {
        "gameOpen": snapshot.is_open,
        "playerCount": snapshot.entry_count,
        "prizePoolMinorUnits": str(snapshot.prize_pool_minor_units),
        "prizePool": format_token_amount(snapshot.prize_pool_minor_units),
        "prizeFillPercentage": float(prize_fill_percentage(snapshot.prize_pool_minor_units)),
        "owner": snapshot.owner_address,
        "refreshedAt": snapshot.refreshed_at.isoformat(),
    }


def serialize_entry(entry: PlayerEntry) -> Dict[str, Any]:
    return {"address": entry.address, "entryCount": entry.entry_count}


def serialize_event(event: DomainEvent, chain_id: Optional[int] = None) -> Dict[str, Any]:
    return {
        "type": event.kind.value,
        "message": describe_event(event),
        "address": event.subject,
        "players": list(event.players),
        "amount": str(event.amount) if event.amount is not None else None,
        "transactionHash": event.transaction_hash,
        "explorerUrl": explorer_tx_url(event.transaction_hash, chain_id) if event.transaction_hash else None,
        "blockNumber": event.block_number,
        "timestamp": event.observed_at.isoformat(),
    }


def serialize_status(status: ActionStatus) -> Dict[str, Any]:
    return {
        "action": status.kind.value,
        "state": status.state.value,
        "step": status.step,
        "txHashes": list(status.tx_hashes),
        "detail": status.detail,
        "error": type(status.error).__name__ if status.error else None,
    }


class RaffleWebServer:
    """HTTP and WebSocket gateway for one raffle session."""

    def __init__(self, config: Dict[str, Any], session: RaffleSession) -> None:
        self.config = config
        self.session = session
        self._chain_id = getattr(session.client, "chain_id", None)

        self.app = FastAPI(
            title="Raffle Sync API",
            description="Read-only raffle state and transaction commands",
            version="1.0.0",
        )

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._broadcast_queue: Optional["asyncio.Queue[Tuple[str, Any]]"] = None
        self._broadcast_task: Optional[asyncio.Task] = None
        self._ws_lock: Optional[asyncio.Lock] = None
        self._listeners_registered = False
        self._websockets: Set[WebSocket] = set()

        self._setup_middleware()
        self._setup_routes()

    # ------------------------------------------------------------------
    # FastAPI scaffolding
    # ------------------------------------------------------------------
    def _setup_middleware(self) -> None:
        origins = self.config.get("server", {}).get("cors_origins", ["*"])
        if isinstance(origins, str):
            origins = [item.strip() for item in origins.split(",") if item.strip()]
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_routes(self) -> None:
        session = self.session

        @self.app.get("/api/health")
        async def health_check() -> Dict[str, Any]:
            blockchain_health: Dict[str, Any] = {"status": "unavailable"}
            health_probe = getattr(session.client, "health_check", None)
            if health_probe is not None:
                blockchain_health = await health_probe()
            return {
                "status": "ok",
                "timestamp": _now(),
                "components": {
                    "session": "running" if session.running else "stopped",
                    "blockchain": blockchain_health,
                    "reads": session.builder.read_health(),
                },
            }

        @self.app.get("/api/snapshot")
        async def get_snapshot() -> Dict[str, Any]:
            payload = serialize_snapshot(session.builder.current)
            payload["isOwner"] = session.is_owner
            payload["uniquePlayers"] = len(session.builder.entries)
            return payload

        @self.app.get("/api/entries")
        async def get_entries(limit: int = 0) -> Dict[str, Any]:
            entries = session.builder.entries
            snapshot = session.builder.current
            return {
                "entries": [serialize_entry(entry) for entry in entries],
                "leaderboard": leaderboard(entries, snapshot.entry_count, limit=limit or 5),
                "uniquePlayers": len(entries),
                "totalEntries": snapshot.entry_count,
            }

        @self.app.get("/api/events")
        async def get_events(limit: int = 50) -> Dict[str, Any]:
            limit = max(1, min(limit, 500))
            events = session.reconciler.events[-limit:]
            return {
                "events": [serialize_event(event, self._chain_id) for event in reversed(events)],
                "total": len(session.reconciler),
            }

        @self.app.get("/api/actions")
        async def get_actions() -> Dict[str, Any]:
            actions = {}
            for kind in ActionKind:
                last = session.orchestrator.last_status(kind)
                actions[kind.value] = {
                    "state": session.orchestrator.state(kind).value,
                    "last": serialize_status(last) if last else None,
                }
            return {"actions": actions}

        @self.app.post("/api/actions/{action}")
        async def run_action(action: str, request: ActionRequest) -> Dict[str, Any]:
            try:
                kind = ActionKind(action)
            except ValueError:
                raise HTTPException(status_code=404, detail=f"Unknown action {action}")

            try:
                status = await self._dispatch_command(kind, request)
            except ValidationError as exc:
                raise HTTPException(status_code=400, detail=str(exc))
            except ActionInProgressError as exc:
                raise HTTPException(status_code=409, detail=str(exc))
            return serialize_status(status)

        @self.app.websocket("/ws/raffle")
        async def websocket_endpoint(websocket: WebSocket) -> None:
            await websocket.accept()
            if self._ws_lock is None:
                self._ws_lock = asyncio.Lock()
            async with self._ws_lock:
                self._websockets.add(websocket)
            logger.info("WebSocket client connected (%s total)", len(self._websockets))
            try:
                await websocket.send_json({"type": "state", "payload": self._build_initial_state()})
                while True:
                    try:
                        await websocket.receive_text()
                    except WebSocketDisconnect:
                        break
            finally:
                async with self._ws_lock:
                    self._websockets.discard(websocket)
                logger.info("WebSocket client disconnected (%s remaining)", len(self._websockets))

    async def _dispatch_command(self, kind: ActionKind, request: ActionRequest) -> ActionStatus:
        orchestrator = self.session.orchestrator
        if kind is ActionKind.JOIN:
            return await orchestrator.join()
        if kind is ActionKind.PICK_WINNER:
            return await orchestrator.pick_winner()
        if kind is ActionKind.FUND_PRIZE:
            return await orchestrator.fund_prize(request.amount or "")
        if kind is ActionKind.ADD_PLAYER:
            return await orchestrator.add_player(request.address or "")
        if kind is ActionKind.ADD_PLAYERS_BATCH:
            return await orchestrator.add_players_batch(request.addresses or "")
        if kind is ActionKind.RESET_GAME:
            return await orchestrator.reset_game()
        return await orchestrator.emergency_reset(lambda: request.confirm)

    # ------------------------------------------------------------------
    # Lifecycle management
    # ------------------------------------------------------------------
    async def start(self, host: str = "0.0.0.0", port: int = 6080) -> None:
        import uvicorn

        logger.info("Starting raffle web server on %s:%s", host, port)
        self._loop = asyncio.get_running_loop()
        if self._broadcast_queue is None:
            self._broadcast_queue = asyncio.Queue()
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        self._register_listeners()
        if self._broadcast_task is None:
            self._broadcast_task = asyncio.create_task(self._broadcast_loop(), name="raffle-web-broadcast")

        config = uvicorn.Config(self.app, host=host, port=port, log_level="info", access_log=True)
        server = uvicorn.Server(config)
        try:
            await server.serve()
        finally:
            logger.info("Raffle web server stopped")

    async def stop(self) -> None:
        logger.info("Stopping raffle web server")
        if self._broadcast_task:
            self._broadcast_task.cancel()
            try:
                await self._broadcast_task
            except asyncio.CancelledError:
                pass
            self._broadcast_task = None
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        async with self._ws_lock:
            for websocket in list(self._websockets):
                try:
                    await websocket.close(code=1001, reason="Server shutdown")
                except Exception as exc:
                    logger.debug("Error closing websocket: %s", exc)
            self._websockets.clear()

    # ------------------------------------------------------------------
    # Listeners & broadcasting
    # ------------------------------------------------------------------
    def _register_listeners(self) -> None:
        if self._listeners_registered:
            return
        session = self.session
        session.dispatcher.add_sink(lambda n: self._enqueue_broadcast("notification", n))
        session.builder.listeners.add_listener(SNAPSHOT_UPDATE, lambda s: self._enqueue_broadcast("snapshot", s))
        session.builder.listeners.add_listener(ENTRIES_UPDATE, lambda e: self._enqueue_broadcast("entries", e))
        session.reconciler.listeners.add_listener(EVENT_APPENDED, lambda e: self._enqueue_broadcast("event", e))
        session.reconciler.listeners.add_listener(HISTORY_CLEARED, lambda _: self._enqueue_broadcast("reset", None))
        self._listeners_registered = True

    def _enqueue_broadcast(self, event_type: str, payload: Any) -> None:
        if not self._broadcast_queue or not self._loop:
            return
        try:
            self._loop.call_soon_threadsafe(self._broadcast_queue.put_nowait, (event_type, payload))
        except RuntimeError:
            logger.debug("Failed to enqueue broadcast for %s", event_type)

    async def _broadcast_loop(self) -> None:
        assert self._broadcast_queue is not None
        while True:
            try:
                event_type, payload = await self._broadcast_queue.get()
                await self._broadcast_to_clients(event_type, self._serialize_payload(event_type, payload))
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.exception("Broadcast loop error: %s", exc)

    async def _broadcast_to_clients(self, event_type: str, payload: Any) -> None:
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        message = {"type": event_type, "payload": payload, "timestamp": _now()}
        async with self._ws_lock:
            if not self._websockets:
                return
            to_remove: List[WebSocket] = []
            for websocket in self._websockets:
                try:
                    await websocket.send_json(message)
                except Exception as exc:
                    logger.debug("WebSocket send failed: %s", exc)
                    to_remove.append(websocket)
            for websocket in to_remove:
                self._websockets.discard(websocket)

    def _serialize_payload(self, event_type: str, payload: Any) -> Any:
        if event_type == "notification" and isinstance(payload, Notification):
            return payload.to_dict()
        if event_type == "snapshot" and isinstance(payload, RaffleSnapshot):
            return serialize_snapshot(payload)
        if event_type == "entries":
            return [serialize_entry(entry) for entry in payload]
        if event_type == "event" and isinstance(payload, DomainEvent):
            return serialize_event(payload, self._chain_id)
        return payload

    def _build_initial_state(self) -> Dict[str, Any]:
        session = self.session
        return {
            "snapshot": serialize_snapshot(session.builder.current),
            "entries": [serialize_entry(entry) for entry in session.builder.entries],
            "events": [serialize_event(event, self._chain_id) for event in session.reconciler.events],
            "actions": {kind.value: session.orchestrator.state(kind).value for kind in ActionKind},
            "isOwner": session.is_owner,
        }
