"""
Transaction orchestrator.

Drives every user action through its on-chain transaction sequence:

- join, pickWinner, addPlayer, addPlayersBatch, resetGame, emergencyReset
  submit one transaction and wait for its receipt;
- fundPrize approves the token allowance, waits for that receipt, and only
  then submits the funding transaction.

Each action kind moves Idle -> Submitting -> Confirming -> Succeeded | Failed
and back to Idle once the caller has the terminal status. Nothing is retried.
"""

from __future__ import annotations

import asyncio
import inspect
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set, Union

from raffle_sync.blockchain.client import RAFFLE, TOKEN
from raffle_sync.raffle.errors import (
    ActionInProgressError,
    ConfirmationError,
    SubmissionError,
    ValidationError,
    describe_failure,
)
from raffle_sync.raffle.models import (
    OWNER_ACTIONS,
    ActionKind,
    ActionState,
    ActionStatus,
    ContractCall,
    RaffleSnapshot,
)
from raffle_sync.raffle.validation import parse_amount, parse_batch, validate_address
from raffle_sync.utils.common import MINOR_UNITS_PER_TOKEN, to_display_units, to_minor_units
from raffle_sync.utils.listeners import ListenerRegistry
from raffle_sync.utils.logger import get_logger

logger = get_logger(__name__)

ACTION_STATUS = "action_status"
VALIDATION_ERROR = "validation_error"

APPROVE_STEP = "approve"
FUND_STEP = "fund"

ConfirmGate = Callable[[], Union[bool, Awaitable[bool]]]


class ActionStream:
    """Async iterator over the status transitions of one action kind."""

    def __init__(self, orchestrator: "TransactionOrchestrator", kind: ActionKind) -> None:
        self.kind = kind
        self._orchestrator = orchestrator
        self._queue: "asyncio.Queue[ActionStatus]" = asyncio.Queue()

    def push(self, status: ActionStatus) -> None:
        self._queue.put_nowait(status)

    def __aiter__(self) -> "ActionStream":
        return self

    async def __anext__(self) -> ActionStatus:
        return await self._queue.get()

    def close(self) -> None:
        self._orchestrator._detach(self)


class TransactionOrchestrator:
    """Owns the per-kind ActionState and runs each action's transaction sequence.

    ``client`` must provide ``submit(ContractCall) -> tx_hash`` and
    ``wait_for_transaction(tx_hash, timeout) -> TransactionReceipt``, plus
    ``raffle_address`` and ``caller``. When ``snapshot_provider`` is given,
    owner-only actions and joining a closed raffle are refused locally.
    """

    def __init__(
        self,
        client,
        *,
        snapshot_provider: Optional[Callable[[], RaffleSnapshot]] = None,
        on_complete: Optional[Callable[[], Awaitable[Any]]] = None,
        tx_timeout: float = 180.0,
    ) -> None:
        self._client = client
        self._snapshot_provider = snapshot_provider
        self._on_complete = on_complete
        self._tx_timeout = tx_timeout
        self._states: Dict[ActionKind, ActionState] = {kind: ActionState.IDLE for kind in ActionKind}
        self._last: Dict[ActionKind, ActionStatus] = {}
        self._streams: Dict[ActionKind, List[ActionStream]] = {kind: [] for kind in ActionKind}
        self._held: Set[ActionKind] = set()
        self.listeners = ListenerRegistry()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    def state(self, kind: ActionKind) -> ActionState:
        return self._states[kind]

    def states(self) -> Dict[ActionKind, ActionState]:
        return dict(self._states)

    def last_status(self, kind: ActionKind) -> Optional[ActionStatus]:
        return self._last.get(kind)

    def stream(self, kind: ActionKind) -> ActionStream:
        stream = ActionStream(self, kind)
        self._streams[kind].append(stream)
        return stream

    def _detach(self, stream: ActionStream) -> None:
        if stream in self._streams[stream.kind]:
            self._streams[stream.kind].remove(stream)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    async def join(self) -> ActionStatus:
        self._check_access(ActionKind.JOIN)
        return await self._run(ActionKind.JOIN, [ContractCall(RAFFLE, "joinGame")])

    async def pick_winner(self) -> ActionStatus:
        self._check_access(ActionKind.PICK_WINNER)
        return await self._run(ActionKind.PICK_WINNER, [ContractCall(RAFFLE, "pickWinner")])

    async def fund_prize(self, amount: Union[str, int, float, Decimal]) -> ActionStatus:
        kind = ActionKind.FUND_PRIZE
        value = self._validate(kind, parse_amount, amount)
        minor_units = to_minor_units(value)
        # fundPrize takes whole tokens and scales them inside the contract
        whole_units = int(value)
        if whole_units < 1:
            self._reject(kind, ValidationError(f"Amount must be at least 1 USDC, got {amount!r}"))
        self._check_access(kind)

        calls = [
            ContractCall(TOKEN, "approve", (self._client.raffle_address, minor_units), step=APPROVE_STEP),
            ContractCall(RAFFLE, "fundPrize", (whole_units,), step=FUND_STEP),
        ]
        params = {"amount": str(value), "minor_units": minor_units, "whole_units": whole_units}
        remainder = to_display_units(minor_units - whole_units * MINOR_UNITS_PER_TOKEN)
        if remainder:
            params["notice"] = f"{remainder} USDC approved but not funded, fundPrize takes whole USDC"
            logger.warning("fundPrize(%s): %s", amount, params["notice"])
        return await self._run(kind, calls, params)

    async def add_player(self, address: str) -> ActionStatus:
        kind = ActionKind.ADD_PLAYER
        address = self._validate(kind, validate_address, (address or "").strip())
        self._check_access(kind)
        return await self._run(kind, [ContractCall(RAFFLE, "addPlayer", (address,))], {"address": address})

    async def add_players_batch(self, addresses: Union[str, Iterable[str]]) -> ActionStatus:
        kind = ActionKind.ADD_PLAYERS_BATCH
        parsed = self._validate(kind, parse_batch, addresses)
        self._check_access(kind)
        call = ContractCall(RAFFLE, "addPlayersBatch", (tuple(parsed),))
        return await self._run(kind, [call], {"count": len(parsed), "addresses": parsed})

    async def reset_game(self) -> ActionStatus:
        self._check_access(ActionKind.RESET_GAME)
        return await self._run(ActionKind.RESET_GAME, [ContractCall(RAFFLE, "resetGame")])

    async def emergency_reset(self, confirm: ConfirmGate) -> ActionStatus:
        """Cancel the current game; ``confirm`` must approve before anything is sent."""
        kind = ActionKind.EMERGENCY_RESET
        self._check_access(kind)
        self._ensure_idle(kind)

        # Claimed while the prompt is open
        self._held.add(kind)
        try:
            decision = confirm()
            if inspect.isawaitable(decision):
                decision = await decision
        finally:
            self._held.discard(kind)
        if not decision:
            logger.info("Emergency reset declined by user")
            return ActionStatus(kind=kind, state=ActionState.IDLE, detail="declined")

        return await self._run(kind, [ContractCall(RAFFLE, "emergencyReset")])

    # ------------------------------------------------------------------
    # Sequencing
    # ------------------------------------------------------------------
    async def _run(
        self,
        kind: ActionKind,
        calls: Sequence[ContractCall],
        params: Optional[Dict[str, Any]] = None,
    ) -> ActionStatus:
        self._ensure_idle(kind)
        params = dict(params or {})
        tx_hashes: List[str] = []
        completed: List[str] = []
        submitted = False
        call = calls[0]

        try:
            for call in calls:
                self._transition(kind, ActionState.SUBMITTING, call.step, tx_hashes, params)
                tx_hash = await self._client.submit(call)
                submitted = True
                tx_hashes.append(tx_hash)

                self._transition(kind, ActionState.CONFIRMING, call.step, tx_hashes, params)
                receipt = await self._client.wait_for_transaction(tx_hash, timeout=self._tx_timeout)
                if not receipt.ok:
                    raise ConfirmationError(f"Transaction {tx_hash} reverted", tx_hash=tx_hash, step=call.step)
                completed.append(call.step or call.function)
                logger.info("%s: %s confirmed in block %s", kind.value, call.function, receipt.block_number)
        except (SubmissionError, ConfirmationError) as exc:
            if exc.step is None:
                exc.step = call.step
            final = self._fail(kind, exc, completed, tx_hashes, params)
        except Exception as exc:
            logger.exception("%s: unexpected failure during %s", kind.value, call.function)
            error = SubmissionError(f"{call.function} failed: {exc}", step=call.step)
            final = self._fail(kind, error, completed, tx_hashes, params)
        else:
            final = self._transition(
                kind, ActionState.SUCCEEDED, calls[-1].step, tx_hashes, params, detail=params.get("notice")
            )
        finally:
            self._states[kind] = ActionState.IDLE

        self._record(
            ActionStatus(kind=kind, state=ActionState.IDLE, tx_hashes=tuple(tx_hashes), params=params),
            publish=False,
        )

        if submitted and self._on_complete is not None:
            try:
                await self._on_complete()
            except Exception as exc:
                logger.error("Post-action refresh after %s failed: %s", kind.value, exc)
        return final

    def _fail(
        self,
        kind: ActionKind,
        error: Exception,
        completed: Sequence[str],
        tx_hashes: Sequence[str],
        params: Dict[str, Any],
    ) -> ActionStatus:
        detail = describe_failure(error, completed)
        logger.error("%s failed: %s", kind.value, detail)
        status = ActionStatus(
            kind=kind,
            state=ActionState.FAILED,
            step=getattr(error, "step", None),
            tx_hashes=tuple(tx_hashes),
            error=error,
            detail=detail,
            params=params,
        )
        self._states[kind] = ActionState.FAILED
        self._record(status)
        return status

    def _transition(
        self,
        kind: ActionKind,
        state: ActionState,
        step: Optional[str],
        tx_hashes: Sequence[str],
        params: Dict[str, Any],
        detail: Optional[str] = None,
    ) -> ActionStatus:
        self._states[kind] = state
        status = ActionStatus(
            kind=kind, state=state, step=step, tx_hashes=tuple(tx_hashes), detail=detail, params=params
        )
        self._record(status)
        return status

    def _record(self, status: ActionStatus, *, publish: bool = True) -> None:
        self._last[status.kind] = status
        for stream in list(self._streams[status.kind]):
            stream.push(status)
        if publish:
            self.listeners.emit(ACTION_STATUS, status)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------
    def _ensure_idle(self, kind: ActionKind) -> None:
        if kind in self._held:
            logger.warning("Rejected %s: awaiting confirmation", kind.value)
            raise ActionInProgressError(kind)
        if self._states[kind] is not ActionState.IDLE:
            logger.warning("Rejected %s: already %s", kind.value, self._states[kind].value)
            raise ActionInProgressError(kind)

    def _validate(self, kind: ActionKind, parser: Callable[[Any], Any], value: Any) -> Any:
        try:
            return parser(value)
        except ValidationError as exc:
            self._reject(kind, exc)

    def _reject(self, kind: ActionKind, error: ValidationError) -> None:
        logger.warning("Rejected %s: %s", kind.value, error)
        self.listeners.emit(VALIDATION_ERROR, (kind, error))
        raise error

    def _check_access(self, kind: ActionKind) -> None:
        if self._snapshot_provider is None:
            return
        snapshot = self._snapshot_provider()
        if kind in OWNER_ACTIONS and not snapshot.is_owned_by(getattr(self._client, "caller", None)):
            self._reject(kind, ValidationError(f"{kind.value} is restricted to the raffle owner"))
        if kind is ActionKind.JOIN and not snapshot.is_open:
            self._reject(kind, ValidationError("Raffle is closed"))
