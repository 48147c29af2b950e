import asyncio

import pytest
from fakes import PLAYER, run

from raffle_sync.raffle.errors import SubmissionError, ValidationError
from raffle_sync.raffle.models import ActionKind, ActionState, DomainEvent, EventKind
from raffle_sync.raffle.notifications import NotificationDispatcher, NotificationLevel, describe_event
from raffle_sync.raffle.orchestrator import ACTION_STATUS, VALIDATION_ERROR, TransactionOrchestrator


def _wired(client):
    orchestrator = TransactionOrchestrator(client)
    dispatcher = NotificationDispatcher()
    orchestrator.listeners.add_listener(ACTION_STATUS, dispatcher.on_action_status)
    return orchestrator, dispatcher


def test_fund_prize_progress_supersedes_itself(client):
    orchestrator, dispatcher = _wired(client)

    run(orchestrator.fund_prize("10"))

    history = dispatcher.history
    assert [n.message for n in history] == [
        "Approving USDC...",
        "Confirming USDC approval...",
        "Funding prize pool...",
        "Confirming funding...",
        "Prize pool funded with 10 USDC!",
    ]
    assert history[0].replaces is None
    for previous, current in zip(history, history[1:]):
        assert current.replaces == previous.id
    assert history[-1].level is NotificationLevel.SUCCESS
    assert dispatcher.pending(ActionKind.FUND_PRIZE) is None


def test_failure_message_carries_detail(client):
    client.submit_failures["pickWinner"] = SubmissionError("user rejected")
    orchestrator, dispatcher = _wired(client)

    run(orchestrator.pick_winner())

    last = dispatcher.history[-1]
    assert last.level is NotificationLevel.ERROR
    assert last.message == "Failed to pick winner. Please try again. (user rejected)"
    assert last.replaces == dispatcher.history[-2].id


def test_templates_use_action_params(client):
    orchestrator, dispatcher = _wired(client)
    other = "0x" + "e" * 40

    run(orchestrator.add_players_batch([PLAYER, other]))
    run(orchestrator.add_player(PLAYER))

    messages = [n.message for n in dispatcher.history]
    assert "Adding 2 players..." in messages
    assert "2 players added successfully!" in messages
    assert "Player 0xbbbb...bbbb added successfully!" in messages


def test_failing_sink_does_not_block_others():
    dispatcher = NotificationDispatcher()
    delivered = []

    def broken(notification):
        raise RuntimeError("sink down")

    dispatcher.add_sink(broken)
    dispatcher.add_sink(delivered.append)
    dispatcher.on_validation_error(ActionKind.ADD_PLAYER, ValidationError("Invalid address: 'x'"))

    assert [n.message for n in delivered] == ["Invalid address: 'x'"]
    assert delivered[0].key == "addPlayer"


def test_event_toasts():
    dispatcher = NotificationDispatcher()

    winner = dispatcher.on_domain_event(DomainEvent(kind=EventKind.WINNER_PICKED, winner=PLAYER, amount=7_500_000))
    joined = dispatcher.on_domain_event(DomainEvent(kind=EventKind.JOINED, player=PLAYER))

    assert winner.message == "🎉 Winner: 0xbbbb...bbbb won 7.50 USDC!"
    assert winner.duration == 8.0
    assert joined.message == "Player joined: 0xbbbb...bbbb"
    assert joined.duration == 4.0


def test_history_descriptions():
    batch = DomainEvent(kind=EventKind.PLAYERS_ADDED_BY_ADMIN, players=(PLAYER, PLAYER))
    funded = DomainEvent(kind=EventKind.PRIZE_FUNDED, amount=10_000_000)

    assert describe_event(batch) == "2 players added by admin"
    assert describe_event(funded) == "Prize pool funded: 10.00 USDC"


def test_rejected_call_leaves_in_flight_toast_pending(client):
    orchestrator, dispatcher = _wired(client)
    orchestrator.listeners.add_listener(
        VALIDATION_ERROR, lambda payload: dispatcher.on_validation_error(*payload)
    )

    async def scenario():
        client.wait_gate = asyncio.Event()
        in_flight = asyncio.create_task(orchestrator.fund_prize("10"))
        while orchestrator.state(ActionKind.FUND_PRIZE) is not ActionState.CONFIRMING:
            await asyncio.sleep(0)
        pending = dispatcher.pending(ActionKind.FUND_PRIZE)

        with pytest.raises(ValidationError):
            await orchestrator.fund_prize("abc")
        rejection = dispatcher.history[-1]
        assert dispatcher.pending(ActionKind.FUND_PRIZE) is pending

        client.wait_gate.set()
        await in_flight
        return pending, rejection

    pending, rejection = run(scenario())

    assert pending.message == "Confirming USDC approval..."
    assert rejection.level is NotificationLevel.ERROR
    assert rejection.replaces is None
    next_stage = next(n for n in dispatcher.history if n.message == "Funding prize pool...")
    assert next_stage.replaces == pending.id


def test_fractional_funding_mentions_unfunded_remainder(client):
    orchestrator, dispatcher = _wired(client)

    run(orchestrator.fund_prize("2.5"))

    assert dispatcher.history[-1].message == (
        "Prize pool funded with 2 USDC! (0.5 USDC approved but not funded, fundPrize takes whole USDC)"
    )
