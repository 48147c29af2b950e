import asyncio

import pytest
from fakes import OWNER, PLAYER, RAFFLE_ADDRESS, run

from raffle_sync.raffle.errors import (
    ActionInProgressError,
    ConfirmationError,
    SubmissionError,
    ValidationError,
)
from raffle_sync.raffle.models import ActionKind, ActionState, RaffleSnapshot
from raffle_sync.raffle.orchestrator import ACTION_STATUS, VALIDATION_ERROR, TransactionOrchestrator


def test_fund_prize_approves_then_funds(client):
    orchestrator = TransactionOrchestrator(client)

    status = run(orchestrator.fund_prize("10"))

    assert status.state is ActionState.SUCCEEDED
    assert [c[0] for c in client.calls] == ["submit", "wait", "submit", "wait"]
    assert client.submitted() == [
        ("approve", (RAFFLE_ADDRESS, 10_000_000)),
        ("fundPrize", (10,)),
    ]
    assert len(status.tx_hashes) == 2
    assert orchestrator.state(ActionKind.FUND_PRIZE) is ActionState.IDLE


def test_fractional_amount_reports_unfunded_allowance(client):
    orchestrator = TransactionOrchestrator(client)

    status = run(orchestrator.fund_prize("2.5"))

    assert status.succeeded
    assert status.detail == "0.5 USDC approved but not funded, fundPrize takes whole USDC"
    assert status.params["whole_units"] == 2
    assert client.submitted() == [
        ("approve", (RAFFLE_ADDRESS, 2_500_000)),
        ("fundPrize", (2,)),
    ]


def test_fund_prize_rejects_bad_amount_locally(client):
    orchestrator = TransactionOrchestrator(client)
    rejected = []
    orchestrator.listeners.add_listener(VALIDATION_ERROR, rejected.append)

    for amount in ("-1", "abc", "0.5", "1e999999999", str(2 ** 256)):
        with pytest.raises(ValidationError):
            run(orchestrator.fund_prize(amount))

    assert client.calls == []
    assert len(rejected) == 5
    assert rejected[0][0] is ActionKind.FUND_PRIZE


def test_rejected_approval_never_funds(client):
    client.submit_failures["approve"] = SubmissionError("user rejected")
    orchestrator = TransactionOrchestrator(client)

    status = run(orchestrator.fund_prize("10"))

    assert status.state is ActionState.FAILED
    assert status.step == "approve"
    assert status.detail == "approve failed: user rejected"
    assert [name for name, _ in client.submitted()] == ["approve"]
    assert orchestrator.state(ActionKind.FUND_PRIZE) is ActionState.IDLE


def test_reverted_approval_never_funds(client):
    client.receipt_status["approve"] = 0
    orchestrator = TransactionOrchestrator(client)

    status = run(orchestrator.fund_prize("10"))

    assert status.failed
    assert isinstance(status.error, ConfirmationError)
    assert [name for name, _ in client.submitted()] == ["approve"]


def test_failed_fund_reports_completed_approval(client):
    client.receipt_status["fundPrize"] = 0
    orchestrator = TransactionOrchestrator(client)

    status = run(orchestrator.fund_prize("10"))

    assert status.failed
    assert status.step == "fund"
    assert status.detail.startswith("approve succeeded, fund failed:")
    assert len(status.tx_hashes) == 2


def test_unexpected_error_is_reported_as_submission_failure(client):
    client.submit_failures["joinGame"] = RuntimeError("socket closed")
    orchestrator = TransactionOrchestrator(client)

    status = run(orchestrator.join())

    assert status.failed
    assert isinstance(status.error, SubmissionError)
    assert orchestrator.state(ActionKind.JOIN) is ActionState.IDLE


def test_same_kind_is_not_reentrant(client):
    orchestrator = TransactionOrchestrator(client)

    async def scenario():
        client.wait_gate = asyncio.Event()
        first = asyncio.create_task(orchestrator.join())
        while orchestrator.state(ActionKind.JOIN) is not ActionState.CONFIRMING:
            await asyncio.sleep(0)

        with pytest.raises(ActionInProgressError):
            await orchestrator.join()
        assert orchestrator.state(ActionKind.PICK_WINNER) is ActionState.IDLE

        client.wait_gate.set()
        return await first

    status = run(scenario())

    assert status.succeeded
    assert [name for name, _ in client.submitted()] == ["joinGame"]


def test_status_transitions_are_streamed_and_published(client):
    orchestrator = TransactionOrchestrator(client)
    published = []
    orchestrator.listeners.add_listener(ACTION_STATUS, published.append)

    async def scenario():
        stream = orchestrator.stream(ActionKind.PICK_WINNER)
        await orchestrator.pick_winner()
        seen = [await asyncio.wait_for(stream.__anext__(), 1) for _ in range(4)]
        stream.close()
        return seen

    seen = run(scenario())

    assert [s.state for s in seen] == [
        ActionState.SUBMITTING,
        ActionState.CONFIRMING,
        ActionState.SUCCEEDED,
        ActionState.IDLE,
    ]
    assert [s.state for s in published] == [ActionState.SUBMITTING, ActionState.CONFIRMING, ActionState.SUCCEEDED]


def test_batch_validation_happens_before_any_submission(client):
    orchestrator = TransactionOrchestrator(client)
    bad = "0x" + "1" * 39

    with pytest.raises(ValidationError):
        run(orchestrator.add_players_batch(f"{PLAYER}\n{bad}"))

    assert client.calls == []


def test_batch_submits_parsed_addresses(client):
    orchestrator = TransactionOrchestrator(client)
    other = "0x" + "e" * 40

    status = run(orchestrator.add_players_batch(f"{PLAYER},\n{other}"))

    assert status.succeeded
    assert status.params["count"] == 2
    assert client.submitted() == [("addPlayersBatch", ((PLAYER, other),))]


def test_emergency_reset_declined_submits_nothing(client):
    orchestrator = TransactionOrchestrator(client)

    status = run(orchestrator.emergency_reset(lambda: False))

    assert status.state is ActionState.IDLE
    assert status.detail == "declined"
    assert client.calls == []


def test_emergency_reset_accepts_async_confirmation(client):
    orchestrator = TransactionOrchestrator(client)

    async def confirm():
        return True

    status = run(orchestrator.emergency_reset(confirm))

    assert status.succeeded
    assert client.submitted() == [("emergencyReset", ())]


def test_owner_actions_refused_for_other_callers(client):
    snapshot = RaffleSnapshot(owner_address="0x" + "f" * 40)
    orchestrator = TransactionOrchestrator(client, snapshot_provider=lambda: snapshot)

    with pytest.raises(ValidationError):
        run(orchestrator.pick_winner())
    with pytest.raises(ValidationError):
        run(orchestrator.reset_game())
    assert client.calls == []

    run(orchestrator.join())
    assert client.submitted() == [("joinGame", ())]


def test_join_refused_when_closed(client):
    snapshot = RaffleSnapshot(is_open=False, owner_address=OWNER)
    orchestrator = TransactionOrchestrator(client, snapshot_provider=lambda: snapshot)

    with pytest.raises(ValidationError, match="closed"):
        run(orchestrator.join())
    assert client.calls == []


def test_refresh_runs_after_submitted_action(client):
    refreshed = []

    async def on_complete():
        refreshed.append(True)

    orchestrator = TransactionOrchestrator(client, on_complete=on_complete)
    run(orchestrator.add_player(PLAYER))
    assert refreshed == [True]

    client.submit_failures["resetGame"] = SubmissionError("user rejected")
    run(orchestrator.reset_game())
    assert refreshed == [True]


def test_second_emergency_reset_cannot_prompt_while_first_is_open(client):
    orchestrator = TransactionOrchestrator(client)
    prompts = []

    async def scenario():
        answer = asyncio.Event()

        async def confirm():
            prompts.append("asked")
            await answer.wait()
            return True

        first = asyncio.create_task(orchestrator.emergency_reset(confirm))
        while not prompts:
            await asyncio.sleep(0)

        with pytest.raises(ActionInProgressError):
            await orchestrator.emergency_reset(confirm)

        answer.set()
        return await first

    status = run(scenario())

    assert prompts == ["asked"]
    assert status.succeeded
    assert client.submitted() == [("emergencyReset", ())]


def test_declined_prompt_releases_the_kind(client):
    orchestrator = TransactionOrchestrator(client)

    run(orchestrator.emergency_reset(lambda: False))
    status = run(orchestrator.emergency_reset(lambda: True))

    assert status.succeeded
