import asyncio

import pytest
from fakes import PLAYER, make_log, run

from raffle_sync.raffle.errors import ValidationError
from raffle_sync.raffle.models import EventKind
from raffle_sync.raffle.session import RaffleSession

FAST = {"sync": {"poll_interval_sec": 0.01, "event_poll_interval_sec": 0.01}}


async def _wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def test_start_and_stop_release_every_subscription(client):
    async def scenario():
        session = RaffleSession(client, FAST)
        await session.start()
        subscriptions = session.subscriptions
        assert session.running
        assert {s.event_name for s in subscriptions} == {kind.value for kind in EventKind}
        assert all(s.active for s in subscriptions)
        await session.stop()
        return session, subscriptions

    session, subscriptions = run(scenario())

    assert not session.running
    assert session.subscriptions == []
    assert all(s.closed for s in subscriptions)


def test_new_logs_reach_history_and_notifications(client):
    async def scenario():
        async with RaffleSession(client, FAST) as session:
            client.latest_block = 101
            client.logs["PlayerJoined"] = [make_log(player=PLAYER)]
            await _wait_for(lambda: len(session.reconciler) == 1)
            return session

    session = run(scenario())

    assert session.reconciler.events[0].player == PLAYER
    assert "Player joined: 0xbbbb...bbbb" in [n.message for n in session.dispatcher.history]


def test_snapshot_poll_keeps_refreshing(client):
    async def scenario():
        async with RaffleSession(client, FAST) as session:
            client.reads["getPlayerCount"] = 7
            await _wait_for(lambda: session.builder.current.entry_count == 7)
            return session.status()

    status = run(scenario())

    assert status["isOwner"] is True
    assert status["actions"]["join"] == "idle"
    assert status["snapshot"].entry_count == 7


def test_non_owner_is_refused_and_told(client):
    client.reads["owner"] = "0x" + "f" * 40

    async def scenario():
        session = RaffleSession(client, FAST)
        await session.builder.refresh()
        assert session.is_owner is False
        with pytest.raises(ValidationError):
            await session.orchestrator.pick_winner()
        return session

    session = run(scenario())

    assert client.calls == []
    assert session.dispatcher.history[-1].message == "pickWinner is restricted to the raffle owner"
