import asyncio

import pytest
from fakes import PLAYER, make_log, run

from raffle_sync.blockchain.subscriptions import EventSubscription


def _collector():
    batches = []

    async def handler(event_name, logs):
        batches.append((event_name, list(logs)))

    return batches, handler


def test_first_poll_only_sets_the_starting_block(client):
    batches, handler = _collector()
    subscription = EventSubscription(client, "PlayerJoined", handler)
    client.logs["PlayerJoined"] = [make_log(player=PLAYER)]

    assert run(subscription.poll_once()) == 0
    assert batches == []
    assert not [c for c in client.calls if c[0] == "get_logs"]


def test_poll_delivers_one_batch_per_tick(client):
    batches, handler = _collector()
    subscription = EventSubscription(client, "PlayerJoined", handler, start_block=90)
    log = make_log(player=PLAYER)
    client.logs["PlayerJoined"] = [log]

    assert run(subscription.poll_once()) == 1
    assert batches == [("PlayerJoined", [log])]
    assert ("get_logs", "PlayerJoined", 90, 100) in client.calls

    # Nothing new mined
    assert run(subscription.poll_once()) == 0
    assert len(batches) == 1


def test_close_cancels_and_cannot_restart(client):
    _, handler = _collector()

    async def scenario():
        subscription = EventSubscription(client, "GameReset", handler, interval=0.01).start()
        assert subscription.active
        await asyncio.sleep(0.03)
        await subscription.close()
        return subscription

    subscription = run(scenario())

    assert subscription.closed
    assert not subscription.active
    with pytest.raises(RuntimeError):
        subscription.start()
