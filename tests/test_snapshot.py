from fakes import OWNER, PLAYER, run

from raffle_sync.raffle.models import PlayerEntry
from raffle_sync.raffle.snapshot import ENTRIES_UPDATE, READ_ALERT, SNAPSHOT_UPDATE, SnapshotBuilder


def test_refresh_builds_snapshot_and_entries(client):
    other = "0x" + "e" * 40
    client.reads.update(
        {"getPlayerCount": 3, "getPrizePool": 7_500_000, "getPlayers": [PLAYER, other, PLAYER]}
    )
    builder = SnapshotBuilder(client)
    updates = []
    builder.listeners.add_listener(SNAPSHOT_UPDATE, updates.append)

    snapshot = run(builder.refresh())

    assert snapshot.is_open is True
    assert snapshot.entry_count == 3
    assert snapshot.prize_pool_minor_units == 7_500_000
    assert snapshot.is_owned_by(OWNER.upper().replace("0X", "0x"))
    assert builder.entries == (PlayerEntry(PLAYER, 2), PlayerEntry(other, 1))
    assert updates == [snapshot]
    assert builder.refresh_count == 1


def test_failed_read_falls_back_without_affecting_others(client):
    client.reads.update({"getPlayerCount": 4, "getPrizePool": 9_000_000})
    client.failing_reads = {"getPrizePool", "owner"}
    builder = SnapshotBuilder(client)

    snapshot = run(builder.refresh())

    assert snapshot.entry_count == 4
    assert snapshot.prize_pool_minor_units == 0
    assert snapshot.owner_address == ""
    assert not snapshot.is_owned_by(OWNER)
    health = builder.read_health()
    assert health["getPrizePool"] == {"ok": False, "consecutiveFailures": 1}
    assert health["getPlayerCount"]["ok"] is True


def test_open_flag_keeps_last_known_value(client):
    builder = SnapshotBuilder(client)
    client.failing_reads = {"gameOpen"}
    assert run(builder.refresh()).is_open is True

    client.failing_reads = set()
    client.reads["gameOpen"] = False
    assert run(builder.refresh()).is_open is False

    client.failing_reads = {"gameOpen"}
    assert run(builder.refresh()).is_open is False


def test_failed_player_read_keeps_previous_entries(client):
    client.reads["getPlayers"] = [PLAYER]
    builder = SnapshotBuilder(client)
    run(builder.refresh())

    client.failing_reads = {"getPlayers"}
    run(builder.refresh())

    assert builder.entries == (PlayerEntry(PLAYER, 1),)


def test_entries_update_only_on_change(client):
    client.reads["getPlayers"] = [PLAYER]
    builder = SnapshotBuilder(client)
    seen = []
    builder.listeners.add_listener(ENTRIES_UPDATE, seen.append)

    run(builder.refresh())
    run(builder.refresh())
    builder.clear_entries()

    assert seen == [(PlayerEntry(PLAYER, 1),), ()]


def test_read_alert_after_consecutive_failures(client):
    builder = SnapshotBuilder(client, failure_alert_threshold=3)
    alerts = []
    builder.listeners.add_listener(READ_ALERT, alerts.append)
    client.failing_reads = {"getPrizePool"}

    async def refresh(times):
        for _ in range(times):
            await builder.refresh()

    run(refresh(2))
    assert alerts == []
    run(refresh(3))
    assert len(alerts) == 1
    assert alerts[0].function_name == "getPrizePool"

    client.failing_reads = set()
    run(refresh(1))
    client.failing_reads = {"getPrizePool"}
    run(refresh(3))
    assert len(alerts) == 2


def test_latest_refresh_wins(client):
    builder = SnapshotBuilder(client)
    client.reads["getPlayerCount"] = 1
    run(builder.refresh())
    client.reads["getPlayerCount"] = 2
    run(builder.refresh())
    assert builder.current.entry_count == 2
