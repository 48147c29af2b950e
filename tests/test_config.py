import json
import os

from raffle_sync.utils.config import get_config_value, load_config, save_config


def test_file_values_with_env_overrides(tmp_path, monkeypatch):
    path = tmp_path / "raffle.conf"
    path.write_text(json.dumps({"blockchain": {"chain_id": 8453}, "sync": {"poll_interval_sec": 5}}))
    monkeypatch.setenv("SYNC_POLL_INTERVAL_SEC", "3")
    monkeypatch.setenv("SERVER_PORT", "7000")

    config = load_config(str(path), use_dotenv=False)

    assert config["blockchain"]["chain_id"] == 8453
    assert config["sync"]["poll_interval_sec"] == "3"
    assert get_config_value(config, "server.port") == "7000"
    assert get_config_value(config, "server.host", "0.0.0.0") == "0.0.0.0"


def test_missing_file_uses_environment_only(tmp_path, monkeypatch):
    monkeypatch.setenv("BLOCKCHAIN_RPC_URL", "http://localhost:8545")

    config = load_config(str(tmp_path / "absent.conf"), use_dotenv=False)

    assert config["blockchain"]["rpc_url"] == "http://localhost:8545"


def test_save_round_trip(tmp_path, monkeypatch):
    for key in list(os.environ):
        if key.startswith(("BLOCKCHAIN_", "SYNC_", "SERVER_", "APP_")):
            monkeypatch.delenv(key)
    path = tmp_path / "nested" / "raffle.conf"

    save_config({"sync": {"enforce_access": False}}, str(path))

    assert load_config(str(path), use_dotenv=False) == {"sync": {"enforce_access": False}}
