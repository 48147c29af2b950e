import logging

from raffle_sync.utils.logger import QUIET_LOGGERS, get_logger


def test_rpc_transport_loggers_stay_quiet(monkeypatch):
    monkeypatch.delenv("LOG_RPC", raising=False)

    logger = get_logger("raffle_sync.tests")

    assert logger.name == "raffle_sync.tests"
    for name in QUIET_LOGGERS:
        assert logging.getLogger(name).level >= logging.WARNING
