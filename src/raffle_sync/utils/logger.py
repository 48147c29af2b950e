"""Logging for the raffle sync service.

The snapshot poll loop, the log subscriptions and the transaction orchestrator
all run in the background and report through these loggers: read fallbacks and
rejected commands at WARNING, failed actions and subscription errors at ERROR.
get_logger(name) installs the console handler once, plus a file handler when
LOG_FILE names a path; LOG_LEVEL sets the threshold for both. The web3 and
urllib3 transport loggers stay at WARNING unless LOG_RPC is set.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional


_configured = False

# RPC transport loggers, held at WARNING unless LOG_RPC is set
QUIET_LOGGERS = ("web3.providers", "web3.manager", "web3.RequestManager", "urllib3")


def _ensure_configured() -> None:
    global _configured
    if _configured:
        return

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('LOG_FILE', '')

    level = getattr(logging, LOG_LEVEL.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # Console handler
    ch = logging.StreamHandler()
    ch.setLevel(level)
    ch.setFormatter(formatter)
    root.addHandler(ch)

    # File handler, only when a path is given
    if LOG_FILE:
        try:
            log_path = Path(LOG_FILE)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(log_path, encoding='utf-8')
            fh.setLevel(level)
            fh.setFormatter(formatter)
            root.addHandler(fh)
        except OSError:
            root.exception('Failed to create file log handler; continuing with console only')

    if not os.getenv('LOG_RPC'):
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a configured logger for the given name.

    The first call will configure the root logger according to environment
    variables (LOG_LEVEL, LOG_FILE, LOG_RPC). Subsequent calls return regular
    loggers that inherit the same handlers/level.
    """
    _ensure_configured()
    return logging.getLogger(name)
