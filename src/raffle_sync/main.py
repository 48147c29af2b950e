#!/usr/bin/env python3
"""
Raffle Sync Application

Main entry point: connects to the chain, starts the raffle session (snapshot
polling plus event subscriptions) and serves it over HTTP and WebSocket.
"""

import argparse
import asyncio
import signal
import sys
import traceback
from typing import Optional

from raffle_sync.blockchain.client import BlockchainClient
from raffle_sync.raffle.session import RaffleSession
from raffle_sync.utils.common import shorten_address
from raffle_sync.utils.config import load_config
from raffle_sync.utils.logger import get_logger
from raffle_sync.web_server import RaffleWebServer

logger = get_logger(__name__)


class RaffleSyncApp:
    """Raffle sync application.

    Responsible for initializing and orchestrating the blockchain client, the
    raffle session and the FastAPI web server. Handles graceful shutdown and
    logs a short startup summary for diagnostics.
    """

    def __init__(self, config_file: Optional[str] = None):
        self.config = load_config(config_file)
        self.web_server: Optional[RaffleWebServer] = None
        self.session: Optional[RaffleSession] = None
        self.blockchain_client: Optional[BlockchainClient] = None
        self.running = True
        self._stopped = False

        logger.info("Raffle sync application initialized")

    def _handle_signal(self, signum, frame):
        logger.info("Received signal %s, initiating graceful shutdown...", signum)
        self.running = False

    def _display_config_summary(self):
        """Log key configuration options for diagnostics."""
        logger.info("=" * 60)
        logger.info("CONFIGURATION SUMMARY")
        logger.info("=" * 60)

        blockchain_config = self.config.get("blockchain", {})
        logger.info("RPC URL: %s", blockchain_config.get("rpc_url", "chain default"))
        logger.info("Chain ID: %s", blockchain_config.get("chain_id", "chain default"))
        logger.info("Raffle: %s", blockchain_config.get("raffle_address", "chain default"))
        logger.info("Account: %s", blockchain_config.get("account_address", "node default"))

        sync_config = self.config.get("sync", {})
        logger.info("Snapshot poll interval: %ss", sync_config.get("poll_interval_sec", 5))
        logger.info("Event poll interval: %ss", sync_config.get("event_poll_interval_sec", 2))

        server_config = self.config.get("server", {})
        logger.info("Server: %s:%s", server_config.get("host", "0.0.0.0"), server_config.get("port", 6080))
        logger.info("=" * 60)

    async def initialize(self):
        """Initialize the blockchain client, raffle session and web server."""
        self._display_config_summary()

        logger.info("Initializing blockchain client...")
        self.blockchain_client = BlockchainClient(self.config)
        await self.blockchain_client.initialize()

        logger.info("Starting raffle session...")
        self.session = RaffleSession(self.blockchain_client, self.config)
        await self.session.start()

        self.web_server = RaffleWebServer(self.config, self.session)
        logger.info("Application initialization completed")

    async def start(self):
        """Start services and run until a shutdown signal is received."""
        try:
            await self.initialize()

            server_host = self.config.get("server", {}).get("host", "0.0.0.0")
            server_port = int(self.config.get("server", {}).get("port", 6080))

            server_task = asyncio.create_task(self.web_server.start(host=server_host, port=server_port))
            # Give the server a moment to bind; a bind failure finishes the task early
            await asyncio.sleep(0.2)
            if server_task.done() and server_task.exception():
                raise server_task.exception()

            self._display_startup_summary(server_host, server_port)

            while self.running and not server_task.done():
                await asyncio.sleep(1)

            logger.info("Shutdown requested, stopping application...")
        finally:
            await self.stop()

    async def stop(self):
        """Stop all services and release resources; safe to call twice."""
        if self._stopped:
            return
        self._stopped = True
        self.running = False
        logger.info("Stopping raffle sync application")

        if self.session:
            try:
                await self.session.stop()
            except Exception as e:
                logger.error("Error stopping raffle session: %s", e)

        if self.web_server:
            try:
                await self.web_server.stop()
            except Exception as e:
                logger.error("Error stopping web server: %s", e)

        if self.blockchain_client:
            try:
                await self.blockchain_client.close()
            except Exception as e:
                logger.error("Error closing blockchain client: %s", e)

        logger.info("Raffle sync application stopped")

    def _display_startup_summary(self, host: str, port: int):
        logger.info("=" * 60)
        logger.info("RAFFLE SYNC STARTED")
        logger.info("=" * 60)
        try:
            snapshot = self.session.builder.current
            logger.info("Raffle open: %s", snapshot.is_open)
            logger.info("Entries: %s", snapshot.entry_count)
            logger.info("Prize pool: %s USDC", snapshot.prize_pool_display)
            logger.info("Owner: %s", shorten_address(snapshot.owner_address) or "unknown")
            logger.info("Connected as owner: %s", self.session.is_owner)
        except Exception as e:
            logger.warning("Could not read session status: %s", e)

        logger.info("HTTP API: http://%s:%s/api/", host, port)
        logger.info("WebSocket: ws://%s:%s/ws/raffle", host, port)
        logger.info("=" * 60)


async def main(config_file: Optional[str] = None):
    """Main entry point for the raffle sync application"""
    app = RaffleSyncApp(config_file)

    signal.signal(signal.SIGINT, app._handle_signal)
    signal.signal(signal.SIGTERM, app._handle_signal)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
    except Exception as e:
        logger.error("Application failed: %s", e)
        logger.error("Error details: %s", traceback.format_exc())
        sys.exit(1)


def cli():
    parser = argparse.ArgumentParser(description="Raffle state sync and transaction gateway")
    parser.add_argument("--config", help="Path to the JSON config file (default: $RAFFLE_CONFIG or config/raffle.conf)")
    args = parser.parse_args()
    asyncio.run(main(args.config))


if __name__ == "__main__":
    cli()
