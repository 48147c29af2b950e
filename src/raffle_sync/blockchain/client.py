"""Blockchain client for the raffle sync engine."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from eth_utils import event_abi_to_log_topic, is_hex_address, to_checksum_address
from web3 import Web3
from web3.contract import Contract
from web3._utils.events import get_event_data
from web3.exceptions import TimeExhausted

from raffle_sync.blockchain.constants import RPC_URLS, get_addresses_for_chain
from raffle_sync.raffle.errors import ConfirmationError, ReadError, SubmissionError
from raffle_sync.raffle.models import ContractCall, TransactionReceipt
from raffle_sync.utils.logger import get_logger

logger = get_logger(__name__)

ABI_DIR = Path(__file__).parent / "abi"

RAFFLE = "raffle"
TOKEN = "token"


@dataclass
class BlockchainEvent:
    """Lightweight representation of a decoded on-chain event log."""

    name: str
    args: Dict[str, Any]
    block_number: int
    transaction_hash: str
    log_index: int = 0


def load_abi(name: str) -> List[Dict[str, Any]]:
    path = ABI_DIR / f"{name}.abi"
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


class BlockchainClient:
    """Async-friendly wrapper around web3.py for the raffle and token contracts.

    Blocking web3 calls run in a worker thread and are awaited, so every read,
    submission and receipt wait is a suspension point for the event loop.
    Transactions go out through ``eth_sendTransaction``: the connected node
    or wallet holds the key and signs.
    """

    def __init__(self, config: Dict[str, Any]):
        self._config = config

        blockchain_cfg = config.get("blockchain", {})
        self.chain_id: int = int(blockchain_cfg.get("chain_id", get_addresses_for_chain()["chain_id"]))
        defaults = get_addresses_for_chain(self.chain_id)

        self.rpc_url: str = blockchain_cfg.get("rpc_url") or RPC_URLS.get(self.chain_id, RPC_URLS[defaults["chain_id"]])
        self.rpc_timeout: float = float(blockchain_cfg.get("rpc_timeout", 10.0))
        self.raffle_address: str = blockchain_cfg.get("raffle_address") or defaults["raffle"]
        self.token_address: str = blockchain_cfg.get("token_address") or defaults["token"]
        self._gas_multiplier = float(blockchain_cfg.get("gas_multiplier", 1.15))

        account = blockchain_cfg.get("account_address")
        self.account_address: Optional[str] = to_checksum_address(account) if account else None

        self._w3: Optional[Web3] = None
        self._contracts: Dict[str, Contract] = {}
        self._event_topics: Dict[str, str] = {}
        self._event_abis: Dict[str, Dict[str, Any]] = {}

    @property
    def caller(self) -> Optional[str]:
        return self.account_address

    async def initialize(self) -> None:
        """Establish the RPC connection and bind both contracts."""
        self._w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.rpc_timeout}))
        connected = await asyncio.to_thread(self._w3.is_connected)
        if not connected:
            raise ConnectionError(f"Failed to connect to RPC at {self.rpc_url}")
        logger.info("Connected to RPC %s (chain id %s)", self.rpc_url, self.chain_id)

        try:
            actual_chain_id = await asyncio.to_thread(lambda: self._w3.eth.chain_id)
            if actual_chain_id != self.chain_id:
                logger.warning("Chain ID mismatch: expected %s, got %s", self.chain_id, actual_chain_id)
        except Exception as exc:
            logger.warning("Could not verify chain ID: %s", exc)

        if self.account_address is None:
            accounts = await asyncio.to_thread(lambda: self._w3.eth.accounts)
            if accounts:
                self.account_address = accounts[0]
                logger.info("Using node account %s", self.account_address)
            else:
                logger.warning("No account configured; state-changing actions are disabled")

        self._contracts[RAFFLE] = self._bind(self.raffle_address, "Raffle")
        self._contracts[TOKEN] = self._bind(self.token_address, "ERC20")

        for item in self._contracts[RAFFLE].abi:
            if item.get("type") == "event":
                self._event_topics[item["name"]] = Web3.to_hex(event_abi_to_log_topic(item))
                self._event_abis[item["name"]] = item
        logger.info("Prepared %d event topics", len(self._event_topics))

    async def close(self) -> None:
        """Tear down references; the HTTP provider closes its session on its own."""
        self._contracts = {}
        self._w3 = None

    def _bind(self, address: str, abi_name: str) -> Contract:
        w3 = self._ensure_web3()
        contract = w3.eth.contract(address=to_checksum_address(address), abi=load_abi(abi_name))
        logger.info("%s contract bound at %s", abi_name, address)
        return contract

    def _ensure_web3(self) -> Web3:
        if not self._w3:
            raise RuntimeError("Web3 provider not initialised")
        return self._w3

    def _ensure_contract(self, target: str) -> Contract:
        contract = self._contracts.get(target)
        if contract is None:
            raise RuntimeError(f"{target} contract not initialised")
        return contract

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def _call_view(self, function_name: str, *args) -> Any:
        contract = self._ensure_contract(RAFFLE)

        def _call():
            return getattr(contract.functions, function_name)(*args).call()

        try:
            return await asyncio.to_thread(_call)
        except Exception as exc:
            raise ReadError(function_name, exc) from exc

    async def game_open(self) -> bool:
        return bool(await self._call_view("gameOpen"))

    async def get_player_count(self) -> int:
        return int(await self._call_view("getPlayerCount"))

    async def get_prize_pool(self) -> int:
        return int(await self._call_view("getPrizePool"))

    async def get_players(self) -> List[str]:
        return [str(address) for address in await self._call_view("getPlayers")]

    async def get_owner(self) -> str:
        return str(await self._call_view("owner"))

    async def get_latest_block(self) -> int:
        w3 = self._ensure_web3()
        return int(await asyncio.to_thread(lambda: w3.eth.block_number))

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    @staticmethod
    def _normalize_arg(value: Any) -> Any:
        if isinstance(value, str) and is_hex_address(value):
            return to_checksum_address(value)
        if isinstance(value, (list, tuple)):
            return [BlockchainClient._normalize_arg(item) for item in value]
        return value

    def contract_address(self, target: str) -> str:
        return self.raffle_address if target == RAFFLE else self.token_address

    async def submit(self, call: ContractCall) -> str:
        """Send a state-changing call and return its transaction hash."""
        if not self.account_address:
            raise SubmissionError("No account connected", step=call.step)

        contract = self._ensure_contract(call.target)
        args = [self._normalize_arg(arg) for arg in call.args]
        sender = self.account_address

        def _send() -> str:
            tx_function = getattr(contract.functions, call.function)(*args)
            gas_estimate = tx_function.estimate_gas({"from": sender})
            tx_hash = tx_function.transact({"from": sender, "gas": int(gas_estimate * self._gas_multiplier)})
            return Web3.to_hex(tx_hash)

        try:
            tx_hash = await asyncio.to_thread(_send)
        except Exception as exc:
            logger.warning("Submission of %s.%s failed: %s", call.target, call.function, exc)
            raise SubmissionError(f"{call.function} was not submitted: {exc}", step=call.step) from exc
        logger.info("Sent transaction %s for %s.%s", tx_hash, call.target, call.function)
        return tx_hash

    async def wait_for_transaction(self, tx_hash: str, timeout: float = 180) -> TransactionReceipt:
        w3 = self._ensure_web3()

        def _wait() -> TransactionReceipt:
            receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
            return TransactionReceipt(
                tx_hash=Web3.to_hex(receipt["transactionHash"]),
                status=int(receipt["status"]),
                block_number=int(receipt["blockNumber"]),
                gas_used=int(receipt.get("gasUsed", 0)),
            )

        try:
            return await asyncio.to_thread(_wait)
        except TimeExhausted as exc:
            raise ConfirmationError(
                f"Transaction {tx_hash} not included after {timeout}s", tx_hash=tx_hash, timed_out=True
            ) from exc

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    async def get_event_logs(self, event_name: str, from_block: int, to_block: int) -> List[BlockchainEvent]:
        """Fetch and decode logs of one event kind in [from_block, to_block]."""
        w3 = self._ensure_web3()
        contract = self._ensure_contract(RAFFLE)
        topic = self._event_topics.get(event_name)
        if topic is None:
            raise ValueError(f"Unknown event {event_name}")

        def _fetch() -> List[BlockchainEvent]:
            raw_logs = w3.eth.get_logs(
                {
                    "fromBlock": from_block,
                    "toBlock": to_block,
                    "address": contract.address,
                    "topics": [topic],
                }
            )
            event_abi = self._event_abis[event_name]
            collected: List[BlockchainEvent] = []
            for raw in raw_logs:
                try:
                    decoded = get_event_data(w3.codec, event_abi, raw)
                except Exception as exc:
                    logger.info("Failed to decode %s log %s: %s", event_name, raw, exc)
                    continue
                collected.append(
                    BlockchainEvent(
                        name=event_name,
                        args=dict(decoded["args"]),
                        block_number=int(decoded["blockNumber"]),
                        transaction_hash=Web3.to_hex(decoded["transactionHash"]),
                        log_index=int(decoded.get("logIndex", 0)),
                    )
                )
            return collected

        events = await asyncio.to_thread(_fetch)
        if events:
            logger.debug("Decoded %d %s logs from block %s to %s", len(events), event_name, from_block, to_block)
        return events

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    async def health_check(self) -> Dict[str, Any]:
        try:
            latest_block = await self.get_latest_block()
            return {"status": "healthy", "latestBlock": latest_block}
        except Exception as exc:
            logger.exception("Blockchain health check failed")
            return {"status": "error", "detail": str(exc)}

    def get_client_status(self) -> Dict[str, Any]:
        return {
            "rpcUrl": self.rpc_url,
            "chainId": self.chain_id,
            "raffle": self.raffle_address,
            "token": self.token_address,
            "account": self.account_address,
        }
