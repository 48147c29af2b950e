"""Deployed contract addresses per chain."""

from typing import Dict, Optional

BASE = 8453
BASE_SEPOLIA = 84532

DEFAULT_CHAIN_ID = BASE_SEPOLIA

RAFFLE_ADDRESSES: Dict[int, str] = {
    BASE: "0xf44adEdec3f5E7a9794bC8E830BE67e4855FA8fF",
    BASE_SEPOLIA: "0x4B9b6708d5801AA0F2Dd2AA1E74c408Ab255C561",
}

USDC_ADDRESSES: Dict[int, str] = {
    BASE: "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    BASE_SEPOLIA: "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
}

RPC_URLS: Dict[int, str] = {
    BASE: "https://mainnet.base.org",
    BASE_SEPOLIA: "https://sepolia.base.org",
}

EXPLORER_URLS: Dict[int, str] = {
    BASE: "https://basescan.org",
    BASE_SEPOLIA: "https://sepolia.basescan.org",
}


def get_addresses_for_chain(chain_id: Optional[int] = None) -> Dict[str, object]:
    """Raffle and token addresses for a chain, falling back to Base Sepolia."""
    safe_chain_id = chain_id if chain_id in RAFFLE_ADDRESSES else DEFAULT_CHAIN_ID
    return {
        "raffle": RAFFLE_ADDRESSES[safe_chain_id],
        "token": USDC_ADDRESSES[safe_chain_id],
        "chain_id": safe_chain_id,
    }


def explorer_tx_url(tx_hash: str, chain_id: Optional[int] = None) -> str:
    base = EXPLORER_URLS.get(chain_id, EXPLORER_URLS[DEFAULT_CHAIN_ID])
    return f"{base}/tx/{tx_hash}"
