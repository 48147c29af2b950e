"""Client-side state sync and transaction orchestration for an on-chain raffle."""

__version__ = "1.0.0"
