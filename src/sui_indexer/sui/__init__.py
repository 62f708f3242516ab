"""Sui chain integration components."""

from sui_indexer.sui.checkpoint import CheckpointRange, CheckpointStats, CheckpointTracker
from sui_indexer.sui.client import RetryPolicy, SuiRpcClient

__all__ = [
    "CheckpointRange", "CheckpointStats", "CheckpointTracker",
    "RetryPolicy", "SuiRpcClient",
]
