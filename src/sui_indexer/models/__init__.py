"""Data models for the sui_indexer pipeline."""

from sui_indexer.models.events import (
    Checkpoint,
    CheckpointContext,
    EventPage,
    RawEvent,
    RawTransaction,
)
from sui_indexer.models.rules import FilterRule
from sui_indexer.models.records import (
    CycleReport,
    Enrichment,
    HealthStatus,
    IndexerHealth,
    ProcessedEvent,
    ProcessedTransaction,
)
from sui_indexer.models.config import (
    DatabaseConfig,
    EventsConfig,
    ExtensionsConfig,
    IndexerConfig,
    NetworkConfig,
    RetryConfig,
)

__all__ = [
    "Checkpoint", "CheckpointContext", "EventPage", "RawEvent", "RawTransaction",
    "FilterRule",
    "CycleReport", "Enrichment", "HealthStatus", "IndexerHealth",
    "ProcessedEvent", "ProcessedTransaction",
    "DatabaseConfig", "EventsConfig", "ExtensionsConfig", "IndexerConfig",
    "NetworkConfig", "RetryConfig",
]
