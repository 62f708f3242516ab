"""Processed records and operation results."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sui_indexer.models.events import RawEvent


@dataclass(frozen=True)
class ProcessedEvent:
    """Canonical, enriched form of a RawEvent, ready for persistence."""

    id: uuid.UUID
    source: RawEvent
    checkpoint_sequence: int
    timestamp: datetime
    canonical_fields: dict[str, Any]
    matched_rules: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    processing_duration_ms: int = 0
    processed_at: datetime | None = None

    @property
    def transaction_digest(self) -> str:
        return self.source.transaction_digest

    @property
    def event_index(self) -> int:
        return self.source.event_index

    @property
    def dedup_key(self) -> tuple[str, int]:
        return self.source.dedup_key


@dataclass(frozen=True)
class ProcessedTransaction:
    """Per-transaction aggregate persisted next to its events."""

    id: uuid.UUID
    digest: str
    checkpoint_sequence: int
    timestamp: datetime
    success: bool
    gas_used: int | None = None
    event_count: int = 0


@dataclass
class Enrichment:
    """Fields and tags contributed by a protocol extension."""

    fields: dict[str, Any] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)


@dataclass
class HealthStatus:
    """Result of a chain client health probe."""

    healthy: bool
    latest_checkpoint: int | None = None
    latency_ms: int | None = None
    error: str | None = None


@dataclass
class CycleReport:
    """Outcome of one ingestion cycle."""

    started_at: str
    completed_at: str = ""
    status: str = "ok"  # "ok", "fetch_failed", "persist_failed"
    latest_checkpoint: int | None = None
    fetched: int = 0
    processed: int = 0
    skipped: int = 0
    transactions: int = 0
    advanced_to: int | None = None
    duration_ms: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


@dataclass
class IndexerHealth:
    """Combined node and database health."""

    node: HealthStatus
    database: bool

    @property
    def healthy(self) -> bool:
        return self.node.healthy and self.database
