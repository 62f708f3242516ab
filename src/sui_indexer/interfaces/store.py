"""StorageGateway protocol - the only durable state of the indexer."""

from __future__ import annotations

from typing import Protocol

from sui_indexer.models.records import ProcessedEvent, ProcessedTransaction


class StorageGateway(Protocol):
    """Append-only, idempotent persistence of processed records and progress.

    Every write is safe to retry: re-writing a record with an existing dedup
    key is a silent no-op.
    """

    # ── Lifecycle ──────────────────────────────────────────

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        ...

    async def close(self) -> None:
        ...

    # ── Records ────────────────────────────────────────────

    async def put_events(self, batch: list[ProcessedEvent]) -> None:
        """Dedup key: (transaction_digest, event_index)."""
        ...

    async def put_transactions(self, batch: list[ProcessedTransaction]) -> None:
        """Dedup key: digest."""
        ...

    async def get_events_in_range(self, start: int, end: int) -> list[ProcessedEvent]:
        """Inclusive range, ordered by (checkpoint_sequence, processed_at)."""
        ...

    # ── Progress ───────────────────────────────────────────

    async def get_progress(self) -> int | None:
        ...

    async def set_progress(self, checkpoint: int) -> None:
        """Single-row upsert, last writer wins."""
        ...

    async def get_cursor(self, key: str) -> str | None:
        ...

    async def set_cursor(self, key: str, cursor: str) -> None:
        ...

    # ── Probes ─────────────────────────────────────────────

    async def health(self) -> bool:
        """Liveness probe. Bounded by a timeout, never raises."""
        ...
