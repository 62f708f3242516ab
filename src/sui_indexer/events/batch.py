"""Batch coordinator - chunked filter/transform with bounded concurrency."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence, TypeVar

from sui_indexer.events.filter import FilterEngine
from sui_indexer.events.transformer import EventTransformer
from sui_indexer.models.events import CheckpointContext, RawEvent, RawTransaction
from sui_indexer.models.records import ProcessedEvent, ProcessedTransaction

log = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def chunked(items: Sequence[T], size: int) -> list[Sequence[T]]:
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    return [items[i:i + size] for i in range(0, len(items), size)]


class BatchCoordinator:
    """Drives Filter -> Transform over chunks of at most ``batch_size`` items.

    Chunks run concurrently, at most ``max_concurrent_batches`` at a time.
    Results are concatenated in chunk order, so the output keeps the input
    order. An item that fails to process is logged and skipped; the rest of
    its chunk still goes through.
    """

    def __init__(
        self,
        filter_engine: FilterEngine,
        transformer: EventTransformer,
        batch_size: int = 100,
        max_concurrent_batches: int = 10,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if max_concurrent_batches < 1:
            raise ValueError(
                f"max_concurrent_batches must be >= 1, got {max_concurrent_batches}"
            )
        self._filter = filter_engine
        self._transformer = transformer
        self._batch_size = batch_size
        self._max_concurrent = max_concurrent_batches
        self._last_skipped = 0

    @property
    def filter_engine(self) -> FilterEngine:
        return self._filter

    @property
    def last_skipped(self) -> int:
        """Items skipped because they failed during the most recent call."""
        return self._last_skipped

    async def process_events(
        self, events: Sequence[RawEvent], context: CheckpointContext
    ) -> list[ProcessedEvent]:
        def _one(event: RawEvent) -> ProcessedEvent | None:
            if not self._filter.matches(event):
                return None
            return self._transformer.transform(
                event, context, self._filter.matching_rules(event),
            )

        def _label(event: RawEvent) -> str:
            return f"event {event.transaction_digest}#{event.event_index}"

        return await self._run(events, _one, _label)

    async def process_transactions(
        self, transactions: Sequence[RawTransaction], context: CheckpointContext
    ) -> list[ProcessedTransaction]:
        def _one(tx: RawTransaction) -> ProcessedTransaction:
            return self._transformer.summarize_transaction(tx, context)

        return await self._run(transactions, _one, lambda tx: f"transaction {tx.digest}")

    async def _run(
        self,
        items: Sequence[T],
        process: Callable[[T], R | None],
        label: Callable[[T], str],
    ) -> list[R]:
        self._last_skipped = 0
        if not items:
            return []

        chunks = chunked(items, self._batch_size)
        semaphore = asyncio.Semaphore(self._max_concurrent)
        skipped = 0

        async def _chunk(chunk: Sequence[T]) -> list[R]:
            nonlocal skipped
            async with semaphore:
                out: list[R] = []
                for item in chunk:
                    try:
                        result = process(item)
                    except Exception:
                        log.warning("Skipping %s", label(item), exc_info=True)
                        skipped += 1
                        continue
                    if result is not None:
                        out.append(result)
                # Yield so that other chunks interleave
                await asyncio.sleep(0)
                return out

        tasks: list[Awaitable[list[R]]] = [_chunk(chunk) for chunk in chunks]
        results = await asyncio.gather(*tasks)

        self._last_skipped = skipped
        processed = [record for chunk_result in results for record in chunk_result]
        log.debug(
            "Processed %d/%d items in %d chunks (%d skipped)",
            len(processed), len(items), len(chunks), skipped,
        )
        return processed
