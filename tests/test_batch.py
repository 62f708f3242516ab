"""BatchCoordinator: chunking, ordering, bounded concurrency and skips."""

from __future__ import annotations

import asyncio

import pytest

from sui_indexer.events.batch import BatchCoordinator, chunked
from sui_indexer.events.filter import FilterEngine
from sui_indexer.events.transformer import EventTransformer
from sui_indexer.models.events import CheckpointContext
from sui_indexer.models.rules import FilterRule
from tests.factories import make_raw_event, make_raw_transaction

CONTEXT = CheckpointContext(sequence=105)


class FlakyTransformer(EventTransformer):
    """Raises on selected event indexes."""

    def __init__(self, fail_on: set[int]) -> None:
        super().__init__()
        self.fail_on = fail_on

    def transform(self, event, context, matched_rules=()):
        if event.event_index in self.fail_on:
            raise RuntimeError(f"cannot transform {event.event_index}")
        return super().transform(event, context, matched_rules)


def _events(n: int, **kwargs):
    return [make_raw_event(event_index=i, **kwargs) for i in range(n)]


def test_chunked():
    assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    with pytest.raises(ValueError):
        chunked([1], 0)


async def test_output_preserves_input_order():
    coordinator = BatchCoordinator(FilterEngine(), EventTransformer(), 3, 4)
    result = await coordinator.process_events(_events(10), CONTEXT)
    assert [r.event_index for r in result] == list(range(10))
    assert coordinator.last_skipped == 0


async def test_filter_drops_non_matching():
    rule = FilterRule(type_name="DepositEvent", name="deposits")
    coordinator = BatchCoordinator(FilterEngine([rule]), EventTransformer(), 2, 2)
    events = _events(3) + [make_raw_event(type_name="RepayEvent", event_index=9)]
    result = await coordinator.process_events(events, CONTEXT)
    assert [r.event_index for r in result] == [0, 1, 2]
    assert all(r.matched_rules == ["deposits"] for r in result)


async def test_failed_items_are_skipped_not_fatal():
    coordinator = BatchCoordinator(FilterEngine(), FlakyTransformer({2, 5}), 3, 2)
    result = await coordinator.process_events(_events(8), CONTEXT)
    assert [r.event_index for r in result] == [0, 1, 3, 4, 6, 7]
    assert coordinator.last_skipped == 2


async def test_skip_count_resets_each_call():
    coordinator = BatchCoordinator(FilterEngine(), FlakyTransformer({0}), 5, 1)
    await coordinator.process_events(_events(2), CONTEXT)
    assert coordinator.last_skipped == 1
    await coordinator.process_events([make_raw_event(event_index=4)], CONTEXT)
    assert coordinator.last_skipped == 0


async def test_empty_input():
    coordinator = BatchCoordinator(FilterEngine(), EventTransformer())
    assert await coordinator.process_events([], CONTEXT) == []


async def test_concurrency_is_bounded(monkeypatch):
    coordinator = BatchCoordinator(FilterEngine(), EventTransformer(), 1, 2)
    active = 0
    peak = 0
    real_sleep = asyncio.sleep

    async def tracking_sleep(delay):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await real_sleep(0.01)
        active -= 1

    monkeypatch.setattr("sui_indexer.events.batch.asyncio.sleep", tracking_sleep)
    result = await coordinator.process_events(_events(6), CONTEXT)
    assert len(result) == 6
    assert peak == 2


async def test_process_transactions():
    coordinator = BatchCoordinator(FilterEngine(), EventTransformer(), 2, 2)
    txs = [make_raw_transaction(digest=f"tx-{i}") for i in range(5)]
    result = await coordinator.process_transactions(txs, CONTEXT)
    assert [t.digest for t in result] == [f"tx-{i}" for i in range(5)]


def test_rejects_invalid_sizes():
    with pytest.raises(ValueError):
        BatchCoordinator(FilterEngine(), EventTransformer(), batch_size=0)
    with pytest.raises(ValueError):
        BatchCoordinator(FilterEngine(), EventTransformer(), max_concurrent_batches=0)
