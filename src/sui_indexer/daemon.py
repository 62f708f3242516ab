"""Ingestion loop - wires the pipeline together and drives it on a timer."""

from __future__ import annotations

import asyncio
import enum
import logging
import signal
import time
from datetime import datetime, timezone

from sui_indexer.errors import RemoteError, StorageError
from sui_indexer.events.batch import BatchCoordinator
from sui_indexer.events.extensions import default_registry
from sui_indexer.events.filter import FilterEngine
from sui_indexer.events.transformer import EventTransformer
from sui_indexer.interfaces.client import ChainClient
from sui_indexer.interfaces.store import StorageGateway
from sui_indexer.models.config import IndexerConfig
from sui_indexer.models.events import CheckpointContext, RawEvent
from sui_indexer.models.records import CycleReport, IndexerHealth
from sui_indexer.models.rules import FilterRule
from sui_indexer.storage.sqlite import SQLiteStorageGateway
from sui_indexer.sui.checkpoint import CheckpointStats, CheckpointTracker
from sui_indexer.sui.client import RetryPolicy, SuiRpcClient

log = logging.getLogger(__name__)

# Cursor key of the select-all query used when no rules are configured
ALL_EVENTS_KEY = "*"


class LoopState(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    FILTERING = "filtering"
    TRANSFORMING = "transforming"
    PERSISTING = "persisting"
    ADVANCING = "advancing"
    SHUTDOWN = "shutdown"


class IngestionLoop:
    """Checkpoint-driven ingestion of Sui events.

    Each cycle:
    1. Fetches the latest checkpoint and pages matching events per rule
    2. Filters and transforms them through the BatchCoordinator
    3. Persists events and transactions
    4. Advances the checkpoint and saves progress and query cursors

    A cycle that fails to fetch or persist changes nothing, so the next
    tick retries the same window. Cycles never overlap.
    """

    def __init__(
        self,
        client: ChainClient,
        store: StorageGateway,
        coordinator: BatchCoordinator,
        tracker: CheckpointTracker | None = None,
        poll_interval: float = 10,
        page_size: int = 50,
        max_pages_per_cycle: int = 10,
        index_transactions: bool = True,
        start_checkpoint: int | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._coordinator = coordinator
        self._tracker = tracker or CheckpointTracker()
        self._poll_interval = poll_interval
        self._page_size = page_size
        self._max_pages = max_pages_per_cycle
        self._index_transactions = index_transactions
        self._start_checkpoint = start_checkpoint

        self._state = LoopState.IDLE
        self._stop_event = asyncio.Event()
        self._cursors: dict[str, str] = {}
        self._checkpoints_processed = 0
        self._started = time.monotonic()
        self._last_report: CycleReport | None = None

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def store(self) -> StorageGateway:
        return self._store

    @property
    def tracker(self) -> CheckpointTracker:
        return self._tracker

    @property
    def last_report(self) -> CycleReport | None:
        return self._last_report

    @property
    def cursors(self) -> dict[str, str]:
        return dict(self._cursors)

    def _queries(self) -> list[tuple[str, FilterRule | None]]:
        engine = self._coordinator.filter_engine
        if not engine.has_filters():
            return [(ALL_EVENTS_KEY, None)]
        return [(rule.label, rule) for rule in engine.rules]

    # ── Lifecycle ──────────────────────────────────────────

    async def restore(self) -> None:
        """Reload progress and query cursors from the store."""
        saved = await self._store.get_progress()
        if saved is not None:
            self._tracker.reset_to(saved)
            log.info("Restored progress: checkpoint %d", saved)
        elif self._start_checkpoint is not None:
            self._tracker.reset_to(self._start_checkpoint)
            log.info("Starting from configured checkpoint %d", self._start_checkpoint)

        for key, _ in self._queries():
            cursor = await self._store.get_cursor(key)
            if cursor:
                self._cursors[key] = cursor
                log.debug("Restored cursor for %s: %s", key, cursor)

    async def start(self) -> None:
        """Initialize storage, restore state and run until stopped."""
        log.info("Starting sui_indexer")
        await self._store.initialize()
        try:
            await self.restore()
            await self.run()
        finally:
            await self.close()
            log.info("Indexer shut down cleanly")

    async def close(self) -> None:
        await self._client.close()
        await self._store.close()

    async def stop(self) -> None:
        """Request shutdown. An in-flight cycle finishes first."""
        log.info("Stop requested")
        self._stop_event.set()

    async def run(self) -> None:
        self._started = time.monotonic()
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception as exc:
                log.error("Ingestion cycle error: %s", exc, exc_info=True)
                self._state = LoopState.IDLE

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass

        self._state = LoopState.SHUTDOWN
        log.info("Ingestion loop stopped at checkpoint %s", self._tracker.current)

    # ── Cycle ──────────────────────────────────────────────

    async def run_cycle(self) -> CycleReport:
        """Run exactly one ingestion cycle."""
        report = CycleReport(started_at=datetime.now(timezone.utc).isoformat())
        start_time = time.monotonic()

        # 1. Fetch
        self._state = LoopState.FETCHING
        try:
            latest = await self._client.latest_checkpoint()
            checkpoint = await self._client.get_checkpoint(latest)
            events, new_cursors = await self._fetch_events()
        except (RemoteError, ValueError) as exc:
            log.warning("Fetch failed, skipping cycle: %s", exc)
            return self._finish(report, start_time, "fetch_failed", str(exc))

        report.latest_checkpoint = latest
        self._tracker.set_target(latest)
        report.fetched = len(events)
        context = CheckpointContext(sequence=latest, timestamp_ms=checkpoint.timestamp)

        # 2. Filter and transform
        self._state = LoopState.FILTERING
        processed = await self._coordinator.process_events(events, context)
        report.skipped = self._coordinator.last_skipped

        transactions = []
        if self._index_transactions and processed:
            digests = list(dict.fromkeys(e.transaction_digest for e in processed))
            self._state = LoopState.FETCHING
            try:
                raw_txs = await self._client.get_transactions(digests)
            except RemoteError as exc:
                log.warning("Transaction fetch failed, skipping cycle: %s", exc)
                return self._finish(report, start_time, "fetch_failed", str(exc))
            self._state = LoopState.TRANSFORMING
            transactions = await self._coordinator.process_transactions(raw_txs, context)
            report.skipped += self._coordinator.last_skipped

        # 3. Persist
        self._state = LoopState.PERSISTING
        try:
            await self._store.put_events(processed)
            await self._store.put_transactions(transactions)
        except StorageError as exc:
            log.error(
                "Persist failed, checkpoint stays at %s: %s", self._tracker.current, exc,
            )
            return self._finish(report, start_time, "persist_failed", str(exc))

        report.processed = len(processed)
        report.transactions = len(transactions)

        # 4. Advance
        self._state = LoopState.ADVANCING
        new_checkpoint = self._tracker.advance()
        self._checkpoints_processed += 1
        report.advanced_to = new_checkpoint
        try:
            await self._store.set_progress(new_checkpoint)
        except StorageError as exc:
            log.error("Could not save progress %d: %s", new_checkpoint, exc)
        await self._save_cursors(new_cursors)

        return self._finish(report, start_time, "ok")

    async def _fetch_events(self) -> tuple[list[RawEvent], dict[str, str]]:
        """Page every query; events are deduplicated across rules."""
        seen: set[tuple[str, int]] = set()
        events: list[RawEvent] = []
        new_cursors: dict[str, str] = {}

        for key, rule in self._queries():
            cursor = self._cursors.get(key)
            for _ in range(self._max_pages):
                page = await self._client.query_events(rule, cursor, self._page_size)
                for event in page.events:
                    if event.dedup_key not in seen:
                        seen.add(event.dedup_key)
                        events.append(event)
                cursor = page.next_cursor
                if not page.has_more:
                    break
            if cursor:
                new_cursors[key] = cursor

        log.debug("Fetched %d events across %d queries", len(events), len(self._queries()))
        return events, new_cursors

    async def _save_cursors(self, new_cursors: dict[str, str]) -> None:
        for key, cursor in new_cursors.items():
            if self._cursors.get(key) == cursor:
                continue
            self._cursors[key] = cursor
            try:
                await self._store.set_cursor(key, cursor)
            except StorageError as exc:
                log.warning("Could not save cursor for %s: %s", key, exc)

    def _finish(
        self,
        report: CycleReport,
        start_time: float,
        status: str,
        error: str | None = None,
    ) -> CycleReport:
        report.status = status
        report.error = error
        report.duration_ms = int((time.monotonic() - start_time) * 1000)
        report.completed_at = datetime.now(timezone.utc).isoformat()
        self._state = LoopState.IDLE
        self._last_report = report

        if report.ok:
            stats = self.stats()
            eta = stats.estimated_seconds_remaining
            log.info(
                "Cycle complete: %d fetched, %d processed, %d transactions,"
                " checkpoint %s/%s in %dms (%.2f checkpoints/s, eta %s)",
                report.fetched, report.processed, report.transactions,
                stats.current_checkpoint, stats.target_checkpoint, report.duration_ms,
                stats.processing_rate, f"{eta:.0f}s" if eta is not None else "n/a",
            )
        return report

    # ── Probes ─────────────────────────────────────────────

    async def health(self) -> IndexerHealth:
        node = await self._client.health()
        database = await self._store.health()
        return IndexerHealth(node=node, database=database)

    def stats(self) -> CheckpointStats:
        return CheckpointStats.calculate(self._tracker, self._checkpoints_processed, self._started)


def build_loop(cfg: IndexerConfig) -> IngestionLoop:
    """Construct the production pipeline from configuration."""
    client = SuiRpcClient(
        cfg.network.rpc_url,
        request_timeout=cfg.network.request_timeout,
        retry=RetryPolicy.from_config(cfg.network.retry),
    )
    store = SQLiteStorageGateway(cfg.database.path, cfg.database.health_timeout)
    transformer = EventTransformer(
        registry=default_registry(cfg.extensions.navi_packages),
        include_raw_bytes=cfg.events.include_raw_bytes,
    )
    coordinator = BatchCoordinator(
        FilterEngine(cfg.events.filters),
        transformer,
        batch_size=cfg.events.batch_size,
        max_concurrent_batches=cfg.events.max_concurrent_batches,
    )
    return IngestionLoop(
        client,
        store,
        coordinator,
        poll_interval=cfg.events.poll_interval,
        page_size=cfg.events.page_size,
        max_pages_per_cycle=cfg.events.max_pages_per_cycle,
        index_transactions=cfg.events.index_transactions,
        start_checkpoint=cfg.events.start_checkpoint,
    )


async def run_daemon(cfg: IndexerConfig) -> None:
    """Entry point for running the indexer."""
    loop = build_loop(cfg)
    log.info("  Network: %s", cfg.network.network)
    log.info("  RPC: %s", cfg.network.rpc_url)
    log.info("  Database: %s", cfg.database.path)
    log.info("  Rules: %d", len(cfg.events.filters))

    event_loop = asyncio.get_running_loop()

    def _signal_handler():
        asyncio.ensure_future(loop.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            event_loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    await loop.start()
