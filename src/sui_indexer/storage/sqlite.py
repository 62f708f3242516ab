"""SQLite implementation of the StorageGateway protocol."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from sui_indexer.errors import StorageError
from sui_indexer.models.events import RawEvent
from sui_indexer.models.records import ProcessedEvent, ProcessedTransaction

log = logging.getLogger(__name__)

SCHEMA = """
-- Indexed events, one row per (transaction, event index)
CREATE TABLE IF NOT EXISTS events (
    id TEXT NOT NULL,
    transaction_digest TEXT NOT NULL,
    event_index INTEGER NOT NULL,
    checkpoint_sequence INTEGER NOT NULL,
    package_id TEXT NOT NULL,
    module TEXT NOT NULL,
    type_name TEXT NOT NULL,
    sender TEXT NOT NULL,
    payload TEXT,
    raw_bytes BLOB,
    source_timestamp_ms INTEGER,
    timestamp TEXT NOT NULL,
    canonical_fields TEXT NOT NULL,
    matched_rules TEXT NOT NULL DEFAULT '[]',
    tags TEXT NOT NULL DEFAULT '[]',
    processing_duration_ms INTEGER NOT NULL DEFAULT 0,
    processed_at TEXT NOT NULL,
    PRIMARY KEY (transaction_digest, event_index)
);
CREATE INDEX IF NOT EXISTS idx_events_checkpoint ON events(checkpoint_sequence, processed_at);
CREATE INDEX IF NOT EXISTS idx_events_package ON events(package_id);

-- Transactions that emitted indexed events
CREATE TABLE IF NOT EXISTS transactions (
    digest TEXT PRIMARY KEY,
    id TEXT NOT NULL,
    checkpoint_sequence INTEGER NOT NULL,
    timestamp TEXT NOT NULL,
    success INTEGER NOT NULL,
    gas_used INTEGER,
    event_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_transactions_checkpoint ON transactions(checkpoint_sequence);

-- Last fully processed checkpoint
CREATE TABLE IF NOT EXISTS checkpoint_progress (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    checkpoint INTEGER NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Per-rule event query cursors
CREATE TABLE IF NOT EXISTS event_cursors (
    key TEXT PRIMARY KEY,
    cursor TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str, sort_keys=True)


def _iso(value: datetime | None) -> str:
    return (value or datetime.now(timezone.utc)).isoformat()


class SQLiteStorageGateway:
    """SQLite-backed implementation of the StorageGateway protocol.

    Records are append-only: a second write of the same dedup key is a
    silent no-op, so the first write wins. Each batch is one transaction
    and is rolled back entirely on failure.
    """

    def __init__(self, db_path: str, health_timeout: float = 5) -> None:
        self._db_path = db_path
        self._health_timeout = health_timeout
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        path = self._db_path
        if path != ":memory:":
            path = str(Path(path).expanduser())
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._db = await aiosqlite.connect(path)
            self._db.row_factory = aiosqlite.Row
            await self._db.executescript(SCHEMA)
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"cannot open database {self._db_path}: {exc}") from exc
        log.debug("Opened database %s", self._db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("Store not initialized. Call initialize() first.")
        return self._db

    async def _write_many(self, sql: str, rows: list[tuple]) -> None:
        try:
            await self.db.executemany(sql, rows)
            await self.db.commit()
        except aiosqlite.Error as exc:
            await self.db.rollback()
            raise StorageError(f"write of {len(rows)} rows failed: {exc}") from exc

    # ── Records ────────────────────────────────────────────

    async def put_events(self, batch: list[ProcessedEvent]) -> None:
        if not batch:
            return
        rows = [
            (
                str(e.id), e.transaction_digest, e.event_index, e.checkpoint_sequence,
                e.source.package_id, e.source.module, e.source.type_name, e.source.sender,
                _dumps(e.source.payload) if e.source.payload is not None else None,
                e.source.raw_bytes, e.source.timestamp_ms,
                e.timestamp.isoformat(), _dumps(e.canonical_fields),
                json.dumps(e.matched_rules), json.dumps(e.tags),
                e.processing_duration_ms, _iso(e.processed_at),
            )
            for e in batch
        ]
        await self._write_many(
            "INSERT INTO events"
            " (id, transaction_digest, event_index, checkpoint_sequence,"
            "  package_id, module, type_name, sender, payload, raw_bytes,"
            "  source_timestamp_ms, timestamp, canonical_fields, matched_rules,"
            "  tags, processing_duration_ms, processed_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
            " ON CONFLICT(transaction_digest, event_index) DO NOTHING",
            rows,
        )
        log.debug("Stored batch of %d events", len(batch))

    async def put_transactions(self, batch: list[ProcessedTransaction]) -> None:
        if not batch:
            return
        rows = [
            (
                t.digest, str(t.id), t.checkpoint_sequence, t.timestamp.isoformat(),
                int(t.success), t.gas_used, t.event_count, _now(),
            )
            for t in batch
        ]
        await self._write_many(
            "INSERT INTO transactions"
            " (digest, id, checkpoint_sequence, timestamp, success, gas_used,"
            "  event_count, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?)"
            " ON CONFLICT(digest) DO NOTHING",
            rows,
        )
        log.debug("Stored batch of %d transactions", len(batch))

    async def get_events_in_range(self, start: int, end: int) -> list[ProcessedEvent]:
        if start > end:
            raise ValueError(f"invalid range: start {start} > end {end}")
        try:
            async with self.db.execute(
                "SELECT * FROM events WHERE checkpoint_sequence BETWEEN ? AND ?"
                " ORDER BY checkpoint_sequence, processed_at",
                (start, end),
            ) as cur:
                return [_row_to_event(row) async for row in cur]
        except aiosqlite.Error as exc:
            raise StorageError(f"range query {start}..{end} failed: {exc}") from exc

    async def count_events(self) -> int:
        return await self._count("events")

    async def count_transactions(self) -> int:
        return await self._count("transactions")

    async def _count(self, table: str) -> int:
        try:
            async with self.db.execute(f"SELECT COUNT(*) as c FROM {table}") as cur:
                row = await cur.fetchone()
                return row["c"] if row else 0
        except aiosqlite.Error as exc:
            raise StorageError(f"count of {table} failed: {exc}") from exc

    # ── Progress ───────────────────────────────────────────

    async def get_progress(self) -> int | None:
        try:
            async with self.db.execute(
                "SELECT checkpoint FROM checkpoint_progress WHERE id=1"
            ) as cur:
                row = await cur.fetchone()
                return row["checkpoint"] if row else None
        except aiosqlite.Error as exc:
            raise StorageError(f"cannot read progress: {exc}") from exc

    async def set_progress(self, checkpoint: int) -> None:
        try:
            await self.db.execute(
                "INSERT INTO checkpoint_progress (id, checkpoint, updated_at) VALUES (1, ?, ?)"
                " ON CONFLICT(id) DO UPDATE SET checkpoint=excluded.checkpoint,"
                " updated_at=excluded.updated_at",
                (checkpoint, _now()),
            )
            await self.db.commit()
        except aiosqlite.Error as exc:
            await self.db.rollback()
            raise StorageError(f"cannot write progress {checkpoint}: {exc}") from exc

    async def get_cursor(self, key: str) -> str | None:
        try:
            async with self.db.execute(
                "SELECT cursor FROM event_cursors WHERE key=?", (key,)
            ) as cur:
                row = await cur.fetchone()
                return row["cursor"] if row else None
        except aiosqlite.Error as exc:
            raise StorageError(f"cannot read cursor {key}: {exc}") from exc

    async def set_cursor(self, key: str, cursor: str) -> None:
        try:
            await self.db.execute(
                "INSERT INTO event_cursors (key, cursor, updated_at) VALUES (?, ?, ?)"
                " ON CONFLICT(key) DO UPDATE SET cursor=excluded.cursor,"
                " updated_at=excluded.updated_at",
                (key, cursor, _now()),
            )
            await self.db.commit()
        except aiosqlite.Error as exc:
            await self.db.rollback()
            raise StorageError(f"cannot write cursor {key}: {exc}") from exc

    # ── Probes ─────────────────────────────────────────────

    async def health(self) -> bool:
        if self._db is None:
            return False
        try:
            await asyncio.wait_for(self._ping(), timeout=self._health_timeout)
        except (asyncio.TimeoutError, aiosqlite.Error, ValueError) as exc:
            log.error("Database health check failed: %s", exc)
            return False
        return True

    async def _ping(self) -> None:
        async with self.db.execute("SELECT 1") as cur:
            await cur.fetchone()


# ── Row converters ─────────────────────────────────────────


def _row_to_event(row: aiosqlite.Row) -> ProcessedEvent:
    source = RawEvent(
        package_id=row["package_id"],
        module=row["module"],
        type_name=row["type_name"],
        sender=row["sender"],
        transaction_digest=row["transaction_digest"],
        event_index=row["event_index"],
        payload=json.loads(row["payload"]) if row["payload"] is not None else None,
        raw_bytes=row["raw_bytes"],
        timestamp_ms=row["source_timestamp_ms"],
    )
    return ProcessedEvent(
        id=uuid.UUID(row["id"]),
        source=source,
        checkpoint_sequence=row["checkpoint_sequence"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        canonical_fields=json.loads(row["canonical_fields"]),
        matched_rules=json.loads(row["matched_rules"]),
        tags=json.loads(row["tags"]),
        processing_duration_ms=row["processing_duration_ms"],
        processed_at=datetime.fromisoformat(row["processed_at"]),
    )
