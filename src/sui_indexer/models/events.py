"""Chain-side models: checkpoints, raw events and transactions read from a Sui node."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sui_indexer.identifiers import canonical_or_raw


@dataclass(frozen=True)
class Checkpoint:
    """A checkpoint summary as published by the chain."""

    sequence: int
    digest: str
    previous_digest: str | None
    epoch: int
    timestamp: int  # ms since epoch
    transaction_count: int


@dataclass(frozen=True)
class CheckpointContext:
    """The checkpoint a cycle attributes its records to."""

    sequence: int
    timestamp_ms: int | None = None


@dataclass(frozen=True)
class RawEvent:
    """A Move event as received from the node. Immutable once received.

    ``package_id`` and ``sender`` are stored in canonical address form so
    that matching is a plain string comparison.
    """

    package_id: str
    module: str
    type_name: str
    sender: str
    transaction_digest: str
    event_index: int
    payload: Any = None  # parsed JSON, opaque
    raw_bytes: bytes | None = None
    timestamp_ms: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "package_id", canonical_or_raw(self.package_id))
        object.__setattr__(self, "sender", canonical_or_raw(self.sender))

    @property
    def dedup_key(self) -> tuple[str, int]:
        return (self.transaction_digest, self.event_index)


@dataclass(frozen=True)
class RawTransaction:
    """Summary of a transaction block as read from the node."""

    digest: str
    checkpoint_sequence: int | None = None
    timestamp_ms: int | None = None
    success: bool = False
    gas_used: int | None = None
    event_count: int = 0


@dataclass
class EventPage:
    """One page of a ``query_events`` call."""

    events: list[RawEvent] = field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False
