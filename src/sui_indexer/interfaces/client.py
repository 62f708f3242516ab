"""ChainClient protocol - read access to a Sui full node."""

from __future__ import annotations

from typing import Protocol

from sui_indexer.models.events import Checkpoint, EventPage, RawTransaction
from sui_indexer.models.records import HealthStatus
from sui_indexer.models.rules import FilterRule


class ChainClient(Protocol):
    """Fallible, possibly slow remote calls against the chain."""

    async def latest_checkpoint(self) -> int:
        """Sequence number of the newest checkpoint the node knows about."""
        ...

    async def get_checkpoint(self, sequence: int) -> Checkpoint:
        ...

    async def query_events(
        self, rule: FilterRule | None, cursor: str | None = None, limit: int = 50
    ) -> EventPage:
        """One page of events selected by ``rule`` (None = all events), oldest first."""
        ...

    async def get_transactions(self, digests: list[str]) -> list[RawTransaction]:
        ...

    async def health(self) -> HealthStatus:
        ...

    async def close(self) -> None:
        ...
