"""ProtocolExtension protocol - package-specific enrichment of events."""

from __future__ import annotations

from typing import Any, Protocol

from sui_indexer.models.events import RawEvent
from sui_indexer.models.records import Enrichment


class ProtocolExtension(Protocol):
    """Adds domain fields and tags to events emitted by known packages."""

    name: str

    def package_ids(self) -> list[str]:
        """Packages this extension handles (any address form)."""
        ...

    def enrich(self, event: RawEvent, payload: dict[str, Any] | None) -> Enrichment:
        """Return extra fields and tags. ``payload`` is None when malformed."""
        ...
