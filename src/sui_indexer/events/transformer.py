"""Event transformer - canonicalizes raw events into persisted records."""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Sequence

from sui_indexer.events.extensions import ExtensionRegistry
from sui_indexer.models.events import CheckpointContext, RawEvent, RawTransaction
from sui_indexer.models.records import ProcessedEvent, ProcessedTransaction

log = logging.getLogger(__name__)

MALFORMED_PAYLOAD_TAG = "malformed_payload"
EXTENSION_ERROR_TAG = "extension_error"


def _from_ms(ms: int | None) -> datetime | None:
    if ms is None:
        return None
    try:
        return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _append_unique(tags: list[str], new: Sequence[str]) -> None:
    for tag in new:
        if tag not in tags:
            tags.append(tag)


class EventTransformer:
    """Turns a RawEvent into a ProcessedEvent.

    Output is deterministic apart from ``id`` and the timing fields. A bad
    event never raises: a payload that is not a JSON object degrades to the
    base fields plus a ``malformed_payload`` tag, and a failing extension
    degrades to an ``extension_error`` tag.
    """

    def __init__(
        self,
        registry: ExtensionRegistry | None = None,
        include_raw_bytes: bool = False,
        extract_protocol_fields: bool = True,
    ) -> None:
        self._registry = registry or ExtensionRegistry()
        self._include_raw_bytes = include_raw_bytes
        self._extract_protocol_fields = extract_protocol_fields

    @property
    def registry(self) -> ExtensionRegistry:
        return self._registry

    def transform(
        self,
        event: RawEvent,
        context: CheckpointContext,
        matched_rules: Sequence[str] = (),
    ) -> ProcessedEvent:
        start = time.monotonic()

        payload = event.payload if isinstance(event.payload, dict) else None
        fields: dict[str, Any] = dict(payload) if payload is not None else {}
        tags = [event.module] if event.module else []
        if payload is None:
            log.debug(
                "Malformed payload for %s#%d (%s)",
                event.transaction_digest, event.event_index, type(event.payload).__name__,
            )
            tags.append(MALFORMED_PAYLOAD_TAG)

        # Base fields win over payload keys of the same name
        fields.update(
            package_id=event.package_id,
            module=event.module,
            type_name=event.type_name,
            sender=event.sender,
            transaction_digest=event.transaction_digest,
            event_index=event.event_index,
        )
        if event.timestamp_ms is not None:
            fields["timestamp_ms"] = event.timestamp_ms
        if self._include_raw_bytes and event.raw_bytes:
            fields["raw_bytes"] = event.raw_bytes.hex()

        if self._extract_protocol_fields:
            self._apply_extension(event, payload, fields, tags)

        now = datetime.now(timezone.utc)
        timestamp = _from_ms(event.timestamp_ms) or _from_ms(context.timestamp_ms) or now

        return ProcessedEvent(
            id=uuid.uuid4(),
            source=event,
            checkpoint_sequence=context.sequence,
            timestamp=timestamp,
            canonical_fields=fields,
            matched_rules=list(matched_rules),
            tags=tags,
            processing_duration_ms=int((time.monotonic() - start) * 1000),
            processed_at=now,
        )

    def _apply_extension(
        self,
        event: RawEvent,
        payload: dict[str, Any] | None,
        fields: dict[str, Any],
        tags: list[str],
    ) -> None:
        extension = self._registry.lookup(event.package_id)
        if extension is None:
            return
        try:
            enrichment = extension.enrich(event, payload)
        except Exception as exc:
            log.warning(
                "Extension %s failed on %s#%d: %s",
                extension.name, event.transaction_digest, event.event_index, exc,
            )
            _append_unique(tags, [EXTENSION_ERROR_TAG])
            return
        fields.update(enrichment.fields)
        _append_unique(tags, enrichment.tags)

    def summarize_transaction(
        self, tx: RawTransaction, context: CheckpointContext
    ) -> ProcessedTransaction:
        """Aggregate record for a transaction that emitted indexed events."""
        checkpoint = tx.checkpoint_sequence
        return ProcessedTransaction(
            id=uuid.uuid4(),
            digest=tx.digest,
            checkpoint_sequence=checkpoint if checkpoint is not None else context.sequence,
            timestamp=(
                _from_ms(tx.timestamp_ms)
                or _from_ms(context.timestamp_ms)
                or datetime.now(timezone.utc)
            ),
            success=tx.success,
            gas_used=tx.gas_used,
            event_count=tx.event_count,
        )
