"""Sui JSON-RPC client - checkpoints, event queries and transaction lookups."""

from __future__ import annotations

import asyncio
import base64
import binascii
import itertools
import logging
import time
from typing import Any

import httpx

from sui_indexer.errors import RemoteError, RpcError
from sui_indexer.identifiers import split_type
from sui_indexer.models.config import RetryConfig
from sui_indexer.models.events import Checkpoint, EventPage, RawEvent, RawTransaction
from sui_indexer.models.records import HealthStatus
from sui_indexer.models.rules import FilterRule

log = logging.getLogger(__name__)

# sui_multiGetTransactionBlocks accepts at most 50 digests per request
MAX_DIGESTS_PER_CALL = 50


class RetryPolicy:
    """Exponential backoff around a single remote call."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay_ms: int = 1000,
        max_delay_ms: int = 10_000,
        backoff_multiplier: float = 2.0,
    ) -> None:
        self.max_attempts = max(1, max_attempts)
        self.initial_delay_ms = initial_delay_ms
        self.max_delay_ms = max_delay_ms
        self.backoff_multiplier = backoff_multiplier

    @classmethod
    def from_config(cls, cfg: RetryConfig) -> RetryPolicy:
        return cls(
            max_attempts=cfg.max_attempts,
            initial_delay_ms=cfg.initial_delay_ms,
            max_delay_ms=cfg.max_delay_ms,
            backoff_multiplier=cfg.backoff_multiplier,
        )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based)."""
        delay = self.initial_delay_ms * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_delay_ms) / 1000


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, httpx.TransportError):  # includes timeouts
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status >= 500 or status == 429
    return False


def encode_cursor(cursor: dict | None) -> str | None:
    """Node cursor ``{txDigest, eventSeq}`` -> ``"<txDigest>:<eventSeq>"``."""
    if not cursor:
        return None
    return f"{cursor['txDigest']}:{cursor['eventSeq']}"


def decode_cursor(cursor: str | None) -> dict | None:
    if not cursor:
        return None
    digest, _, seq = cursor.rpartition(":")
    if not digest or not seq:
        raise ValueError(f"malformed event cursor: {cursor!r}")
    return {"txDigest": digest, "eventSeq": seq}


def rule_to_query(rule: FilterRule | None) -> dict[str, Any]:
    """Translate a rule into the narrowest server-side event filter.

    The node filter is a coarse pre-selection; constraints it cannot express
    are re-applied locally by the FilterEngine.
    """
    if rule is None or rule.is_wildcard:
        return {"All": []}
    if rule.package and rule.module and rule.type_name:
        return {"MoveEventType": f"{rule.package}::{rule.module}::{rule.type_name}"}
    if rule.package and rule.module:
        return {"MoveEventModule": {"package": rule.package, "module": rule.module}}
    if rule.package:
        return {"Package": rule.package}
    if rule.sender:
        return {"Sender": rule.sender}
    return {"All": []}


def _opt_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _decode_bcs(raw: dict[str, Any]) -> bytes | None:
    bcs = raw.get("bcs")
    if not bcs or raw.get("bcsEncoding", "base58") != "base64":
        return None
    try:
        return base64.b64decode(bcs)
    except (binascii.Error, ValueError):
        log.debug("Could not decode bcs for event %s", raw.get("id"))
        return None


def parse_event(raw: dict[str, Any]) -> RawEvent:
    """Parse a SuiEvent JSON object into a RawEvent.

    Raises ValueError when the object does not have the shape of an event.
    """
    if not isinstance(raw, dict):
        raise ValueError(f"event is not an object: {raw!r}")
    event_id = raw.get("id")
    if not isinstance(event_id, dict):
        raise ValueError(f"event id is not an object: {event_id!r}")
    type_str = raw.get("type")
    if not isinstance(type_str, str):
        raise ValueError(f"event type is not a string: {type_str!r}")
    try:
        package_id, module, type_name = split_type(type_str)
    except ValueError:
        package_id = raw.get("packageId", "")
        module = raw.get("transactionModule", "")
        type_name = type_str

    return RawEvent(
        package_id=package_id,
        module=module,
        type_name=type_name,
        sender=raw.get("sender", ""),
        transaction_digest=event_id.get("txDigest", ""),
        event_index=int(event_id.get("eventSeq", 0)),
        payload=raw.get("parsedJson"),
        raw_bytes=_decode_bcs(raw),
        timestamp_ms=_opt_int(raw.get("timestampMs")),
    )


def parse_transaction(raw: dict[str, Any]) -> RawTransaction:
    """Parse a SuiTransactionBlockResponse (with effects and events)."""
    if not isinstance(raw, dict):
        raise ValueError(f"transaction is not an object: {raw!r}")
    effects = raw.get("effects")
    if not isinstance(effects, dict):
        effects = {}
    status = effects.get("status")
    status = status.get("status") if isinstance(status, dict) else None
    gas = effects.get("gasUsed")
    gas_used = None
    if isinstance(gas, dict):
        gas_used = int(gas.get("computationCost", 0)) + int(gas.get("storageCost", 0))
    return RawTransaction(
        digest=raw["digest"],
        checkpoint_sequence=_opt_int(raw.get("checkpoint")),
        timestamp_ms=_opt_int(raw.get("timestampMs")),
        success=status == "success",
        gas_used=gas_used,
        event_count=len(raw.get("events") or []),
    )


class SuiRpcClient:
    """Async JSON-RPC client for a Sui full node.

    Every call is wrapped in the retry policy; transport failures, timeouts
    and HTTP 5xx/429 are retried, JSON-RPC error objects are not.
    """

    def __init__(
        self,
        rpc_url: str,
        request_timeout: float = 30,
        retry: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._retry = retry or RetryPolicy()
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(request_timeout, connect=10),
        )
        self._ids = itertools.count(1)

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    async def close(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, params: list[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        attempts = self._retry.max_attempts

        for attempt in range(1, attempts + 1):
            try:
                resp = await self._client.post(self._rpc_url, json=payload)
                resp.raise_for_status()
                body = resp.json()
                break
            except (httpx.TransportError, httpx.HTTPStatusError) as exc:
                if _is_retryable(exc) and attempt < attempts:
                    delay = self._retry.delay_for(attempt)
                    log.warning(
                        "%s failed (attempt %d/%d): %s - retrying in %.1fs",
                        method, attempt, attempts, exc, delay,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise RemoteError(f"{method} failed after {attempt} attempt(s): {exc}") from exc
            except ValueError as exc:
                raise RemoteError(f"{method} returned invalid JSON: {exc}") from exc

        if not isinstance(body, dict):
            raise RemoteError(f"{method} returned a non-object response")
        if body.get("error") is not None:
            err = body["error"]
            if not isinstance(err, dict):
                raise RpcError(method, None, str(err))
            raise RpcError(method, err.get("code"), err.get("message", str(err)))
        if "result" not in body:
            raise RemoteError(f"{method} response has no result")
        return body["result"]

    async def latest_checkpoint(self) -> int:
        result = await self._call("sui_getLatestCheckpointSequenceNumber", [])
        try:
            return int(result)
        except (TypeError, ValueError) as exc:
            raise RemoteError(f"unexpected checkpoint number: {result!r}") from exc

    async def get_checkpoint(self, sequence: int) -> Checkpoint:
        raw = await self._call("sui_getCheckpoint", [str(sequence)])
        try:
            return Checkpoint(
                sequence=int(raw["sequenceNumber"]),
                digest=raw["digest"],
                previous_digest=raw.get("previousDigest"),
                epoch=int(raw.get("epoch", 0)),
                timestamp=int(raw.get("timestampMs", 0)),
                transaction_count=len(raw.get("transactions") or []),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteError(f"malformed checkpoint {sequence}: {exc}") from exc

    async def query_events(
        self, rule: FilterRule | None, cursor: str | None = None, limit: int = 50
    ) -> EventPage:
        query = rule_to_query(rule)
        result = await self._call(
            "suix_queryEvents", [query, decode_cursor(cursor), limit, False],
        )

        if not isinstance(result, dict):
            raise RemoteError(
                f"suix_queryEvents returned {type(result).__name__}, expected a page"
            )

        events: list[RawEvent] = []
        for raw in result.get("data") or []:
            try:
                events.append(parse_event(raw))
            except (KeyError, TypeError, ValueError) as exc:
                log.warning("Dropping unparsable event: %s", exc)

        page = EventPage(
            events=events,
            next_cursor=encode_cursor(result.get("nextCursor")) or cursor,
            has_more=bool(result.get("hasNextPage")),
        )
        log.debug(
            "query_events %s: %d events (cursor %s, more=%s)",
            query, len(events), page.next_cursor, page.has_more,
        )
        return page

    async def get_transactions(self, digests: list[str]) -> list[RawTransaction]:
        transactions: list[RawTransaction] = []
        options = {"showEffects": True, "showEvents": True}
        for i in range(0, len(digests), MAX_DIGESTS_PER_CALL):
            chunk = digests[i:i + MAX_DIGESTS_PER_CALL]
            result = await self._call("sui_multiGetTransactionBlocks", [chunk, options])
            if not isinstance(result, list):
                raise RemoteError(
                    f"sui_multiGetTransactionBlocks returned {type(result).__name__}, expected a list"
                )
            for raw in result:
                try:
                    transactions.append(parse_transaction(raw))
                except (KeyError, TypeError, ValueError) as exc:
                    log.warning("Dropping unparsable transaction: %s", exc)
        return transactions

    async def health(self) -> HealthStatus:
        start = time.monotonic()
        try:
            latest = await self.latest_checkpoint()
        except RemoteError as exc:
            log.error("Sui node health check failed: %s", exc)
            return HealthStatus(
                healthy=False,
                latency_ms=int((time.monotonic() - start) * 1000),
                error=str(exc),
            )
        return HealthStatus(
            healthy=True,
            latest_checkpoint=latest,
            latency_ms=int((time.monotonic() - start) * 1000),
        )
