"""SuiRpcClient against a local fake full node."""

from __future__ import annotations

import base64

import pytest
from aiohttp import web

from sui_indexer.errors import RemoteError, RpcError
from sui_indexer.models.rules import FilterRule
from sui_indexer.sui.client import (
    MAX_DIGESTS_PER_CALL,
    RetryPolicy,
    SuiRpcClient,
    decode_cursor,
    encode_cursor,
    parse_event,
    parse_transaction,
    rule_to_query,
)
from tests.conftest import FAKE_NODE_PORT, FAKE_NODE_URL
from tests.factories import ABC_PACKAGE, SENDER

EVENT_JSON = {
    "id": {"txDigest": "DIGEST1", "eventSeq": "2"},
    "packageId": "0xabc",
    "transactionModule": "lending",
    "sender": "0x5e",
    "type": "0xabc::lending::DepositEvent<0x2::sui::SUI>",
    "parsedJson": {"amount": "100"},
    "bcsEncoding": "base64",
    "bcs": base64.b64encode(b"\x01\x02").decode(),
    "timestampMs": "1700000000000",
}


class FakeNode:
    """Minimal Sui JSON-RPC endpoint with scripted failures."""

    def __init__(self) -> None:
        self.requests: list[dict] = []
        self.fail_with_status: list[int] = []
        self.rpc_error: dict | None = None
        self.events = [EVENT_JSON]
        self.next_cursor: dict | None = {"txDigest": "DIGEST1", "eventSeq": "2"}
        # Canned results by method, returned verbatim
        self.results: dict[str, object] = {}

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append(body)
        if self.fail_with_status:
            return web.Response(status=self.fail_with_status.pop(0))
        if self.rpc_error is not None:
            return web.json_response({"jsonrpc": "2.0", "id": body["id"], "error": self.rpc_error})
        if body["method"] in self.results:
            result = self.results[body["method"]]
        else:
            result = self._result(body)
        return web.json_response({"jsonrpc": "2.0", "id": body["id"], "result": result})

    def _result(self, body: dict):
        method, params = body["method"], body["params"]
        if method == "sui_getLatestCheckpointSequenceNumber":
            return "105"
        if method == "sui_getCheckpoint":
            return {
                "sequenceNumber": params[0],
                "digest": "CPDIGEST",
                "previousDigest": "PREV",
                "epoch": "3",
                "timestampMs": "1700000000000",
                "transactions": ["a", "b"],
            }
        if method == "suix_queryEvents":
            return {
                "data": self.events,
                "nextCursor": self.next_cursor,
                "hasNextPage": False,
            }
        if method == "sui_multiGetTransactionBlocks":
            return [
                {
                    "digest": d,
                    "checkpoint": "105",
                    "timestampMs": "1700000000000",
                    "effects": {
                        "status": {"status": "success"},
                        "gasUsed": {"computationCost": "1000", "storageCost": "500"},
                    },
                    "events": [EVENT_JSON],
                }
                for d in params[0]
            ]
        raise AssertionError(f"unexpected method {method}")


@pytest.fixture
async def fake_node():
    node = FakeNode()
    app = web.Application()
    app.router.add_post("/", node.handle)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", FAKE_NODE_PORT)
    await site.start()
    yield node
    await runner.cleanup()


@pytest.fixture
async def client():
    c = SuiRpcClient(
        FAKE_NODE_URL + "/",
        request_timeout=5,
        retry=RetryPolicy(max_attempts=3, initial_delay_ms=1, max_delay_ms=5),
    )
    yield c
    await c.close()


# ── Test 1: Basic calls ───────────────────────────────────────────


async def test_latest_checkpoint(fake_node, client):
    assert await client.latest_checkpoint() == 105
    request = fake_node.requests[0]
    assert request["jsonrpc"] == "2.0"
    assert request["method"] == "sui_getLatestCheckpointSequenceNumber"


async def test_get_checkpoint(fake_node, client):
    checkpoint = await client.get_checkpoint(105)
    assert checkpoint.sequence == 105
    assert checkpoint.epoch == 3
    assert checkpoint.timestamp == 1_700_000_000_000
    assert checkpoint.transaction_count == 2
    assert fake_node.requests[0]["params"] == ["105"]


async def test_query_events(fake_node, client):
    rule = FilterRule.parse({"package": "0xabc", "module": "lending"})
    page = await client.query_events(rule, "PREVDIGEST:7", limit=20)

    assert fake_node.requests[0]["params"] == [
        {"MoveEventModule": {"package": ABC_PACKAGE, "module": "lending"}},
        {"txDigest": "PREVDIGEST", "eventSeq": "7"},
        20,
        False,
    ]
    [event] = page.events
    assert event.package_id == ABC_PACKAGE
    assert event.module == "lending"
    assert event.type_name == "DepositEvent"
    assert event.sender == SENDER
    assert event.dedup_key == ("DIGEST1", 2)
    assert event.payload == {"amount": "100"}
    assert event.raw_bytes == b"\x01\x02"
    assert event.timestamp_ms == 1_700_000_000_000
    assert page.next_cursor == "DIGEST1:2"
    assert page.has_more is False


async def test_empty_page_keeps_cursor(fake_node, client):
    fake_node.events = []
    fake_node.next_cursor = None
    page = await client.query_events(None, "D:1")
    assert page.events == []
    assert page.next_cursor == "D:1"
    assert fake_node.requests[0]["params"][0] == {"All": []}


async def test_malformed_events_are_dropped(fake_node, client):
    good = dict(EVENT_JSON, id={"txDigest": "DIGEST2", "eventSeq": "3"})
    fake_node.events = [
        dict(EVENT_JSON, type=None),
        dict(EVENT_JSON, id="DIGEST1"),
        dict(EVENT_JSON, id={"txDigest": "DIGEST1", "eventSeq": "first"}),
        "not-an-event",
        good,
    ]

    page = await client.query_events(None)

    assert [e.dedup_key for e in page.events] == [("DIGEST2", 3)]
    assert page.next_cursor == "DIGEST1:2"


async def test_null_event_page_is_remote_error(fake_node, client):
    fake_node.results["suix_queryEvents"] = None
    with pytest.raises(RemoteError, match="expected a page"):
        await client.query_events(None, "D:1")


async def test_non_list_transaction_result_is_remote_error(fake_node, client):
    fake_node.results["sui_multiGetTransactionBlocks"] = {"digest": "tx0"}
    with pytest.raises(RemoteError, match="expected a list"):
        await client.get_transactions(["tx0"])


async def test_malformed_transactions_are_dropped(fake_node, client):
    fake_node.results["sui_multiGetTransactionBlocks"] = [
        None,
        {"effects": {}},
        {"digest": "tx1", "effects": "oops"},
    ]
    [tx] = await client.get_transactions(["tx0", "tx1"])
    assert tx.digest == "tx1"
    assert tx.success is False


async def test_get_transactions_chunks_requests(fake_node, client):
    digests = [f"tx{i}" for i in range(MAX_DIGESTS_PER_CALL + 10)]
    txs = await client.get_transactions(digests)

    assert [t.digest for t in txs] == digests
    assert [len(r["params"][0]) for r in fake_node.requests] == [MAX_DIGESTS_PER_CALL, 10]
    assert fake_node.requests[0]["params"][1] == {"showEffects": True, "showEvents": True}
    assert txs[0].gas_used == 1500
    assert txs[0].success is True
    assert txs[0].event_count == 1
    assert txs[0].checkpoint_sequence == 105


# ── Test 2: Retry behaviour ───────────────────────────────────────


async def test_retries_server_errors(fake_node, client):
    fake_node.fail_with_status = [503, 502]
    assert await client.latest_checkpoint() == 105
    assert len(fake_node.requests) == 3


async def test_retries_rate_limit(fake_node, client):
    fake_node.fail_with_status = [429]
    assert await client.latest_checkpoint() == 105
    assert len(fake_node.requests) == 2


async def test_gives_up_after_max_attempts(fake_node, client):
    fake_node.fail_with_status = [500, 500, 500, 500]
    with pytest.raises(RemoteError, match="after 3 attempt"):
        await client.latest_checkpoint()
    assert len(fake_node.requests) == 3


async def test_client_errors_are_not_retried(fake_node, client):
    fake_node.fail_with_status = [400]
    with pytest.raises(RemoteError):
        await client.latest_checkpoint()
    assert len(fake_node.requests) == 1


async def test_rpc_error_is_not_retried(fake_node, client):
    fake_node.rpc_error = {"code": -32602, "message": "Invalid params"}
    with pytest.raises(RpcError) as info:
        await client.query_events(None)
    assert info.value.code == -32602
    assert len(fake_node.requests) == 1


async def test_unreachable_node():
    c = SuiRpcClient(
        "http://127.0.0.1:9",
        retry=RetryPolicy(max_attempts=2, initial_delay_ms=1, max_delay_ms=1),
    )
    try:
        with pytest.raises(RemoteError):
            await c.latest_checkpoint()
        status = await c.health()
        assert status.healthy is False
        assert status.error
    finally:
        await c.close()


async def test_health(fake_node, client):
    status = await client.health()
    assert status.healthy
    assert status.latest_checkpoint == 105
    assert status.latency_ms is not None


# ── Test 3: Pure helpers ──────────────────────────────────────────


def test_rule_to_query_mapping():
    assert rule_to_query(None) == {"All": []}
    assert rule_to_query(FilterRule()) == {"All": []}
    assert rule_to_query(FilterRule(package="0xabc", module="m", type_name="T")) == {
        "MoveEventType": f"{ABC_PACKAGE}::m::T",
    }
    assert rule_to_query(FilterRule(package="0xabc", module="m")) == {
        "MoveEventModule": {"package": ABC_PACKAGE, "module": "m"},
    }
    assert rule_to_query(FilterRule(package="0xabc", type_name="T")) == {"Package": ABC_PACKAGE}
    assert rule_to_query(FilterRule(sender="0x5e")) == {"Sender": SENDER}
    assert rule_to_query(FilterRule(module="m")) == {"All": []}


def test_cursor_encoding():
    assert encode_cursor({"txDigest": "abc", "eventSeq": "4"}) == "abc:4"
    assert encode_cursor(None) is None
    assert decode_cursor("abc:4") == {"txDigest": "abc", "eventSeq": "4"}
    assert decode_cursor(None) is None
    with pytest.raises(ValueError):
        decode_cursor("no-separator")


def test_retry_delays_are_capped():
    policy = RetryPolicy(max_attempts=5, initial_delay_ms=100, max_delay_ms=250)
    assert policy.delay_for(1) == pytest.approx(0.1)
    assert policy.delay_for(2) == pytest.approx(0.2)
    assert policy.delay_for(3) == pytest.approx(0.25)


def test_parse_event_falls_back_for_unqualified_type():
    raw = dict(EVENT_JSON, type="Weird")
    event = parse_event(raw)
    assert event.package_id == ABC_PACKAGE
    assert event.module == "lending"
    assert event.type_name == "Weird"


def test_parse_failed_transaction():
    tx = parse_transaction({"digest": "d", "effects": {"status": {"status": "failure"}}})
    assert tx.success is False
    assert tx.gas_used is None
    assert tx.event_count == 0
