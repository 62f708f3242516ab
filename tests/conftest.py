"""Shared fixtures for sui_indexer tests."""

from __future__ import annotations

import pytest
from pytest_metadata.plugin import metadata_key

from sui_indexer.daemon import IngestionLoop
from sui_indexer.events.batch import BatchCoordinator
from sui_indexer.events.extensions import default_registry
from sui_indexer.events.filter import FilterEngine
from sui_indexer.events.transformer import EventTransformer
from sui_indexer.models.config import (
    DEFAULT_NAVI_PACKAGES,
    DatabaseConfig,
    EventsConfig,
    IndexerConfig,
    NetworkConfig,
    RetryConfig,
)
from sui_indexer.models.rules import FilterRule
from sui_indexer.storage.sqlite import SQLiteStorageGateway

from tests.mocks import MockChainClient, MockStore

FAKE_NODE_PORT = 9199
FAKE_NODE_URL = f"http://127.0.0.1:{FAKE_NODE_PORT}"


# ── Report metadata & explorer links ─────────────────────────────


def pytest_configure(config):
    """Add pipeline info to the HTML report Environment table."""
    meta = config.stash.setdefault(metadata_key, {})
    meta["Network"] = "Sui (mocked full node)"
    meta["Fake node"] = FAKE_NODE_URL
    meta["Database"] = "SQLite :memory:"


def suiscan_link(kind: str, value: str, network: str = "mainnet") -> str:
    """Build a Suiscan explorer link for an object or account."""
    url = f"https://suiscan.xyz/{network}/{kind}/{value}"
    return f'<a href="{url}" target="_blank">{value[:10]}...{value[-6:]}</a>'


def pytest_html_results_summary(prefix, summary, postfix):
    """Link the protocol packages the tests enrich in the report summary."""
    links = "<br/>".join(
        f"Navi package: {suiscan_link('object', package)}" for package in DEFAULT_NAVI_PACKAGES
    )
    prefix.append(
        '<div style="margin:8px 0;padding:10px;background:#f8f9fa;border:1px solid #dee2e6;'
        'border-radius:4px;font-family:monospace;font-size:13px;">'
        "<strong>Sui Explorer Links</strong><br/>"
        f"Fake node: {FAKE_NODE_URL}<br/>"
        f"{links}"
        "</div>"
    )


def make_test_config(**overrides) -> IndexerConfig:
    """Build an IndexerConfig suitable for testing."""
    events = dict(
        batch_size=10,
        max_concurrent_batches=2,
        poll_interval=1,
        page_size=50,
        max_pages_per_cycle=10,
        filters=[],
    )
    events.update(overrides.pop("events", {}))
    defaults = dict(
        network=NetworkConfig(
            network="localnet",
            rpc_url=FAKE_NODE_URL,
            request_timeout=5,
            retry=RetryConfig(max_attempts=3, initial_delay_ms=1, max_delay_ms=5),
        ),
        database=DatabaseConfig(path=":memory:", health_timeout=1),
        events=EventsConfig(**events),
    )
    defaults.update(overrides)
    return IndexerConfig(**defaults)


def make_loop(
    client: MockChainClient,
    store,
    rules: list[FilterRule] | None = None,
    batch_size: int = 10,
    max_concurrent_batches: int = 2,
    **kwargs,
) -> IngestionLoop:
    """Wire an IngestionLoop around the given collaborators."""
    coordinator = BatchCoordinator(
        FilterEngine(rules or []),
        EventTransformer(registry=default_registry()),
        batch_size=batch_size,
        max_concurrent_batches=max_concurrent_batches,
    )
    kwargs.setdefault("poll_interval", 0.05)
    return IngestionLoop(client, store, coordinator, **kwargs)


@pytest.fixture
def test_config():
    """Default IndexerConfig for tests."""
    return make_test_config()


@pytest.fixture
async def store():
    """Initialized in-memory SQLiteStorageGateway."""
    s = SQLiteStorageGateway(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def mock_client():
    return MockChainClient(latest=105)


@pytest.fixture
def mock_store():
    return MockStore()


@pytest.fixture
def deposit_rule():
    """The rule from the end-to-end scenario: package 0xabc, DepositEvent."""
    return FilterRule.parse({"package": "0xabc", "type_name": "DepositEvent"})


@pytest.fixture
def loop(mock_client, store, deposit_rule):
    """IngestionLoop with a mocked node and a real in-memory store."""
    return make_loop(mock_client, store, [deposit_rule])

