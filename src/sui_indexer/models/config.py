"""Configuration models for the indexer."""

from __future__ import annotations

from dataclasses import dataclass, field

from sui_indexer.models.rules import FilterRule

NETWORK_RPC_URLS = {
    "mainnet": "https://fullnode.mainnet.sui.io:443",
    "testnet": "https://fullnode.testnet.sui.io:443",
    "devnet": "https://fullnode.devnet.sui.io:443",
    "localnet": "http://127.0.0.1:9000",
}

# Navi Protocol lending packages
DEFAULT_NAVI_PACKAGES = [
    "0x81c408448d0d57b3e371ea94de1d40bf852784d3e225de1e74acab3e8395c18f",
    "0xa99b8952d4f7d947ea77fe0ecdcc9e5fc0bcab2841d6e2a5aa00c3044e5544b5",
]


@dataclass
class RetryConfig:
    """Retry policy applied around each remote call."""

    max_attempts: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10_000
    backoff_multiplier: float = 2.0


@dataclass
class NetworkConfig:
    """Sui full node connection."""

    network: str = "testnet"
    rpc_url: str = NETWORK_RPC_URLS["testnet"]
    request_timeout: int = 30  # seconds
    retry: RetryConfig = field(default_factory=RetryConfig)


@dataclass
class DatabaseConfig:
    """State store location."""

    path: str = "~/.sui_indexer/indexer.db"
    health_timeout: int = 5  # seconds


@dataclass
class EventsConfig:
    """What to index and how fast."""

    start_checkpoint: int | None = None
    batch_size: int = 100
    max_concurrent_batches: int = 10
    poll_interval: int = 10  # seconds
    page_size: int = 50
    max_pages_per_cycle: int = 10
    index_transactions: bool = True
    include_raw_bytes: bool = False
    filters: list[FilterRule] = field(default_factory=list)


@dataclass
class ExtensionsConfig:
    """Protocol extension package ids."""

    navi_packages: list[str] = field(default_factory=lambda: list(DEFAULT_NAVI_PACKAGES))


@dataclass
class IndexerConfig:
    """Complete indexer configuration."""

    network: NetworkConfig = field(default_factory=NetworkConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    events: EventsConfig = field(default_factory=EventsConfig)
    extensions: ExtensionsConfig = field(default_factory=ExtensionsConfig)
    log_level: str = "info"
