"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

from sui_indexer.errors import ConfigError
from sui_indexer.identifiers import normalize_address
from sui_indexer.models.config import (
    NETWORK_RPC_URLS,
    IndexerConfig,
    RetryConfig,
)
from sui_indexer.models.rules import FilterRule

LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "SUI_INDEXER_",
) -> IndexerConfig:
    """Load indexer configuration from a TOML file and env vars.

    Priority (highest wins):
        1. Environment variables (SUI_INDEXER_RPC_URL, etc.)
        2. TOML config file
        3. Defaults from IndexerConfig

    Raises ConfigError if the result is invalid.
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            try:
                with open(p, "rb") as f:
                    raw = tomllib.load(f)
            except tomllib.TOMLDecodeError as exc:
                raise ConfigError(f"cannot parse {p}: {exc}") from exc

    try:
        cfg = _from_mapping(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid configuration value: {exc}") from exc

    # ── Environment variable overrides (highest priority) ──
    try:
        if net := os.environ.get(f"{env_prefix}NETWORK"):
            cfg.network.network = net
            if not os.environ.get(f"{env_prefix}RPC_URL") and net in NETWORK_RPC_URLS:
                cfg.network.rpc_url = NETWORK_RPC_URLS[net]
        if rpc := os.environ.get(f"{env_prefix}RPC_URL"):
            cfg.network.rpc_url = rpc
        if db := os.environ.get(f"{env_prefix}DB_PATH"):
            cfg.database.path = db
        if v := os.environ.get(f"{env_prefix}POLL_INTERVAL"):
            cfg.events.poll_interval = int(v)
        if v := os.environ.get(f"{env_prefix}START_CHECKPOINT"):
            cfg.events.start_checkpoint = int(v)
        if v := os.environ.get(f"{env_prefix}LOG_LEVEL"):
            cfg.log_level = v.lower()
    except ValueError as exc:
        raise ConfigError(f"invalid environment override: {exc}") from exc

    # Expand ~ in paths
    if cfg.database.path != ":memory:":
        cfg.database.path = str(Path(cfg.database.path).expanduser())

    validate(cfg)
    return cfg


def _from_mapping(raw: dict[str, Any]) -> IndexerConfig:
    cfg = IndexerConfig()

    # ── Network section ────────────────────────────────────
    network = _section(raw, "network")
    if v := network.get("network"):
        cfg.network.network = str(v)
        if v in NETWORK_RPC_URLS:
            cfg.network.rpc_url = NETWORK_RPC_URLS[v]
        else:
            cfg.network.rpc_url = ""
    if v := network.get("rpc_url"):
        cfg.network.rpc_url = str(v)
    if (v := network.get("request_timeout")) is not None:
        cfg.network.request_timeout = int(v)

    retry = _section(network, "retry", "network.")
    cfg.network.retry = RetryConfig(
        max_attempts=int(retry.get("max_attempts", 3)),
        initial_delay_ms=int(retry.get("initial_delay_ms", 1000)),
        max_delay_ms=int(retry.get("max_delay_ms", 10_000)),
        backoff_multiplier=float(retry.get("backoff_multiplier", 2.0)),
    )

    # ── Database section ───────────────────────────────────
    database = _section(raw, "database")
    if v := database.get("path"):
        cfg.database.path = str(v)
    if (v := database.get("health_timeout")) is not None:
        cfg.database.health_timeout = int(v)

    # ── Events section ─────────────────────────────────────
    events = _section(raw, "events")
    if (v := events.get("start_checkpoint")) is not None:
        cfg.events.start_checkpoint = int(v)
    for key in ("batch_size", "max_concurrent_batches", "poll_interval",
                "page_size", "max_pages_per_cycle"):
        if key in events:
            setattr(cfg.events, key, int(events[key]))
    if "index_transactions" in events:
        cfg.events.index_transactions = bool(events["index_transactions"])
    if "include_raw_bytes" in events:
        cfg.events.include_raw_bytes = bool(events["include_raw_bytes"])

    filters = events.get("filters", [])
    if not isinstance(filters, list):
        raise ConfigError("events.filters must be an array of tables")
    cfg.events.filters = [_parse_filter(i, f) for i, f in enumerate(filters)]

    # ── Extensions section ─────────────────────────────────
    extensions = _section(raw, "extensions")
    if "navi_packages" in extensions:
        packages = extensions["navi_packages"]
        if not isinstance(packages, list):
            raise ConfigError("extensions.navi_packages must be an array")
        try:
            cfg.extensions.navi_packages = [normalize_address(p) for p in packages]
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid navi package id: {exc}") from exc

    # ── Logging section ────────────────────────────────────
    logging_raw = _section(raw, "logging")
    if v := logging_raw.get("level"):
        cfg.log_level = str(v).lower()

    return cfg


def _section(raw: dict[str, Any], name: str, prefix: str = "") -> dict[str, Any]:
    section = raw.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"{prefix}{name} must be a table")
    return section


def _parse_filter(index: int, raw: Any) -> FilterRule:
    if not isinstance(raw, dict):
        raise ConfigError(f"events.filters[{index}] must be a table")
    try:
        return FilterRule.parse(raw)
    except ConfigError as exc:
        raise ConfigError(f"events.filters[{index}]: {exc}") from exc


def validate(cfg: IndexerConfig) -> None:
    """Reject a configuration the indexer cannot run with."""
    if not cfg.network.rpc_url:
        raise ConfigError(
            f"unknown network {cfg.network.network!r} and no rpc_url given"
            f" (known: {', '.join(NETWORK_RPC_URLS)})"
        )
    for key in ("batch_size", "max_concurrent_batches", "poll_interval",
                "page_size", "max_pages_per_cycle"):
        if getattr(cfg.events, key) < 1:
            raise ConfigError(f"events.{key} must be positive")
    if cfg.events.start_checkpoint is not None and cfg.events.start_checkpoint < 0:
        raise ConfigError("events.start_checkpoint must be >= 0")
    if cfg.network.request_timeout < 1:
        raise ConfigError("network.request_timeout must be positive")
    if cfg.database.health_timeout < 1:
        raise ConfigError("database.health_timeout must be positive")
    if cfg.network.retry.max_attempts < 1:
        raise ConfigError("network.retry.max_attempts must be >= 1")
    if cfg.network.retry.backoff_multiplier < 1:
        raise ConfigError("network.retry.backoff_multiplier must be >= 1")
    if cfg.log_level not in LOG_LEVELS:
        raise ConfigError(f"logging.level must be one of {', '.join(LOG_LEVELS)}")


EXAMPLE_CONFIG = """\
# sui_indexer configuration

[network]
network = "testnet"               # mainnet | testnet | devnet | localnet
# rpc_url = "https://fullnode.testnet.sui.io:443"
request_timeout = 30              # seconds

[network.retry]
max_attempts = 3
initial_delay_ms = 1000
max_delay_ms = 10000
backoff_multiplier = 2.0

[database]
path = "~/.sui_indexer/indexer.db"
health_timeout = 5                # seconds

[events]
# start_checkpoint = 0
batch_size = 100
max_concurrent_batches = 10
poll_interval = 10                # seconds between cycles
page_size = 50
max_pages_per_cycle = 10
index_transactions = true
include_raw_bytes = false

# Every set field must match; rules are OR-ed. No rules selects everything.
[[events.filters]]
name = "navi-deposits"
package = "0x81c408448d0d57b3e371ea94de1d40bf852784d3e225de1e74acab3e8395c18f"
module = "lending"
type_name = "DepositEvent"

[[events.filters]]
name = "coin-events"
type_name = "0x2::coin::CurrencyCreated"

[extensions]
navi_packages = [
    "0x81c408448d0d57b3e371ea94de1d40bf852784d3e225de1e74acab3e8395c18f",
    "0xa99b8952d4f7d947ea77fe0ecdcc9e5fc0bcab2841d6e2a5aa00c3044e5544b5",
]

[logging]
level = "info"
"""
