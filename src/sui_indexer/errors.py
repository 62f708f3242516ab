"""Exception types raised across sui_indexer."""

from __future__ import annotations


class IndexerError(Exception):
    """Base class for all indexer errors."""


class ConfigError(IndexerError):
    """Invalid or incomplete configuration. Fatal at load time."""


class RemoteError(IndexerError):
    """A call to the Sui full node failed (transport, timeout, bad response)."""


class RpcError(RemoteError):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, method: str, code: int | None, message: str) -> None:
        super().__init__(f"{method} failed ({code}): {message}")
        self.method = method
        self.code = code
        self.message = message


class StorageError(IndexerError):
    """A read or write against the state store failed."""
