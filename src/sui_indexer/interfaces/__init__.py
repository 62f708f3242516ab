"""Protocol interfaces for sui_indexer components."""

from sui_indexer.interfaces.client import ChainClient
from sui_indexer.interfaces.extension import ProtocolExtension
from sui_indexer.interfaces.store import StorageGateway

__all__ = ["ChainClient", "ProtocolExtension", "StorageGateway"]
