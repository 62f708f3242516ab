"""Event selection, enrichment and batching."""

from sui_indexer.events.batch import BatchCoordinator
from sui_indexer.events.extensions import ExtensionRegistry, NaviLendingExtension, default_registry
from sui_indexer.events.filter import FilterEngine, FilterStats, matches, matching_rules
from sui_indexer.events.transformer import EventTransformer

__all__ = [
    "BatchCoordinator",
    "EventTransformer",
    "ExtensionRegistry", "NaviLendingExtension", "default_registry",
    "FilterEngine", "FilterStats", "matches", "matching_rules",
]
