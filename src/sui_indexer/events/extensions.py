"""Protocol extensions - package-keyed enrichment of canonical event fields."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from sui_indexer.identifiers import canonical_or_raw
from sui_indexer.interfaces.extension import ProtocolExtension
from sui_indexer.models.config import DEFAULT_NAVI_PACKAGES
from sui_indexer.models.events import RawEvent
from sui_indexer.models.records import Enrichment

log = logging.getLogger(__name__)


class ExtensionRegistry:
    """Maps a package id to the extension that understands its events."""

    def __init__(self, extensions: Iterable[ProtocolExtension] = ()) -> None:
        self._by_package: dict[str, ProtocolExtension] = {}
        for ext in extensions:
            self.register(ext)

    def register(self, extension: ProtocolExtension) -> None:
        for package_id in extension.package_ids():
            key = canonical_or_raw(package_id)
            existing = self._by_package.get(key)
            if existing is not None and existing is not extension:
                log.warning(
                    "Package %s moved from extension %s to %s",
                    key, existing.name, extension.name,
                )
            self._by_package[key] = extension

    def lookup(self, package_id: str) -> ProtocolExtension | None:
        return self._by_package.get(canonical_or_raw(package_id))


# Navi event struct name -> action
_NAVI_ACTIONS = {
    "DepositEvent": "deposit",
    "WithdrawEvent": "withdraw",
    "BorrowEvent": "borrow",
    "RepayEvent": "repay",
    "LiquidationEvent": "liquidation",
}

# payload key -> canonical field
_NAVI_FIELDS = {
    "amount": "amount",
    "asset_id": "asset_id",
    "coin_type": "coin_type",
    "user": "user_address",
    "pool_id": "pool_id",
}


class NaviLendingExtension:
    """Navi Protocol lending markets: deposit/withdraw/borrow/repay/liquidation."""

    name = "navi"

    def __init__(self, packages: Iterable[str] | None = None) -> None:
        self._packages = list(packages) if packages is not None else list(DEFAULT_NAVI_PACKAGES)

    def package_ids(self) -> list[str]:
        return list(self._packages)

    def enrich(self, event: RawEvent, payload: dict[str, Any] | None) -> Enrichment:
        action = _NAVI_ACTIONS.get(event.type_name, "unknown")
        fields: dict[str, Any] = {"protocol": "navi", "action": action}
        if payload:
            for source, target in _NAVI_FIELDS.items():
                if source in payload:
                    fields[target] = payload[source]

        tags = ["navi", "lending"]
        if action != "unknown":
            tags.append(action)
        return Enrichment(fields=fields, tags=tags)


def default_registry(navi_packages: Iterable[str] | None = None) -> ExtensionRegistry:
    """Registry with every built-in extension."""
    return ExtensionRegistry([NaviLendingExtension(navi_packages)])
