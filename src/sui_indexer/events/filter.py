"""Event filter - selects raw events matching configured rules."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from sui_indexer.models.events import RawEvent
from sui_indexer.models.rules import FilterRule

log = logging.getLogger(__name__)


def rule_matches(event: RawEvent, rule: FilterRule) -> bool:
    """True if every field set on ``rule`` equals the event's field."""
    if rule.package is not None and event.package_id != rule.package:
        return False
    if rule.module is not None and event.module != rule.module:
        return False
    if rule.type_name is not None and event.type_name != rule.type_name:
        return False
    if rule.sender is not None and event.sender != rule.sender:
        return False
    return True


def matches(event: RawEvent, rules: Sequence[FilterRule]) -> bool:
    """Logical OR over ``rules``; an empty rule set selects everything."""
    if not rules:
        return True
    return any(rule_matches(event, rule) for rule in rules)


def matching_rules(event: RawEvent, rules: Sequence[FilterRule]) -> list[str]:
    """Labels of every rule the event matches, in rule order."""
    return [rule.label for rule in rules if rule_matches(event, rule)]


@dataclass
class FilterStats:
    """How many rules constrain each event field."""

    total_filters: int = 0
    package_filters: int = 0
    module_filters: int = 0
    type_filters: int = 0
    sender_filters: int = 0


class FilterEngine:
    """Holds a validated rule set and applies it to raw events.

    Rules are normalized when they are parsed from configuration, so
    matching here is plain string equality and never fails.
    """

    def __init__(self, rules: Iterable[FilterRule] = ()) -> None:
        self._rules: tuple[FilterRule, ...] = tuple(rules)

    @property
    def rules(self) -> tuple[FilterRule, ...]:
        return self._rules

    def has_filters(self) -> bool:
        return bool(self._rules)

    def matches(self, event: RawEvent) -> bool:
        return matches(event, self._rules)

    def matching_rules(self, event: RawEvent) -> list[str]:
        return matching_rules(event, self._rules)

    def select(self, events: Iterable[RawEvent]) -> list[RawEvent]:
        selected = [event for event in events if self.matches(event)]
        log.debug("Filter selected %d events", len(selected))
        return selected

    def stats(self) -> FilterStats:
        return FilterStats(
            total_filters=len(self._rules),
            package_filters=sum(1 for r in self._rules if r.package),
            module_filters=sum(1 for r in self._rules if r.module),
            type_filters=sum(1 for r in self._rules if r.type_name),
            sender_filters=sum(1 for r in self._rules if r.sender),
        )


# ── Rule builders ──────────────────────────────────────


def package_events(package_id: str) -> FilterRule:
    """All events emitted by a package."""
    return FilterRule.parse({"package": package_id})


def module_events(package_id: str, module: str) -> FilterRule:
    """All events emitted by one module of a package."""
    return FilterRule.parse({"package": package_id, "module": module})


def event_type_filter(package_id: str, module: str, type_name: str) -> FilterRule:
    """Events of a single Move type."""
    return FilterRule.parse({"package": package_id, "module": module, "type_name": type_name})


def sender_events(sender: str) -> FilterRule:
    """All events from transactions sent by an address."""
    return FilterRule.parse({"sender": sender})


def navi_lending_events(package_id: str) -> list[FilterRule]:
    """Deposit, withdraw, borrow and repay events of a Navi lending package."""
    return [
        event_type_filter(package_id, "lending", name)
        for name in ("DepositEvent", "WithdrawEvent", "BorrowEvent", "RepayEvent")
    ]
