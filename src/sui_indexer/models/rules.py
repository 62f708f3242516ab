"""Filter rules - partial-match predicates over raw events."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from sui_indexer.errors import ConfigError
from sui_indexer.identifiers import (
    canonical_or_raw,
    is_identifier,
    normalize_address,
    split_type,
)

_RULE_KEYS = {"name", "package", "module", "type_name", "event_type", "sender"}


@dataclass(frozen=True)
class FilterRule:
    """Matches an event when every field that is set equals the event's field.

    Identifiers are expected in canonical form; build rules from untrusted
    input with :meth:`parse`, which validates and normalizes.
    """

    package: str | None = None
    module: str | None = None
    type_name: str | None = None
    sender: str | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        if self.package is not None:
            object.__setattr__(self, "package", canonical_or_raw(self.package))
        if self.sender is not None:
            object.__setattr__(self, "sender", canonical_or_raw(self.sender))

    @property
    def is_wildcard(self) -> bool:
        return not (self.package or self.module or self.type_name or self.sender)

    @property
    def label(self) -> str:
        """Name used in ``ProcessedEvent.matched_rules`` and logs."""
        if self.name:
            return self.name
        parts = [
            f"{key}={value}"
            for key, value in (
                ("package", self.package),
                ("module", self.module),
                ("type_name", self.type_name),
                ("sender", self.sender),
            )
            if value
        ]
        return ",".join(parts) or "*"

    @classmethod
    def parse(cls, raw: Mapping[str, Any]) -> FilterRule:
        """Build a rule from a config mapping.

        Accepts ``event_type`` as an alias of ``type_name``. A fully-qualified
        type (``0x2::coin::CoinEvent``) is split into package, module and
        name, and must agree with any package/module given alongside it.
        Raises ConfigError on unknown keys or unparsable identifiers.
        """
        unknown = set(raw) - _RULE_KEYS
        if unknown:
            raise ConfigError(f"unknown filter keys: {', '.join(sorted(unknown))}")
        if "type_name" in raw and "event_type" in raw:
            raise ConfigError("filter sets both type_name and event_type")

        name = _opt_str(raw, "name")
        package = _opt_str(raw, "package")
        module = _opt_str(raw, "module")
        type_name = _opt_str(raw, "type_name") or _opt_str(raw, "event_type")
        sender = _opt_str(raw, "sender")

        if package is not None:
            package = _address(package, "package")
        if sender is not None:
            sender = _address(sender, "sender")

        if type_name is not None and "::" in type_name:
            try:
                t_package, t_module, t_name = split_type(type_name)
            except ValueError as exc:
                raise ConfigError(f"invalid type_name: {exc}") from exc
            if package is not None and package != t_package:
                raise ConfigError(
                    f"type_name {type_name!r} does not belong to package {package}"
                )
            if module is not None and module != t_module:
                raise ConfigError(
                    f"type_name {type_name!r} does not belong to module {module}"
                )
            package, module, type_name = t_package, t_module, t_name

        if module is not None and not is_identifier(module):
            raise ConfigError(f"invalid module name: {module!r}")
        if type_name is not None and not is_identifier(type_name):
            raise ConfigError(f"invalid type name: {type_name!r}")

        return cls(
            package=package,
            module=module,
            type_name=type_name,
            sender=sender,
            name=name,
        )


def _opt_str(raw: Mapping[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"filter {key} must be a string, got {value!r}")
    value = value.strip()
    return value or None


def _address(value: str, what: str) -> str:
    try:
        return normalize_address(value)
    except ValueError as exc:
        raise ConfigError(f"invalid {what} id: {exc}") from exc
