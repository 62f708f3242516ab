"""Canonical forms for Sui addresses, object ids and Move identifiers."""

from __future__ import annotations

import re

ADDRESS_HEX_LENGTH = 64  # 32-byte addresses

_HEX_RE = re.compile(r"^[0-9a-f]+$")
_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def normalize_address(value: str) -> str:
    """Return the canonical ``0x`` + 64 lowercase hex form of an address.

    Accepts short forms such as ``0x2`` and upper-case hex. Raises
    ValueError if the value is not a hex address.
    """
    if not isinstance(value, str):
        raise ValueError(f"address must be a string, got {type(value).__name__}")
    raw = value.strip().lower()
    if raw.startswith("0x"):
        raw = raw[2:]
    if not raw or not _HEX_RE.match(raw):
        raise ValueError(f"invalid address: {value!r}")
    if len(raw) > ADDRESS_HEX_LENGTH:
        raise ValueError(f"address too long: {value!r}")
    return "0x" + raw.rjust(ADDRESS_HEX_LENGTH, "0")


def canonical_or_raw(value: str) -> str:
    """Normalize an address coming off the wire, keeping unparsable values as-is.

    Remote data is never rejected here; a value that is not an address simply
    cannot match a (validated) rule.
    """
    try:
        return normalize_address(value)
    except ValueError:
        return str(value).strip().lower()


def is_identifier(value: str) -> bool:
    """True if ``value`` is a valid Move module or struct identifier."""
    return bool(_IDENT_RE.match(value))


def split_type(type_str: str) -> tuple[str, str, str]:
    """Split ``<address>::<module>::<Name><T...>`` into its three parts.

    Generic parameters are dropped from the struct name. Raises ValueError
    on anything that is not a fully-qualified Move type.
    """
    base = type_str.split("<", 1)[0].strip()
    parts = base.split("::")
    if len(parts) != 3:
        raise ValueError(f"not a fully-qualified Move type: {type_str!r}")
    address, module, name = parts
    return normalize_address(address), module, name
