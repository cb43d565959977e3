"""
IPManage — Block list error kinds.

Rejections of an insert (already present / already covered) are not
errors; they are reported through ``InsertOutcome``.
"""

from __future__ import annotations


class BlockListError(Exception):
    """Base class for all block list failures."""


class InvalidAddress(BlockListError, ValueError):
    """Address is not a dotted-quad IPv4 address with optional /prefix."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Invalid IPv4 address or CIDR: {address!r}")
        self.address = address


class UnknownPortGroup(BlockListError):
    """Port scope id is not defined in the policy catalog."""

    def __init__(self, scope: str) -> None:
        super().__init__(f"No ports definition for '{scope}'")
        self.scope = scope


class UnknownReason(BlockListError):
    """Reason index is out of range of the reason catalog."""

    def __init__(self, index: int, source: str = "") -> None:
        msg = f"No reason with index {index}"
        if source:
            msg += f" ({source})"
        super().__init__(msg)
        self.index = index


class UnknownField(BlockListError):
    """A stored record carries a key the record type does not know."""

    def __init__(self, keys: list[str]) -> None:
        super().__init__(f"Unknown record field(s): {', '.join(sorted(keys))}")
        self.keys = keys


class PersistenceError(BlockListError):
    """Block list file could not be read or written."""


class LookupFailure(BlockListError):
    """Whois-style enrichment lookup failed."""


class PolicyError(BlockListError):
    """Policy catalog file is malformed."""
