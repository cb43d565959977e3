"""
IPManage — Address ranges and ordering.

Converts a dotted-quad address or CIDR into an inclusive numeric range
and orders block records by their base address.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv4Network
from typing import TYPE_CHECKING

from ipmanage.blocklist.errors import InvalidAddress

if TYPE_CHECKING:
    from ipmanage.blocklist.models import BlockRecord

# Four octets, optional prefix. Range checks are left to ipaddress.
_ADDRESS_RE = re.compile(r"^\d{1,3}(?:\.\d{1,3}){3}(?:/\d{1,2})?$")


@dataclass(frozen=True)
class AddressRange:
    """Inclusive [low, high] bounds of an IPv4 address or CIDR block."""
    low: int
    high: int

    def contains(self, other: AddressRange) -> bool:
        """True if ``other`` lies entirely within this range."""
        return self.low <= other.low and other.high <= self.high

    @property
    def size(self) -> int:
        return self.high - self.low + 1

    def __str__(self) -> str:
        return f"{IPv4Address(self.low)} - {IPv4Address(self.high)}"


def parse(address: str) -> AddressRange:
    """
    Parse ``a.b.c.d`` or ``a.b.c.d/n`` into an AddressRange.

    A bare address is treated as /32. Host bits below the prefix are
    ignored, so ``10.0.0.5/24`` covers ``10.0.0.0 - 10.0.0.255``.
    """
    text = address.strip() if isinstance(address, str) else ""
    if not _ADDRESS_RE.match(text):
        raise InvalidAddress(address)
    if "/" not in text:
        text += "/32"
    try:
        network = IPv4Network(text, strict=False)
    except ValueError as exc:
        raise InvalidAddress(address) from exc
    return AddressRange(
        low=int(network.network_address),
        high=int(network.broadcast_address),
    )


def base_address(address: str) -> str:
    """Address with any CIDR suffix stripped."""
    return address.split("/", 1)[0].strip()


def base_value(address: str) -> int:
    """
    Numeric value of the base address, used as the sort key.

    Equivalent to zero-padding each octet to three digits and comparing
    the concatenation numerically.
    """
    try:
        return int(IPv4Address(base_address(address)))
    except ValueError as exc:
        raise InvalidAddress(address) from exc


def compare(a: BlockRecord, b: BlockRecord) -> int:
    """Three-way comparison of two records by base address."""
    va = base_value(a.address)
    vb = base_value(b.address)
    return (va > vb) - (va < vb)


def sort_records(records: list[BlockRecord]) -> None:
    """Sort records in place by base address. Ties keep their order."""
    records.sort(key=lambda r: base_value(r.address))
