"""
IPManage — Whois Lookup.

Queries a whois-style HTTP endpoint and turns its text (or HTML) output
into a flat mapping of field name to value. Lookups are best-effort: any
failure is logged and yields an empty mapping.
"""

from __future__ import annotations

import html
import logging
import re
from ipaddress import IPv4Address, IPv4Network, summarize_address_range
from typing import Iterable, Optional

import httpx

from ipmanage.blocklist.address import base_address
from ipmanage.blocklist.errors import LookupFailure
from ipmanage.config import settings

logger = logging.getLogger("ipmanage.lookup")

_TAG_RE = re.compile(r"<[^>]*>")

RANGE_FIELDS = ("NetRange", "inetnum")


class WhoisClient:
    """Async client for the configured lookup endpoint."""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url or settings.lookup_url
        self.timeout = timeout if timeout is not None else settings.lookup_timeout
        self._transport = transport

    async def fetch(self, ip: str) -> str:
        """Raw lookup output. Raises LookupFailure."""
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport,
            ) as client:
                resp = await client.get(self.url, params={"ip": ip})
                resp.raise_for_status()
                return resp.text
        except httpx.HTTPError as exc:
            raise LookupFailure(f"Could not look up whois data for {ip}: {exc}") from exc

    async def lookup(self, address: str) -> dict[str, str]:
        """Parsed whois fields for ``address`` (CIDR suffix ignored)."""
        ip = base_address(address)
        try:
            text = await self.fetch(ip)
        except LookupFailure as exc:
            logger.warning("%s", exc)
            return {}
        return parse_whois(text)


def parse_whois(text: str) -> dict[str, str]:
    """
    Parse ``key: value`` lines. Comment and blank lines are skipped; the
    last value wins for repeated keys. A ``NetRange`` / ``inetnum`` field
    is expanded into ``NetLow``, ``NetHigh`` and ``CIDRs``.
    """
    result: dict[str, str] = {}
    plain = html.unescape(_TAG_RE.sub("", text or ""))

    for line in plain.splitlines():
        if not line.strip() or line.startswith("#") or line.startswith("Comment:"):
            continue
        key, sep, value = line.partition(":")
        if not sep:
            continue
        result[key.strip()] = value.strip()

    net_range = next((result[f] for f in RANGE_FIELDS if result.get(f)), None)
    if net_range:
        try:
            low, high = _split_range(net_range)
        except ValueError:
            logger.warning("Problem extracting range from lookup output: %r", net_range)
        else:
            result["NetLow"] = str(low)
            result["NetHigh"] = str(high)
            result["CIDRs"] = ",".join(
                str(n) for n in summarize_address_range(low, high)
            )
    return result


def _split_range(text: str) -> tuple[IPv4Address, IPv4Address]:
    if "-" in text:
        low, high = text.split("-", 1)
        return IPv4Address(low.strip()), IPv4Address(high.strip())
    if "/" in text:
        network = IPv4Network(text.strip(), strict=False)
        return network.network_address, network.broadcast_address
    raise ValueError(text)


def extract_country(who: dict[str, str], fields: Iterable[str]) -> Optional[str]:
    """First configured country field present, upper-cased."""
    for name in fields:
        if who.get(name):
            return who[name].upper()
    return None


def extract_org(who: dict[str, str], fields: Iterable[str]) -> Optional[str]:
    """First configured org field present and not redacted (``***``)."""
    for name in fields:
        value = who.get(name)
        if value and not value.startswith("***"):
            return value
    return None
