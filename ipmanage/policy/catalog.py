"""
IPManage — YAML Policy Catalog.

Read-only policy consulted by the block list: named port groups, the
reason catalog, per-country and global block days, and which whois
fields carry the country / organisation.

Example ``policy.yml``::

    reasons:
      - General
      - SSH brute force
    ports:
      ssh:
        ports: [22]
        days: 5
        reason: 1
    country_block_days:
      XX: 10
    default_block_days: 30
    expire_deletes: false
    lookup:
      country_fields: [country, Country]
      org_fields: [OrgName, org-name, descr]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from ipmanage.blocklist.errors import PolicyError, UnknownPortGroup, UnknownReason

logger = logging.getLogger("ipmanage.policy")


@dataclass
class PortGroup:
    """A named group of ports a block can be restricted to."""
    name: str
    ports: list[int] = field(default_factory=list)
    days: Optional[int] = None
    reason: Optional[int] = None   # index into the reason catalog


@dataclass
class LookupFields:
    country_fields: list[str] = field(default_factory=list)
    org_fields: list[str] = field(default_factory=list)


@dataclass
class PolicyCatalog:
    """Policy inputs for the block list and expiry engine."""
    reasons: list[str] = field(default_factory=list)
    ports: dict[str, PortGroup] = field(default_factory=dict)
    country_block_days: dict[str, int] = field(default_factory=dict)
    default_block_days: int = 0
    expire_deletes: bool = False
    lookup: LookupFields = field(default_factory=LookupFields)

    def port_group(self, scope: str) -> PortGroup:
        try:
            return self.ports[scope]
        except KeyError:
            raise UnknownPortGroup(scope) from None

    def reason(self, index: int, source: str = "") -> str:
        if index < 0 or index >= len(self.reasons):
            raise UnknownReason(index, source)
        return self.reasons[index]

    def port_group_for_ports(self, ports: list[int]) -> Optional[str]:
        """Return the scope id whose port list equals ``ports``."""
        wanted = sorted(ports)
        for name, group in self.ports.items():
            if sorted(group.ports) == wanted:
                return name
        return None


def load_catalog(path: Path | str) -> PolicyCatalog:
    """Load the policy catalog. A missing file yields an empty catalog."""
    path = Path(path)
    if not path.exists():
        logger.warning("Policy file not found: %s, using empty policy", path)
        return PolicyCatalog()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise PolicyError(f"Failed to read policy file {path}: {exc}") from exc

    catalog = parse_catalog(data or {})
    logger.info(
        "Loaded policy from %s: %d port group(s), %d reason(s)",
        path, len(catalog.ports), len(catalog.reasons),
    )
    return catalog


def parse_catalog(data: dict[str, Any]) -> PolicyCatalog:
    if not isinstance(data, dict):
        raise PolicyError("Policy must be a mapping")
    try:
        ports = {
            str(name): _parse_port_group(str(name), raw or {})
            for name, raw in (data.get("ports") or {}).items()
        }
        lookup_raw = data.get("lookup") or {}
        return PolicyCatalog(
            reasons=[str(r) for r in data.get("reasons") or []],
            ports=ports,
            country_block_days={
                str(k).upper(): int(v)
                for k, v in (data.get("country_block_days") or {}).items()
            },
            default_block_days=int(data.get("default_block_days") or 0),
            expire_deletes=bool(data.get("expire_deletes", False)),
            lookup=LookupFields(
                country_fields=list(lookup_raw.get("country_fields") or []),
                org_fields=list(lookup_raw.get("org_fields") or []),
            ),
        )
    except (TypeError, ValueError, AttributeError) as exc:
        raise PolicyError(f"Malformed policy: {exc}") from exc


def _parse_port_group(name: str, raw: dict[str, Any]) -> PortGroup:
    ports = raw.get("ports", [])
    if isinstance(ports, (int, str)):
        ports = [ports]
    return PortGroup(
        name=name,
        ports=[int(p) for p in ports],
        days=int(raw["days"]) if raw.get("days") is not None else None,
        reason=int(raw["reason"]) if raw.get("reason") is not None else None,
    )
