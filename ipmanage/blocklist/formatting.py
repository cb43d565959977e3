"""
IPManage — Record formatting.

Human-readable list lines and the firewall export format. Export lines
look like (tab separated before the comment)::

    d=22|s=94.181.47.232	 # RU / Some Org / SSH brute force / 2021-02-21T10:27:53.441Z / 5 days (2021-02-26T10:27:53.441Z)
    188.166.0.0/16			 # NL / General / 2021-02-21T10:27:53.441Z / 0 days (never)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from ipmanage.blocklist.expiry import ExpiryEngine
from ipmanage.blocklist.models import BlockRecord, format_timestamp, parse_timestamp
from ipmanage.policy.catalog import PolicyCatalog

LIST_PAD = 29
UNKNOWN_COUNTRY = "--"
DEFAULT_REASON = "General"
NEVER = "never"


def _expiry_text(engine: ExpiryEngine, record: BlockRecord) -> str:
    days = engine.resolve_ttl_days(record)
    expires = engine.expires_at(record)
    return f"{days} days ({format_timestamp(expires) if expires else NEVER})"


def format_list_item(record: BlockRecord, index: int, engine: ExpiryEngine) -> str:
    line = f"{index}: {record.address}"
    if record.port_scope:
        line += f" ({record.port_scope})"
    line = line.ljust(LIST_PAD)[:LIST_PAD]

    line += f" # {format_timestamp(record.dt_added)}"
    for value in (record.country, record.org, record.reason):
        if value:
            line += f", {value}"
    if record.days:
        line += f", {record.days} days"

    if record.is_expired:
        line += f", EXPIRED: {format_timestamp(record.dt_expired)}"
    else:
        line += f" / {_expiry_text(engine, record)}"
    return line


def format_list(records: Iterable[BlockRecord], engine: ExpiryEngine) -> list[str]:
    return [format_list_item(r, i, engine) for i, r in enumerate(records)]


def export_line(record: BlockRecord, catalog: PolicyCatalog, engine: ExpiryEngine) -> str:
    if record.port_scope:
        ports = ",".join(str(p) for p in catalog.port_group(record.port_scope).ports)
        line = f"d={ports}|s={record.address}\t"
    else:
        line = f"{record.address}\t\t\t"

    parts = [record.country or UNKNOWN_COUNTRY]
    if record.org:
        parts.append(record.org)
    parts.append(record.reason or DEFAULT_REASON)
    parts.append(format_timestamp(record.dt_added))
    parts.append(_expiry_text(engine, record))
    return line + " # " + " / ".join(parts)


def to_export_lines(
    records: Iterable[BlockRecord], catalog: PolicyCatalog, engine: ExpiryEngine,
) -> list[str]:
    """One export line per active record, in list order."""
    return [export_line(r, catalog, engine) for r in records if r.is_active]


# ── Parsing exported lines back ──────────────────────────

_EXPIRY_RE = re.compile(r"^(\d+) days \(([^)]*)\)$")


@dataclass
class ExportedEntry:
    """An entry recovered from a previously exported firewall list."""
    address: str
    ports: Optional[list[int]]
    dt_added: datetime
    days: int


def parse_export_line(line: str) -> Optional[ExportedEntry]:
    """
    Parse one export line. Returns None for blank / comment-only lines
    and raises ValueError for lines that do not follow the format.
    """
    if not line.strip() or line.lstrip().startswith("#"):
        return None

    target, _, comment = line.partition("#")
    target = target.strip()
    ports: Optional[list[int]] = None
    if "|" in target:
        port_part, _, addr_part = target.partition("|")
        ports = [int(p) for p in port_part.strip()[2:].split(",") if p]
        address = addr_part.strip()[2:].strip()
    else:
        address = target

    fields = [f.strip() for f in comment.split("/")]
    # The org may itself contain " / "; date and expiry are always last.
    if len(fields) < 3:
        raise ValueError(f"Malformed export line: {line!r}")
    match = _EXPIRY_RE.match(fields[-1])
    if not match:
        raise ValueError(f"Malformed expiry in export line: {line!r}")
    dt_added = parse_timestamp(fields[-2])

    days = int(match.group(1))
    expiry = match.group(2).strip()
    if expiry and expiry != NEVER:
        delta: timedelta = parse_timestamp(expiry) - dt_added
        days = round(delta.total_seconds() / 86400)
    return ExportedEntry(address=address, ports=ports, dt_added=dt_added, days=days)
