"""
IPManage — Block list records.

A BlockRecord is one firewall block entry: an address or CIDR, an
optional port scope, descriptive metadata and its expiry state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Union

from ipmanage.blocklist.address import AddressRange, parse
from ipmanage.blocklist.errors import BlockListError, UnknownField


class RecordStatus(str, Enum):
    """Record state. Active records carry no status at all."""
    EXPIRED = "Expired"


class InsertOutcome(str, Enum):
    INSERTED = "inserted"
    REACTIVATED = "reactivated"
    ALREADY_PRESENT = "already_present"
    ALREADY_COVERED = "already_covered"


# ── Timestamps ───────────────────────────────────────────


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed). Naive values are UTC."""
    if isinstance(value, datetime):
        dt = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Format as ``2021-02-21T10:27:53.441Z`` (UTC, millisecond precision)."""
    dt = parse_timestamp(dt)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


# ── Records ──────────────────────────────────────────────

# Persisted key -> attribute name.
_FIELDS = {
    "address": "address",
    "portScope": "port_scope",
    "dtAdded": "dt_added",
    "days": "days",
    "country": "country",
    "org": "org",
    "reason": "reason",
    "status": "status",
    "dtExpired": "dt_expired",
}

# Keys written by older versions of the data file.
_LEGACY_FIELDS = {"ip": "address", "ports": "port_scope"}
_IGNORED_FIELDS = {"working"}


@dataclass
class BlockRecord:
    """A single block list entry."""
    address: str
    dt_added: datetime
    port_scope: Optional[str] = None
    days: Optional[int] = None
    country: Optional[str] = None
    org: Optional[str] = None
    reason: Optional[str] = None
    status: Optional[RecordStatus] = None
    dt_expired: Optional[datetime] = None
    range: AddressRange = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.range = parse(self.address)
        self.dt_added = parse_timestamp(self.dt_added)
        if self.dt_expired is not None:
            self.dt_expired = parse_timestamp(self.dt_expired)

    @property
    def is_active(self) -> bool:
        return self.status is None

    @property
    def is_expired(self) -> bool:
        return self.status is RecordStatus.EXPIRED

    def mark_expired(self, now: datetime) -> None:
        self.status = RecordStatus.EXPIRED
        self.dt_expired = parse_timestamp(now)

    def clear_expiry(self) -> None:
        """Return to the active state, dropping any stale days override."""
        self.status = None
        self.dt_expired = None
        self.days = None

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the persisted form. Unset fields are omitted."""
        data: dict[str, Any] = {
            "address": self.address,
            "dtAdded": format_timestamp(self.dt_added),
        }
        if self.port_scope is not None:
            data["portScope"] = self.port_scope
        for key in ("days", "country", "org", "reason"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.status is not None:
            data["status"] = self.status.value
            data["dtExpired"] = format_timestamp(self.dt_expired or self.dt_added)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BlockRecord:
        """Build a record from its persisted form, rejecting unknown keys."""
        values: dict[str, Any] = {}
        unknown: list[str] = []
        for key, value in data.items():
            if key in _IGNORED_FIELDS:
                continue
            attr = _FIELDS.get(key) or _LEGACY_FIELDS.get(key)
            if attr is None:
                unknown.append(key)
                continue
            values[attr] = value
        if unknown:
            raise UnknownField(unknown)
        if not values.get("address"):
            raise BlockListError("Record has no address")
        if not values.get("dt_added"):
            raise BlockListError(f"Record {values['address']} has no dtAdded")

        status = values.pop("status", None)
        if status in (1, "1", RecordStatus.EXPIRED.value):
            values["status"] = RecordStatus.EXPIRED
        elif status:
            raise BlockListError(f"Unknown status {status!r} for {values['address']}")
        else:
            values.pop("dt_expired", None)

        if values.get("status") is not None and not values.get("dt_expired"):
            values["dt_expired"] = values["dt_added"]
        if values.get("days") is not None:
            values["days"] = int(values["days"])
        return cls(**values)


@dataclass
class BlockMetadata:
    """
    Optional data supplied with an insert.

    ``reason`` may be free text or an index into the reason catalog;
    ``reason_extra`` is appended to whichever reason applies.
    """
    days: Optional[int] = None
    country: Optional[str] = None
    org: Optional[str] = None
    reason: Optional[Union[int, str]] = None
    reason_extra: Optional[str] = None
    dt_added: Optional[datetime] = None


@dataclass
class InsertResult:
    """
    Result of BlockStore.insert.

    ``record`` is the stored record for INSERTED / REACTIVATED and the
    existing record that blocks the candidate for the two rejections.
    """
    outcome: InsertOutcome
    record: BlockRecord
    superseded: list[BlockRecord] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.outcome in (InsertOutcome.INSERTED, InsertOutcome.REACTIVATED)
