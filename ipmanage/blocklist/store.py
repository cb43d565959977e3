"""
IPManage — Block Store.

Owns the in-memory block list. Every mutation goes through this class
so the list stays free of duplicate and redundant active entries:

  - an active record never sits inside another active record's range
    unless its port scope is broader than the covering record's
  - inserting a broader record removes the narrower ones it supersedes
  - re-inserting an expired address reactivates the old record
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Iterator, Optional, Protocol

from ipmanage.blocklist import address as addr
from ipmanage.blocklist.models import (
    BlockMetadata,
    BlockRecord,
    InsertOutcome,
    InsertResult,
    format_timestamp,
    utcnow,
)
from ipmanage.policy.catalog import PolicyCatalog

logger = logging.getLogger("ipmanage.blocklist.store")


class RecordStorage(Protocol):
    """Persistence collaborator (see ipmanage.storage.json_store)."""

    def load(self) -> list[BlockRecord]: ...

    def save(self, records: list[BlockRecord]) -> bool: ...


def scope_compatible(candidate: Optional[str], existing: Optional[str]) -> bool:
    """
    True if ``existing`` already blocks everything ``candidate`` would.

    Both unscoped, equal scopes, or a scoped candidate against an unscoped
    record (which blocks every port).
    """
    return candidate == existing or (candidate is not None and existing is None)


def scope_covers(candidate: Optional[str], existing: Optional[str]) -> bool:
    """True if ``candidate`` blocks at least the ports ``existing`` blocks."""
    return candidate is None or candidate == existing


class BlockStore:
    """In-memory block list with optional persistence."""

    def __init__(
        self,
        catalog: PolicyCatalog,
        storage: Optional[RecordStorage] = None,
        name: str = "Blocks",
        records: Optional[Iterable[BlockRecord]] = None,
    ) -> None:
        self.catalog = catalog
        self.storage = storage
        self.name = name
        self._records: list[BlockRecord] = list(records or [])

    # ── Collection access ────────────────────────────────

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[BlockRecord]:
        return iter(list(self._records))

    @property
    def records(self) -> list[BlockRecord]:
        return list(self._records)

    def active(self) -> list[BlockRecord]:
        return [r for r in self._records if r.is_active]

    def expired(self) -> list[BlockRecord]:
        return [r for r in self._records if r.is_expired]

    def find_by_prefix(self, prefix: str) -> list[BlockRecord]:
        """Records (active and expired) whose address starts with ``prefix``."""
        return [r for r in self._records if r.address.startswith(prefix)]

    def find_by_country(self, code: str) -> list[BlockRecord]:
        return [r for r in self._records if r.country == code]

    # ── Persistence ──────────────────────────────────────

    def load(self) -> int:
        """Replace the collection with the stored one. Returns count."""
        if self.storage is None:
            return len(self._records)
        self._records = self.storage.load()
        return len(self._records)

    def save(self) -> bool:
        if self.storage is None:
            return True
        return self.storage.save(self._records)

    def sort(self) -> None:
        addr.sort_records(self._records)

    # ── Insert ───────────────────────────────────────────

    def insert(
        self,
        address: str,
        port_scope: Optional[str] = None,
        metadata: Optional[BlockMetadata] = None,
        bulk: bool = False,
        now: Optional[datetime] = None,
    ) -> InsertResult:
        """
        Add ``address`` to the list.

        Raises UnknownPortGroup, UnknownReason or InvalidAddress before
        anything is changed. In ``bulk`` mode the caller is responsible
        for calling ``sort()`` and ``save()`` afterwards.
        """
        metadata = metadata or BlockMetadata()
        if port_scope is not None:
            self.catalog.port_group(port_scope)
        reason = self._resolve_reason(port_scope, metadata)

        candidate = BlockRecord(
            address=address.strip(),
            dt_added=metadata.dt_added or now or utcnow(),
            port_scope=port_scope,
            days=metadata.days,
            country=metadata.country,
            org=metadata.org,
            reason=reason,
        )

        existing = self._find_covering(candidate)
        if existing is not None:
            return existing

        superseded = self._remove_redundant(candidate)

        match = self._find_expired(candidate.address, candidate.port_scope)
        if match is None:
            self._records.append(candidate)
            result = InsertResult(InsertOutcome.INSERTED, candidate, superseded)
            logger.info("Added %s to the '%s' list.", candidate.address, self.name)
        else:
            previous = (format_timestamp(match.dt_added), format_timestamp(match.dt_expired))
            self._reactivate(match, candidate)
            result = InsertResult(InsertOutcome.REACTIVATED, match, superseded)
            logger.info(
                "Restored %s to the '%s' list from expired record "
                "(created on %s and expired on %s).",
                candidate.address, self.name, *previous,
            )

        if not bulk:
            self.sort()
            self.save()
        return result

    def _resolve_reason(
        self, port_scope: Optional[str], metadata: BlockMetadata,
    ) -> Optional[str]:
        reason: Optional[str] = None
        if isinstance(metadata.reason, int) and not isinstance(metadata.reason, bool):
            reason = self.catalog.reason(metadata.reason)
        elif metadata.reason:
            reason = str(metadata.reason)

        if metadata.reason_extra:
            reason = f"{reason} - {metadata.reason_extra}" if reason else metadata.reason_extra

        if reason is None and port_scope is not None:
            group = self.catalog.port_group(port_scope)
            if group.reason is not None:
                reason = self.catalog.reason(
                    group.reason, source="reason derived from ports",
                )
        return reason

    def _find_covering(self, candidate: BlockRecord) -> Optional[InsertResult]:
        compatible = [
            (index, entry) for index, entry in enumerate(self._records)
            if entry.is_active and scope_compatible(candidate.port_scope, entry.port_scope)
        ]

        for index, entry in compatible:
            if entry.address == candidate.address:
                logger.warning(
                    "%s is already listed in the '%s' list via %s%s (index %d, %s).",
                    candidate.address, self.name, entry.address,
                    f", ports: {entry.port_scope}" if entry.port_scope else "",
                    index, format_timestamp(entry.dt_added),
                )
                return InsertResult(InsertOutcome.ALREADY_PRESENT, entry)

        for index, entry in compatible:
            if entry.range.contains(candidate.range):
                logger.warning(
                    "%s is already covered in the '%s' list via %s (index %d, %s).",
                    candidate.address, self.name, entry.address,
                    index, format_timestamp(entry.dt_added),
                )
                return InsertResult(InsertOutcome.ALREADY_COVERED, entry)
        return None

    def _remove_redundant(self, candidate: BlockRecord) -> list[BlockRecord]:
        kept: list[BlockRecord] = []
        removed: list[BlockRecord] = []
        for entry in self._records:
            if not entry.is_active:
                kept.append(entry)
                continue

            if entry.address == candidate.address:
                # Same address with a narrower scope stays in place.
                if candidate.port_scope is None and entry.port_scope is not None:
                    logger.warning(
                        "Entry redundant via greater scope of ports on new entry "
                        "[%s (%s) %s]",
                        entry.address, entry.port_scope, format_timestamp(entry.dt_added),
                    )
                kept.append(entry)
            elif (
                candidate.range.contains(entry.range)
                and scope_covers(candidate.port_scope, entry.port_scope)
            ):
                logger.warning(
                    "Entry redundant via greater scope of range on new entry "
                    "[%s %s], removed.",
                    entry.address, format_timestamp(entry.dt_added),
                )
                removed.append(entry)
            else:
                kept.append(entry)

        self._records = kept
        return removed

    def _find_expired(
        self, address: str, port_scope: Optional[str],
    ) -> Optional[BlockRecord]:
        for entry in self._records:
            if entry.is_expired and entry.address == address and entry.port_scope == port_scope:
                return entry
        return None

    @staticmethod
    def _reactivate(record: BlockRecord, candidate: BlockRecord) -> None:
        record.clear_expiry()
        record.dt_added = candidate.dt_added
        for key in ("days", "country", "org", "reason"):
            value = getattr(candidate, key)
            if value is not None:
                setattr(record, key, value)

    # ── Remove ───────────────────────────────────────────

    def remove(self, address: str, port_scope: Optional[str] = None) -> bool:
        """
        Remove active records for exactly ``address`` and ``port_scope``.

        Expired records are never touched. Returns whether anything was
        removed; saves on success.
        """
        if port_scope is not None:
            self.catalog.port_group(port_scope)
        address = address.strip()

        kept = [
            r for r in self._records
            if not (r.is_active and r.address == address and r.port_scope == port_scope)
        ]
        if len(kept) == len(self._records):
            logger.warning("%s not found in the '%s' list.", address, self.name)
            return False

        self._records = kept
        self.save()
        logger.info("Removed %s from the '%s' list.", address, self.name)
        return True

    # ── Expiry transitions (driven by ExpiryEngine) ──────

    def mark_expired(self, records: Iterable[BlockRecord], now: datetime) -> None:
        targets = {id(r) for r in records}
        for record in self._records:
            if id(record) in targets and record.is_active:
                record.mark_expired(now)

    def discard(self, records: Iterable[BlockRecord]) -> None:
        targets = {id(r) for r in records}
        self._records = [r for r in self._records if id(r) not in targets]
