"""
IPManage — Expiry Engine.

Resolves each record's block days from the layered policy and moves
stale active records to the expired state (or deletes them).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

from ipmanage.blocklist.models import BlockRecord, parse_timestamp, utcnow
from ipmanage.policy.catalog import PolicyCatalog

if TYPE_CHECKING:
    from ipmanage.blocklist.store import BlockStore

logger = logging.getLogger("ipmanage.blocklist.expiry")

# Stored as a record's days when a block was explicitly made permanent.
NEVER_EXPIRES_DAYS = 999999


class ExpiryEngine:
    """Computes block days and sweeps expired records."""

    def __init__(self, catalog: PolicyCatalog) -> None:
        self.catalog = catalog

    def resolve_ttl_days(self, record: BlockRecord) -> int:
        """
        Block days for a record. 0 and NEVER_EXPIRES_DAYS never expire.

        Precedence: explicit days, country default, port group default,
        global default.
        """
        if record.days:
            return record.days

        country_days = self.catalog.country_block_days
        if record.country and country_days.get(record.country.upper()):
            return country_days[record.country.upper()]

        if record.port_scope:
            group = self.catalog.ports.get(record.port_scope)
            if group is not None and group.days:
                return group.days

        return self.catalog.default_block_days or 0

    def expires_at(self, record: BlockRecord) -> Optional[datetime]:
        """When the record becomes eligible for expiry, None if never."""
        days = self.resolve_ttl_days(record)
        if days == 0 or days >= NEVER_EXPIRES_DAYS:
            return None
        return record.dt_added + timedelta(days=days)

    def is_due(self, record: BlockRecord, now: datetime) -> bool:
        expires = self.expires_at(record)
        return expires is not None and now >= expires

    def sweep(
        self,
        store: BlockStore,
        now: Optional[datetime] = None,
        hard_delete: Optional[bool] = None,
        dry_run: bool = False,
    ) -> int:
        """
        Expire every active record whose block days have elapsed.

        ``hard_delete`` defaults to the policy's ``expire_deletes``. With
        ``dry_run`` the changes are applied in memory but not saved.
        Returns the number of records expired or removed.
        """
        now = parse_timestamp(now) if now is not None else utcnow()
        if hard_delete is None:
            hard_delete = self.catalog.expire_deletes

        due = [r for r in store.active() if self.is_due(r, now)]
        if not due:
            logger.info("No records to expire.")
            return 0

        if hard_delete:
            store.discard(due)
        else:
            store.mark_expired(due, now)

        logger.info(
            "%s %d record(s).", "Deleted" if hard_delete else "Expired", len(due),
        )
        if not dry_run:
            store.save()
        return len(due)
