"""
IPManage — Block Manager.

Orchestrates the block list for the CLI and the HTTP API: enriches
candidates through the whois lookup, drives inserts / removals / expiry,
imports lists, writes the firewall export and hands it to the firewall.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from ipmanage.blocklist.address import parse as parse_address
from ipmanage.blocklist.errors import BlockListError
from ipmanage.blocklist.expiry import NEVER_EXPIRES_DAYS, ExpiryEngine
from ipmanage.blocklist.formatting import (
    format_list,
    parse_export_line,
    to_export_lines,
)
from ipmanage.blocklist.models import BlockMetadata, BlockRecord, InsertResult
from ipmanage.blocklist.store import BlockStore
from ipmanage.config import Settings, settings as default_settings
from ipmanage.export.ftp import upload_export
from ipmanage.lookup.whois import WhoisClient, extract_country, extract_org
from ipmanage.mitigation.firewall import reload_firewall
from ipmanage.policy.catalog import PolicyCatalog, load_catalog
from ipmanage.storage.json_store import BlockFile, write_atomic

logger = logging.getLogger("ipmanage.manager")


@dataclass
class ImportReport:
    """Summary of a bulk import."""
    attempted: int = 0
    results: list[InsertResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def changed(self) -> int:
        return sum(1 for r in self.results if r.changed)


class BlockManager:
    """High-level operations over one block list."""

    def __init__(
        self,
        store: BlockStore,
        whois: Optional[WhoisClient] = None,
        cfg: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.catalog: PolicyCatalog = store.catalog
        self.engine = ExpiryEngine(self.catalog)
        self.whois = whois or WhoisClient()
        self.cfg = cfg or default_settings

    # ── Insert / remove ──────────────────────────────────

    async def block(
        self,
        address: str,
        port_scope: Optional[str] = None,
        days: Optional[int] = None,
        reason: Optional[Union[int, str]] = None,
        reason_extra: Optional[str] = None,
        dt_added: Optional[datetime] = None,
        bulk: bool = False,
    ) -> InsertResult:
        """
        Look up ``address`` and insert it with the enriched metadata.

        An explicit ``days`` of 0 blocks permanently, overriding any
        policy default.
        """
        parse_address(address)
        if port_scope is not None:
            self.catalog.port_group(port_scope)
        if days == 0:
            days = NEVER_EXPIRES_DAYS

        who = await self.whois.lookup(address)
        country = extract_country(who, self.catalog.lookup.country_fields)
        org = extract_org(who, self.catalog.lookup.org_fields)
        if not country:
            logger.warning("No country found for %s.", address)

        metadata = BlockMetadata(
            days=days,
            country=country,
            org=org,
            reason=reason,
            reason_extra=reason_extra,
            dt_added=dt_added,
        )
        return self.store.insert(address, port_scope, metadata, bulk=bulk)

    def unblock(self, address: str, port_scope: Optional[str] = None) -> bool:
        return self.store.remove(address, port_scope)

    def expire(self, dry_run: bool = False, now: Optional[datetime] = None) -> int:
        return self.engine.sweep(self.store, now=now, dry_run=dry_run)

    # ── Imports ──────────────────────────────────────────

    async def import_blocks(self, path: Path) -> ImportReport:
        """Block every address listed in ``path`` (one per line)."""
        report = ImportReport()
        for line in path.read_text(encoding="utf-8").splitlines():
            address = line.split("#", 1)[0].strip()
            if not address:
                continue
            report.attempted += 1
            try:
                report.results.append(await self.block(address, bulk=True))
            except BlockListError as exc:
                logger.error("Skipping %s: %s", address, exc)
                report.errors.append(f"{address}: {exc}")
        self._finish_bulk(report)
        return report

    async def import_export_file(self, path: Path) -> ImportReport:
        """Re-import a previously exported firewall deny list."""
        report = ImportReport()
        for number, line in enumerate(path.read_text(encoding="utf-8").splitlines(), 1):
            try:
                entry = parse_export_line(line)
            except ValueError as exc:
                logger.error("Line %d: %s", number, exc)
                report.errors.append(f"line {number}: {exc}")
                continue
            if entry is None:
                continue

            scope = None
            if entry.ports:
                scope = self.catalog.port_group_for_ports(entry.ports)
                if scope is None:
                    msg = f"no port group for ports {entry.ports}"
                    logger.error("Line %d: %s", number, msg)
                    report.errors.append(f"line {number}: {msg}")
                    continue

            report.attempted += 1
            try:
                report.results.append(await self.block(
                    entry.address, scope,
                    days=entry.days or None, dt_added=entry.dt_added, bulk=True,
                ))
            except BlockListError as exc:
                logger.error("Line %d: %s", number, exc)
                report.errors.append(f"line {number}: {exc}")
        self._finish_bulk(report)
        return report

    def _finish_bulk(self, report: ImportReport) -> None:
        self.store.sort()
        self.store.save()
        logger.info(
            "Attempted to import %d records (%d added or restored).",
            report.attempted, report.changed,
        )

    # ── Listing ──────────────────────────────────────────

    def list_lines(self, expired: bool = False) -> list[str]:
        self.store.sort()
        records = self.store.expired() if expired else self.store.active()
        return format_list(records, self.engine)

    def find_lines(self, records: list[BlockRecord]) -> list[str]:
        return format_list(records, self.engine)

    def reason_lines(self) -> list[str]:
        return [f"{i}: {r}" for i, r in enumerate(self.catalog.reasons)]

    # ── Export / firewall ────────────────────────────────

    def export_lines(self) -> list[str]:
        self.store.sort()
        return to_export_lines(self.store.records, self.catalog, self.engine)

    def write_export(self, path: Optional[Path] = None) -> Optional[Path]:
        """Write the export file. Returns its path, or None on failure."""
        path = path or self.cfg.export_path
        text = "\n".join(self.export_lines()) + "\n"
        try:
            write_atomic(path, text)
        except OSError as exc:
            logger.error("Failed to write to %s: %s", path, exc)
            return None
        logger.info("Successfully wrote IP list to: %s.", path)
        return path

    def upload(self) -> bool:
        return upload_export(self.cfg.export_path, self.cfg)

    def reload_firewall(self, ask_password: bool = False) -> bool:
        return reload_firewall(self.cfg, ask_password=ask_password)


def create_manager(
    cfg: Optional[Settings] = None, whois: Optional[WhoisClient] = None,
) -> BlockManager:
    """Build a manager from settings, loading policy and block list."""
    cfg = cfg or default_settings
    catalog = load_catalog(cfg.policy_path)
    store = BlockStore(catalog, storage=BlockFile(cfg.blocks_path))
    store.load()
    return BlockManager(store, whois or WhoisClient(cfg.lookup_url, cfg.lookup_timeout), cfg)
