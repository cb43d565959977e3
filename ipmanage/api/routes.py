"""
IPManage — REST API Routes.

Management API over the block list: list, search, block, unblock,
expire, export.
"""

from __future__ import annotations

from typing import Literal, Optional, Union

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from ipmanage.blocklist.errors import BlockListError
from ipmanage.blocklist.models import BlockRecord
from ipmanage.manager import BlockManager

router = APIRouter(tags=["Block list API"])


# ── Schemas ──────────────────────────────────────────────


class BlockRequest(BaseModel):
    address: str
    port_scope: Optional[str] = None
    days: Optional[int] = None
    reason: Optional[Union[int, str]] = None
    reason_extra: Optional[str] = None

    model_config = {"extra": "forbid"}


class UnblockRequest(BaseModel):
    address: str
    port_scope: Optional[str] = None

    model_config = {"extra": "forbid"}


class ExpireRequest(BaseModel):
    dry_run: bool = False


# ── Helpers ──────────────────────────────────────────────


def get_manager(request: Request) -> BlockManager:
    manager = getattr(request.app.state, "manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Block list not loaded")
    return manager


def _record_view(manager: BlockManager, record: BlockRecord) -> dict:
    data = record.to_dict()
    data["blockDays"] = manager.engine.resolve_ttl_days(record)
    expires = manager.engine.expires_at(record)
    data["expiresAt"] = expires.isoformat() if expires else None
    return data


# ── Endpoints ────────────────────────────────────────────


@router.get("/health")
async def health_check():
    """Simple health check."""
    return {"status": "healthy", "version": "0.1.0"}


@router.get("/blocks")
async def list_blocks(
    request: Request,
    status: Literal["active", "expired", "all"] = "active",
):
    """List block records by status."""
    manager = get_manager(request)
    manager.store.sort()
    if status == "active":
        records = manager.store.active()
    elif status == "expired":
        records = manager.store.expired()
    else:
        records = manager.store.records
    return {
        "blocks": [_record_view(manager, r) for r in records],
        "count": len(records),
    }


@router.get("/blocks/search")
async def search_blocks(
    request: Request,
    prefix: Optional[str] = None,
    country: Optional[str] = None,
):
    """Find records by address prefix or country code."""
    manager = get_manager(request)
    if prefix is None and country is None:
        raise HTTPException(status_code=400, detail="Give a prefix or a country")
    if prefix is not None:
        records = manager.store.find_by_prefix(prefix)
        if country is not None:
            records = [r for r in records if r.country == country.upper()]
    else:
        records = manager.store.find_by_country(country.upper())
    return {
        "blocks": [_record_view(manager, r) for r in records],
        "count": len(records),
    }


@router.post("/block")
async def block_ip(req: BlockRequest, request: Request):
    """Block an address or CIDR."""
    manager = get_manager(request)
    try:
        result = await manager.block(
            req.address,
            req.port_scope,
            days=req.days,
            reason=req.reason,
            reason_extra=req.reason_extra,
        )
    except BlockListError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {
        "status": result.outcome.value,
        "record": _record_view(manager, result.record),
        "superseded": [r.address for r in result.superseded],
    }


@router.post("/unblock")
async def unblock_ip(req: UnblockRequest, request: Request):
    """Remove an active block."""
    manager = get_manager(request)
    try:
        removed = manager.unblock(req.address, req.port_scope)
    except BlockListError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if not removed:
        raise HTTPException(status_code=404, detail=f"{req.address} not found")
    return {"status": "unblocked", "address": req.address}


@router.post("/expire")
async def expire_blocks(req: ExpireRequest, request: Request):
    """Expire blocks whose block days have elapsed."""
    manager = get_manager(request)
    count = manager.expire(dry_run=req.dry_run)
    return {"status": "ok", "expired": count, "dry_run": req.dry_run}


@router.get("/reasons")
async def get_reasons(request: Request):
    manager = get_manager(request)
    return {"reasons": list(manager.catalog.reasons)}


@router.get("/export")
async def get_export(request: Request):
    """Firewall export lines for the active blocks."""
    manager = get_manager(request)
    try:
        lines = manager.export_lines()
    except BlockListError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"lines": lines, "count": len(lines)}


@router.get("/lookup/{ip}")
async def lookup_ip(ip: str, request: Request):
    """Whois fields for an address."""
    manager = get_manager(request)
    return await manager.whois.lookup(ip)
