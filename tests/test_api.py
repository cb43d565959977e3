"""
Tests for the API endpoints.
"""

from datetime import datetime, timezone
from pathlib import Path

import pytest
from httpx import AsyncClient, ASGITransport

from ipmanage.blocklist.models import BlockMetadata
from ipmanage.blocklist.store import BlockStore
from ipmanage.config import Settings
from ipmanage.main import create_app
from ipmanage.manager import BlockManager
from ipmanage.policy.catalog import LookupFields, PolicyCatalog, PortGroup

ADDED = datetime(2021, 2, 21, 10, 27, 53, 441000, tzinfo=timezone.utc)


class FakeWhois:
    async def lookup(self, address):
        return {"Country": "NL"} if address.startswith("188.") else {}


@pytest.fixture
def manager(tmp_path: Path):
    catalog = PolicyCatalog(
        reasons=["General", "SSH brute force"],
        ports={"ssh": PortGroup(name="ssh", ports=[22], reason=1)},
        lookup=LookupFields(country_fields=["Country"]),
    )
    cfg = Settings(data_dir=str(tmp_path))
    return BlockManager(BlockStore(catalog), FakeWhois(), cfg)


@pytest.fixture
async def client(manager):
    """Test client bound to an in-memory block list."""
    app = create_app(cfg=manager.cfg, manager=manager)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.mark.asyncio
async def test_health_check(client):
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_block_and_list(client):
    resp = await client.post("/api/block", json={"address": "188.166.0.0/16"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "inserted"
    assert data["record"]["country"] == "NL"

    resp = await client.post("/api/block", json={"address": "188.166.1.1"})
    assert resp.json()["status"] == "already_covered"

    resp = await client.get("/api/blocks")
    assert resp.json()["count"] == 1


@pytest.mark.asyncio
async def test_block_supersedes(client):
    await client.post("/api/block", json={"address": "10.0.0.0/24"})
    resp = await client.post("/api/block", json={"address": "10.0.0.0/16"})
    assert resp.json()["superseded"] == ["10.0.0.0/24"]


@pytest.mark.asyncio
async def test_block_rejects_unknown_scope(client):
    resp = await client.post("/api/block", json={"address": "1.2.3.4", "port_scope": "smtp"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_block_rejects_unknown_fields(client):
    resp = await client.post("/api/block", json={"address": "1.2.3.4", "asn": "AS1"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_block_rejects_bad_address(client):
    resp = await client.post("/api/block", json={"address": "1.2.3"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_unblock(client):
    await client.post("/api/block", json={"address": "1.2.3.4", "port_scope": "ssh"})
    resp = await client.post("/api/unblock", json={"address": "1.2.3.4"})
    assert resp.status_code == 404
    resp = await client.post("/api/unblock", json={"address": "1.2.3.4", "port_scope": "ssh"})
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_expire_and_expired_listing(client, manager):
    manager.store.insert("3.0.115.255", metadata=BlockMetadata(days=3, dt_added=ADDED))
    resp = await client.post("/api/expire", json={"dry_run": True})
    assert resp.json()["expired"] == 1

    resp = await client.get("/api/blocks", params={"status": "expired"})
    blocks = resp.json()["blocks"]
    assert [b["address"] for b in blocks] == ["3.0.115.255"]
    assert blocks[0]["status"] == "Expired"


@pytest.mark.asyncio
async def test_search(client):
    await client.post("/api/block", json={"address": "188.166.0.0/16"})
    await client.post("/api/block", json={"address": "1.2.3.4"})
    resp = await client.get("/api/blocks/search", params={"country": "nl"})
    assert [b["address"] for b in resp.json()["blocks"]] == ["188.166.0.0/16"]
    resp = await client.get("/api/blocks/search", params={"prefix": "1."})
    assert [b["address"] for b in resp.json()["blocks"]] == ["1.2.3.4"]
    resp = await client.get("/api/blocks/search")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_reasons_and_export(client):
    resp = await client.get("/api/reasons")
    assert resp.json()["reasons"] == ["General", "SSH brute force"]

    await client.post("/api/block", json={"address": "1.2.3.4", "port_scope": "ssh"})
    resp = await client.get("/api/export")
    lines = resp.json()["lines"]
    assert len(lines) == 1
    assert lines[0].startswith("d=22|s=1.2.3.4")
