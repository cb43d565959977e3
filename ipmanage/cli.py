"""
IPManage — Command Line Interface.

Typer commands over the block manager: block, unblock, list, expire,
import, export and firewall reload.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from ipmanage.blocklist.errors import BlockListError
from ipmanage.blocklist.models import InsertOutcome
from ipmanage.config import Settings, settings
from ipmanage.manager import BlockManager, create_manager

app = typer.Typer(help="Manage a deduplicated IPv4 firewall block list.")

log = logging.getLogger("ipmanage.cli")

RULE = "-" * 30

_OUTCOME_TEXT = {
    InsertOutcome.INSERTED: "Added",
    InsertOutcome.REACTIVATED: "Restored from expired record",
    InsertOutcome.ALREADY_PRESENT: "Already listed via",
    InsertOutcome.ALREADY_COVERED: "Already covered via",
}


def _manager(ctx: typer.Context) -> BlockManager:
    if ctx.obj is None:
        ctx.obj = create_manager(ctx.meta["settings"])
    return ctx.obj


def _fail(message: str) -> None:
    typer.echo(message, err=True)
    raise typer.Exit(code=1)


def _echo_block(lines: list[str]) -> None:
    typer.echo(RULE)
    for line in lines:
        typer.echo(line)
    typer.echo(RULE)


def _parse_reason(reason: Optional[str]) -> Optional[int | str]:
    """Numeric reasons are catalog indices, anything else is free text."""
    if reason is not None and reason.isdigit():
        return int(reason)
    return reason


@app.callback()
def main_callback(
        ctx: typer.Context,
        data_dir: Optional[Path] = typer.Option(
            None,
            "--data-dir",
            help="Directory holding blocks.json, policy.yml and the export file.",
        ),
        log_level: Optional[str] = typer.Option(
            None, "--log-level", help="debug | info | warning | error | critical",
        ),
):
    """Set up logging and settings for every command."""
    update = {}
    if data_dir is not None:
        update["data_dir"] = str(data_dir)
    if log_level is not None:
        update["log_level"] = log_level.lower()
    try:
        cfg = Settings(**{**settings.model_dump(), **update})
    except ValidationError as exc:
        raise typer.BadParameter(
            "; ".join(e["msg"] for e in exc.errors()), param_hint="'--log-level'",
        ) from exc

    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        force=True,
    )
    ctx.meta["settings"] = cfg


@app.command()
def lookup(ctx: typer.Context, ip: str = typer.Argument(..., help="Address to look up.")):
    """Print the whois fields for an address."""
    who = asyncio.run(_manager(ctx).whois.lookup(ip))
    if not who:
        _fail(f"No lookup data for {ip}.")
    for key, value in who.items():
        typer.echo(f"{key}: {value}")


@app.command()
def block(
        ctx: typer.Context,
        ip: str = typer.Argument(..., help="Address or CIDR to block."),
        ports: Optional[str] = typer.Option(None, "--ports", "-p", help="Port group id."),
        days: Optional[int] = typer.Option(None, "--days", "-d", help="Block days (0 = never)."),
        reason: Optional[str] = typer.Option(
            None, "--reason", "-r", help="Reason index (see 'reasons') or free text.",
        ),
        extra: Optional[str] = typer.Option(
            None, "--extra", "-x", help="Extra text appended to the reason.",
        ),
):
    """Block an address or CIDR block."""
    manager = _manager(ctx)
    try:
        result = asyncio.run(manager.block(
            ip, ports, days=days, reason=_parse_reason(reason), reason_extra=extra,
        ))
    except BlockListError as exc:
        _fail(str(exc))
        return

    if result.changed:
        typer.echo(f"{_OUTCOME_TEXT[result.outcome]}: {result.record.address}")
        for old in result.superseded:
            typer.echo(f"  superseded {old.address}")
    else:
        typer.echo(f"{_OUTCOME_TEXT[result.outcome]} {result.record.address}")


@app.command()
def unblock(
        ctx: typer.Context,
        ip: str = typer.Argument(..., help="Address or CIDR to unblock."),
        ports: Optional[str] = typer.Option(None, "--ports", "-p", help="Port group id."),
):
    """Remove an active block."""
    try:
        removed = _manager(ctx).unblock(ip, ports)
    except BlockListError as exc:
        _fail(str(exc))
        return
    if not removed:
        _fail(f"{ip} not found in the block list.")
    typer.echo(f"Removed {ip}")


@app.command("list")
def list_blocks(
        ctx: typer.Context,
        expired: bool = typer.Option(False, "--expired", help="List expired records instead."),
):
    """List active (or expired) blocks."""
    _echo_block(_manager(ctx).list_lines(expired=expired))


@app.command()
def expire(
        ctx: typer.Context,
        dry_run: bool = typer.Option(False, "--dry-run", help="Report without saving."),
):
    """Expire blocks whose block days have elapsed."""
    count = _manager(ctx).expire(dry_run=dry_run)
    typer.echo(f"Expired {count} records." if count else "No records to expire.")


@app.command("find-ip")
def find_ip(ctx: typer.Context, prefix: str = typer.Argument(..., help="Address prefix.")):
    """Find records whose address starts with a prefix."""
    manager = _manager(ctx)
    _echo_block(manager.find_lines(manager.store.find_by_prefix(prefix)))


@app.command("find-country")
def find_country(ctx: typer.Context, code: str = typer.Argument(..., help="Country code.")):
    """Find records for a country."""
    manager = _manager(ctx)
    _echo_block(manager.find_lines(manager.store.find_by_country(code.upper())))


@app.command()
def reasons(ctx: typer.Context):
    """List the configured reasons."""
    lines = _manager(ctx).reason_lines()
    if not lines:
        typer.echo("No reasons defined.")
    for line in lines:
        typer.echo(line)


@app.command("import")
def import_blocks(
        ctx: typer.Context,
        file: Path = typer.Argument(..., exists=True, dir_okay=False, help="One address per line."),
):
    """Block every address in a file."""
    report = asyncio.run(_manager(ctx).import_blocks(file))
    typer.echo(f"Attempted to import {report.attempted} records ({report.changed} added).")
    if report.errors:
        raise typer.Exit(code=1)


@app.command("import-export")
def import_export(
        ctx: typer.Context,
        file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Exported deny list."),
):
    """Re-import a previously exported firewall deny list."""
    report = asyncio.run(_manager(ctx).import_export_file(file))
    typer.echo(f"Attempted to import {report.attempted} records ({report.changed} added).")
    if report.errors:
        raise typer.Exit(code=1)


@app.command()
def export(
        ctx: typer.Context,
        output: Optional[Path] = typer.Option(None, "--output", "-o", help="Export file path."),
):
    """Write the firewall deny list for active blocks."""
    manager = _manager(ctx)
    try:
        lines = manager.export_lines()
    except BlockListError as exc:
        _fail(str(exc))
        return
    for line in lines:
        typer.echo(line)
    if manager.write_export(output) is None:
        raise typer.Exit(code=1)


@app.command()
def ftp(ctx: typer.Context):
    """Upload the export file over FTP."""
    if not _manager(ctx).upload():
        raise typer.Exit(code=1)


@app.command()
def reload(
        ctx: typer.Context,
        ask_pass: bool = typer.Option(False, "--ask-pass", help="Let sudo prompt for the password."),
):
    """Reload the firewall."""
    if not _manager(ctx).reload_firewall(ask_password=ask_pass):
        raise typer.Exit(code=1)


@app.command()
def serve(ctx: typer.Context):
    """Run the HTTP management API."""
    import uvicorn

    from ipmanage.main import create_app

    cfg = ctx.meta["settings"]
    uvicorn.run(
        create_app(cfg=cfg),
        host=cfg.host,
        port=cfg.port,
        log_level=cfg.log_level,
    )


def main() -> None:
    """Entry point for console_scripts."""
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Interrupted by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
