"""
IPManage — Firewall reload.

Runs the configured reload command (``csf -ra`` by default) so the
firewall picks up a freshly exported deny list. Honours ``dry_run``.
"""

from __future__ import annotations

import logging
import subprocess
from typing import Optional

from ipmanage.config import Settings, settings as default_settings

logger = logging.getLogger("ipmanage.mitigation.firewall")


def build_command(cfg: Settings, ask_password: bool = False) -> tuple[list[str], Optional[str]]:
    """
    Command line and stdin input for the reload.

    With a configured sudo password (and ``ask_password`` False) the
    password is piped to ``sudo -S``; otherwise sudo prompts itself.
    """
    command = list(cfg.reload_command)
    if not cfg.reload_use_sudo:
        return command, None
    if cfg.sudo_password and not ask_password:
        return ["sudo", "-S", *command], cfg.sudo_password + "\n"
    return ["sudo", *command], None


def reload_firewall(
    cfg: Optional[Settings] = None,
    ask_password: bool = False,
    dry_run: Optional[bool] = None,
) -> bool:
    """Reload the firewall. Returns True if the command succeeded."""
    cfg = cfg or default_settings
    dry_run = dry_run if dry_run is not None else cfg.dry_run
    command, stdin = build_command(cfg, ask_password)

    if dry_run:
        logger.info("[DRY-RUN] Would reload firewall: %s", " ".join(command))
        return True

    try:
        result = subprocess.run(
            command,
            input=stdin,
            # An interactive sudo prompt needs the terminal.
            capture_output=stdin is not None or not ask_password,
            text=True,
            check=True,
            timeout=cfg.reload_timeout,
        )
    except subprocess.CalledProcessError as e:
        logger.error("Firewall reload failed (exit %d): %s", e.returncode, (e.stderr or "").strip())
        return False
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        logger.error("Firewall reload failed: %s", e)
        return False

    if result.stdout:
        logger.info("Firewall reload output: %s", result.stdout.strip())
    return True
