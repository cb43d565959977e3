"""
IPManage — Configuration via Pydantic Settings.

All settings are loaded from environment variables or .env file.
Block policy (port groups, reasons, expiry days) lives in the YAML
policy catalog, see ``ipmanage.policy.catalog``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings loaded from env / .env."""

    # ── General ──────────────────────────────────────────────
    app_name: str = "IPManage"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"

    # ── Data files ───────────────────────────────────────────
    data_dir: str = Field(
        default="data", description="Directory holding the block list, policy and export",
    )
    blocks_file: str = Field(
        default="blocks.json", description="Block list file name inside data_dir",
    )
    policy_file: str = Field(
        default="policy.yml", description="YAML policy catalog inside data_dir",
    )
    export_file: str = Field(
        default="csf.deny", description="Firewall export file name inside data_dir",
    )

    # ── Whois lookup ─────────────────────────────────────────
    lookup_url: str = Field(
        default="http://ga1964.com/lookup.php",
        description="Whois-style lookup endpoint, queried with ?ip=<address>",
    )
    lookup_timeout: float = Field(
        default=10.0, description="Timeout in seconds for lookup requests",
    )

    # ── FTP upload ───────────────────────────────────────────
    ftp_host: Optional[str] = None
    ftp_user: Optional[str] = None
    ftp_password: Optional[str] = None
    ftp_port: int = 21
    ftp_secure: bool = False
    ftp_dest: str = "/"
    ftp_verbose: bool = False

    # ── Firewall reload ──────────────────────────────────────
    reload_command: list[str] = Field(
        default_factory=lambda: ["csf", "-ra"],
        description="Command that reloads the firewall after an export",
    )
    reload_use_sudo: bool = True
    sudo_password: Optional[str] = None
    reload_timeout: float = 60.0
    dry_run: bool = Field(
        default=False, description="Log firewall reloads instead of running them",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"debug", "info", "warning", "error", "critical"}
        if v.lower() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.lower()

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    @property
    def blocks_path(self) -> Path:
        return self.data_path / self.blocks_file

    @property
    def policy_path(self) -> Path:
        return self.data_path / self.policy_file

    @property
    def export_path(self) -> Path:
        return self.data_path / self.export_file

    model_config = {
        "env_prefix": "IPMANAGE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


# Singleton
settings = Settings()
