"""
IPManage — FTP upload of the exported deny list.
"""

from __future__ import annotations

import ftplib
import logging
import posixpath
from pathlib import Path
from typing import Optional

from ipmanage.config import Settings, settings as default_settings

logger = logging.getLogger("ipmanage.export.ftp")


def upload_export(source: Path, cfg: Optional[Settings] = None) -> bool:
    """
    Upload ``source`` to ``ftp_dest/<file name>`` on the configured host.

    Uses explicit TLS when ``ftp_secure`` is set. Returns True on success.
    """
    cfg = cfg or default_settings
    missing = [k for k in ("ftp_host", "ftp_user", "ftp_password") if not getattr(cfg, k)]
    if missing:
        logger.error("FTP upload requested but %s not configured", ", ".join(missing))
        return False
    if not source.exists():
        logger.error("Source file %s not found.", source)
        return False

    dest = posixpath.join(cfg.ftp_dest, source.name)
    ftp: ftplib.FTP = ftplib.FTP_TLS() if cfg.ftp_secure else ftplib.FTP()
    if cfg.ftp_verbose:
        ftp.set_debuglevel(1)

    try:
        ftp.connect(cfg.ftp_host, cfg.ftp_port, timeout=30)
        ftp.login(cfg.ftp_user, cfg.ftp_password)
        if isinstance(ftp, ftplib.FTP_TLS):
            ftp.prot_p()
    except (ftplib.Error, OSError) as exc:
        logger.error("FTP connection error: %s", exc)
        ftp.close()
        return False

    try:
        logger.info("Uploading %s to %s", source, dest)
        with open(source, "rb") as f:
            ftp.storbinary(f"STOR {dest}", f)
        return True
    except (ftplib.Error, OSError) as exc:
        logger.error("FTP transfer error: %s", exc)
        return False
    finally:
        try:
            ftp.quit()
        except (ftplib.Error, OSError):
            ftp.close()
