"""
IPManage — JSON block list file.

The whole list is stored as one flat JSON array of records and rewritten
on every save through a temporary file and an atomic rename.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from ipmanage.blocklist.errors import BlockListError, PersistenceError
from ipmanage.blocklist.models import BlockRecord

logger = logging.getLogger("ipmanage.storage.json")


def write_atomic(path: Path, text: str) -> None:
    """Write ``text`` to ``path`` via a sibling temp file and os.replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(path.name + ".tmp")
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise


class BlockFile:
    """Loads and saves the block list as JSON."""

    def __init__(self, path: Path | str, indent: int | None = 2) -> None:
        self.path = Path(path)
        self.indent = indent

    def read(self) -> list[dict[str, Any]]:
        """Raw records from disk. Raises PersistenceError."""
        if not self.path.exists():
            raise PersistenceError(f"File does not exist: {self.path}")
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"{self.path}: {exc}") from exc
        if not isinstance(data, list):
            raise PersistenceError(f"{self.path}: expected a JSON list of records")
        return data

    def write(self, records: list[BlockRecord]) -> None:
        """Raises PersistenceError."""
        payload = [r.to_dict() for r in records]
        try:
            write_atomic(self.path, json.dumps(payload, indent=self.indent))
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"{self.path}: {exc}") from exc

    def load(self) -> list[BlockRecord]:
        """Load all records. Failures are logged and yield an empty list."""
        if not self.path.exists():
            logger.warning("IP list %s does not exist yet, starting empty", self.path)
            return []
        try:
            raw = self.read()
        except PersistenceError as exc:
            logger.error("Failed to read IP list: %s", exc)
            return []

        records: list[BlockRecord] = []
        for index, item in enumerate(raw):
            if not isinstance(item, dict):
                logger.error("Skipping record %d in %s: not an object", index, self.path)
                continue
            try:
                records.append(BlockRecord.from_dict(item))
            except (BlockListError, ValueError, TypeError) as exc:
                logger.error("Skipping record %d in %s: %s", index, self.path, exc)
        logger.debug("Read %d record(s) from %s", len(records), self.path)
        return records

    def save(self, records: list[BlockRecord]) -> bool:
        """Save all records. Failures are logged; returns success."""
        try:
            self.write(records)
        except PersistenceError as exc:
            logger.error("Failed to write IP list: %s", exc)
            return False
        logger.debug("Wrote %d record(s) to %s", len(records), self.path)
        return True
