"""Durable storage for transport session credentials."""

from __future__ import annotations

import asyncio
import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

from loguru import logger


class CredentialStore:
    """
    Persists the opaque credential blob handed out by the transport.

    Every save is an atomic temp-file + rename followed by fsync, serialized
    with loads under one lock, so a reconnect never reads a half-written or
    stale file.
    """

    FILENAME = "creds.json"

    def __init__(self, auth_dir: Path):
        self.auth_dir = Path(auth_dir).expanduser()
        self.path = self.auth_dir / self.FILENAME
        self._lock = asyncio.Lock()

    def exists(self) -> bool:
        return self.path.exists()

    async def load(self) -> dict[str, Any] | None:
        """Return the stored credentials, or None when pairing is required."""
        async with self._lock:
            if not self.path.exists():
                return None
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Failed to read credentials from {self.path}: {e}")
                return None
            if not isinstance(data, dict):
                logger.error(f"Ignoring malformed credentials file {self.path}")
                return None
            return data

    async def save(self, credentials: dict[str, Any]) -> None:
        """Write credentials durably; raises OSError if the write fails."""
        async with self._lock:
            self._write(credentials)

    async def flush(self) -> None:
        """Wait for any in-progress write to finish."""
        async with self._lock:
            return

    def clear(self) -> bool:
        """Delete all stored credentials. Returns True if anything was removed."""
        if not self.auth_dir.exists():
            return False
        shutil.rmtree(self.auth_dir)
        return True

    def _write(self, credentials: dict[str, Any]) -> None:
        self.auth_dir.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=self.auth_dir,
            prefix=f".{self.FILENAME}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(credentials, f, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            Path(temp_path).replace(self.path)
        except OSError:
            Path(temp_path).unlink(missing_ok=True)
            raise
