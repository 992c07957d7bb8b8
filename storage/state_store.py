"""Persistent key-value state store backed by JSON files."""

from __future__ import annotations

import json
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from config.settings import settings

CONFIG_KEY = "config"
STATE_KEY = "state"


class StateStore:
    """
    Small durable mapping that survives process restart.

    Each key is one flat JSON record stored as ``state_dir/<key>.json``.
    There is no in-memory cache: every ``get`` reads the file, so a freshly
    started process sees exactly what the previous one wrote. ``set`` is the
    only mutation: it shallow-merges into the existing record, stamps
    ``updatedAt`` and replaces the file atomically. There is no multi-key
    transaction.
    """

    def __init__(self, state_dir: Optional[str] = None) -> None:
        self._state_dir = Path(state_dir or settings.state_dir)
        self._state_dir.mkdir(parents=True, exist_ok=True)

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _record_file(self, key: str) -> Path:
        safe = key.lower().replace(" ", "_").replace("/", "_")
        return self._state_dir / f"{safe}.json"

    def _write(self, path: Path, record: Dict[str, Any]) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self._state_dir, prefix=f".{path.stem}-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(record, fh, indent=2, default=str)
            os.replace(tmp_path, path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    @staticmethod
    def _next_timestamp(previous: Any) -> int:
        now = int(time.time() * 1000)
        if isinstance(previous, int) and now <= previous:
            return previous + 1
        return now

    # ── Public API ────────────────────────────────────────────────────────────

    def get(self, key: str) -> Dict[str, Any]:
        """Return the record stored under ``key`` or an empty dict."""
        path = self._record_file(key)
        if not path.exists():
            return {}
        try:
            with open(path, "r", encoding="utf-8") as fh:
                record = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(f"Failed to load {path}: {exc}")
            return {}
        return record if isinstance(record, dict) else {}

    def set(self, key: str, partial: Dict[str, Any]) -> Dict[str, Any]:
        """Shallow-merge ``partial`` into the record, stamp ``updatedAt`` and persist it."""
        current = self.get(key)
        record = {**current, **partial}
        record["updatedAt"] = self._next_timestamp(current.get("updatedAt"))
        self._write(self._record_file(key), record)
        logger.debug(f"State store: wrote '{key}' ({len(partial)} fields)")
        return record
