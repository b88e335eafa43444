"""File-backed KeyValueStoragePort: one JSON document per key.

Writes go to a temporary file in the same directory and are moved into place
with os.replace, so a crash mid-write leaves the previous blob intact.
"""
from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path
from typing import Optional

from jobtracker.core.interfaces.storage import KeyValueStoragePort
from jobtracker.core.settings import logger

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class JsonFileStorageAdapter(KeyValueStoragePort):
    def __init__(self, directory: str | os.PathLike) -> None:
        self._dir = Path(directory)
        os.makedirs(self._dir, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not key:
            raise ValueError("storage key must not be empty")
        return self._dir / f"{_SAFE_KEY.sub('_', key)}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.error(f"[storage] could not read {path} err={exc}")
            return None

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        fd, tmp = tempfile.mkstemp(dir=self._dir, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
