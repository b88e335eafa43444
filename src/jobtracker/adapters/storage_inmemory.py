"""In-memory implementation of KeyValueStoragePort.

Suitable for tests and ephemeral deployments; nothing survives a restart.
"""
from typing import Dict, Optional

from jobtracker.core.interfaces.storage import KeyValueStoragePort


class InMemoryStorageAdapter(KeyValueStoragePort):
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self.writes = 0

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self.writes += 1

    def delete(self, key: str) -> None:
        self._data.pop(key, None)
