from abc import ABC, abstractmethod
from typing import Optional


class KeyValueStoragePort(ABC):
    """Keyed blob storage used to persist the job history between restarts."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored blob or None."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass
