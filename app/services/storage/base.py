"""
StorageBackend abstract interface.
Generated invoice XML and downloaded insurer documents are kept here so a
submission can be re-sent or audited without rebuilding it.
"""

import abc
import re
from pathlib import Path


class StorageBackend(abc.ABC):
    @abc.abstractmethod
    def save(self, data: bytes, filename: str, subfolder: str = "") -> str:
        """Persist data and return the storage path/key."""

    @abc.abstractmethod
    def load(self, path: str) -> bytes:
        """Load and return raw bytes from storage path/key."""

    @abc.abstractmethod
    def exists(self, path: str) -> bool:
        """Return True if the path/key exists in storage."""


class LocalDiskStorage(StorageBackend):
    """Stores files under settings.local_storage_path."""

    def __init__(self, root: str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def save(self, data: bytes, filename: str, subfolder: str = "") -> str:
        target_dir = self.root / subfolder if subfolder else self.root
        target_dir.mkdir(parents=True, exist_ok=True)
        target_path = target_dir / safe_filename(filename)
        target_path.write_bytes(data)
        # Relative paths stay valid if the volume is mounted elsewhere
        return str(target_path.relative_to(self.root))

    def load(self, path: str) -> bytes:
        return (self.root / path).read_bytes()

    def exists(self, path: str) -> bool:
        return (self.root / path).exists()


def safe_filename(name: str) -> str:
    """Upstream references may contain '/' or ':'; keep them out of paths."""
    return re.sub(r"[^A-Za-z0-9._-]", "_", name) or "unnamed"


def get_storage() -> StorageBackend:
    """Factory — returns the configured storage backend."""
    from app.settings import settings

    if settings.storage_backend == "local":
        return LocalDiskStorage(settings.local_storage_path)
    raise ValueError(f"Unknown storage backend: {settings.storage_backend!r}")
