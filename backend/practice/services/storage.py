from __future__ import annotations
import logging
import os
from typing import List, Optional

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    pass


class LocalBucket:
    """A storage bucket backed by a directory (e.g. static/audio)."""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def _path(self, name: str) -> str:
        path = os.path.abspath(os.path.join(self.root, name))
        if path != self.root and not path.startswith(self.root + os.sep):
            raise StorageError(f"invalid object name: {name!r}")
        return path

    def list_root(self) -> List[str]:
        """Names of files and folders directly under the bucket root."""
        try:
            return sorted(os.listdir(self.root))
        except OSError as e:
            raise StorageError(f"cannot list bucket {self.root}: {e}") from e

    def exists(self, name: str) -> bool:
        return os.path.isfile(self._path(name))

    def download(self, name: str) -> Optional[bytes]:
        path = self._path(name)
        if not os.path.isfile(path):
            return None
        with open(path, "rb") as f:
            return f.read()

    def upload(self, name: str, data: bytes) -> str:
        path = self._path(name)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        logger.info("[storage] wrote %s (%d bytes)", name, len(data))
        return name

    def path_for(self, name: str) -> str:
        return self._path(name)
