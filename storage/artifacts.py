from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional

from settings import get_settings


class LocalArtifactStore:
    """Key/value object store for report exports and local backups.

    Objects live in memory and, when ``root_path`` is set, are mirrored to
    files under it so they survive a restart.
    """

    def __init__(self, name: str, root_path: Optional[Path] = None) -> None:
        self.name = name
        self._objects: Dict[str, bytes] = {}
        self.root_path = root_path
        self._lock = Lock()
        if root_path:
            root_path.mkdir(parents=True, exist_ok=True)

    def put_object(self, key: str, data: bytes) -> None:
        with self._lock:
            self._objects[key] = data
            if self.root_path:
                path = self.root_path / key
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(data)

    def get_object(self, key: str) -> bytes:
        with self._lock:
            data = self._objects.get(key)
            if data is not None:
                return data

        if self.root_path:
            path = self.root_path / key
            if path.is_file():
                data = path.read_bytes()
                with self._lock:
                    self._objects[key] = data
                return data

        raise KeyError(f"Object with key {key!r} not found in store {self.name!r}.")

    def delete_object(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)
            if self.root_path:
                (self.root_path / key).unlink(missing_ok=True)

    def list_objects(self, prefix: str = "") -> List[str]:
        with self._lock:
            keys = set(self._objects.keys())

        if self.root_path:
            for path in self.root_path.rglob("*"):
                if path.is_file():
                    keys.add(path.relative_to(self.root_path).as_posix())

        return sorted(key for key in keys if key.startswith(prefix))


@lru_cache
def build_default_artifact_store(
    root_path: Optional[str] = None,
) -> LocalArtifactStore:
    settings = get_settings()
    root = settings.artifact_root_path if root_path is None else root_path
    path = Path(root) if root else None
    return LocalArtifactStore(name="artifacts", root_path=path)
