"""Device-local secret storage.

The identity provider never touches the filesystem directly; it is handed a
``SecureStore`` so tests can swap in :class:`InMemorySecureStore` and a shell
app can plug in its platform keychain.
"""

from __future__ import annotations

import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from wayfarer.errors import StorageUnavailable

_KEY_RE = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9._-]*$")


class SecureStore(ABC):
    """Minimal keychain-like capability: bytes in, bytes out, per key."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return the stored value or None; raise StorageUnavailable if unreadable."""

    @abstractmethod
    def set(self, key: str, value: bytes) -> None:
        """Persist ``value``; raise StorageUnavailable if it cannot be written."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""


class InMemorySecureStore(SecureStore):
    """Process-local store. ``available=False`` simulates a locked device."""

    def __init__(self, initial: Optional[Dict[str, bytes]] = None):
        self._items: Dict[str, bytes] = dict(initial or {})
        self._lock = threading.Lock()
        self.available = True
        self.writes = 0

    def get(self, key: str) -> Optional[bytes]:
        self._check()
        with self._lock:
            return self._items.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._check()
        with self._lock:
            self._items[key] = bytes(value)
            self.writes += 1

    def delete(self, key: str) -> None:
        self._check()
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def _check(self) -> None:
        if not self.available:
            raise StorageUnavailable("secure store is locked")


class FileSecureStore(SecureStore):
    """One owner-only file per key under ``directory``.

    Files are written to a temp name and moved into place so a crash never
    leaves a truncated secret behind. The directory should live outside any
    cloud-synced or backed-up location.
    """

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise ValueError(f"invalid store key: {key!r}")
        return self.directory / key

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageUnavailable(f"cannot read {path}: {exc}") from exc

    def set(self, key: str, value: bytes) -> None:
        path = self._path(key)
        tmp = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True, mode=0o700)
            # mkstemp creates a unique 0600 file; key names never start with a dot.
            fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
            with os.fdopen(fd, "wb") as fh:
                fh.write(value)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
            tmp = None
        except OSError as exc:
            raise StorageUnavailable(f"cannot write {path}: {exc}") from exc
        finally:
            if tmp is not None:
                try:
                    os.unlink(tmp)
                except OSError:
                    pass

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageUnavailable(f"cannot delete {path}: {exc}") from exc
