"""Storage abstraction for workspace file operations."""
from __future__ import annotations

import mimetypes
import shutil
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

DEFAULT_MIME = 'application/octet-stream'


def guess_mime(name: str) -> str:
    mime, _ = mimetypes.guess_type(name)
    return mime or DEFAULT_MIME


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class Storage(ABC):
    """Abstract storage interface.

    All paths are relative to the workspace root, in posix form.
    Entries are dicts with: name, path, type ('dir' or 'file'),
    creationTime, lastChangeTime, lastModifiedTime and, for files,
    mime and size.
    """

    @abstractmethod
    def list_dir(self, path: str) -> list[dict[str, Any]]:
        """List directory contents, directories first."""
        ...

    @abstractmethod
    def stat(self, path: str) -> dict[str, Any]:
        """Return the entry for ``path``. Raises FileNotFoundError."""
        ...

    @abstractmethod
    def read_bytes(self, path: str) -> bytes:
        ...

    @abstractmethod
    def write_bytes(self, path: str, content: bytes) -> None:
        """Write content to file. Creates parent directories if needed."""
        ...

    @abstractmethod
    def make_dir(self, path: str) -> None:
        ...

    @abstractmethod
    def delete(self, path: str) -> None:
        """Delete file or directory recursively."""
        ...

    @abstractmethod
    def exists(self, path: str) -> bool:
        ...

    @abstractmethod
    def is_dir(self, path: str) -> bool:
        ...


class LocalStorage(Storage):
    """Local filesystem storage implementation."""

    def __init__(self, root: Path):
        self.root = Path(root).resolve()

    def _abs(self, path: Path | str) -> Path:
        """Convert relative path to absolute, validating it's within root.

        Raises:
            ValueError: If path escapes the root directory
        """
        if isinstance(path, str):
            path = Path(path.lstrip('/') or '.')
        resolved = (self.root / path).resolve()
        if not self._inside(resolved):
            raise ValueError(f'Path outside of workspace root: {path}')
        return resolved

    def _inside(self, p: Path) -> bool:
        resolved = p.resolve()
        return resolved == self.root or self.root in resolved.parents

    def _entry(self, p: Path) -> dict[str, Any]:
        st = p.stat()
        created = getattr(st, 'st_birthtime', None) or st.st_ctime
        entry: dict[str, Any] = {
            'name': p.name,
            'path': '/' + p.relative_to(self.root).as_posix() if p != self.root else '/',
            'type': 'dir' if p.is_dir() else 'file',
            'creationTime': _iso(created),
            'lastChangeTime': _iso(st.st_ctime),
            'lastModifiedTime': _iso(st.st_mtime),
        }
        if entry['type'] == 'file':
            entry['mime'] = guess_mime(p.name)
            entry['size'] = st.st_size
        return entry

    def list_dir(self, path: str) -> list[dict[str, Any]]:
        base = self._abs(path)
        if not base.is_dir():
            raise NotADirectoryError(f'Not a directory: {path}')
        entries = []
        for child in base.iterdir():
            # Symlinks leading out of the workspace are not part of it
            if not self._inside(child):
                continue
            try:
                entries.append(self._entry(child))
            except OSError:
                # Dangling symlink or entry removed while listing
                continue
        # Sort: directories first, then alphabetically by name (case-insensitive)
        return sorted(entries, key=lambda e: (e['type'] != 'dir', e['name'].lower()))

    def stat(self, path: str) -> dict[str, Any]:
        p = self._abs(path)
        if not p.exists():
            raise FileNotFoundError(f'Path not found: {path}')
        return self._entry(p)

    def read_bytes(self, path: str) -> bytes:
        return self._abs(path).read_bytes()

    def write_bytes(self, path: str, content: bytes) -> None:
        p = self._abs(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(content)

    def make_dir(self, path: str) -> None:
        self._abs(path).mkdir(parents=True, exist_ok=True)

    def delete(self, path: str) -> None:
        p = self._abs(path)
        if p == self.root:
            raise PermissionError('Refusing to delete the workspace root')
        if not p.exists():
            raise FileNotFoundError(f'Path not found: {path}')
        if p.is_dir():
            shutil.rmtree(p)
        else:
            p.unlink()

    def exists(self, path: str) -> bool:
        return self._abs(path).exists()

    def is_dir(self, path: str) -> bool:
        return self._abs(path).is_dir()
