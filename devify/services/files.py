"""
Path-addressed file service.

The executor only talks to disk through this interface, so tests can count
calls and a different host can swap in its own storage.
"""

import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List

from loguru import logger


@dataclass
class DirectoryEntry:
    name: str
    path: Path
    is_dir: bool
    size: int = 0


class FileService(ABC):
    """Read/write/list/delete/mkdir on absolute, already-sandboxed paths."""

    @abstractmethod
    def exists(self, path: Path) -> bool: ...

    @abstractmethod
    def is_dir(self, path: Path) -> bool: ...

    @abstractmethod
    def size(self, path: Path) -> int: ...

    @abstractmethod
    def read(self, path: Path) -> str: ...

    @abstractmethod
    def write(self, path: Path, content: str): ...

    @abstractmethod
    def list(self, path: Path) -> List[DirectoryEntry]: ...

    @abstractmethod
    def mkdir(self, path: Path): ...

    @abstractmethod
    def delete(self, path: Path): ...


class LocalFileService(FileService):
    """FileService backed by the local filesystem."""

    def exists(self, path: Path) -> bool:
        return path.exists()

    def is_dir(self, path: Path) -> bool:
        return path.is_dir()

    def size(self, path: Path) -> int:
        return path.stat().st_size

    def read(self, path: Path) -> str:
        return path.read_text(encoding="utf-8")

    def write(self, path: Path, content: str):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.debug(f"Wrote {path} ({len(content)} chars)")

    def list(self, path: Path) -> List[DirectoryEntry]:
        entries = []
        for item in sorted(path.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower())):
            is_dir = item.is_dir()
            try:
                size = 0 if is_dir else item.stat().st_size
            except OSError as e:
                # Dangling symlink or an entry removed mid-listing
                logger.debug(f"Skipping {item}: {e}")
                continue
            entries.append(DirectoryEntry(name=item.name, path=item, is_dir=is_dir, size=size))
        return entries

    def mkdir(self, path: Path):
        path.mkdir(parents=True, exist_ok=True)

    def delete(self, path: Path):
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink()
        logger.debug(f"Deleted {path}")
