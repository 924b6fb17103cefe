import errno
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, List, NamedTuple


class DirEntry(NamedTuple):
    name: str
    size: int
    is_dir: bool
    modified: float = 0.0


class FileStore(ABC):
    """Byte-oriented hierarchical store addressed by absolute ``/``-separated paths.

    Failing operations raise OSError (FileNotFoundError, FileExistsError,
    PermissionError...). Translating those into replies is up to the caller.
    """

    @abstractmethod
    def exists(self, path: str) -> bool:
        pass

    @abstractmethod
    def is_dir(self, path: str) -> bool:
        pass

    @abstractmethod
    def size(self, path: str) -> int:
        pass

    @abstractmethod
    def modified(self, path: str) -> float:
        pass

    @abstractmethod
    def open_read(self, path: str) -> BinaryIO:
        pass

    @abstractmethod
    def open_write(self, path: str) -> BinaryIO:
        pass

    @abstractmethod
    def remove(self, path: str):
        pass

    @abstractmethod
    def rename(self, source: str, target: str):
        pass

    @abstractmethod
    def mkdir(self, path: str):
        pass

    @abstractmethod
    def rmdir(self, path: str):
        pass

    @abstractmethod
    def list_dir(self, path: str) -> List[DirEntry]:
        pass


class LocalFileStore(FileStore):
    """FileStore backed by a directory on the local disk"""

    def __init__(self, root: str = "ftp_storage"):
        self.root = Path(root).resolve()
        self.root.mkdir(exist_ok=True, parents=True)
        self.logger = logging.getLogger('ftpd.store')
        self.logger.info(f"File store root: {self.root}")

    def _real(self, path: str) -> Path:
        relative = path.replace('\\', '/').lstrip('/')
        if '\x00' in relative:
            raise OSError(errno.EINVAL, f"Invalid path: {path!r}")
        real = (self.root / relative).resolve()
        if real != self.root and self.root not in real.parents:
            raise PermissionError(f"Path escapes store root: {path}")
        return real

    def exists(self, path: str) -> bool:
        try:
            return self._real(path).exists()
        except OSError:
            return False

    def is_dir(self, path: str) -> bool:
        try:
            return self._real(path).is_dir()
        except OSError:
            return False

    def size(self, path: str) -> int:
        real = self._real(path)
        if real.is_dir():
            raise IsADirectoryError(path)
        return real.stat().st_size

    def modified(self, path: str) -> float:
        return self._real(path).stat().st_mtime

    def open_read(self, path: str) -> BinaryIO:
        return open(self._real(path), 'rb')

    def open_write(self, path: str) -> BinaryIO:
        return open(self._real(path), 'wb')

    def remove(self, path: str):
        real = self._real(path)
        if real.is_dir():
            raise IsADirectoryError(path)
        real.unlink()

    def rename(self, source: str, target: str):
        src = self._real(source)
        dst = self._real(target)
        if src == self.root:
            raise PermissionError("Cannot rename the store root")
        os.rename(src, dst)

    def mkdir(self, path: str):
        self._real(path).mkdir()

    def rmdir(self, path: str):
        real = self._real(path)
        if real == self.root:
            raise PermissionError("Cannot remove the store root")
        real.rmdir()

    def list_dir(self, path: str) -> List[DirEntry]:
        real = self._real(path)
        entries = []
        for item in sorted(real.iterdir(), key=lambda x: (not x.is_dir(), x.name.lower())):
            try:
                stat = item.stat()
            except OSError as e:
                self.logger.error(f"Error listing item {item}: {e}")
                continue
            is_dir = item.is_dir()
            entries.append(DirEntry(item.name, 0 if is_dir else stat.st_size, is_dir, stat.st_mtime))
        return entries
