"""
File storage abstraction.

Paths are relative POSIX strings ("invoices/42/attachments/a.pdf") resolved
against a storage root, mirroring how attachment records store file_path.
"""
import hashlib
import shutil
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import List, Optional, Union

from ddsportal.config import get_settings
from ddsportal.exceptions import StorageError


class Storage(ABC):
    """Hierarchical file storage interface."""

    @abstractmethod
    def list_directories(self, directory: str) -> List[str]:
        """Immediate subdirectories of a directory."""

    @abstractmethod
    def list_files(self, directory: str) -> List[str]:
        """Files directly inside a directory (no recursion)."""

    @abstractmethod
    def all_files(self, directory: str) -> List[str]:
        """Every file in a directory's subtree."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        pass

    @abstractmethod
    def last_modified(self, path: str) -> float:
        """Modification time as a UNIX timestamp."""

    @abstractmethod
    def size(self, path: str) -> int:
        pass

    @abstractmethod
    def read(self, path: str) -> bytes:
        pass

    @abstractmethod
    def write(self, path: str, content: bytes) -> None:
        pass

    @abstractmethod
    def copy(self, source: str, destination: str) -> None:
        pass

    @abstractmethod
    def delete(self, path: str) -> bool:
        pass

    @abstractmethod
    def delete_directory(self, directory: str) -> bool:
        pass

    @abstractmethod
    def path(self, path: str) -> Path:
        """Absolute filesystem path for a storage path."""

    def checksum(self, path: str) -> str:
        """MD5 hex digest of a stored file."""
        return hashlib.md5(self.read(path)).hexdigest()


class LocalStorage(Storage):
    """Storage backed by a directory on the local filesystem."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()

    def path(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise StorageError("Path escapes storage root", path=path)
        return self.root.joinpath(*relative.parts)

    def _relative(self, absolute: Path) -> str:
        return absolute.relative_to(self.root).as_posix()

    def list_directories(self, directory: str) -> List[str]:
        target = self.path(directory)
        if not target.is_dir():
            return []
        try:
            return sorted(self._relative(p) for p in target.iterdir() if p.is_dir())
        except OSError as e:
            raise StorageError(f"Failed to list directories: {e}", path=directory) from e

    def list_files(self, directory: str) -> List[str]:
        target = self.path(directory)
        if not target.is_dir():
            return []
        try:
            return sorted(self._relative(p) for p in target.iterdir() if p.is_file())
        except OSError as e:
            raise StorageError(f"Failed to list files: {e}", path=directory) from e

    def all_files(self, directory: str) -> List[str]:
        target = self.path(directory)
        if not target.is_dir():
            return []
        try:
            return sorted(self._relative(p) for p in target.rglob("*") if p.is_file())
        except OSError as e:
            raise StorageError(f"Failed to list files: {e}", path=directory) from e

    def exists(self, path: str) -> bool:
        return self.path(path).exists()

    def last_modified(self, path: str) -> float:
        try:
            return self.path(path).stat().st_mtime
        except OSError as e:
            raise StorageError(f"Failed to stat file: {e}", path=path) from e

    def size(self, path: str) -> int:
        try:
            return self.path(path).stat().st_size
        except OSError as e:
            raise StorageError(f"Failed to stat file: {e}", path=path) from e

    def read(self, path: str) -> bytes:
        try:
            return self.path(path).read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read file: {e}", path=path) from e

    def write(self, path: str, content: bytes) -> None:
        target = self.path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as e:
            raise StorageError(f"Failed to write file: {e}", path=path) from e

    def copy(self, source: str, destination: str) -> None:
        target = self.path(destination)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(self.path(source), target)
        except OSError as e:
            raise StorageError(f"Failed to copy file: {e}", path=source) from e

    def delete(self, path: str) -> bool:
        try:
            self.path(path).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete file: {e}", path=path) from e

    def delete_directory(self, directory: str) -> bool:
        target = self.path(directory)
        if not target.is_dir():
            return False
        try:
            shutil.rmtree(target)
            return True
        except OSError as e:
            raise StorageError(f"Failed to delete directory: {e}", path=directory) from e


# Global storage instance
_storage: Optional[Storage] = None


def get_storage() -> Storage:
    """Get the attachment storage rooted at the configured storage root."""
    global _storage
    if _storage is None:
        root = get_settings().storage_root
        root.mkdir(parents=True, exist_ok=True)
        _storage = LocalStorage(root)
    return _storage
