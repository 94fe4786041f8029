#!/usr/bin/env python3
"""
Storage collaborator

The scanner only talks to storage through four calls: discover_shares,
list_directory, read_file and scan_media_files. LocalShareStorage serves
them from a mounted share (SMB/NFS mount or plain directory). RawFile paths
are relative to the share root, so item ids survive a change of mount point.
"""

import logging
import os
from pathlib import Path, PurePosixPath
from typing import List, Optional, Protocol, runtime_checkable

from mediacat.constants import VIDEO_EXTENSIONS
from mediacat.exceptions import StorageError
from mediacat.models import RawFile

logger = logging.getLogger(__name__)


@runtime_checkable
class Storage(Protocol):
    def discover_shares(self) -> List[str]: ...

    def list_directory(self, share: str, path: str = '') -> List[RawFile]: ...

    def read_file(self, path: str, length: Optional[int] = None) -> bytes: ...

    def scan_media_files(self, root_path: str = '') -> List[RawFile]: ...


class LocalShareStorage:
    """Storage backed by a directory on the local filesystem"""

    def __init__(self, share_root: Path):
        self.share_root = Path(share_root)

    def _resolve(self, relative: str) -> Path:
        target = (self.share_root / relative).resolve()
        root = self.share_root.resolve()
        if target != root and root not in target.parents:
            raise StorageError(f"Path escapes share root: {relative}")
        return target

    def _relative(self, path: Path) -> str:
        return PurePosixPath(path.relative_to(self.share_root.resolve())).as_posix()

    def _raw_file(self, path: Path) -> RawFile:
        stat = path.stat()
        return RawFile(
            path=self._relative(path),
            display_name=path.name,
            size=0 if path.is_dir() else stat.st_size,
            modified_time=stat.st_mtime,
            is_directory=path.is_dir(),
        )

    def connect(self):
        if not self.share_root.is_dir():
            raise StorageError(f"Share not reachable: {self.share_root}")
        logger.info(f"Connected to share: {self.share_root}")

    def discover_shares(self) -> List[str]:
        """Top-level folders of the mounted share"""
        self.connect()
        return sorted(
            p.name for p in self.share_root.iterdir()
            if p.is_dir() and not p.name.startswith('.')
        )

    def list_directory(self, share: str, path: str = '') -> List[RawFile]:
        directory = self._resolve(str(PurePosixPath(share) / path))
        if not directory.is_dir():
            raise StorageError(f"Folder not found: {share}/{path}".rstrip('/'))
        try:
            entries = sorted(directory.iterdir())
            return [self._raw_file(p) for p in entries if not p.name.startswith('.')]
        except OSError as e:
            raise StorageError(f"Cannot list {directory}: {e}") from e

    def read_file(self, path: str, length: Optional[int] = None) -> bytes:
        target = self._resolve(path)
        try:
            with open(target, 'rb') as f:
                return f.read(length) if length is not None else f.read()
        except OSError as e:
            raise StorageError(f"Cannot read {path}: {e}") from e

    def scan_media_files(self, root_path: str = '') -> List[RawFile]:
        """Every video file below root_path, hidden folders skipped, sorted by path"""
        root = self._resolve(root_path)
        if not root.is_dir():
            raise StorageError(f"Folder not found: {root_path or self.share_root}")

        found: List[RawFile] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith('.'))
            for name in sorted(filenames):
                if name.startswith('.') or Path(name).suffix.lower() not in VIDEO_EXTENSIONS:
                    continue
                try:
                    found.append(self._raw_file(Path(dirpath) / name))
                except OSError as e:
                    logger.warning(f"Skipping unreadable file {name}: {e}")

        logger.info(f"Found {len(found)} media files under '{root_path or '.'}'")
        return found
