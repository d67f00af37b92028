"""Local filesystem adapter for artifacts and import sources."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from pv_transfer.domain.entities import VolumeUsage


class LocalFilesystem:
    """Measure, create and remove local paths."""

    def exists(self, path: Path) -> bool:
        return path.exists() or path.is_symlink()

    def measure(self, path: Path) -> VolumeUsage:
        """Sum regular file sizes below `path`; files vanishing mid-walk are ignored."""

        if path.is_file():
            return VolumeUsage(size_bytes=path.stat().st_size, file_count=1)

        size = 0
        count = 0
        for root, _, files in os.walk(path):
            for name in files:
                try:
                    stat = os.lstat(os.path.join(root, name))
                except FileNotFoundError:
                    continue
                size += stat.st_size
                count += 1
        return VolumeUsage(size_bytes=size, file_count=count)

    def free_bytes(self, path: Path) -> int:
        existing = path
        while not existing.exists() and existing != existing.parent:
            existing = existing.parent
        return shutil.disk_usage(existing).free

    def remove(self, path: Path) -> None:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif self.exists(path):
            path.unlink()

    def ensure_directory(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)


__all__ = ["LocalFilesystem"]
