"""Tar archive codec built on the standard library tarfile module."""

from __future__ import annotations

import logging
import tarfile
import zlib
from collections.abc import Callable
from pathlib import Path

from pv_transfer.domain.errors import ResolutionError
from pv_transfer.domain.transfer_types import SourceKind

logger = logging.getLogger(__name__)

_GZIP_MAGIC = b"\x1f\x8b"
_TAR_MAGIC = b"ustar"
_TAR_MAGIC_OFFSET = 257
_GZIP_TRAILER_BYTES = 4
_GZIP_MIN_BYTES = 18
_GZIP_ISIZE_MODULUS = 2**32
_GZIP_FALLBACK_RATIO = 5


class _SinkWriter:
    """File-like adapter that forwards tarfile writes to a callback."""

    def __init__(self, sink: Callable[[bytes], None]) -> None:
        self._sink = sink

    def write(self, data: bytes) -> int:
        chunk = bytes(data)
        if chunk:
            self._sink(chunk)
        return len(chunk)

    def flush(self) -> None:
        return None


class TarArchiveCodec:
    """Detect, verify, size, create and extract tar streams."""

    def detect_kind(self, path: Path) -> SourceKind:
        if not path.exists():
            raise ResolutionError(f"{path} does not exist.")
        if path.is_dir():
            return SourceKind.DIRECTORY

        name = path.name.lower()
        if name.endswith((".tar.gz", ".tgz")):
            return SourceKind.TAR_GZ
        if name.endswith(".tar"):
            return SourceKind.TAR

        with path.open("rb") as handle:
            header = handle.read(_TAR_MAGIC_OFFSET + len(_TAR_MAGIC))
        if header.startswith(_GZIP_MAGIC):
            return SourceKind.TAR_GZ
        if header[_TAR_MAGIC_OFFSET:] == _TAR_MAGIC:
            return SourceKind.TAR
        raise ResolutionError(f"{path} is neither a directory nor a tar archive.")

    def estimate_uncompressed_size(self, path: Path, kind: SourceKind) -> int:
        """Archive size for tar; gzip ISIZE trailer for tar.gz, else 5x compressed size."""

        size = path.stat().st_size
        if kind is SourceKind.TAR:
            return size
        if kind is not SourceKind.TAR_GZ:
            raise ValueError(f"Cannot estimate size of a {kind} source from its file size.")

        fallback = size * _GZIP_FALLBACK_RATIO
        if size < _GZIP_MIN_BYTES or size >= _GZIP_ISIZE_MODULUS:
            return fallback
        with path.open("rb") as handle:
            handle.seek(-_GZIP_TRAILER_BYTES, 2)
            isize = int.from_bytes(handle.read(_GZIP_TRAILER_BYTES), "little")
        # ISIZE is stored modulo 2**32 and a multi-member file only records the last member.
        if isize < size:
            return fallback
        return isize

    def verify(self, path: Path, kind: SourceKind) -> bool:
        """Walk all members without extracting, like `tar -t`."""

        mode = "r:gz" if kind is SourceKind.TAR_GZ else "r:"
        try:
            with tarfile.open(path, mode) as archive:
                for _ in archive:
                    pass
        except (tarfile.TarError, OSError, EOFError, zlib.error) as exc:
            logger.warning("Archive %s failed integrity check: %s", path, exc)
            return False
        return True

    def write_directory(
        self,
        directory: Path,
        sink: Callable[[bytes], None],
        *,
        compress: bool = False,
    ) -> None:
        mode = "w|gz" if compress else "w|"
        with tarfile.open(
            fileobj=_SinkWriter(sink),  # type: ignore[arg-type]
            mode=mode,
            format=tarfile.PAX_FORMAT,
        ) as archive:
            archive.add(str(directory), arcname=".")


__all__ = ["TarArchiveCodec"]
