"""Archive codec implementations."""

from pv_transfer.infrastructure.archives.tar_archive_codec import TarArchiveCodec

__all__ = ["TarArchiveCodec"]
