"""Progress reporter that writes periodic log lines."""

from __future__ import annotations

import logging

from pv_transfer.domain.entities import TransferJob
from pv_transfer.domain.monitoring_models import TransferProgressSnapshot
from pv_transfer.domain.ports import ProgressReporter
from pv_transfer.domain.quantity import format_bytes

logger = logging.getLogger(__name__)

_DEFAULT_LOG_EVERY_SECONDS = 10.0


class LoggingProgressReporter(ProgressReporter):
    """Log progress at most once per interval, for non-interactive runs."""

    def __init__(self, log_every_seconds: float = _DEFAULT_LOG_EVERY_SECONDS) -> None:
        self._log_every_seconds = max(0.0, log_every_seconds)
        self._last_logged: float | None = None

    def start(self, job: TransferJob, total_bytes: int | None) -> None:
        self._last_logged = None
        if total_bytes:
            logger.info("Transferring %s (%s).", job.label, format_bytes(total_bytes))
        else:
            logger.info("Transferring %s.", job.label)

    def update(self, snapshot: TransferProgressSnapshot) -> None:
        if (
            self._last_logged is not None
            and snapshot.elapsed_seconds - self._last_logged < self._log_every_seconds
        ):
            return
        self._last_logged = snapshot.elapsed_seconds
        percent = snapshot.percent_complete
        logger.info(
            "%s: %s%s at %s/s (avg %s/s)%s",
            snapshot.label,
            format_bytes(snapshot.bytes_done),
            "" if percent is None else f" ({percent:.1f}%)",
            format_bytes(snapshot.rate),
            format_bytes(snapshot.average_rate),
            "" if snapshot.files_done is None else f", {snapshot.files_done} files",
        )

    def finish(self, job: TransferJob) -> None:
        self._last_logged = None


__all__ = ["LoggingProgressReporter"]
