"""No-op progress reporter."""

from __future__ import annotations

from pv_transfer.domain.entities import TransferJob
from pv_transfer.domain.monitoring_models import TransferProgressSnapshot
from pv_transfer.domain.ports import ProgressReporter


class NoopProgressReporter(ProgressReporter):
    """No-op implementation for runs without progress output."""

    def start(self, job: TransferJob, total_bytes: int | None) -> None:
        _ = (job, total_bytes)

    def update(self, snapshot: TransferProgressSnapshot) -> None:
        _ = snapshot

    def finish(self, job: TransferJob) -> None:
        _ = job


__all__ = ["NoopProgressReporter"]
