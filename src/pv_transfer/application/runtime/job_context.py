"""Per-job runtime state owned by the sequencer."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from pv_transfer.application.runtime.cancellation import CancellationToken
from pv_transfer.domain.entities import TransferJob, WorkerPod


@dataclass(slots=True)
class JobContext:
    """Everything cleanup needs to know about the job in flight."""

    job: TransferJob
    token: CancellationToken
    sequence: int = 1
    worker: WorkerPod | None = None
    stream_task: asyncio.Task[int] | None = None


__all__ = ["JobContext"]
