"""Sequential execution of transfer jobs with guaranteed worker cleanup."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from pv_transfer.application.runtime import CancellationToken, JobContext
from pv_transfer.application.services.precheck_service import PrecheckResult, PrecheckService
from pv_transfer.application.services.worker_pod_service import WorkerPodManager
from pv_transfer.domain.entities import (
    JobOutcome,
    ResolvedTarget,
    TransferJob,
    TransferReport,
    VolumeUsage,
)
from pv_transfer.domain.errors import (
    MemoryExhaustedError,
    TransferError,
    TransferInterruptedError,
)
from pv_transfer.domain.ports import Clock, LocalStorage
from pv_transfer.domain.quantity import format_bytes
from pv_transfer.domain.transfer_types import (
    JobStatus,
    MergePolicy,
    TransferDirection,
    TransferFormat,
)
from pv_transfer.domain.volume_ref import VolumeRef

logger = logging.getLogger(__name__)


class TransferStreamer(Protocol):
    """Moves data through a ready worker."""

    async def clear_volume(self, context: JobContext) -> None:
        """Remove existing volume content."""

    async def transfer(self, context: JobContext, total_bytes: int | None = None) -> None:
        """Run the job's data movement to completion."""


class TargetProvisioner(Protocol):
    """Creates the namespace and claim an import target needs."""

    async def apply(self, target: ResolvedTarget, token: CancellationToken) -> None:
        """Provision missing resources for `target`."""


def build_export_jobs(
    volumes: Sequence[VolumeRef],
    transfer_format: TransferFormat,
    output_dir: Path,
) -> list[TransferJob]:
    """Plan one export job per distinct volume, named `{volume}@{namespace}{suffix}`."""

    jobs: list[TransferJob] = []
    seen: set[VolumeRef] = set()
    for volume in volumes:
        if volume in seen:
            logger.warning("Ignoring duplicate request for %s.", volume.display)
            continue
        seen.add(volume)
        jobs.append(
            TransferJob(
                job_id=f"export-{len(jobs) + 1}",
                direction=TransferDirection.EXPORT,
                volume=volume,
                local_path=output_dir / f"{volume.artifact_stem}{transfer_format.artifact_suffix}",
                transfer_format=transfer_format,
            )
        )
    return jobs


class TransferJobService:
    """Run accepted jobs one at a time and aggregate their outcomes."""

    def __init__(
        self,
        precheck: PrecheckService,
        pods: WorkerPodManager,
        streamer: TransferStreamer,
        storage: LocalStorage,
        clock: Clock,
        *,
        provisioner: TargetProvisioner | None = None,
    ) -> None:
        self._precheck = precheck
        self._pods = pods
        self._streamer = streamer
        self._storage = storage
        self._clock = clock
        self._provisioner = provisioner

    async def run(self, jobs: Sequence[TransferJob], token: CancellationToken) -> TransferReport:
        return await self.execute(await self.precheck(jobs), token)

    async def precheck(self, jobs: Sequence[TransferJob]) -> PrecheckResult:
        """Scan for conflicts; prompts happen here, before any worker exists."""

        return await self._precheck.scan(jobs)

    async def execute(self, result: PrecheckResult, token: CancellationToken) -> TransferReport:
        report = TransferReport()
        for skipped in result.skipped:
            report.add(
                JobOutcome(job=skipped.job, status=JobStatus.SKIPPED, message=skipped.reason)
            )

        if not result.accepted:
            logger.error("No jobs left to run after pre-check.")
            report.interrupted = token.cancelled
            return report

        total = len(result.accepted)
        for sequence, job in enumerate(result.accepted, start=1):
            if token.cancelled:
                report.add(
                    JobOutcome(job=job, status=JobStatus.INTERRUPTED, message="Not started.")
                )
                continue
            logger.info("[%d/%d] %s %s", sequence, total, job.direction.value, job.label)
            report.add(await self.run_job(job, token, sequence=sequence))

        report.interrupted = token.cancelled
        return report

    async def run_job(
        self,
        job: TransferJob,
        token: CancellationToken,
        *,
        sequence: int = 1,
    ) -> JobOutcome:
        """Run one job; the worker is torn down before this returns or raises."""

        context = JobContext(job=job, token=token, sequence=sequence)
        started = self._clock.monotonic()
        status = JobStatus.FAILED
        message = ""
        usage: VolumeUsage | None = None
        diagnostics_path: Path | None = None
        try:
            if job.target is not None and self._provisioner is not None:
                await self._provisioner.apply(job.target, token)
            await self._pods.provision(context)
            total_bytes = await self._total_bytes(context)
            if job.merge_policy is MergePolicy.CLEAR:
                await self._streamer.clear_volume(context)
            await self._streamer.transfer(context, total_bytes)
            usage = await self._pods.verify(context)
            status = JobStatus.SUCCEEDED
            message = f"{job.direction.value.capitalize()} of {job.label} completed."
        except TransferInterruptedError as exc:
            status = JobStatus.INTERRUPTED
            message = str(exc)
            logger.warning("%s", exc)
        except MemoryExhaustedError as exc:
            message = str(exc)
            logger.error("%s", exc)
            for event in exc.events:
                logger.error("  %s", event)
        except TransferError as exc:
            message = str(exc)
            logger.error("Job %s failed: %s", job.label, exc)
        finally:
            failed = status is not JobStatus.SUCCEEDED
            diagnostics_path = await self._pods.teardown(context, failed=failed)
            if failed and job.direction is TransferDirection.EXPORT:
                await self._discard_partial(job.local_path)

        return JobOutcome(
            job=job,
            status=status,
            message=message,
            usage=usage,
            duration_seconds=self._clock.monotonic() - started,
            diagnostics_path=diagnostics_path,
        )

    async def _total_bytes(self, context: JobContext) -> int | None:
        job = context.job
        if job.direction is TransferDirection.IMPORT:
            return job.estimated_bytes
        if context.worker is None:
            return None
        usage = await self._pods.measure(context.worker)
        context.token.raise_if_cancelled()
        if usage is None:
            return None
        logger.info(
            "%s holds %s in %d files.",
            job.label,
            format_bytes(usage.size_bytes),
            usage.file_count,
        )
        if job.transfer_format is TransferFormat.COMPRESSED:
            return None
        return usage.size_bytes

    async def _discard_partial(self, path: Path) -> None:
        if not await asyncio.to_thread(self._storage.exists, path):
            return
        try:
            await asyncio.to_thread(self._storage.remove, path)
            logger.info("Removed incomplete %s.", path)
        except OSError as exc:
            logger.warning("Could not remove incomplete %s: %s", path, exc)


__all__ = [
    "TargetProvisioner",
    "TransferJobService",
    "TransferStreamer",
    "build_export_jobs",
]
