"""Batched pre-check of all requested jobs before any worker is created."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from pv_transfer.domain.entities import ConflictRecord, SkippedJob, TransferJob
from pv_transfer.domain.errors import ClusterGatewayError
from pv_transfer.domain.ports import ClusterGateway, ConflictPrompter, LocalStorage
from pv_transfer.domain.quantity import format_bytes
from pv_transfer.domain.transfer_types import ConflictKind, MergePolicy, TransferDirection

logger = logging.getLogger(__name__)

_DEFAULT_LOW_DISK_SPACE_BYTES = 1024**3


@dataclass(slots=True)
class PrecheckResult:
    """Accepted and skipped jobs, plus the conflicts that were negotiated."""

    accepted: list[TransferJob] = field(default_factory=list)
    skipped: list[SkippedJob] = field(default_factory=list)
    conflicts: list[ConflictRecord] = field(default_factory=list)


class PrecheckService:
    """Classify every job as ready, missing, exclusively mounted or overwriting.

    Conflicts are confirmed with one prompt per category; a declined prompt
    drops every job of that category from the queue.
    """

    def __init__(
        self,
        gateway: ClusterGateway,
        storage: LocalStorage,
        prompter: ConflictPrompter,
        *,
        low_disk_space_bytes: int = _DEFAULT_LOW_DISK_SPACE_BYTES,
    ) -> None:
        self._gateway = gateway
        self._storage = storage
        self._prompter = prompter
        self._low_disk_space_bytes = low_disk_space_bytes

    async def scan(self, jobs: Sequence[TransferJob]) -> PrecheckResult:
        result = PrecheckResult()
        candidates: list[TransferJob] = []
        for job in jobs:
            reason = await self._check_volume(job, result.conflicts)
            if reason is not None:
                logger.warning("Skipping %s: %s", job.label, reason)
                result.skipped.append(SkippedJob(job=job, reason=reason))
                continue
            detail = await self._existing_destination(job)
            if detail is not None:
                result.conflicts.append(
                    ConflictRecord(job=job, kind=ConflictKind.DESTINATION_EXISTS, detail=detail)
                )
            candidates.append(job)

        rejected = await self._negotiate(result.conflicts)
        for job in candidates:
            reason = rejected.get(job.job_id)
            if reason is None:
                result.accepted.append(job)
            else:
                logger.warning("Skipping %s: %s", job.label, reason)
                result.skipped.append(SkippedJob(job=job, reason=reason))

        await self._warn_low_disk_space(result.accepted)
        return result

    async def _existing_destination(self, job: TransferJob) -> str | None:
        if job.direction is TransferDirection.IMPORT:
            if job.merge_policy is not MergePolicy.CLEAR:
                return None
            if job.target is not None and job.target.create_volume:
                return None
            return f"existing data in {job.volume.display} will be deleted"
        if await asyncio.to_thread(self._storage.exists, job.local_path):
            return f"{job.local_path} already exists"
        return None

    async def _check_volume(
        self,
        job: TransferJob,
        conflicts: list[ConflictRecord],
    ) -> str | None:
        """Return a skip reason, or record conflicts and return `None`."""

        if job.target is not None and job.target.create_volume:
            return None

        try:
            volume = await self._gateway.get_volume(job.volume)
        except ClusterGatewayError as exc:
            return f"could not read volume: {exc}"
        if volume is None:
            return "volume not found"
        if not volume.is_bound:
            logger.warning("Volume %s is %s, not Bound.", job.label, volume.phase or "unknown")
        if not volume.is_exclusive:
            return None

        try:
            holders = await self._gateway.list_pods_using_volume(job.volume)
        except ClusterGatewayError as exc:
            return f"could not list pods using volume: {exc}"
        if holders:
            names = tuple(pod.name for pod in holders)
            conflicts.append(
                ConflictRecord(
                    job=job,
                    kind=ConflictKind.EXCLUSIVE_ATTACH,
                    detail=f"{', '.join(volume.access_modes)} volume mounted by {', '.join(names)}",
                    holders=names,
                )
            )
        return None

    async def _negotiate(self, conflicts: Sequence[ConflictRecord]) -> dict[str, str]:
        """Ask once per conflict category; return job ids that were declined."""

        rejected: dict[str, str] = {}
        attach = [item for item in conflicts if item.kind is ConflictKind.EXCLUSIVE_ATTACH]
        if attach and not self._prompter.confirm_exclusive_attach(attach):
            for item in attach:
                rejected.setdefault(item.job.job_id, f"exclusive-attach conflict: {item.detail}")

        existing = [
            item
            for item in conflicts
            if item.kind is ConflictKind.DESTINATION_EXISTS and item.job.job_id not in rejected
        ]
        if not existing:
            return rejected
        if not self._prompter.confirm_overwrite(existing):
            for item in existing:
                rejected[item.job.job_id] = f"destination exists: {item.detail}"
            return rejected

        for item in existing:
            if item.job.direction is not TransferDirection.EXPORT:
                continue
            logger.info("Removing existing %s before export.", item.job.local_path)
            try:
                await asyncio.to_thread(self._storage.remove, item.job.local_path)
            except OSError as exc:
                rejected[item.job.job_id] = f"could not remove {item.job.local_path}: {exc}"
        return rejected

    async def _warn_low_disk_space(self, jobs: Sequence[TransferJob]) -> None:
        directories = {
            job.local_path.parent
            for job in jobs
            if job.direction is TransferDirection.EXPORT
        }
        for directory in sorted(directories, key=Path.as_posix):
            try:
                free = await asyncio.to_thread(self._storage.free_bytes, directory)
            except OSError as exc:
                logger.debug("Could not read free space of %s: %s", directory, exc)
                continue
            if free < self._low_disk_space_bytes:
                logger.warning(
                    "Low disk space in %s: %s free.", directory, format_bytes(free)
                )


__all__ = ["PrecheckResult", "PrecheckService"]
