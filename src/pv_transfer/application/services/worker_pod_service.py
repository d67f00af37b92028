"""Worker pod lifecycle: provisioning, readiness, verification and teardown."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable
from pathlib import Path
from typing import TypeVar

from pv_transfer.application.runtime import CancellationToken, JobContext, TickOutcome, Ticker
from pv_transfer.domain.cluster_models import ClusterEvent, WorkerPodSpec
from pv_transfer.domain.entities import DiagnosticSnapshot, TransferJob, VolumeUsage, WorkerPod
from pv_transfer.domain.errors import (
    ClusterGatewayError,
    TransferInterruptedError,
    WorkerSchedulingError,
)
from pv_transfer.domain.ports import Clock, ClusterGateway, DiagnosticsSink
from pv_transfer.domain.quantity import Quantity
from pv_transfer.domain.transfer_types import TransferDirection, WorkerState

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

_DEFAULT_MEMORY_LIMIT = Quantity.parse("2Gi")
_MEMORY_TIERS: tuple[tuple[Quantity, Quantity], ...] = (
    (Quantity.parse("1024Gi"), Quantity.parse("16Gi")),
    (Quantity.parse("500Gi"), Quantity.parse("8Gi")),
    (Quantity.parse("100Gi"), Quantity.parse("4Gi")),
)
_MAX_NAME_VOLUME_CHARS = 40
_MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
_MANAGED_BY_VALUE = "pv-transfer"


def select_memory_limit(capacity: Quantity | None) -> Quantity:
    """Map declared claim capacity to the worker memory limit tier."""

    if capacity is None:
        return _DEFAULT_MEMORY_LIMIT
    for threshold, limit in _MEMORY_TIERS:
        if capacity > threshold:
            return limit
    return _DEFAULT_MEMORY_LIMIT


def build_worker_pod_name(
    direction: TransferDirection,
    volume_name: str,
    *,
    timestamp: int,
    sequence: int,
) -> str:
    """Return `{direction}-{volume}-{unix ts}-{sequence}` as a valid pod name."""

    slug = re.sub(r"[^a-z0-9-]", "-", volume_name.lower())
    slug = re.sub(r"-{2,}", "-", slug).strip("-")[:_MAX_NAME_VOLUME_CHARS].rstrip("-")
    return f"{direction.value}-{slug or 'volume'}-{timestamp}-{sequence}"


def _parse_usage(size_output: str, count_output: str) -> VolumeUsage:
    size_kib = int(size_output.split()[0])
    file_count = int(count_output.strip().splitlines()[-1].strip())
    return VolumeUsage(size_bytes=size_kib * 1024, file_count=file_count)


class WorkerPodManager:
    """Create, await, verify and delete the worker pod of one job."""

    def __init__(
        self,
        gateway: ClusterGateway,
        clock: Clock,
        diagnostics: DiagnosticsSink,
        *,
        image: str = "busybox:latest",
        mount_path: str = "/data",
        memory_request: Quantity | None = None,
        max_lifetime_seconds: int = 86_400,
        ready_timeout_seconds: float = 120.0,
        poll_interval_seconds: float = 2.0,
        deletion_timeout_seconds: float = 60.0,
        log_tail_lines: int = 1000,
    ) -> None:
        self._gateway = gateway
        self._clock = clock
        self._diagnostics = diagnostics
        self._image = image
        self._mount_path = mount_path
        self._memory_request = memory_request or Quantity.parse("512Mi")
        self._max_lifetime_seconds = max(1, max_lifetime_seconds)
        self._ready_timeout_seconds = ready_timeout_seconds
        self._poll_interval_seconds = poll_interval_seconds
        self._deletion_timeout_seconds = deletion_timeout_seconds
        self._log_tail_lines = log_tail_lines

    @property
    def mount_path(self) -> str:
        return self._mount_path

    async def provision(self, context: JobContext) -> WorkerPod:
        """Create the worker for the job in `context` and wait until it is ready.

        The worker is attached to the context before the create call so that
        teardown can always find it, even when creation or readiness fails.
        """

        job = context.job
        context.token.raise_if_cancelled()
        capacity = await self._declared_capacity(job)
        worker = WorkerPod(
            name=build_worker_pod_name(
                job.direction,
                job.volume.name,
                timestamp=int(self._clock.now().timestamp()),
                sequence=context.sequence,
            ),
            namespace=job.volume.namespace,
            volume=job.volume,
            memory_limit=select_memory_limit(capacity),
            mount_path=self._mount_path,
        )
        context.worker = worker
        if worker.memory_limit > _DEFAULT_MEMORY_LIMIT:
            logger.warning(
                "Large volume %s (%s): using worker memory limit %s. "
                "Uncompressed or directory formats need less memory.",
                job.label,
                capacity,
                worker.memory_limit,
            )

        worker.transition(WorkerState.CREATING)
        try:
            await self._gateway.create_pod(self._build_spec(worker))
        except ClusterGatewayError as exc:
            raise WorkerSchedulingError(
                f"Failed to create worker pod {worker.name}: {exc}"
            ) from exc
        worker.created = True
        logger.info("Created worker pod %s for %s.", worker.name, job.label)

        worker.transition(WorkerState.AWAITING_READY)
        await self._await_ready(context, worker)
        worker.transition(WorkerState.READY)
        return worker

    async def measure(self, worker: WorkerPod) -> VolumeUsage | None:
        """Best-effort size and file count of the mounted volume."""

        try:
            size = await self._gateway.exec_in_pod(
                worker.name, worker.namespace, ["du", "-sk", worker.mount_path]
            )
            count = await self._gateway.exec_in_pod(
                worker.name,
                worker.namespace,
                ["sh", "-c", f"find {worker.mount_path} -type f | wc -l"],
            )
        except ClusterGatewayError as exc:
            logger.warning("Could not measure volume through %s: %s", worker.name, exc)
            return None

        if not size.success or not count.success:
            logger.warning(
                "Could not measure volume through %s: %s",
                worker.name,
                (size.stderr or count.stderr).strip(),
            )
            return None
        try:
            return _parse_usage(size.stdout, count.stdout)
        except (IndexError, ValueError):
            logger.warning("Unexpected du/find output from %s: %r", worker.name, size.stdout)
            return None

    async def verify(self, context: JobContext) -> VolumeUsage | None:
        """Record transferred size and file count; never fails the job."""

        worker = self._require_worker(context)
        if worker.state is WorkerState.RUNNING:
            worker.transition(WorkerState.VERIFYING)
        else:
            logger.debug("Verifying %s from state %s.", worker.name, worker.state)
        usage = await self.measure(worker)
        if usage is not None:
            logger.info(
                "Verified %s: %d bytes in %d files.",
                context.job.label,
                usage.size_bytes,
                usage.file_count,
            )
        return usage

    async def teardown(self, context: JobContext, *, failed: bool) -> Path | None:
        """Capture diagnostics, then delete the worker. Safe to call more than once."""

        await self._cancel_stream(context)
        worker = context.worker
        if worker is None or worker.deleted:
            return None

        worker.transition(WorkerState.TERMINATING)
        diagnostics_path: Path | None = None
        if worker.created:
            snapshot = await self.capture_snapshot(worker)
            diagnostics_path = await asyncio.to_thread(self._diagnostics.persist, snapshot)
            if failed:
                events = "\n".join(f"  {event.format_line()}" for event in snapshot.events)
                logger.warning(
                    "Worker %s: %s\n%s\nFull diagnostics: %s",
                    worker.name,
                    snapshot.status,
                    events or "  (no events)",
                    diagnostics_path or "not saved",
                )
                logger.debug("Worker %s diagnostics:\n%s", worker.name, snapshot.render())

        try:
            await self._gateway.delete_pod(worker.name, worker.namespace)
            await self._await_deletion(worker)
        except ClusterGatewayError:
            logger.exception(
                "Failed to delete worker pod %s; remove it with: kubectl delete pod -n %s %s",
                worker.name,
                worker.namespace,
                worker.name,
            )
            worker.transition(WorkerState.FAILED)
            return diagnostics_path

        worker.deleted = True
        worker.transition(WorkerState.FAILED if failed else WorkerState.DONE)
        logger.info("Deleted worker pod %s.", worker.name)
        return diagnostics_path

    async def capture_snapshot(self, worker: WorkerPod) -> DiagnosticSnapshot:
        """Collect status, description, events and log tail of the worker."""

        status = await self._best_effort(
            "status", self._gateway.get_pod_status(worker.name, worker.namespace), None
        )
        description = await self._best_effort(
            "description", self._gateway.describe_pod(worker.name, worker.namespace), ""
        )
        events: list[ClusterEvent] = await self._best_effort(
            "events", self._gateway.list_pod_events(worker.name, worker.namespace), []
        )
        logs = await self._best_effort(
            "logs",
            self._gateway.read_pod_logs(
                worker.name, worker.namespace, tail_lines=self._log_tail_lines
            ),
            "",
        )
        if status is None:
            status_line = f"{worker.name}: not found"
        else:
            status_line = (
                f"{status.name} phase={status.phase} ready={status.ready} "
                f"reason={status.reason or '-'} node={status.node_name or '-'}"
            )
        return DiagnosticSnapshot(
            pod_name=worker.name,
            namespace=worker.namespace,
            volume_name=worker.volume.name,
            captured_at=self._clock.now(),
            status=status_line,
            description=description,
            events=tuple(events),
            logs=logs,
        )

    async def _cancel_stream(self, context: JobContext) -> None:
        task = context.stream_task
        context.stream_task = None
        if task is None or task.done():
            return
        logger.info("Stopping stream of %s before removing its worker.", context.job.label)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.debug("Stream of %s ended with %r.", context.job.label, exc)

    async def _await_ready(self, context: JobContext, worker: WorkerPod) -> None:
        ticker = Ticker(self._clock, self._poll_interval_seconds, context.token)
        deadline = self._clock.monotonic() + self._ready_timeout_seconds
        phase = "Pending"
        while True:
            try:
                status = await self._gateway.get_pod_status(worker.name, worker.namespace)
            except ClusterGatewayError as exc:
                logger.warning("Could not read status of %s: %s", worker.name, exc)
                status = None

            if status is not None:
                phase = status.phase
                if status.is_ready:
                    logger.info("Worker pod %s is ready.", worker.name)
                    return
                if status.is_failed:
                    worker.transition(WorkerState.FAILED)
                    raise WorkerSchedulingError(
                        f"Worker pod {worker.name} failed to start "
                        f"(phase {status.phase}, reason {status.reason or 'unknown'})."
                    )

            if self._clock.monotonic() >= deadline:
                worker.transition(WorkerState.FAILED)
                raise WorkerSchedulingError(
                    f"Worker pod {worker.name} not ready after "
                    f"{self._ready_timeout_seconds:g}s (phase {phase})."
                )
            if await ticker.wait() is TickOutcome.CANCELLED:
                raise TransferInterruptedError(
                    f"Interrupted while waiting for worker pod {worker.name}."
                )

    async def _await_deletion(self, worker: WorkerPod) -> None:
        if self._deletion_timeout_seconds <= 0:
            return
        ticker = Ticker(self._clock, self._poll_interval_seconds, CancellationToken())
        deadline = self._clock.monotonic() + self._deletion_timeout_seconds
        while True:
            try:
                if await self._gateway.get_pod_status(worker.name, worker.namespace) is None:
                    return
            except ClusterGatewayError as exc:
                logger.warning("Could not confirm deletion of %s: %s", worker.name, exc)
                return
            if self._clock.monotonic() >= deadline:
                logger.warning(
                    "Worker pod %s still terminating after %gs; continuing.",
                    worker.name,
                    self._deletion_timeout_seconds,
                )
                return
            await ticker.wait()

    async def _declared_capacity(self, job: TransferJob) -> Quantity | None:
        if job.target is not None and job.target.capacity is not None:
            return job.target.capacity
        volume = await self._gateway.get_volume(job.volume)
        if volume is None or volume.capacity is None:
            logger.warning(
                "Capacity of %s is unknown; using default worker memory limit %s.",
                job.label,
                _DEFAULT_MEMORY_LIMIT,
            )
            return None
        return volume.capacity

    def _build_spec(self, worker: WorkerPod) -> WorkerPodSpec:
        return WorkerPodSpec(
            name=worker.name,
            namespace=worker.namespace,
            claim_name=worker.volume.name,
            image=self._image,
            command=("sleep", str(self._max_lifetime_seconds)),
            mount_path=worker.mount_path,
            memory_request=self._memory_request,
            memory_limit=worker.memory_limit,
            labels={_MANAGED_BY_LABEL: _MANAGED_BY_VALUE},
        )

    def _require_worker(self, context: JobContext) -> WorkerPod:
        if context.worker is None:
            raise WorkerSchedulingError(f"No worker provisioned for {context.job.label}.")
        return context.worker

    async def _best_effort(self, label: str, call: Awaitable[_T], fallback: _T) -> _T:
        try:
            return await call
        except ClusterGatewayError as exc:
            logger.debug("Could not capture worker %s: %s", label, exc)
            return fallback


__all__ = ["WorkerPodManager", "build_worker_pod_name", "select_memory_limit"]
