"""Stream volume data through a worker pod with progress sampling and health checks."""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path

from pv_transfer.application.runtime import JobContext, TickOutcome, Ticker
from pv_transfer.domain.entities import TransferJob, WorkerPod
from pv_transfer.domain.errors import (
    ClearVolumeError,
    ClusterGatewayError,
    MemoryExhaustedError,
    StreamFailedError,
    TransferInterruptedError,
    WorkerLostError,
    WorkerSchedulingError,
)
from pv_transfer.domain.monitoring_models import (
    ProgressSample,
    ThroughputWindow,
    TransferProgressSnapshot,
)
from pv_transfer.domain.ports import (
    ArchiveCodec,
    Clock,
    ClusterGateway,
    LocalStorage,
    ProgressReporter,
    WorkerProcess,
)
from pv_transfer.domain.transfer_types import (
    SourceKind,
    TransferDirection,
    TransferFormat,
    WorkerState,
)

logger = logging.getLogger(__name__)

_OOM_EXIT_CODE = 137
_OOM_EVENT_PATTERN = re.compile(r"oom|killed|memory", re.IGNORECASE)
_DEFAULT_PROGRESS_INTERVAL_SECONDS = 1.0
_DEFAULT_HEALTH_CHECK_EVERY_TICKS = 5
_DEFAULT_THROUGHPUT_WINDOW_SAMPLES = 10
_DEFAULT_CHUNK_BYTES = 1024 * 1024

Sampler = Callable[[], Awaitable[ProgressSample]]


@dataclass(slots=True)
class _ByteCounter:
    value: int = 0


class WorkerStreamExecutor:
    """Move bytes between local storage and a ready worker pod.

    - Archived export: `tar -c[z]f -` in the worker, stdout written to the artifact.
    - Archived import: local archive bytes, or a directory tarred on the fly,
      piped into `tar -x[z]f -` in the worker.
    - Directory export: `kubectl cp` of the mount point into a local directory.

    The data movement runs as a background task; the caller side ticks to
    sample progress and, every few ticks, confirms the worker is still running.
    """

    def __init__(
        self,
        gateway: ClusterGateway,
        codec: ArchiveCodec,
        storage: LocalStorage,
        clock: Clock,
        reporter: ProgressReporter,
        *,
        progress_interval_seconds: float = _DEFAULT_PROGRESS_INTERVAL_SECONDS,
        health_check_every_ticks: int = _DEFAULT_HEALTH_CHECK_EVERY_TICKS,
        throughput_window_samples: int = _DEFAULT_THROUGHPUT_WINDOW_SAMPLES,
        chunk_bytes: int = _DEFAULT_CHUNK_BYTES,
    ) -> None:
        self._gateway = gateway
        self._codec = codec
        self._storage = storage
        self._clock = clock
        self._reporter = reporter
        self._progress_interval_seconds = progress_interval_seconds
        self._health_check_every_ticks = max(1, health_check_every_ticks)
        self._throughput_window_samples = max(1, throughput_window_samples)
        self._chunk_bytes = max(1, chunk_bytes)

    async def clear_volume(self, context: JobContext) -> None:
        """Delete volume content, keeping the mount point itself."""

        worker = self._require_worker(context)
        context.token.raise_if_cancelled()
        mount = worker.mount_path
        command = ["sh", "-c", f"rm -rf {mount}/* {mount}/.[!.]* {mount}/..?*"]
        logger.info("Clearing existing data in %s.", context.job.label)
        try:
            result = await self._gateway.exec_in_pod(worker.name, worker.namespace, command)
        except ClusterGatewayError as exc:
            raise ClearVolumeError(f"Failed to clear {context.job.label}: {exc}") from exc
        if not result.success:
            raise ClearVolumeError(
                f"Failed to clear {context.job.label} (exit {result.returncode}): "
                f"{result.stderr.strip() or 'no error output'}"
            )

    async def transfer(self, context: JobContext, total_bytes: int | None = None) -> None:
        """Run the transfer mode selected by the job and raise on failure."""

        worker = self._require_worker(context)
        if worker.state is not WorkerState.RUNNING:
            worker.transition(WorkerState.RUNNING)
        context.token.raise_if_cancelled()

        job = context.job
        if job.direction is TransferDirection.EXPORT:
            if job.transfer_format is TransferFormat.DIRECTORY:
                await self._export_directory(context, worker, total_bytes)
            else:
                await self._export_archive(context, worker, total_bytes)
            return
        await self._import(context, worker, total_bytes)

    async def _export_archive(
        self, context: JobContext, worker: WorkerPod, total_bytes: int | None
    ) -> None:
        job = context.job
        flags = "-czf" if job.transfer_format is TransferFormat.COMPRESSED else "-cf"
        command = ["tar", flags, "-", "-C", worker.mount_path, "."]
        await self._ensure_directory(job, job.local_path.parent)

        process = await self._gateway.start_exec(worker.name, worker.namespace, command)
        counter = _ByteCounter()
        task = asyncio.create_task(
            self._run_process(process, self._pump_to_file(process, job.local_path, counter)),
            name=f"export-{worker.name}",
        )
        sampler = self._counter_sampler(counter)
        await self._drive(context, worker, task, process, sampler, total_bytes)

    async def _export_directory(
        self, context: JobContext, worker: WorkerPod, total_bytes: int | None
    ) -> None:
        job = context.job
        destination = job.local_path
        await self._ensure_directory(job, destination)

        process = await self._gateway.start_copy_from_pod(
            worker.name, worker.namespace, f"{worker.mount_path}/.", destination
        )
        task = asyncio.create_task(
            self._run_process(process, None),
            name=f"copy-{worker.name}",
        )
        await self._drive(
            context, worker, task, process, self._directory_sampler(destination), total_bytes
        )

    async def _import(
        self, context: JobContext, worker: WorkerPod, total_bytes: int | None
    ) -> None:
        job = context.job
        kind = job.source_kind or self._codec.detect_kind(job.local_path)
        flags = "-xzf" if kind is SourceKind.TAR_GZ else "-xf"
        command = ["tar", flags, "-", "-C", worker.mount_path]

        process = await self._gateway.start_exec(
            worker.name, worker.namespace, command, stdin=True
        )
        counter = _ByteCounter()
        if kind is SourceKind.DIRECTORY:
            body = self._pump_directory(process, job.local_path, counter)
        else:
            body = self._pump_from_file(process, job.local_path, counter)
        task = asyncio.create_task(
            self._run_process(process, body),
            name=f"import-{worker.name}",
        )
        sampler = self._counter_sampler(counter)
        await self._drive(context, worker, task, process, sampler, total_bytes)

    async def _drive(
        self,
        context: JobContext,
        worker: WorkerPod,
        task: asyncio.Task[int],
        process: WorkerProcess,
        sampler: Sampler,
        total_bytes: int | None,
    ) -> None:
        """Tick until the stream task finishes, the token fires, or the worker vanishes."""

        job = context.job
        context.stream_task = task
        ticker = Ticker(self._clock, self._progress_interval_seconds, context.token)
        window = ThroughputWindow(self._throughput_window_samples)
        started = self._clock.monotonic()
        window.add(ProgressSample(timestamp=started, bytes_done=0))
        self._reporter.start(job, total_bytes)
        tick = 0
        try:
            while True:
                outcome = await ticker.wait(task)
                if outcome is TickOutcome.CANCELLED:
                    await self._stop(task, process)
                    raise TransferInterruptedError(f"Transfer of {job.label} interrupted.")
                if outcome is TickOutcome.COMPLETED:
                    break

                tick += 1
                await self._report(job, window, sampler, started, total_bytes)
                if tick % self._health_check_every_ticks == 0 and not await self._worker_running(
                    worker
                ):
                    await self._stop(task, process)
                    raise WorkerLostError(
                        f"Worker pod {worker.name} stopped running during transfer of {job.label}."
                    )

            try:
                returncode = task.result()
            except OSError as exc:
                raise StreamFailedError(f"Local I/O failed for {job.label}: {exc}") from exc
            await self._report(job, window, sampler, started, total_bytes)
        finally:
            if not task.done():
                await self._stop(task, process)
            context.stream_task = None
            self._reporter.finish(job)

        await self._classify(job, worker, process, returncode)

    async def _run_process(
        self, process: WorkerProcess, body: Awaitable[None] | None
    ) -> int:
        """Run the local side of a stream and return the remote exit status.

        Cancellation kills the underlying process so no stream outlives its task.
        """

        try:
            if body is not None:
                await body
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Stream input closed early; collecting exit status.")
        except asyncio.CancelledError:
            process.terminate()
            raise
        except Exception:
            process.terminate()
            raise
        return await process.wait()

    async def _pump_to_file(
        self, process: WorkerProcess, destination: Path, counter: _ByteCounter
    ) -> None:
        handle = await asyncio.to_thread(destination.open, "wb")
        try:
            while chunk := await process.read(self._chunk_bytes):
                await asyncio.to_thread(handle.write, chunk)
                counter.value += len(chunk)
        finally:
            await asyncio.to_thread(handle.close)

    async def _pump_from_file(
        self, process: WorkerProcess, source: Path, counter: _ByteCounter
    ) -> None:
        handle = await asyncio.to_thread(source.open, "rb")
        try:
            while chunk := await asyncio.to_thread(handle.read, self._chunk_bytes):
                await process.write(chunk)
                counter.value += len(chunk)
        finally:
            await asyncio.to_thread(handle.close)
        await process.close_input()

    async def _pump_directory(
        self, process: WorkerProcess, directory: Path, counter: _ByteCounter
    ) -> None:
        """Tar a local directory in a worker thread straight into the process stdin."""

        loop = asyncio.get_running_loop()
        closed = threading.Event()

        def sink(chunk: bytes) -> None:
            if closed.is_set():
                raise BrokenPipeError("Stream closed")
            asyncio.run_coroutine_threadsafe(process.write(chunk), loop).result()
            counter.value += len(chunk)

        try:
            await asyncio.to_thread(self._codec.write_directory, directory, sink, compress=False)
        finally:
            closed.set()
        await process.close_input()

    async def _ensure_directory(self, job: TransferJob, directory: Path) -> None:
        try:
            await asyncio.to_thread(self._storage.ensure_directory, directory)
        except OSError as exc:
            raise StreamFailedError(
                f"Cannot prepare local destination {directory} for {job.label}: {exc}"
            ) from exc

    def _counter_sampler(self, counter: _ByteCounter) -> Sampler:
        async def sample() -> ProgressSample:
            return ProgressSample(timestamp=self._clock.monotonic(), bytes_done=counter.value)

        return sample

    def _directory_sampler(self, destination: Path) -> Sampler:
        last = ProgressSample(timestamp=self._clock.monotonic(), bytes_done=0, files_done=0)

        async def sample() -> ProgressSample:
            nonlocal last
            try:
                usage = await asyncio.to_thread(self._storage.measure, destination)
            except OSError as exc:
                logger.debug("Could not measure %s: %s", destination, exc)
                return ProgressSample(
                    timestamp=self._clock.monotonic(),
                    bytes_done=last.bytes_done,
                    files_done=last.files_done,
                )
            last = ProgressSample(
                timestamp=self._clock.monotonic(),
                bytes_done=usage.size_bytes,
                files_done=usage.file_count,
            )
            return last

        return sample

    async def _report(
        self,
        job: TransferJob,
        window: ThroughputWindow,
        sampler: Sampler,
        started: float,
        total_bytes: int | None,
    ) -> None:
        sample = await sampler()
        window.add(sample)
        self._reporter.update(
            TransferProgressSnapshot(
                label=job.label,
                bytes_done=sample.bytes_done,
                bytes_total=total_bytes,
                files_done=sample.files_done,
                rate=window.instantaneous_rate,
                average_rate=window.average_rate,
                elapsed_seconds=sample.timestamp - started,
            )
        )

    async def _worker_running(self, worker: WorkerPod) -> bool:
        try:
            status = await self._gateway.get_pod_status(worker.name, worker.namespace)
        except ClusterGatewayError as exc:
            logger.warning("Health check of %s failed: %s", worker.name, exc)
            return True
        if status is None or not status.is_running:
            logger.error(
                "Worker pod %s is no longer running (phase %s).",
                worker.name,
                "gone" if status is None else status.phase,
            )
            return False
        return True

    async def _stop(self, task: asyncio.Task[int], process: WorkerProcess) -> None:
        """Cancel the stream task and discard its terminal status."""

        if not task.done():
            task.cancel()
        with suppress(asyncio.CancelledError, Exception):
            await task
        process.terminate()
        await process.wait()

    async def _classify(
        self,
        job: TransferJob,
        worker: WorkerPod,
        process: WorkerProcess,
        returncode: int,
    ) -> None:
        if returncode == 0:
            logger.info("Transfer of %s finished.", job.label)
            return

        error_output = process.error_output().strip()
        if returncode == _OOM_EXIT_CODE:
            events = await self._oom_events(worker)
            raise MemoryExhaustedError(
                f"Worker {worker.name} was killed with exit code 137 while transferring "
                f"{job.label}, most likely out of memory (limit {worker.memory_limit}). "
                "Retry with the uncompressed or directory format to reduce memory use.",
                memory_limit=str(worker.memory_limit),
                events=events,
            )
        raise StreamFailedError(
            f"Transfer of {job.label} failed with exit code {returncode}: "
            f"{error_output or 'no error output'}",
            exit_code=returncode,
        )

    async def _oom_events(self, worker: WorkerPod) -> tuple[str, ...]:
        try:
            events = await self._gateway.list_pod_events(worker.name, worker.namespace)
        except ClusterGatewayError as exc:
            logger.debug("Could not read events of %s: %s", worker.name, exc)
            return ()
        return tuple(
            event.format_line()
            for event in events
            if _OOM_EVENT_PATTERN.search(f"{event.reason} {event.message}")
        )

    def _require_worker(self, context: JobContext) -> WorkerPod:
        if context.worker is None:
            raise WorkerSchedulingError(f"No worker provisioned for {context.job.label}.")
        return context.worker


__all__ = ["WorkerStreamExecutor"]
