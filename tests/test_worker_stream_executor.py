from __future__ import annotations

import asyncio
import io
import tarfile
from pathlib import Path

import pytest

from cluster_fakes import FakeClock, FakeClusterGateway, FakeWorkerProcess, RecordingReporter
from pv_transfer.application.runtime import CancellationToken, JobContext
from pv_transfer.domain.cluster_models import ClusterEvent, ExecResult, PodStatus
from pv_transfer.domain.entities import TransferJob, WorkerPod
from pv_transfer.domain.errors import (
    ClearVolumeError,
    MemoryExhaustedError,
    StreamFailedError,
    TransferInterruptedError,
    WorkerLostError,
)
from pv_transfer.domain.quantity import Quantity
from pv_transfer.domain.transfer_types import (
    MergePolicy,
    SourceKind,
    TransferDirection,
    TransferFormat,
    WorkerState,
)
from pv_transfer.domain.volume_ref import VolumeRef
from pv_transfer.infrastructure.archives import TarArchiveCodec
from pv_transfer.infrastructure.local_fs import LocalFilesystem
from pv_transfer.infrastructure.transfers import WorkerStreamExecutor

VOLUME = VolumeRef(name="data", namespace="apps")


def ready_context(gateway: FakeClusterGateway, job: TransferJob) -> JobContext:
    worker = WorkerPod(
        name="worker-1",
        namespace=VOLUME.namespace,
        volume=VOLUME,
        memory_limit=Quantity.parse("2Gi"),
        mount_path="/data",
        state=WorkerState.READY,
        created=True,
    )
    gateway.pods[worker.name] = PodStatus(
        name=worker.name, namespace=worker.namespace, phase="Running", ready=True
    )
    return JobContext(job=job, token=CancellationToken(), worker=worker)


def export_job(path: Path, transfer_format: TransferFormat) -> TransferJob:
    return TransferJob(
        job_id="export-1",
        direction=TransferDirection.EXPORT,
        volume=VOLUME,
        local_path=path,
        transfer_format=transfer_format,
    )


def import_job(path: Path, kind: SourceKind) -> TransferJob:
    return TransferJob(
        job_id="import-1",
        direction=TransferDirection.IMPORT,
        volume=VOLUME,
        local_path=path,
        transfer_format=kind.transfer_format,
        merge_policy=MergePolicy.MERGE,
        source_kind=kind,
    )


def executor(
    gateway: FakeClusterGateway,
    reporter: RecordingReporter | None = None,
) -> WorkerStreamExecutor:
    return WorkerStreamExecutor(
        gateway,
        TarArchiveCodec(),
        LocalFilesystem(),
        FakeClock(),
        reporter or RecordingReporter(),
        progress_interval_seconds=1.0,
        health_check_every_ticks=5,
        chunk_bytes=4,
    )


def tar_bytes(directory: Path, *, compress: bool = False) -> bytes:
    buffer = io.BytesIO()
    TarArchiveCodec().write_directory(directory, buffer.write, compress=compress)
    return buffer.getvalue()


def populate(directory: Path) -> Path:
    (directory / "nested").mkdir(parents=True)
    (directory / "a.txt").write_text("alpha")
    (directory / "nested" / "b.txt").write_text("bravo")
    return directory


def test_export_archive_writes_worker_output_to_artifact(tmp_path: Path) -> None:
    gateway = FakeClusterGateway()
    payload = b"0123456789abcdef"
    gateway.process_factory = lambda command, stdin: FakeWorkerProcess(payload)
    reporter = RecordingReporter()
    artifact = tmp_path / "out" / "data@apps.tar.gz"
    context = ready_context(gateway, export_job(artifact, TransferFormat.COMPRESSED))

    asyncio.run(executor(gateway, reporter).transfer(context, None))

    assert artifact.read_bytes() == payload
    assert gateway.started[0][1] == ["tar", "-czf", "-", "-C", "/data", "."]
    assert context.worker is not None
    assert context.worker.state is WorkerState.RUNNING
    assert reporter.started == [("export-1", None)]
    assert reporter.finished == ["export-1"]
    assert reporter.snapshots[-1].bytes_done == len(payload)


def test_uncompressed_export_uses_plain_tar(tmp_path: Path) -> None:
    gateway = FakeClusterGateway()
    context = ready_context(gateway, export_job(tmp_path / "x.tar", TransferFormat.UNCOMPRESSED))

    asyncio.run(executor(gateway).transfer(context, 0))

    assert gateway.started[0][1][1] == "-cf"


def test_exit_code_137_is_reported_as_memory_exhaustion(tmp_path: Path) -> None:
    gateway = FakeClusterGateway()
    gateway.events = [
        ClusterEvent(object_name="worker-1", reason="Scheduled", message="assigned node"),
        ClusterEvent(
            object_name="worker-1",
            reason="OOMKilling",
            message="Memory cgroup out of memory",
            event_type="Warning",
        ),
    ]
    gateway.process_factory = lambda command, stdin: FakeWorkerProcess(b"xx", returncode=137)
    context = ready_context(gateway, export_job(tmp_path / "x.tar.gz", TransferFormat.COMPRESSED))

    with pytest.raises(MemoryExhaustedError) as caught:
        asyncio.run(executor(gateway).transfer(context))

    assert caught.value.exit_code == 137
    assert caught.value.memory_limit == "2Gi"
    assert len(caught.value.events) == 1
    assert "OOMKilling" in caught.value.events[0]
    assert "uncompressed or directory" in str(caught.value)


def test_other_nonzero_exit_is_a_stream_failure(tmp_path: Path) -> None:
    gateway = FakeClusterGateway()
    gateway.process_factory = lambda command, stdin: FakeWorkerProcess(
        returncode=2, stderr="tar: short read\n"
    )
    context = ready_context(gateway, export_job(tmp_path / "x.tar", TransferFormat.UNCOMPRESSED))

    with pytest.raises(StreamFailedError, match="short read") as caught:
        asyncio.run(executor(gateway).transfer(context))

    assert caught.value.exit_code == 2


def test_health_check_detects_lost_worker(tmp_path: Path) -> None:
    gateway = FakeClusterGateway()
    process = FakeWorkerProcess(hang=True)
    gateway.process_factory = lambda command, stdin: process
    context = ready_context(gateway, export_job(tmp_path / "x.tar", TransferFormat.UNCOMPRESSED))
    gateway.set_pod_phase("worker-1", "Failed")
    reporter = RecordingReporter()

    with pytest.raises(WorkerLostError):
        asyncio.run(executor(gateway, reporter).transfer(context))

    assert process.terminated is True
    assert len(reporter.snapshots) == 5
    assert reporter.finished == ["export-1"]
    assert context.stream_task is None


def test_cancellation_stops_the_stream(tmp_path: Path) -> None:
    gateway = FakeClusterGateway()
    process = FakeWorkerProcess(hang=True)
    gateway.process_factory = lambda command, stdin: process
    context = ready_context(gateway, export_job(tmp_path / "x.tar", TransferFormat.UNCOMPRESSED))
    reporter = RecordingReporter(on_update=lambda snapshot: context.token.cancel("SIGINT"))

    with pytest.raises(TransferInterruptedError):
        asyncio.run(executor(gateway, reporter).transfer(context))

    assert process.terminated is True
    assert reporter.finished == ["export-1"]


def test_import_archive_streams_file_into_worker(tmp_path: Path) -> None:
    source = populate(tmp_path / "src")
    archive = tmp_path / "data@apps.tar"
    archive.write_bytes(tar_bytes(source))
    gateway = FakeClusterGateway()
    process = FakeWorkerProcess()
    gateway.process_factory = lambda command, stdin: process
    context = ready_context(gateway, import_job(archive, SourceKind.TAR))

    asyncio.run(executor(gateway).transfer(context, archive.stat().st_size))

    name, command, stdin = gateway.started[0]
    assert command == ["tar", "-xf", "-", "-C", "/data"]
    assert stdin is True
    assert bytes(process.stdin) == archive.read_bytes()
    assert process.input_closed is True


def test_import_directory_streams_tar_built_on_the_fly(tmp_path: Path) -> None:
    source = populate(tmp_path / "src")
    gateway = FakeClusterGateway()
    process = FakeWorkerProcess()
    gateway.process_factory = lambda command, stdin: process
    context = ready_context(gateway, import_job(source, SourceKind.DIRECTORY))

    asyncio.run(executor(gateway).transfer(context))

    with tarfile.open(fileobj=io.BytesIO(bytes(process.stdin)), mode="r:") as archive:
        names = {member.name.removeprefix("./") for member in archive.getmembers()}
    assert {"a.txt", "nested/b.txt"} <= names
    assert process.input_closed is True


def test_directory_export_copies_into_destination(tmp_path: Path) -> None:
    destination = tmp_path / "data@apps"
    gateway = FakeClusterGateway()

    def finish_copy() -> None:
        (destination / "copied.txt").write_text("payload")

    gateway.copy_factory = lambda local_path: FakeWorkerProcess(on_finish=finish_copy)
    context = ready_context(gateway, export_job(destination, TransferFormat.DIRECTORY))

    asyncio.run(executor(gateway).transfer(context))

    assert (destination / "copied.txt").read_text() == "payload"
    assert gateway.started[0][1] == ["cp", "/data/.", str(destination)]


def test_clear_volume_keeps_mount_point() -> None:
    gateway = FakeClusterGateway()
    context = ready_context(gateway, import_job(Path("/tmp/x.tar"), SourceKind.TAR))

    asyncio.run(executor(gateway).clear_volume(context))

    assert gateway.exec_commands == [
        ["sh", "-c", "rm -rf /data/* /data/.[!.]* /data/..?*"]
    ]


def test_clear_volume_failure_raises() -> None:
    gateway = FakeClusterGateway()
    gateway.exec_handler = lambda command: ExecResult(
        returncode=1, stdout="", stderr="read-only file system"
    )
    context = ready_context(gateway, import_job(Path("/tmp/x.tar"), SourceKind.TAR))

    with pytest.raises(ClearVolumeError, match="read-only"):
        asyncio.run(executor(gateway).clear_volume(context))
