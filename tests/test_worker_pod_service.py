from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from cluster_fakes import CancellingClock, FakeClock, FakeClusterGateway, RecordingDiagnostics
from pv_transfer.application.runtime import CancellationToken, JobContext
from pv_transfer.application.services import (
    WorkerPodManager,
    build_worker_pod_name,
    select_memory_limit,
)
from pv_transfer.domain.cluster_models import ClusterEvent, ExecResult
from pv_transfer.domain.entities import TransferJob
from pv_transfer.domain.errors import TransferInterruptedError, WorkerSchedulingError
from pv_transfer.domain.quantity import Quantity
from pv_transfer.domain.transfer_types import TransferDirection, TransferFormat, WorkerState
from pv_transfer.domain.volume_ref import VolumeRef


def export_job(volume: VolumeRef) -> TransferJob:
    return TransferJob(
        job_id="export-1",
        direction=TransferDirection.EXPORT,
        volume=volume,
        local_path=Path("/tmp/out") / f"{volume.artifact_stem}.tar.gz",
        transfer_format=TransferFormat.COMPRESSED,
    )


def manager(
    gateway: FakeClusterGateway,
    clock: FakeClock,
    diagnostics: RecordingDiagnostics | None = None,
) -> WorkerPodManager:
    return WorkerPodManager(
        gateway,
        clock,
        diagnostics or RecordingDiagnostics(),
        ready_timeout_seconds=10.0,
        poll_interval_seconds=2.0,
        deletion_timeout_seconds=6.0,
    )


@pytest.mark.parametrize(
    ("capacity", "expected"),
    [
        (None, "2Gi"),
        ("50Gi", "2Gi"),
        ("100Gi", "2Gi"),
        ("150Gi", "4Gi"),
        ("600Gi", "8Gi"),
        ("2048Gi", "16Gi"),
    ],
)
def test_select_memory_limit_tiers(capacity: str | None, expected: str) -> None:
    declared = Quantity.parse(capacity) if capacity else None

    assert select_memory_limit(declared) == Quantity.parse(expected)


def test_build_worker_pod_name_is_a_valid_resource_name() -> None:
    name = build_worker_pod_name(
        TransferDirection.IMPORT, "My_Volume.Data", timestamp=1700000000, sequence=2
    )

    assert name == "import-my-volume-data-1700000000-2"


def test_provision_creates_ready_worker_with_memory_tier() -> None:
    gateway = FakeClusterGateway()
    volume = gateway.add_volume("big", capacity="600Gi")
    clock = FakeClock()
    context = JobContext(job=export_job(volume), token=CancellationToken())

    worker = asyncio.run(manager(gateway, clock).provision(context))

    assert context.worker is worker
    assert worker.state is WorkerState.READY
    assert worker.created is True
    spec = gateway.created_pods[0]
    assert spec.claim_name == "big"
    assert spec.memory_limit == Quantity.parse("8Gi")
    assert spec.command == ("sleep", "86400")
    assert spec.mount_path == "/data"


def test_provision_times_out_when_worker_never_becomes_ready() -> None:
    gateway = FakeClusterGateway()
    gateway.pod_phase_on_create = "Pending"
    gateway.pod_ready_on_create = False
    volume = gateway.add_volume("data")
    clock = FakeClock()
    context = JobContext(job=export_job(volume), token=CancellationToken())

    with pytest.raises(WorkerSchedulingError, match="not ready after 10s"):
        asyncio.run(manager(gateway, clock).provision(context))

    assert context.worker is not None
    assert context.worker.state is WorkerState.FAILED
    assert clock.sleeps == [2.0] * 5


def test_provision_fails_fast_when_worker_phase_is_failed() -> None:
    gateway = FakeClusterGateway()
    gateway.pod_phase_on_create = "Failed"
    gateway.pod_ready_on_create = False
    volume = gateway.add_volume("data")
    context = JobContext(job=export_job(volume), token=CancellationToken())

    with pytest.raises(WorkerSchedulingError, match="failed to start"):
        asyncio.run(manager(gateway, FakeClock()).provision(context))


def test_provision_create_failure_keeps_worker_on_context() -> None:
    gateway = FakeClusterGateway()
    gateway.fail_create_pod = True
    volume = gateway.add_volume("data")
    context = JobContext(job=export_job(volume), token=CancellationToken())

    with pytest.raises(WorkerSchedulingError, match="quota exceeded"):
        asyncio.run(manager(gateway, FakeClock()).provision(context))

    assert context.worker is not None
    assert context.worker.created is False


    gateway = FakeClusterGateway()
    gateway.pod_phase_on_create = "Pending"
    gateway.pod_ready_on_create = False
    volume = gateway.add_volume("data")

    async def scenario() -> None:
        token = CancellationToken()
        context = JobContext(job=export_job(volume), token=token)
        await manager(gateway, CancellingClock(token)).provision(context)

    with pytest.raises(TransferInterruptedError):
        asyncio.run(scenario())


def test_teardown_captures_diagnostics_before_deleting() -> None:
    gateway = FakeClusterGateway()
    gateway.events = [ClusterEvent(object_name="pod", reason="Scheduled", message="assigned")]
    volume = gateway.add_volume("data")
    diagnostics = RecordingDiagnostics()
    context = JobContext(job=export_job(volume), token=CancellationToken())
    pods = manager(gateway, FakeClock(), diagnostics)

    async def scenario() -> Path | None:
        worker = await pods.provision(context)
        assert gateway.pods[worker.name].phase == "Running"
        return await pods.teardown(context, failed=True)

    path = asyncio.run(scenario())

    worker = context.worker
    assert worker is not None
    assert worker.deleted is True
    assert worker.state is WorkerState.FAILED
    assert gateway.deleted_pods == [worker.name]
    snapshot = diagnostics.snapshots[0]
    assert "phase=Running" in snapshot.status
    assert snapshot.logs == "worker log line\n"
    assert snapshot.events[0].reason == "Scheduled"
    assert path == Path("logs/pod_logs") / f"{worker.name}.log"


def test_teardown_is_idempotent_and_skips_uncreated_workers() -> None:
    gateway = FakeClusterGateway()
    gateway.fail_create_pod = True
    volume = gateway.add_volume("data")
    diagnostics = RecordingDiagnostics()
    context = JobContext(job=export_job(volume), token=CancellationToken())
    pods = manager(gateway, FakeClock(), diagnostics)

    async def scenario() -> None:
        with pytest.raises(WorkerSchedulingError):
            await pods.provision(context)
        await pods.teardown(context, failed=True)
        await pods.teardown(context, failed=True)

    asyncio.run(scenario())

    assert diagnostics.snapshots == []
    assert len(gateway.deleted_pods) == 1


def test_verify_reports_usage_and_tolerates_failures() -> None:
    gateway = FakeClusterGateway()
    volume = gateway.add_volume("data")
    context = JobContext(job=export_job(volume), token=CancellationToken())
    pods = manager(gateway, FakeClock())

    async def scenario() -> None:
        worker = await pods.provision(context)
        worker.transition(WorkerState.RUNNING)
        usage = await pods.verify(context)
        assert usage is not None
        assert usage.size_bytes == 2048 * 1024
        assert usage.file_count == 3
        assert worker.state is WorkerState.VERIFYING

        gateway.exec_handler = lambda command: ExecResult(
            returncode=1, stdout="", stderr="du: not found"
        )
        assert await pods.measure(worker) is None

    asyncio.run(scenario())


def test_verify_outside_running_state_still_measures() -> None:
    gateway = FakeClusterGateway()
    volume = gateway.add_volume("data")
    context = JobContext(job=export_job(volume), token=CancellationToken())
    pods = manager(gateway, FakeClock())

    async def scenario() -> None:
        worker = await pods.provision(context)
        usage = await pods.verify(context)
        assert usage is not None
        assert worker.state is WorkerState.READY
        await pods.teardown(context, failed=False)
        assert worker.state is WorkerState.DONE

    asyncio.run(scenario())


def test_teardown_cancels_stream_still_attached_to_the_job() -> None:
    gateway = FakeClusterGateway()
    volume = gateway.add_volume("data")
    context = JobContext(job=export_job(volume), token=CancellationToken())
    pods = manager(gateway, FakeClock())

    async def scenario() -> None:
        worker = await pods.provision(context)
        stream = asyncio.create_task(asyncio.Event().wait())
        await asyncio.sleep(0)
        context.stream_task = stream

        await pods.teardown(context, failed=True)

        assert stream.cancelled()
        assert context.stream_task is None
        assert worker.deleted

    asyncio.run(scenario())
