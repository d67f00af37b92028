from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from pv_transfer.domain.cluster_models import ClusterEvent, PodStatus, VolumeInfo
from pv_transfer.domain.entities import (
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_SUCCESS,
    DiagnosticSnapshot,
    JobOutcome,
    TransferJob,
    TransferReport,
    WorkerPod,
)
from pv_transfer.domain.errors import InvalidWorkerTransitionError
from pv_transfer.domain.monitoring_models import (
    ProgressSample,
    ThroughputWindow,
    TransferProgressSnapshot,
)
from pv_transfer.domain.quantity import Quantity
from pv_transfer.domain.transfer_types import (
    JobStatus,
    SourceKind,
    TransferDirection,
    TransferFormat,
    WorkerState,
)
from pv_transfer.domain.volume_ref import VolumeRef

VOLUME = VolumeRef(name="data", namespace="apps")


def job(job_id: str = "export-1") -> TransferJob:
    return TransferJob(
        job_id=job_id,
        direction=TransferDirection.EXPORT,
        volume=VOLUME,
        local_path=Path("data@apps.tar.gz"),
        transfer_format=TransferFormat.COMPRESSED,
    )


def worker() -> WorkerPod:
    return WorkerPod(
        name="export-data-1-1",
        namespace="apps",
        volume=VOLUME,
        memory_limit=Quantity.parse("2Gi"),
        mount_path="/data",
    )


def test_worker_follows_lifecycle_and_records_history() -> None:
    pod = worker()
    for state in (
        WorkerState.CREATING,
        WorkerState.AWAITING_READY,
        WorkerState.READY,
        WorkerState.RUNNING,
        WorkerState.VERIFYING,
        WorkerState.TERMINATING,
        WorkerState.DONE,
    ):
        pod.transition(state)

    assert pod.state is WorkerState.DONE
    assert pod.history[0] is WorkerState.REQUESTED


def test_worker_rejects_skipping_readiness() -> None:
    pod = worker()
    pod.transition(WorkerState.CREATING)

    with pytest.raises(InvalidWorkerTransitionError):
        pod.transition(WorkerState.RUNNING)


def test_report_exit_codes() -> None:
    report = TransferReport()
    assert report.exit_code == EXIT_FAILURE

    report.add(JobOutcome(job=job(), status=JobStatus.SUCCEEDED))
    assert report.exit_code == EXIT_SUCCESS

    report.add(JobOutcome(job=job("export-2"), status=JobStatus.SKIPPED))
    assert report.exit_code == EXIT_SUCCESS

    report.add(JobOutcome(job=job("export-3"), status=JobStatus.FAILED))
    assert report.exit_code == EXIT_FAILURE

    report.interrupted = True
    assert report.exit_code == EXIT_INTERRUPTED


def test_diagnostic_snapshot_renders_all_sections() -> None:
    snapshot = DiagnosticSnapshot(
        pod_name="worker",
        namespace="apps",
        volume_name="data",
        captured_at=datetime(2024, 5, 1, 12, 0, tzinfo=UTC),
        status="worker phase=Failed",
        description="",
        events=(ClusterEvent(object_name="worker", reason="OOMKilled", message="killed"),),
    )

    text = snapshot.render()

    for title in ("Pod Status", "Pod Description", "Pod Events", "Container Logs"):
        assert f"=== {title} ===" in text
    assert "OOMKilled x1: killed" in text
    assert "(no logs)" in text


def test_throughput_window_averages_recent_intervals() -> None:
    window = ThroughputWindow(max_samples=2)
    window.add(ProgressSample(timestamp=0.0, bytes_done=0))
    window.add(ProgressSample(timestamp=1.0, bytes_done=100))
    window.add(ProgressSample(timestamp=2.0, bytes_done=300))
    window.add(ProgressSample(timestamp=4.0, bytes_done=700))

    assert window.instantaneous_rate == 200.0
    assert window.average_rate == 200.0
    assert window.latest == ProgressSample(timestamp=4.0, bytes_done=700)


def test_progress_snapshot_percent_is_clamped() -> None:
    def percent(done: int, total: int | None) -> float | None:
        return TransferProgressSnapshot(
            label="x", bytes_done=done, bytes_total=total
        ).percent_complete

    assert percent(50, 200) == 25
    assert percent(500, 200) == 100
    assert percent(5, None) is None


def test_cluster_views() -> None:
    volume = VolumeInfo(name="d", namespace="n", phase="Bound", access_modes=("ReadWriteMany",))
    assert volume.is_bound and not volume.is_exclusive
    assert PodStatus(name="p", namespace="n", phase="Running", ready=True).is_ready
    assert PodStatus(name="p", namespace="n", phase="Succeeded").is_finished
    assert SourceKind.TAR_GZ.transfer_format is TransferFormat.COMPRESSED
    assert SourceKind.DIRECTORY.transfer_format is TransferFormat.DIRECTORY
