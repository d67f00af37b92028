"""Domain entities for volume transfers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from pv_transfer.domain.cluster_models import ClusterEvent
from pv_transfer.domain.quantity import Quantity
from pv_transfer.domain.transfer_types import (
    ConflictKind,
    JobStatus,
    MergePolicy,
    SourceKind,
    TransferDirection,
    TransferFormat,
    WorkerState,
    ensure_worker_transition,
)
from pv_transfer.domain.volume_ref import VolumeRef

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


@dataclass(slots=True, frozen=True)
class ResolvedTarget:
    """Fully determined import destination."""

    volume: VolumeRef
    create_namespace: bool = False
    create_volume: bool = False
    storage_class: str | None = None
    capacity: Quantity | None = None
    merge_policy: MergePolicy = MergePolicy.MERGE


@dataclass(slots=True, frozen=True)
class TransferJob:
    """One volume export or import, immutable once queued."""

    job_id: str
    direction: TransferDirection
    volume: VolumeRef
    local_path: Path
    transfer_format: TransferFormat
    merge_policy: MergePolicy = MergePolicy.NOT_APPLICABLE
    estimated_bytes: int | None = None
    source_kind: SourceKind | None = None
    target: ResolvedTarget | None = None

    @property
    def label(self) -> str:
        return self.volume.display


@dataclass(slots=True)
class WorkerPod:
    """Ephemeral worker owned by exactly one job."""

    name: str
    namespace: str
    volume: VolumeRef
    memory_limit: Quantity
    mount_path: str
    state: WorkerState = WorkerState.REQUESTED
    created: bool = False
    deleted: bool = False
    history: list[WorkerState] = field(default_factory=list)

    def transition(self, state: WorkerState) -> None:
        ensure_worker_transition(self.state, state)
        self.history.append(self.state)
        self.state = state


@dataclass(slots=True, frozen=True)
class ConflictRecord:
    """Pre-check finding that needs a batched confirmation."""

    job: TransferJob
    kind: ConflictKind
    detail: str
    holders: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class SkippedJob:
    """Job removed from the queue before any worker was created."""

    job: TransferJob
    reason: str


@dataclass(slots=True, frozen=True)
class VolumeUsage:
    """Aggregate size and file count of transferred data."""

    size_bytes: int
    file_count: int


@dataclass(slots=True, frozen=True)
class DiagnosticSnapshot:
    """Worker state captured right before the pod is deleted."""

    pod_name: str
    namespace: str
    volume_name: str
    captured_at: datetime
    status: str
    description: str
    events: tuple[ClusterEvent, ...] = ()
    logs: str = ""

    def render(self) -> str:
        """Render the snapshot as the plain text stored beside the run log."""

        events = "\n".join(event.format_line() for event in self.events) or "(no events)"
        sections = (
            ("Pod Status", self.status or "(unavailable)"),
            ("Pod Description", self.description or "(unavailable)"),
            ("Pod Events", events),
            ("Container Logs", self.logs or "(no logs)"),
        )
        header = (
            f"Pod: {self.pod_name}\nNamespace: {self.namespace}\n"
            f"Volume: {self.volume_name}\nCaptured: {self.captured_at.isoformat()}\n"
        )
        body = "\n".join(f"=== {title} ===\n{content.rstrip()}\n" for title, content in sections)
        return f"{header}\n{body}"


@dataclass(slots=True, frozen=True)
class JobOutcome:
    """Result recorded by the sequencer for one job."""

    job: TransferJob
    status: JobStatus
    message: str = ""
    usage: VolumeUsage | None = None
    duration_seconds: float = 0.0
    diagnostics_path: Path | None = None


@dataclass(slots=True)
class TransferReport:
    """Aggregated outcomes of one run."""

    outcomes: list[JobOutcome] = field(default_factory=list)
    interrupted: bool = False

    def add(self, outcome: JobOutcome) -> None:
        self.outcomes.append(outcome)

    def with_status(self, status: JobStatus) -> list[JobOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status is status]

    @property
    def succeeded(self) -> list[JobOutcome]:
        return self.with_status(JobStatus.SUCCEEDED)

    @property
    def failed(self) -> list[JobOutcome]:
        return self.with_status(JobStatus.FAILED)

    @property
    def skipped(self) -> list[JobOutcome]:
        return self.with_status(JobStatus.SKIPPED)

    @property
    def exit_code(self) -> int:
        """Process exit status: 130 when interrupted, 1 on any failure or nothing to do."""

        if self.interrupted:
            return EXIT_INTERRUPTED
        if self.failed or not self.succeeded:
            return EXIT_FAILURE
        return EXIT_SUCCESS


__all__ = [
    "ConflictRecord",
    "DiagnosticSnapshot",
    "EXIT_FAILURE",
    "EXIT_INTERRUPTED",
    "EXIT_SUCCESS",
    "JobOutcome",
    "ResolvedTarget",
    "SkippedJob",
    "TransferJob",
    "TransferReport",
    "VolumeUsage",
    "WorkerPod",
]
