"""Ports for the cluster gateway, local storage, archives and operator interaction."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from pv_transfer.domain.cluster_models import (
    ClusterEvent,
    ExecResult,
    PodStatus,
    StorageClassInfo,
    VolumeInfo,
    WorkerPodSpec,
)
from pv_transfer.domain.entities import (
    ConflictRecord,
    DiagnosticSnapshot,
    TransferJob,
    VolumeUsage,
)
from pv_transfer.domain.monitoring_models import TransferProgressSnapshot
from pv_transfer.domain.quantity import Quantity
from pv_transfer.domain.transfer_types import MergePolicy, SourceKind
from pv_transfer.domain.volume_ref import VolumeRef


class WorkerProcess(Protocol):
    """Running data-movement command attached to a worker pod."""

    @property
    def returncode(self) -> int | None:
        """Exit status once the process finished."""

    async def read(self, size: int) -> bytes:
        """Read up to `size` bytes of standard output; empty bytes at EOF."""

    async def write(self, data: bytes) -> None:
        """Write bytes to standard input."""

    async def close_input(self) -> None:
        """Signal EOF on standard input."""

    async def wait(self) -> int:
        """Wait for exit and return the exit status."""

    def terminate(self) -> None:
        """Kill the process if still running."""

    def error_output(self) -> str:
        """Return the captured tail of standard error."""


@runtime_checkable
class ClusterGateway(Protocol):
    """Control-plane and in-pod command primitives."""

    async def get_volume(self, volume: VolumeRef) -> VolumeInfo | None:
        """Return claim details, or `None` when it does not exist."""

    async def create_volume(
        self,
        volume: VolumeRef,
        *,
        storage_class: str | None,
        capacity: Quantity,
    ) -> None:
        """Create a ReadWriteOnce claim."""

    async def namespace_exists(self, namespace: str) -> bool:
        """Return whether the namespace exists."""

    async def create_namespace(self, namespace: str) -> None:
        """Create a namespace."""

    async def list_storage_classes(self) -> list[StorageClassInfo]:
        """Return available storage classes."""

    async def list_pods_using_volume(self, volume: VolumeRef) -> list[PodStatus]:
        """Return non-finished pods that mount the claim."""

    async def create_pod(self, spec: WorkerPodSpec) -> None:
        """Create a worker pod."""

    async def get_pod_status(self, name: str, namespace: str) -> PodStatus | None:
        """Return pod status, or `None` when the pod is gone."""

    async def delete_pod(self, name: str, namespace: str) -> None:
        """Delete a pod, tolerating one that is already gone."""

    async def describe_pod(self, name: str, namespace: str) -> str:
        """Return the human-readable pod description."""

    async def list_pod_events(self, name: str, namespace: str) -> list[ClusterEvent]:
        """Return events scoped to the pod, oldest first."""

    async def read_pod_logs(self, name: str, namespace: str, *, tail_lines: int) -> str:
        """Return the last lines of the worker container log."""

    async def exec_in_pod(self, name: str, namespace: str, command: Sequence[str]) -> ExecResult:
        """Run a command in the pod and capture its output."""

    async def start_exec(
        self,
        name: str,
        namespace: str,
        command: Sequence[str],
        *,
        stdin: bool = False,
    ) -> WorkerProcess:
        """Start a streaming command in the pod."""

    async def start_copy_from_pod(
        self,
        name: str,
        namespace: str,
        remote_path: str,
        local_path: Path,
    ) -> WorkerProcess:
        """Start a recursive copy from the pod to a local directory."""


class ArchiveCodec(Protocol):
    """Tar stream creation, inspection and size estimation."""

    def detect_kind(self, path: Path) -> SourceKind:
        """Classify an import source."""

    def estimate_uncompressed_size(self, path: Path, kind: SourceKind) -> int:
        """Estimate extracted size of an archive in bytes."""

    def verify(self, path: Path, kind: SourceKind) -> bool:
        """List archive members without extracting to confirm integrity."""

    def write_directory(
        self,
        directory: Path,
        sink: Callable[[bytes], None],
        *,
        compress: bool = False,
    ) -> None:
        """Stream a directory tree as a tar archive into `sink`."""


class LocalStorage(Protocol):
    """Local filesystem queries used for artifacts and sources."""

    def exists(self, path: Path) -> bool:
        """Return whether the path exists."""

    def measure(self, path: Path) -> VolumeUsage:
        """Return total size and file count of a file or directory."""

    def free_bytes(self, path: Path) -> int:
        """Return free space on the filesystem holding `path`."""

    def remove(self, path: Path) -> None:
        """Remove a file or directory tree."""

    def ensure_directory(self, path: Path) -> None:
        """Create a directory and its parents."""


class Clock(Protocol):
    """Time source used by tickers and timeouts."""

    def monotonic(self) -> float:
        """Return monotonic seconds."""

    def now(self) -> datetime:
        """Return current wall-clock time."""

    async def sleep(self, seconds: float) -> None:
        """Suspend for `seconds`."""


class ConflictPrompter(Protocol):
    """Batched confirmation of pre-check conflicts."""

    def confirm_exclusive_attach(self, conflicts: Sequence[ConflictRecord]) -> bool:
        """Return whether jobs whose volume is held by another pod should proceed."""

    def confirm_overwrite(self, conflicts: Sequence[ConflictRecord]) -> bool:
        """Return whether existing destinations may be replaced."""


class TargetDecider(Protocol):
    """Human or automatic decisions taken while resolving an import source."""

    def confirm_namespace(self, source: Path, suggested: str) -> str:
        """Return the namespace to import into."""

    def approve_namespace_creation(self, namespace: str) -> bool:
        """Return whether a missing namespace may be created."""

    def confirm_volume_name(self, source: Path, namespace: str, suggested: str) -> str:
        """Return the claim name to import into."""

    def approve_volume_creation(self, volume: VolumeRef) -> bool:
        """Return whether a missing claim may be created."""

    def choose_storage_class(self, classes: Sequence[StorageClassInfo], default: str) -> str:
        """Return the storage class for a new claim."""

    def choose_capacity(self, volume: VolumeRef, suggested: Quantity) -> Quantity:
        """Return the capacity for a new claim."""

    def choose_merge_policy(self, volume: VolumeRef) -> MergePolicy:
        """Return how data is combined with an existing claim."""


class ProgressReporter(Protocol):
    """Receives progress snapshots for the active transfer."""

    def start(self, job: TransferJob, total_bytes: int | None) -> None:
        """Begin reporting for one job."""

    def update(self, snapshot: TransferProgressSnapshot) -> None:
        """Report one progress tick."""

    def finish(self, job: TransferJob) -> None:
        """Stop reporting for one job."""


class DiagnosticsSink(Protocol):
    """Persists worker snapshots captured before deletion."""

    def persist(self, snapshot: DiagnosticSnapshot) -> Path | None:
        """Store the snapshot and return its location when written to disk."""


__all__ = [
    "ArchiveCodec",
    "Clock",
    "ClusterGateway",
    "ConflictPrompter",
    "DiagnosticsSink",
    "LocalStorage",
    "ProgressReporter",
    "TargetDecider",
    "WorkerProcess",
]
