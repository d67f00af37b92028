"""Cluster object views returned by the command gateway."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from pv_transfer.domain.quantity import Quantity
from pv_transfer.domain.transfer_types import EXCLUSIVE_ACCESS_MODES

_FAILED_PHASES = frozenset({"Failed", "Error"})
_FINISHED_PHASES = frozenset({"Succeeded", "Failed"})


@dataclass(slots=True, frozen=True)
class VolumeInfo:
    """PersistentVolumeClaim state relevant to transfers."""

    name: str
    namespace: str
    phase: str
    access_modes: tuple[str, ...] = ()
    capacity: Quantity | None = None
    storage_class: str | None = None

    @property
    def is_bound(self) -> bool:
        return self.phase == "Bound"

    @property
    def is_exclusive(self) -> bool:
        return any(mode in EXCLUSIVE_ACCESS_MODES for mode in self.access_modes)


@dataclass(slots=True, frozen=True)
class PodStatus:
    """Phase and readiness of one pod."""

    name: str
    namespace: str
    phase: str
    ready: bool = False
    reason: str | None = None
    node_name: str | None = None

    @property
    def is_running(self) -> bool:
        return self.phase == "Running"

    @property
    def is_ready(self) -> bool:
        return self.is_running and self.ready

    @property
    def is_failed(self) -> bool:
        return self.phase in _FAILED_PHASES

    @property
    def is_finished(self) -> bool:
        return self.phase in _FINISHED_PHASES


@dataclass(slots=True, frozen=True)
class StorageClassInfo:
    """Storage class available for new claims."""

    name: str
    provisioner: str = ""
    is_default: bool = False


@dataclass(slots=True, frozen=True)
class ClusterEvent:
    """One event recorded for a cluster object."""

    object_name: str
    reason: str
    message: str
    event_type: str = "Normal"
    timestamp: datetime | None = None
    count: int = 1

    def format_line(self) -> str:
        stamp = self.timestamp.isoformat() if self.timestamp else "-"
        return f"{stamp} {self.event_type} {self.reason} x{self.count}: {self.message}"


@dataclass(slots=True, frozen=True)
class ExecResult:
    """Captured result of a finished command."""

    returncode: int
    stdout: str
    stderr: str
    args: tuple[str, ...] = field(default_factory=tuple)

    @property
    def success(self) -> bool:
        return self.returncode == 0


@dataclass(slots=True, frozen=True)
class WorkerPodSpec:
    """Parameters of the ephemeral pod that exposes a volume to the gateway."""

    name: str
    namespace: str
    claim_name: str
    image: str
    command: tuple[str, ...]
    mount_path: str
    memory_request: Quantity
    memory_limit: Quantity
    labels: dict[str, str] = field(default_factory=dict)


__all__ = [
    "ClusterEvent",
    "ExecResult",
    "PodStatus",
    "StorageClassInfo",
    "VolumeInfo",
    "WorkerPodSpec",
]
