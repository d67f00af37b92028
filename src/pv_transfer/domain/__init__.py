"""Domain public API."""

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
    JobOutcome,
    ResolvedTarget,
    SkippedJob,
    TransferJob,
    TransferReport,
    VolumeUsage,
    WorkerPod,
)
from pv_transfer.domain.errors import (
    ClearVolumeError,
    ClusterGatewayError,
    InvalidQuantityError,
    InvalidWorkerTransitionError,
    MemoryExhaustedError,
    ProvisioningError,
    ResolutionError,
    StreamFailedError,
    TransferError,
    TransferInterruptedError,
    TransferStreamError,
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
    ConflictPrompter,
    DiagnosticsSink,
    LocalStorage,
    ProgressReporter,
    TargetDecider,
    WorkerProcess,
)
from pv_transfer.domain.quantity import Quantity, format_bytes
from pv_transfer.domain.transfer_types import (
    ConflictKind,
    JobStatus,
    MergePolicy,
    SourceKind,
    TransferDirection,
    TransferFormat,
    WorkerState,
)
from pv_transfer.domain.volume_ref import VolumeRef

__all__ = [
    "ArchiveCodec",
    "ClearVolumeError",
    "Clock",
    "ClusterEvent",
    "ClusterGateway",
    "ClusterGatewayError",
    "ConflictKind",
    "ConflictPrompter",
    "ConflictRecord",
    "DiagnosticSnapshot",
    "DiagnosticsSink",
    "ExecResult",
    "InvalidQuantityError",
    "InvalidWorkerTransitionError",
    "JobOutcome",
    "JobStatus",
    "LocalStorage",
    "MemoryExhaustedError",
    "MergePolicy",
    "PodStatus",
    "ProgressReporter",
    "ProgressSample",
    "ProvisioningError",
    "Quantity",
    "ResolutionError",
    "ResolvedTarget",
    "SkippedJob",
    "SourceKind",
    "StorageClassInfo",
    "StreamFailedError",
    "TargetDecider",
    "ThroughputWindow",
    "TransferDirection",
    "TransferError",
    "TransferFormat",
    "TransferInterruptedError",
    "TransferJob",
    "TransferProgressSnapshot",
    "TransferReport",
    "TransferStreamError",
    "VolumeInfo",
    "VolumeRef",
    "VolumeUsage",
    "WorkerLostError",
    "WorkerPod",
    "WorkerPodSpec",
    "WorkerProcess",
    "WorkerSchedulingError",
    "WorkerState",
    "format_bytes",
]
