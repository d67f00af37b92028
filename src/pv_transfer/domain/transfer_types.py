"""Transfer type and state helpers."""

from enum import StrEnum

from pv_transfer.domain.errors import InvalidWorkerTransitionError


class TransferDirection(StrEnum):
    """Which side of the cluster boundary data flows to."""

    EXPORT = "export"
    IMPORT = "import"


class TransferFormat(StrEnum):
    """On-disk representation of volume data outside the cluster."""

    COMPRESSED = "compressed"
    UNCOMPRESSED = "uncompressed"
    DIRECTORY = "directory"

    @property
    def artifact_suffix(self) -> str:
        if self is TransferFormat.COMPRESSED:
            return ".tar.gz"
        if self is TransferFormat.UNCOMPRESSED:
            return ".tar"
        return ""


class MergePolicy(StrEnum):
    """How imported data is combined with existing volume content."""

    MERGE = "merge"
    CLEAR = "clear"
    NOT_APPLICABLE = "n/a"


class SourceKind(StrEnum):
    """Detected layout of an import source."""

    DIRECTORY = "directory"
    TAR = "tar"
    TAR_GZ = "tar.gz"

    @property
    def transfer_format(self) -> TransferFormat:
        if self is SourceKind.TAR_GZ:
            return TransferFormat.COMPRESSED
        if self is SourceKind.TAR:
            return TransferFormat.UNCOMPRESSED
        return TransferFormat.DIRECTORY


class WorkerState(StrEnum):
    """Worker pod lifecycle states."""

    REQUESTED = "requested"
    CREATING = "creating"
    AWAITING_READY = "awaiting_ready"
    READY = "ready"
    RUNNING = "running"
    VERIFYING = "verifying"
    TERMINATING = "terminating"
    DONE = "done"
    FAILED = "failed"


class JobStatus(StrEnum):
    """Final outcome of one transfer job."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    INTERRUPTED = "interrupted"


class ConflictKind(StrEnum):
    """Pre-check conflict categories, each confirmed with one batched prompt."""

    EXCLUSIVE_ATTACH = "exclusive_attach"
    DESTINATION_EXISTS = "destination_exists"


WORKER_TRANSITIONS: dict[WorkerState, frozenset[WorkerState]] = {
    WorkerState.REQUESTED: frozenset({WorkerState.CREATING, WorkerState.TERMINATING}),
    WorkerState.CREATING: frozenset({WorkerState.AWAITING_READY, WorkerState.TERMINATING}),
    WorkerState.AWAITING_READY: frozenset(
        {WorkerState.READY, WorkerState.FAILED, WorkerState.TERMINATING}
    ),
    WorkerState.READY: frozenset({WorkerState.RUNNING, WorkerState.TERMINATING}),
    WorkerState.RUNNING: frozenset({WorkerState.VERIFYING, WorkerState.TERMINATING}),
    WorkerState.VERIFYING: frozenset({WorkerState.TERMINATING}),
    WorkerState.FAILED: frozenset({WorkerState.TERMINATING}),
    WorkerState.TERMINATING: frozenset({WorkerState.DONE, WorkerState.FAILED}),
    WorkerState.DONE: frozenset(),
}

EXCLUSIVE_ACCESS_MODES = frozenset({"ReadWriteOnce", "ReadWriteOncePod"})


def ensure_worker_transition(current: WorkerState, target: WorkerState) -> None:
    """Validate one worker lifecycle transition."""

    if target not in WORKER_TRANSITIONS.get(current, frozenset()):
        raise InvalidWorkerTransitionError(
            f"Worker cannot move from '{current}' to '{target}'."
        )


__all__ = [
    "ConflictKind",
    "EXCLUSIVE_ACCESS_MODES",
    "JobStatus",
    "MergePolicy",
    "SourceKind",
    "TransferDirection",
    "TransferFormat",
    "WORKER_TRANSITIONS",
    "WorkerState",
    "ensure_worker_transition",
]
