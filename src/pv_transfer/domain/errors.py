"""Domain exceptions for volume transfer operations."""

from __future__ import annotations


class TransferError(Exception):
    """Base class for volume transfer errors."""


class ResolutionError(TransferError):
    """Raised when an import source cannot be turned into a concrete destination."""


class ProvisioningError(TransferError):
    """Raised when a namespace or volume cannot be created."""


class WorkerSchedulingError(TransferError):
    """Raised when a worker pod fails or never becomes ready."""


class TransferStreamError(TransferError):
    """Base class for failures while moving bytes through a worker."""


class StreamFailedError(TransferStreamError):
    """Raised when the stream command exits with a non-zero status."""

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class MemoryExhaustedError(TransferStreamError):
    """Raised when the worker was most likely killed for exceeding its memory limit."""

    def __init__(
        self,
        message: str,
        *,
        memory_limit: str,
        events: tuple[str, ...] = (),
    ) -> None:
        super().__init__(message)
        self.exit_code = 137
        self.memory_limit = memory_limit
        self.events = events


class WorkerLostError(TransferStreamError):
    """Raised when the worker stops running while a transfer is in flight."""


class ClearVolumeError(TransferStreamError):
    """Raised when existing volume content cannot be removed before an import."""


class TransferInterruptedError(TransferError):
    """Raised when the run was interrupted by the user or a signal."""


class ClusterGatewayError(TransferError):
    """Raised when a cluster API call or kubectl invocation fails."""


class InvalidWorkerTransitionError(TransferError):
    """Raised when a worker pod is moved to a state its lifecycle does not allow."""


class InvalidQuantityError(TransferError, ValueError):
    """Raised when a capacity string is not valid quantity notation."""


__all__ = [
    "ClearVolumeError",
    "ClusterGatewayError",
    "InvalidQuantityError",
    "InvalidWorkerTransitionError",
    "MemoryExhaustedError",
    "ProvisioningError",
    "ResolutionError",
    "StreamFailedError",
    "TransferError",
    "TransferInterruptedError",
    "TransferStreamError",
    "WorkerLostError",
    "WorkerSchedulingError",
]
