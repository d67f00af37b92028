"""Application services."""

from pv_transfer.application.services.precheck_service import PrecheckResult, PrecheckService
from pv_transfer.application.services.target_resolution_service import (
    ResolutionOutcome,
    TargetResolutionService,
    TargetSuggestion,
    suggest_capacity,
)
from pv_transfer.application.services.transfer_job_service import (
    TargetProvisioner,
    TransferJobService,
    TransferStreamer,
    build_export_jobs,
)
from pv_transfer.application.services.worker_pod_service import (
    WorkerPodManager,
    build_worker_pod_name,
    select_memory_limit,
)

__all__ = [
    "PrecheckResult",
    "PrecheckService",
    "ResolutionOutcome",
    "TargetProvisioner",
    "TargetResolutionService",
    "TargetSuggestion",
    "TransferJobService",
    "TransferStreamer",
    "WorkerPodManager",
    "build_export_jobs",
    "build_worker_pod_name",
    "select_memory_limit",
    "suggest_capacity",
]
