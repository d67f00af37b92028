"""Application bootstrap/wiring."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pv_transfer.application.runtime import SystemClock
from pv_transfer.application.services import (
    PrecheckService,
    TargetResolutionService,
    TransferJobService,
    WorkerPodManager,
)
from pv_transfer.config import Settings
from pv_transfer.domain.ports import (
    ArchiveCodec,
    Clock,
    ClusterGateway,
    ConflictPrompter,
    LocalStorage,
    ProgressReporter,
    TargetDecider,
)
from pv_transfer.domain.quantity import Quantity
from pv_transfer.infrastructure.archives import TarArchiveCodec
from pv_transfer.infrastructure.cluster import (
    KubectlRunner,
    KubernetesClusterGateway,
    detect_kubectl_command,
    load_kubernetes_config,
)
from pv_transfer.infrastructure.diagnostics import PodDiagnosticsWriter
from pv_transfer.infrastructure.events import NoopProgressReporter
from pv_transfer.infrastructure.local_fs import LocalFilesystem
from pv_transfer.infrastructure.transfers import WorkerStreamExecutor

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TransferRuntime:
    """Adapters and lifecycle services shared by export and import runs."""

    gateway: ClusterGateway
    storage: LocalStorage
    codec: ArchiveCodec
    clock: Clock
    pods: WorkerPodManager
    streamer: WorkerStreamExecutor


def build_cluster_gateway(settings: Settings) -> KubernetesClusterGateway:
    load_kubernetes_config(settings.kubeconfig)
    kubectl = KubectlRunner(
        detect_kubectl_command(settings.kubectl_command_parts),
        kubeconfig=settings.kubeconfig,
    )
    logger.debug("Using kubectl command: %s", " ".join(kubectl.command))
    return KubernetesClusterGateway(kubectl)


def build_transfer_runtime(
    settings: Settings,
    *,
    reporter: ProgressReporter | None = None,
    gateway: ClusterGateway | None = None,
    clock: Clock | None = None,
) -> TransferRuntime:
    gateway = gateway or build_cluster_gateway(settings)
    clock = clock or SystemClock()
    storage = LocalFilesystem()
    codec = TarArchiveCodec()
    pods = WorkerPodManager(
        gateway,
        clock,
        PodDiagnosticsWriter(settings.log_dir),
        image=settings.worker_image,
        mount_path=settings.worker_mount_path,
        memory_request=Quantity.parse(settings.worker_memory_request),
        max_lifetime_seconds=settings.worker_max_lifetime_seconds,
        ready_timeout_seconds=settings.pod_ready_timeout_seconds,
        poll_interval_seconds=settings.pod_poll_interval_seconds,
        deletion_timeout_seconds=settings.pod_deletion_timeout_seconds,
        log_tail_lines=settings.pod_log_tail_lines,
    )
    streamer = WorkerStreamExecutor(
        gateway,
        codec,
        storage,
        clock,
        reporter or NoopProgressReporter(),
        progress_interval_seconds=settings.progress_interval_seconds,
        health_check_every_ticks=settings.health_check_every_ticks,
        throughput_window_samples=settings.throughput_window_samples,
        chunk_bytes=settings.stream_chunk_bytes,
    )
    return TransferRuntime(
        gateway=gateway,
        storage=storage,
        codec=codec,
        clock=clock,
        pods=pods,
        streamer=streamer,
    )


def build_transfer_job_service(
    settings: Settings,
    runtime: TransferRuntime,
    *,
    prompter: ConflictPrompter,
    provisioner: TargetResolutionService | None = None,
) -> TransferJobService:
    precheck = PrecheckService(
        runtime.gateway,
        runtime.storage,
        prompter,
        low_disk_space_bytes=settings.low_disk_space_bytes,
    )
    return TransferJobService(
        precheck,
        runtime.pods,
        runtime.streamer,
        runtime.storage,
        runtime.clock,
        provisioner=provisioner,
    )


def build_target_resolution_service(
    settings: Settings,
    runtime: TransferRuntime,
    *,
    decider: TargetDecider,
) -> TargetResolutionService:
    return TargetResolutionService(
        runtime.gateway,
        runtime.codec,
        runtime.storage,
        decider,
        runtime.clock,
        bind_timeout_seconds=settings.volume_bind_timeout_seconds,
        poll_interval_seconds=settings.pod_poll_interval_seconds,
    )


__all__ = [
    "TransferRuntime",
    "build_cluster_gateway",
    "build_target_resolution_service",
    "build_transfer_job_service",
    "build_transfer_runtime",
]
