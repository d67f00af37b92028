"""Infrastructure layer public API."""

from pv_transfer.infrastructure.archives import TarArchiveCodec
from pv_transfer.infrastructure.cluster import (
    KubectlRunner,
    KubernetesClusterGateway,
    detect_kubectl_command,
    load_kubernetes_config,
)
from pv_transfer.infrastructure.diagnostics import PodDiagnosticsWriter
from pv_transfer.infrastructure.events import LoggingProgressReporter, NoopProgressReporter
from pv_transfer.infrastructure.local_fs import LocalFilesystem
from pv_transfer.infrastructure.transfers import WorkerStreamExecutor

__all__ = [
    "KubectlRunner",
    "KubernetesClusterGateway",
    "LocalFilesystem",
    "LoggingProgressReporter",
    "NoopProgressReporter",
    "PodDiagnosticsWriter",
    "TarArchiveCodec",
    "WorkerStreamExecutor",
    "detect_kubectl_command",
    "load_kubernetes_config",
]
