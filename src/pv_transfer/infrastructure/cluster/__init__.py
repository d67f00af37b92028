"""Cluster gateway adapters."""

from pv_transfer.infrastructure.cluster.kubectl import (
    KubectlRunner,
    SubprocessWorkerProcess,
    detect_kubectl_command,
)
from pv_transfer.infrastructure.cluster.kubernetes_gateway import (
    KubernetesClusterGateway,
    load_kubernetes_config,
)

__all__ = [
    "KubectlRunner",
    "KubernetesClusterGateway",
    "SubprocessWorkerProcess",
    "detect_kubectl_command",
    "load_kubernetes_config",
]
