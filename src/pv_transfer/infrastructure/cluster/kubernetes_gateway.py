"""Cluster gateway backed by the Kubernetes API client and kubectl."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from pv_transfer.domain.cluster_models import (
    ClusterEvent,
    ExecResult,
    PodStatus,
    StorageClassInfo,
    VolumeInfo,
    WorkerPodSpec,
)
from pv_transfer.domain.errors import ClusterGatewayError, InvalidQuantityError
from pv_transfer.domain.quantity import Quantity
from pv_transfer.domain.volume_ref import VolumeRef
from pv_transfer.infrastructure.cluster.kubectl import KubectlRunner, SubprocessWorkerProcess

logger = logging.getLogger(__name__)

_DEFAULT_CLASS_ANNOTATIONS = (
    "storageclass.kubernetes.io/is-default-class",
    "storageclass.beta.kubernetes.io/is-default-class",
)
_WORKER_CONTAINER_NAME = "worker"
_WORKER_VOLUME_NAME = "data"
_DESCRIBE_TIMEOUT_SECONDS = 30.0
_EXEC_TIMEOUT_SECONDS = 600.0


def load_kubernetes_config(kubeconfig: str | None = None) -> None:
    """Load in-cluster configuration, falling back to a kubeconfig file."""

    if kubeconfig:
        config.load_kube_config(config_file=kubeconfig)
        logger.debug("Loaded kubeconfig %s", kubeconfig)
        return
    try:
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logger.debug("Loaded default kubeconfig")
        except config.ConfigException as exc:
            raise ClusterGatewayError(f"Cannot load Kubernetes configuration: {exc}") from exc


def _parse_capacity(raw: str | None, volume: VolumeRef) -> Quantity | None:
    if not raw:
        return None
    try:
        return Quantity.parse(raw)
    except InvalidQuantityError:
        logger.warning("Unrecognized capacity '%s' on %s.", raw, volume.display)
        return None


def _event_timestamp(event: Any) -> datetime | None:
    return event.last_timestamp or event.event_time or event.first_timestamp


class KubernetesClusterGateway:
    """Cluster gateway adapter.

    API objects go through the official client (run in threads); streaming
    exec, recursive copy and describe output go through kubectl.
    """

    def __init__(
        self,
        kubectl: KubectlRunner,
        core_v1: Any | None = None,
        storage_v1: Any | None = None,
    ) -> None:
        self._kubectl = kubectl
        self._core_v1 = core_v1 if core_v1 is not None else client.CoreV1Api()
        self._storage_v1 = storage_v1 if storage_v1 is not None else client.StorageV1Api()

    async def get_volume(self, volume: VolumeRef) -> VolumeInfo | None:
        try:
            claim = await asyncio.to_thread(
                self._core_v1.read_namespaced_persistent_volume_claim,
                name=volume.name,
                namespace=volume.namespace,
            )
        except ApiException as exc:
            if exc.status == 404:
                return None
            raise ClusterGatewayError(f"Failed to read volume {volume}: {exc.reason}") from exc

        status = claim.status
        spec = claim.spec
        raw_capacity = None
        if status is not None and status.capacity:
            raw_capacity = status.capacity.get("storage")
        if raw_capacity is None and spec is not None and spec.resources is not None:
            raw_capacity = (spec.resources.requests or {}).get("storage")
        return VolumeInfo(
            name=volume.name,
            namespace=volume.namespace,
            phase=(status.phase if status is not None else None) or "Unknown",
            access_modes=tuple((spec.access_modes if spec is not None else None) or ()),
            capacity=_parse_capacity(raw_capacity, volume),
            storage_class=spec.storage_class_name if spec is not None else None,
        )

    async def create_volume(
        self,
        volume: VolumeRef,
        *,
        storage_class: str | None,
        capacity: Quantity,
    ) -> None:
        body = client.V1PersistentVolumeClaim(
            metadata=client.V1ObjectMeta(name=volume.name, namespace=volume.namespace),
            spec=client.V1PersistentVolumeClaimSpec(
                access_modes=["ReadWriteOnce"],
                storage_class_name=storage_class,
                resources=client.V1VolumeResourceRequirements(
                    requests={"storage": capacity.format()}
                ),
            ),
        )
        try:
            await asyncio.to_thread(
                self._core_v1.create_namespaced_persistent_volume_claim,
                namespace=volume.namespace,
                body=body,
            )
        except ApiException as exc:
            if exc.status == 409:
                raise ClusterGatewayError(f"Volume {volume} already exists.") from exc
            raise ClusterGatewayError(f"Failed to create volume {volume}: {exc.reason}") from exc

    async def namespace_exists(self, namespace: str) -> bool:
        try:
            await asyncio.to_thread(self._core_v1.read_namespace, name=namespace)
        except ApiException as exc:
            if exc.status == 404:
                return False
            raise ClusterGatewayError(
                f"Failed to read namespace {namespace}: {exc.reason}"
            ) from exc
        return True

    async def create_namespace(self, namespace: str) -> None:
        body = client.V1Namespace(metadata=client.V1ObjectMeta(name=namespace))
        try:
            await asyncio.to_thread(self._core_v1.create_namespace, body=body)
        except ApiException as exc:
            if exc.status == 409:
                logger.debug("Namespace %s already exists", namespace)
                return
            raise ClusterGatewayError(
                f"Failed to create namespace {namespace}: {exc.reason}"
            ) from exc

    async def list_storage_classes(self) -> list[StorageClassInfo]:
        try:
            response = await asyncio.to_thread(self._storage_v1.list_storage_class)
        except ApiException as exc:
            raise ClusterGatewayError(f"Failed to list storage classes: {exc.reason}") from exc

        classes: list[StorageClassInfo] = []
        for item in response.items:
            annotations = item.metadata.annotations or {}
            classes.append(
                StorageClassInfo(
                    name=item.metadata.name,
                    provisioner=item.provisioner or "",
                    is_default=any(
                        annotations.get(key) == "true" for key in _DEFAULT_CLASS_ANNOTATIONS
                    ),
                )
            )
        return classes

    async def list_pods_using_volume(self, volume: VolumeRef) -> list[PodStatus]:
        try:
            response = await asyncio.to_thread(
                self._core_v1.list_namespaced_pod, namespace=volume.namespace
            )
        except ApiException as exc:
            raise ClusterGatewayError(
                f"Failed to list pods in {volume.namespace}: {exc.reason}"
            ) from exc

        holders: list[PodStatus] = []
        for pod in response.items:
            claims = {
                source.persistent_volume_claim.claim_name
                for source in (pod.spec.volumes or [])
                if source.persistent_volume_claim is not None
            }
            if volume.name not in claims:
                continue
            status = self._to_pod_status(pod)
            if not status.is_finished:
                holders.append(status)
        return holders

    async def create_pod(self, spec: WorkerPodSpec) -> None:
        body = client.V1Pod(
            metadata=client.V1ObjectMeta(
                name=spec.name,
                namespace=spec.namespace,
                labels=dict(spec.labels),
            ),
            spec=client.V1PodSpec(
                restart_policy="Never",
                containers=[
                    client.V1Container(
                        name=_WORKER_CONTAINER_NAME,
                        image=spec.image,
                        command=list(spec.command),
                        resources=client.V1ResourceRequirements(
                            requests={"memory": spec.memory_request.format()},
                            limits={"memory": spec.memory_limit.format()},
                        ),
                        volume_mounts=[
                            client.V1VolumeMount(
                                name=_WORKER_VOLUME_NAME, mount_path=spec.mount_path
                            )
                        ],
                    )
                ],
                volumes=[
                    client.V1Volume(
                        name=_WORKER_VOLUME_NAME,
                        persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(
                            claim_name=spec.claim_name
                        ),
                    )
                ],
            ),
        )
        try:
            await asyncio.to_thread(
                self._core_v1.create_namespaced_pod, namespace=spec.namespace, body=body
            )
        except ApiException as exc:
            raise ClusterGatewayError(f"Failed to create pod {spec.name}: {exc.reason}") from exc

    async def get_pod_status(self, name: str, namespace: str) -> PodStatus | None:
        try:
            pod = await asyncio.to_thread(
                self._core_v1.read_namespaced_pod, name=name, namespace=namespace
            )
        except ApiException as exc:
            if exc.status == 404:
                return None
            raise ClusterGatewayError(f"Failed to read pod {name}: {exc.reason}") from exc
        return self._to_pod_status(pod)

    async def delete_pod(self, name: str, namespace: str) -> None:
        try:
            await asyncio.to_thread(
                self._core_v1.delete_namespaced_pod, name=name, namespace=namespace
            )
        except ApiException as exc:
            if exc.status == 404:
                return
            raise ClusterGatewayError(f"Failed to delete pod {name}: {exc.reason}") from exc

    async def describe_pod(self, name: str, namespace: str) -> str:
        result = await self._kubectl.run(
            ["describe", "pod", name, "-n", namespace],
            timeout=_DESCRIBE_TIMEOUT_SECONDS,
        )
        if not result.success:
            raise ClusterGatewayError(result.stderr.strip() or f"describe pod {name} failed")
        return result.stdout

    async def list_pod_events(self, name: str, namespace: str) -> list[ClusterEvent]:
        try:
            response = await asyncio.to_thread(
                self._core_v1.list_namespaced_event,
                namespace=namespace,
                field_selector=f"involvedObject.name={name}",
            )
        except ApiException as exc:
            raise ClusterGatewayError(f"Failed to list events for {name}: {exc.reason}") from exc

        events = [
            ClusterEvent(
                object_name=name,
                reason=item.reason or "",
                message=(item.message or "").strip(),
                event_type=item.type or "Normal",
                timestamp=_event_timestamp(item),
                count=item.count or 1,
            )
            for item in response.items
        ]
        events.sort(
            key=lambda event: (event.timestamp is not None, event.timestamp or datetime.min)
        )
        return events

    async def read_pod_logs(self, name: str, namespace: str, *, tail_lines: int) -> str:
        try:
            return await asyncio.to_thread(
                self._core_v1.read_namespaced_pod_log,
                name=name,
                namespace=namespace,
                tail_lines=tail_lines,
            )
        except ApiException as exc:
            raise ClusterGatewayError(f"Failed to read logs of {name}: {exc.reason}") from exc

    async def exec_in_pod(self, name: str, namespace: str, command: Sequence[str]) -> ExecResult:
        return await self._kubectl.run(
            ["exec", "-n", namespace, name, "--", *command],
            timeout=_EXEC_TIMEOUT_SECONDS,
        )

    async def start_exec(
        self,
        name: str,
        namespace: str,
        command: Sequence[str],
        *,
        stdin: bool = False,
    ) -> SubprocessWorkerProcess:
        args = ["exec"]
        if stdin:
            args.append("-i")
        args += ["-n", namespace, name, "--", *command]
        return await self._kubectl.start(args, stdin=stdin)

    async def start_copy_from_pod(
        self,
        name: str,
        namespace: str,
        remote_path: str,
        local_path: Path,
    ) -> SubprocessWorkerProcess:
        return await self._kubectl.start(
            ["cp", f"{namespace}/{name}:{remote_path}", str(local_path)]
        )

    def _to_pod_status(self, pod: Any) -> PodStatus:
        status = pod.status
        container_statuses = (status.container_statuses if status is not None else None) or []
        reason = status.reason if status is not None else None
        for container in container_statuses:
            state = container.state
            if state is not None and state.waiting is not None and state.waiting.reason:
                reason = state.waiting.reason
            elif state is not None and state.terminated is not None and state.terminated.reason:
                reason = state.terminated.reason
        return PodStatus(
            name=pod.metadata.name,
            namespace=pod.metadata.namespace,
            phase=(status.phase if status is not None else None) or "Unknown",
            ready=bool(container_statuses) and all(item.ready for item in container_statuses),
            reason=reason,
            node_name=pod.spec.node_name if pod.spec is not None else None,
        )


__all__ = ["KubernetesClusterGateway", "load_kubernetes_config"]
