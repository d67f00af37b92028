from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from cluster_fakes import FakeClock, FakeClusterGateway
from pv_transfer.application.services import TargetResolutionService, TransferJobService
from pv_transfer.bootstrap import (
    build_target_resolution_service,
    build_transfer_job_service,
    build_transfer_runtime,
)
from pv_transfer.cli.prompts import AutomaticTargetDecider, NonInteractiveConflictPrompter
from pv_transfer.config import Settings
from pv_transfer.infrastructure.archives import TarArchiveCodec
from pv_transfer.infrastructure.local_fs import LocalFilesystem
from pv_transfer.infrastructure.transfers import WorkerStreamExecutor


def test_settings_defaults() -> None:
    settings = Settings()

    assert settings.default_namespace == "default"
    assert settings.worker_image == "busybox:latest"
    assert settings.worker_mount_path == "/data"
    assert settings.log_dir == Path("logs")
    assert settings.kubectl_command_parts is None


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PV_TRANSFER_DEFAULT_NAMESPACE", "apps")
    monkeypatch.setenv("PV_TRANSFER_KUBECTL_COMMAND", "microk8s kubectl")
    monkeypatch.setenv("PV_TRANSFER_KUBECONFIG", "   ")

    settings = Settings()

    assert settings.default_namespace == "apps"
    assert settings.kubectl_command_parts == ("microk8s", "kubectl")
    assert settings.kubeconfig is None


def test_settings_require_quantity_memory_request() -> None:
    with pytest.raises(ValidationError):
        Settings(worker_memory_request="half a gig")


def test_settings_require_absolute_mount_path() -> None:
    with pytest.raises(ValidationError):
        Settings(worker_mount_path="data")
    with pytest.raises(ValidationError):
        Settings(worker_mount_path="/")


def test_settings_require_poll_interval_within_ready_timeout() -> None:
    with pytest.raises(ValidationError):
        Settings(pod_poll_interval_seconds=30, pod_ready_timeout_seconds=10)


def test_settings_require_positive_progress_interval() -> None:
    with pytest.raises(ValidationError):
        Settings(progress_interval_seconds=0)


def test_settings_require_positive_health_check_cadence() -> None:
    with pytest.raises(ValidationError):
        Settings(health_check_every_ticks=0)


def test_build_transfer_runtime_wires_adapters(tmp_path: Path) -> None:
    gateway = FakeClusterGateway()
    clock = FakeClock()
    settings = Settings(log_dir=tmp_path)

    runtime = build_transfer_runtime(settings, gateway=gateway, clock=clock)

    assert runtime.gateway is gateway
    assert runtime.clock is clock
    assert isinstance(runtime.storage, LocalFilesystem)
    assert isinstance(runtime.codec, TarArchiveCodec)
    assert isinstance(runtime.streamer, WorkerStreamExecutor)
    assert runtime.pods.mount_path == "/data"


def test_build_services_share_the_runtime(tmp_path: Path) -> None:
    settings = Settings(log_dir=tmp_path)
    runtime = build_transfer_runtime(settings, gateway=FakeClusterGateway(), clock=FakeClock())

    resolver = build_target_resolution_service(
        settings, runtime, decider=AutomaticTargetDecider()
    )
    service = build_transfer_job_service(
        settings,
        runtime,
        prompter=NonInteractiveConflictPrompter(),
        provisioner=resolver,
    )

    assert isinstance(resolver, TargetResolutionService)
    assert isinstance(service, TransferJobService)
    assert service._pods is runtime.pods
    assert service._provisioner is resolver
