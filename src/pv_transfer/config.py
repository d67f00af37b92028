"""Application settings."""

from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pv_transfer.domain.errors import InvalidQuantityError
from pv_transfer.domain.quantity import Quantity


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    default_namespace: str = "default"
    worker_image: str = "busybox:latest"
    worker_mount_path: str = "/data"
    worker_memory_request: str = "512Mi"
    worker_max_lifetime_seconds: int = 86_400
    pod_ready_timeout_seconds: float = 120.0
    pod_poll_interval_seconds: float = 2.0
    pod_deletion_timeout_seconds: float = 60.0
    volume_bind_timeout_seconds: float = 60.0
    progress_interval_seconds: float = 1.0
    health_check_every_ticks: int = 5
    throughput_window_samples: int = 10
    stream_chunk_bytes: int = 1024 * 1024
    low_disk_space_bytes: int = 1024**3
    log_dir: Path = Path("logs")
    pod_log_tail_lines: int = 1000
    kubectl_command: str | None = None
    kubeconfig: str | None = None

    @field_validator("worker_memory_request")
    @classmethod
    def validate_memory_request(cls, value: str) -> str:
        """Require Kubernetes quantity notation for the worker memory request."""

        try:
            Quantity.parse(value)
        except InvalidQuantityError as exc:
            raise ValueError(
                f"PV_TRANSFER_WORKER_MEMORY_REQUEST must be a quantity like 512Mi: {exc}"
            ) from exc
        return value

    @field_validator("kubectl_command", "kubeconfig", mode="before")
    @classmethod
    def blank_as_none(cls, value: object) -> object:
        """Treat empty env var values as unset."""

        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def validate_worker_settings(self) -> "Settings":
        """Ensure worker lifecycle settings are valid."""

        if not self.worker_mount_path.startswith("/") or self.worker_mount_path == "/":
            raise ValueError("PV_TRANSFER_WORKER_MOUNT_PATH must be an absolute path below '/'.")
        if self.worker_max_lifetime_seconds <= 0:
            raise ValueError("PV_TRANSFER_WORKER_MAX_LIFETIME_SECONDS must be > 0.")
        if self.pod_ready_timeout_seconds <= 0:
            raise ValueError("PV_TRANSFER_POD_READY_TIMEOUT_SECONDS must be > 0.")
        if self.pod_poll_interval_seconds <= 0:
            raise ValueError("PV_TRANSFER_POD_POLL_INTERVAL_SECONDS must be > 0.")
        if self.pod_poll_interval_seconds > self.pod_ready_timeout_seconds:
            raise ValueError(
                "PV_TRANSFER_POD_POLL_INTERVAL_SECONDS must be <= "
                "PV_TRANSFER_POD_READY_TIMEOUT_SECONDS."
            )
        if self.pod_deletion_timeout_seconds < 0:
            raise ValueError("PV_TRANSFER_POD_DELETION_TIMEOUT_SECONDS must be >= 0.")
        if self.volume_bind_timeout_seconds < 0:
            raise ValueError("PV_TRANSFER_VOLUME_BIND_TIMEOUT_SECONDS must be >= 0.")
        if self.pod_log_tail_lines <= 0:
            raise ValueError("PV_TRANSFER_POD_LOG_TAIL_LINES must be > 0.")
        return self

    @model_validator(mode="after")
    def validate_progress_settings(self) -> "Settings":
        """Ensure progress sampling settings are valid."""

        if self.progress_interval_seconds <= 0:
            raise ValueError("PV_TRANSFER_PROGRESS_INTERVAL_SECONDS must be > 0.")
        if self.health_check_every_ticks <= 0:
            raise ValueError("PV_TRANSFER_HEALTH_CHECK_EVERY_TICKS must be > 0.")
        if self.throughput_window_samples <= 0:
            raise ValueError("PV_TRANSFER_THROUGHPUT_WINDOW_SAMPLES must be > 0.")
        if self.stream_chunk_bytes <= 0:
            raise ValueError("PV_TRANSFER_STREAM_CHUNK_BYTES must be > 0.")
        return self

    @property
    def kubectl_command_parts(self) -> tuple[str, ...] | None:
        if self.kubectl_command is None:
            return None
        return tuple(self.kubectl_command.split())

    model_config = SettingsConfigDict(env_prefix="PV_TRANSFER_", extra="ignore")


__all__ = ["Settings"]
