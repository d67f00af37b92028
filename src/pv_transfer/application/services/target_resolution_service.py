"""Turn import sources into fully determined destinations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from pv_transfer.application.runtime import CancellationToken, TickOutcome, Ticker
from pv_transfer.domain.entities import ResolvedTarget, TransferJob
from pv_transfer.domain.errors import (
    ClusterGatewayError,
    ProvisioningError,
    ResolutionError,
    TransferInterruptedError,
)
from pv_transfer.domain.ports import (
    ArchiveCodec,
    Clock,
    ClusterGateway,
    LocalStorage,
    TargetDecider,
)
from pv_transfer.domain.quantity import GIBIBYTE, Quantity
from pv_transfer.domain.transfer_types import MergePolicy, SourceKind, TransferDirection
from pv_transfer.domain.volume_ref import VolumeRef, is_valid_resource_name, to_resource_name

logger = logging.getLogger(__name__)

_ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar")
_HEADROOM_NUMERATOR = 6
_HEADROOM_DENOMINATOR = 5
_DEFAULT_BIND_TIMEOUT_SECONDS = 60.0
_DEFAULT_POLL_INTERVAL_SECONDS = 2.0


def _round_up(value: int, step: int) -> int:
    return -(-value // step) * step


def suggest_capacity(estimated_bytes: int) -> Quantity:
    """Suggest a claim size: 20% headroom, whole GiB, rounded up to a tidy boundary."""

    scaled = max(0, estimated_bytes) * _HEADROOM_NUMERATOR
    gibibytes = max(1, -(-scaled // (_HEADROOM_DENOMINATOR * GIBIBYTE)))
    if gibibytes <= 5:
        nice = gibibytes
    elif gibibytes <= 20:
        nice = _round_up(gibibytes, 5)
    elif gibibytes <= 100:
        nice = _round_up(gibibytes, 10)
    else:
        nice = _round_up(gibibytes, 50)
    return Quantity(nice * GIBIBYTE)


def strip_archive_suffix(name: str) -> str:
    lowered = name.lower()
    for suffix in _ARCHIVE_SUFFIXES:
        if lowered.endswith(suffix) and len(name) > len(suffix):
            return name[: -len(suffix)]
    return name


def _as_volume_name(value: str) -> str:
    return value if is_valid_resource_name(value) else to_resource_name(value)


@dataclass(slots=True, frozen=True)
class TargetSuggestion:
    """Namespace and volume name inferred from a source file name."""

    namespace: str
    volume_name: str


@dataclass(slots=True)
class ResolutionOutcome:
    """Jobs ready for the queue plus the sources that could not be resolved."""

    jobs: list[TransferJob] = field(default_factory=list)
    failures: list[tuple[Path, str]] = field(default_factory=list)


class TargetResolutionService:
    """Negotiate each import source against cluster state and operator decisions."""

    def __init__(
        self,
        gateway: ClusterGateway,
        codec: ArchiveCodec,
        storage: LocalStorage,
        decider: TargetDecider,
        clock: Clock,
        *,
        bind_timeout_seconds: float = _DEFAULT_BIND_TIMEOUT_SECONDS,
        poll_interval_seconds: float = _DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._gateway = gateway
        self._codec = codec
        self._storage = storage
        self._decider = decider
        self._clock = clock
        self._bind_timeout_seconds = bind_timeout_seconds
        self._poll_interval_seconds = poll_interval_seconds

    async def resolve(
        self,
        sources: Sequence[Path],
        *,
        default_namespace: str,
    ) -> ResolutionOutcome:
        outcome = ResolutionOutcome()
        claimed: dict[VolumeRef, Path] = {}
        for index, source in enumerate(sources, start=1):
            try:
                job = await self._resolve_one(source, default_namespace, index)
            except (ResolutionError, ProvisioningError, ClusterGatewayError) as exc:
                logger.error("Cannot import %s: %s", source, exc)
                outcome.failures.append((source, str(exc)))
                continue

            previous = claimed.get(job.volume)
            if previous is not None:
                reason = f"{job.volume} is already the target of {previous}"
                logger.error("Cannot import %s: %s", source, reason)
                outcome.failures.append((source, reason))
                continue
            claimed[job.volume] = source
            outcome.jobs.append(job)
        return outcome

    async def suggest(self, source: Path, default_namespace: str) -> TargetSuggestion:
        """Infer namespace and volume name from the source's base name."""

        stem = strip_archive_suffix(source.name)
        name, separator, namespace = stem.rpartition("@")
        if separator and name and is_valid_resource_name(namespace):
            return TargetSuggestion(namespace=namespace, volume_name=_as_volume_name(name))

        left, separator, right = stem.partition("-")
        if separator and left and right and is_valid_resource_name(left):
            if await self._gateway.namespace_exists(left):
                return TargetSuggestion(namespace=left, volume_name=_as_volume_name(right))
        return TargetSuggestion(namespace=default_namespace, volume_name=_as_volume_name(stem))

    async def apply(self, target: ResolvedTarget, token: CancellationToken) -> None:
        """Create the namespace and claim a resolved target asks for."""

        if target.create_namespace:
            logger.info("Creating namespace %s.", target.volume.namespace)
            try:
                await self._gateway.create_namespace(target.volume.namespace)
            except ClusterGatewayError as exc:
                raise ProvisioningError(
                    f"Failed to create namespace {target.volume.namespace}: {exc}"
                ) from exc

        if not target.create_volume:
            return
        if target.capacity is None:
            raise ProvisioningError(f"No capacity chosen for new volume {target.volume}.")
        logger.info(
            "Creating volume %s (%s, storage class %s).",
            target.volume.display,
            target.capacity,
            target.storage_class or "default",
        )
        try:
            await self._gateway.create_volume(
                target.volume,
                storage_class=target.storage_class,
                capacity=target.capacity,
            )
        except ClusterGatewayError as exc:
            raise ProvisioningError(f"Failed to create volume {target.volume}: {exc}") from exc
        await self._await_bound(target.volume, token)

    async def _resolve_one(self, source: Path, default_namespace: str, index: int) -> TransferJob:
        kind = await asyncio.to_thread(self._codec.detect_kind, source)
        if kind is SourceKind.DIRECTORY:
            usage = await asyncio.to_thread(self._storage.measure, source)
            estimated = usage.size_bytes
        else:
            if not await asyncio.to_thread(self._codec.verify, source, kind):
                raise ResolutionError(f"{source} is not a readable {kind} archive.")
            estimated = await asyncio.to_thread(
                self._codec.estimate_uncompressed_size, source, kind
            )

        suggestion = await self.suggest(source, default_namespace)
        namespace = self._decider.confirm_namespace(source, suggestion.namespace).strip()
        if not is_valid_resource_name(namespace):
            raise ResolutionError(f"'{namespace}' is not a valid namespace name.")

        create_namespace = False
        if not await self._gateway.namespace_exists(namespace):
            if not self._decider.approve_namespace_creation(namespace):
                raise ResolutionError(f"Namespace {namespace} does not exist.")
            create_namespace = True

        name = self._decider.confirm_volume_name(source, namespace, suggestion.volume_name)
        name = name.strip()
        if not is_valid_resource_name(name):
            raise ResolutionError(
                f"'{name}' is not a valid volume name "
                "(lowercase letters, digits and '-', at most 63 characters)."
            )
        volume = VolumeRef(name=name, namespace=namespace)

        existing = None if create_namespace else await self._gateway.get_volume(volume)
        if existing is None:
            if not self._decider.approve_volume_creation(volume):
                raise ResolutionError(f"Volume {volume} does not exist.")
            storage_class = await self._choose_storage_class()
            capacity = self._decider.choose_capacity(volume, suggest_capacity(estimated))
            target = ResolvedTarget(
                volume=volume,
                create_namespace=create_namespace,
                create_volume=True,
                storage_class=storage_class,
                capacity=capacity,
                merge_policy=MergePolicy.CLEAR,
            )
        else:
            if existing.capacity is not None and estimated > existing.capacity.byte_count:
                logger.warning(
                    "%s holds about %d bytes but %s is only %s.",
                    source,
                    estimated,
                    volume.display,
                    existing.capacity,
                )
            target = ResolvedTarget(
                volume=volume,
                merge_policy=self._decider.choose_merge_policy(volume),
            )

        return TransferJob(
            job_id=f"import-{index}",
            direction=TransferDirection.IMPORT,
            volume=volume,
            local_path=source,
            transfer_format=kind.transfer_format,
            merge_policy=target.merge_policy,
            estimated_bytes=estimated,
            source_kind=kind,
            target=target,
        )

    async def _choose_storage_class(self) -> str:
        classes = await self._gateway.list_storage_classes()
        if not classes:
            raise ProvisioningError("No storage class is available for new volumes.")
        default = next((item.name for item in classes if item.is_default), classes[0].name)
        return self._decider.choose_storage_class(classes, default)

    async def _await_bound(self, volume: VolumeRef, token: CancellationToken) -> None:
        ticker = Ticker(self._clock, self._poll_interval_seconds, token)
        deadline = self._clock.monotonic() + self._bind_timeout_seconds
        phase = "Pending"
        while True:
            info = await self._gateway.get_volume(volume)
            if info is not None:
                phase = info.phase
                if info.is_bound:
                    logger.info("Volume %s is bound.", volume.display)
                    return
            if self._clock.monotonic() >= deadline:
                logger.warning(
                    "Volume %s is still %s after %gs; it may bind once the worker is scheduled.",
                    volume.display,
                    phase,
                    self._bind_timeout_seconds,
                )
                return
            if await ticker.wait() is TickOutcome.CANCELLED:
                raise TransferInterruptedError(f"Interrupted while waiting for {volume} to bind.")


__all__ = [
    "ResolutionOutcome",
    "TargetResolutionService",
    "TargetSuggestion",
    "strip_archive_suffix",
    "suggest_capacity",
]
