from __future__ import annotations

import asyncio
from pathlib import Path

from cluster_fakes import FakeClusterGateway, ScriptedPrompter
from pv_transfer.application.services import PrecheckService, build_export_jobs
from pv_transfer.domain.cluster_models import PodStatus
from pv_transfer.domain.entities import ResolvedTarget, TransferJob
from pv_transfer.domain.quantity import Quantity
from pv_transfer.domain.transfer_types import (
    MergePolicy,
    SourceKind,
    TransferDirection,
    TransferFormat,
)
from pv_transfer.domain.volume_ref import VolumeRef
from pv_transfer.infrastructure.local_fs import LocalFilesystem


def holder(name: str, namespace: str = "default") -> PodStatus:
    return PodStatus(name=name, namespace=namespace, phase="Running", ready=True)


def test_missing_volumes_are_skipped_without_prompting(tmp_path: Path) -> None:
    gateway = FakeClusterGateway()
    present = gateway.add_volume("present")
    prompter = ScriptedPrompter()
    jobs = build_export_jobs(
        [present, VolumeRef(name="absent", namespace="default")],
        TransferFormat.COMPRESSED,
        tmp_path,
    )

    result = asyncio.run(PrecheckService(gateway, LocalFilesystem(), prompter).scan(jobs))

    assert [job.volume.name for job in result.accepted] == ["present"]
    assert [(item.job.volume.name, item.reason) for item in result.skipped] == [
        ("absent", "volume not found")
    ]
    assert prompter.attach_calls == 0
    assert prompter.overwrite_calls == 0


def test_declined_exclusive_attach_skips_all_conflicting_jobs(tmp_path: Path) -> None:
    gateway = FakeClusterGateway()
    first = gateway.add_volume("first")
    second = gateway.add_volume("second")
    shared = gateway.add_volume("shared", access_modes=("ReadWriteMany",))
    gateway.holders[first] = [holder("app-0")]
    gateway.holders[second] = [holder("app-1")]
    gateway.holders[shared] = [holder("app-2")]
    prompter = ScriptedPrompter(attach=False)
    jobs = build_export_jobs([first, second, shared], TransferFormat.COMPRESSED, tmp_path)

    result = asyncio.run(PrecheckService(gateway, LocalFilesystem(), prompter).scan(jobs))

    assert prompter.attach_calls == 1
    assert [job.volume.name for job in result.accepted] == ["shared"]
    assert {item.job.volume.name for item in result.skipped} == {"first", "second"}
    assert all("exclusive-attach" in item.reason for item in result.skipped)
    assert result.conflicts[0].holders == ("app-0",)


def test_accepted_exclusive_attach_keeps_jobs(tmp_path: Path) -> None:
    gateway = FakeClusterGateway()
    volume = gateway.add_volume("busy", access_modes=("ReadWriteOncePod",))
    gateway.holders[volume] = [holder("app-0")]
    prompter = ScriptedPrompter(attach=True)
    jobs = build_export_jobs([volume], TransferFormat.COMPRESSED, tmp_path)

    result = asyncio.run(PrecheckService(gateway, LocalFilesystem(), prompter).scan(jobs))

    assert [job.volume.name for job in result.accepted] == ["busy"]


def test_existing_destination_is_removed_when_overwrite_confirmed(tmp_path: Path) -> None:
    gateway = FakeClusterGateway()
    volume = gateway.add_volume("data")
    jobs = build_export_jobs([volume], TransferFormat.COMPRESSED, tmp_path)
    jobs[0].local_path.write_bytes(b"old")
    prompter = ScriptedPrompter(overwrite=True)

    result = asyncio.run(PrecheckService(gateway, LocalFilesystem(), prompter).scan(jobs))

    assert result.accepted == jobs
    assert not jobs[0].local_path.exists()


def test_existing_destination_is_skipped_when_overwrite_declined(tmp_path: Path) -> None:
    gateway = FakeClusterGateway()
    volume = gateway.add_volume("data")
    jobs = build_export_jobs([volume], TransferFormat.DIRECTORY, tmp_path)
    jobs[0].local_path.mkdir()
    prompter = ScriptedPrompter(overwrite=False)

    result = asyncio.run(PrecheckService(gateway, LocalFilesystem(), prompter).scan(jobs))

    assert result.accepted == []
    assert result.skipped[0].reason.startswith("destination exists")
    assert jobs[0].local_path.is_dir()


def test_import_into_volume_being_created_needs_no_checks(tmp_path: Path) -> None:
    gateway = FakeClusterGateway()
    volume = VolumeRef(name="fresh", namespace="default")
    job = TransferJob(
        job_id="import-1",
        direction=TransferDirection.IMPORT,
        volume=volume,
        local_path=tmp_path / "fresh.tar",
        transfer_format=TransferFormat.UNCOMPRESSED,
        merge_policy=MergePolicy.CLEAR,
        source_kind=SourceKind.TAR,
        target=ResolvedTarget(
            volume=volume,
            create_volume=True,
            storage_class="standard",
            capacity=Quantity.parse("1Gi"),
            merge_policy=MergePolicy.CLEAR,
        ),
    )

    result = asyncio.run(
        PrecheckService(gateway, LocalFilesystem(), ScriptedPrompter()).scan([job])
    )

    assert result.accepted == [job]


def import_into_existing(tmp_path: Path, policy: MergePolicy) -> TransferJob:
    volume = VolumeRef(name="data", namespace="default")
    source = tmp_path / "data@default.tar"
    source.write_bytes(b"archive")
    return TransferJob(
        job_id="import-1",
        direction=TransferDirection.IMPORT,
        volume=volume,
        local_path=source,
        transfer_format=TransferFormat.UNCOMPRESSED,
        merge_policy=policy,
        source_kind=SourceKind.TAR,
        target=ResolvedTarget(volume=volume, merge_policy=policy),
    )


def test_clearing_an_existing_volume_needs_overwrite_confirmation(tmp_path: Path) -> None:
    gateway = FakeClusterGateway()
    gateway.add_volume("data")
    job = import_into_existing(tmp_path, MergePolicy.CLEAR)
    prompter = ScriptedPrompter(overwrite=False)

    result = asyncio.run(PrecheckService(gateway, LocalFilesystem(), prompter).scan([job]))

    assert prompter.overwrite_calls == 1
    assert result.accepted == []
    assert result.skipped[0].reason == (
        "destination exists: existing data in data (default) will be deleted"
    )


def test_confirmed_clear_keeps_the_local_import_source(tmp_path: Path) -> None:
    gateway = FakeClusterGateway()
    gateway.add_volume("data")
    job = import_into_existing(tmp_path, MergePolicy.CLEAR)
    prompter = ScriptedPrompter(overwrite=True)

    result = asyncio.run(PrecheckService(gateway, LocalFilesystem(), prompter).scan([job]))

    assert result.accepted == [job]
    assert job.local_path.read_bytes() == b"archive"


def test_merging_into_an_existing_volume_is_not_a_conflict(tmp_path: Path) -> None:
    gateway = FakeClusterGateway()
    gateway.add_volume("data")
    job = import_into_existing(tmp_path, MergePolicy.MERGE)
    prompter = ScriptedPrompter()

    result = asyncio.run(PrecheckService(gateway, LocalFilesystem(), prompter).scan([job]))

    assert result.accepted == [job]
    assert prompter.overwrite_calls == 0


def test_build_export_jobs_dedupes_and_names_artifacts(tmp_path: Path) -> None:
    volume = VolumeRef(name="data", namespace="prod")

    jobs = build_export_jobs([volume, volume], TransferFormat.UNCOMPRESSED, tmp_path)

    assert len(jobs) == 1
    assert jobs[0].job_id == "export-1"
    assert jobs[0].local_path == tmp_path / "data@prod.tar"
