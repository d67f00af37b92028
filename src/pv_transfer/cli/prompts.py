"""Interactive and automatic decision makers for pre-check and target resolution."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from pv_transfer.domain.cluster_models import StorageClassInfo
from pv_transfer.domain.entities import ConflictRecord
from pv_transfer.domain.errors import InvalidQuantityError, ResolutionError
from pv_transfer.domain.quantity import Quantity
from pv_transfer.domain.transfer_types import MergePolicy, TransferFormat
from pv_transfer.domain.volume_ref import VolumeRef, is_valid_resource_name

logger = logging.getLogger(__name__)

_FORMAT_CHOICES = {
    "1": TransferFormat.COMPRESSED,
    "2": TransferFormat.UNCOMPRESSED,
    "3": TransferFormat.DIRECTORY,
}
_MERGE_CHOICES = {"1": MergePolicy.MERGE, "2": MergePolicy.CLEAR}


def _resource_name(value: str) -> str:
    name = value.strip()
    if not is_valid_resource_name(name):
        raise click.BadParameter(
            "use lowercase letters, digits and '-', starting and ending with a letter or digit"
        )
    return name


def _quantity(value: str) -> Quantity:
    try:
        quantity = Quantity.parse(value)
    except InvalidQuantityError as exc:
        raise click.BadParameter(str(exc)) from exc
    if quantity.byte_count == 0:
        raise click.BadParameter("capacity must be greater than zero")
    return quantity


def prompt_transfer_format(console: Console) -> TransferFormat:
    """Ask which export format to use."""

    console.print("Select export format:")
    console.print("  [1] Compressed (.tar.gz): smaller files, slower, more worker memory")
    console.print("  [2] Uncompressed (.tar): larger files, faster, less worker memory")
    console.print("  [3] Folder: plain files copied into a directory")
    choice = click.prompt("Choice", type=click.Choice(list(_FORMAT_CHOICES)), default="1")
    return _FORMAT_CHOICES[choice]


def _conflict_table(title: str, conflicts: Sequence[ConflictRecord]) -> Table:
    table = Table(title=title)
    table.add_column("Volume")
    table.add_column("Namespace")
    table.add_column("Detail")
    for conflict in conflicts:
        table.add_row(conflict.job.volume.name, conflict.job.volume.namespace, conflict.detail)
    return table


class InteractiveConflictPrompter:
    """One yes/no question per conflict category."""

    def __init__(self, console: Console) -> None:
        self._console = console

    def confirm_exclusive_attach(self, conflicts: Sequence[ConflictRecord]) -> bool:
        self._console.print(_conflict_table("Volumes mounted by other pods", conflicts))
        self._console.print(
            "These ReadWriteOnce volumes are in use; the worker may not be able to attach."
        )
        return click.confirm("Continue with these volumes anyway?", default=False)

    def confirm_overwrite(self, conflicts: Sequence[ConflictRecord]) -> bool:
        self._console.print(_conflict_table("Existing data that will be replaced", conflicts))
        return click.confirm("Overwrite the existing data?", default=False)


class NonInteractiveConflictPrompter:
    """Declines conflicts so affected jobs are skipped.

    Overwrites pass only when the caller already asked for them on the command line.
    """

    def __init__(self, *, allow_overwrite: bool = False) -> None:
        self._allow_overwrite = allow_overwrite

    def confirm_exclusive_attach(self, conflicts: Sequence[ConflictRecord]) -> bool:
        logger.warning(
            "%d volume(s) are mounted by other pods; skipping them in non-interactive mode.",
            len(conflicts),
        )
        return False

    def confirm_overwrite(self, conflicts: Sequence[ConflictRecord]) -> bool:
        if self._allow_overwrite:
            logger.info("Replacing existing data in %d destination(s).", len(conflicts))
            return True
        logger.warning(
            "%d destination(s) already exist; skipping them in non-interactive mode.",
            len(conflicts),
        )
        return False


class InteractiveTargetDecider:
    """Prompt for every import decision, offering the inferred suggestion as default."""

    def __init__(self, console: Console) -> None:
        self._console = console

    def confirm_namespace(self, source: Path, suggested: str) -> str:
        self._console.rule(f"[bold]{source.name}")
        return click.prompt("Namespace", default=suggested, value_proc=_resource_name)

    def approve_namespace_creation(self, namespace: str) -> bool:
        return click.confirm(f"Namespace '{namespace}' does not exist. Create it?", default=False)

    def confirm_volume_name(self, source: Path, namespace: str, suggested: str) -> str:
        return click.prompt("Volume (PVC) name", default=suggested, value_proc=_resource_name)

    def approve_volume_creation(self, volume: VolumeRef) -> bool:
        return click.confirm(f"Volume {volume.display} does not exist. Create it?", default=False)

    def choose_storage_class(self, classes: Sequence[StorageClassInfo], default: str) -> str:
        names = [item.name for item in classes]
        for item in classes:
            marker = " (default)" if item.is_default else ""
            self._console.print(f"  - {item.name}{marker} {item.provisioner}")
        return click.prompt("Storage class", type=click.Choice(names), default=default)

    def choose_capacity(self, volume: VolumeRef, suggested: Quantity) -> Quantity:
        return click.prompt("Capacity", default=suggested.format(), value_proc=_quantity)

    def choose_merge_policy(self, volume: VolumeRef) -> MergePolicy:
        self._console.print(
            f"{volume.display} already exists. How should existing data be handled?"
        )
        self._console.print("  [1] Merge: keep existing files, add and overwrite imported ones")
        self._console.print("  [2] Clear: delete existing data before importing")
        choice = click.prompt("Choice", type=click.Choice(list(_MERGE_CHOICES)), default="1")
        return _MERGE_CHOICES[choice]


class AutomaticTargetDecider:
    """Accept suggestions; create and overwrite only when explicitly allowed."""

    def __init__(
        self,
        *,
        create_missing: bool = False,
        merge_policy: MergePolicy | None = None,
    ) -> None:
        self._create_missing = create_missing
        self._merge_policy = merge_policy

    def confirm_namespace(self, source: Path, suggested: str) -> str:
        return suggested

    def approve_namespace_creation(self, namespace: str) -> bool:
        if not self._create_missing:
            logger.warning(
                "Namespace %s is missing; pass --create-missing to create it.", namespace
            )
        return self._create_missing

    def confirm_volume_name(self, source: Path, namespace: str, suggested: str) -> str:
        return suggested

    def approve_volume_creation(self, volume: VolumeRef) -> bool:
        if not self._create_missing:
            logger.warning("Volume %s is missing; pass --create-missing to create it.", volume)
        return self._create_missing

    def choose_storage_class(self, classes: Sequence[StorageClassInfo], default: str) -> str:
        return default

    def choose_capacity(self, volume: VolumeRef, suggested: Quantity) -> Quantity:
        return suggested

    def choose_merge_policy(self, volume: VolumeRef) -> MergePolicy:
        if self._merge_policy is None:
            raise ResolutionError(
                f"Volume {volume} already exists; pass --merge or --clear to choose how "
                "existing data is handled."
            )
        return self._merge_policy


__all__ = [
    "AutomaticTargetDecider",
    "InteractiveConflictPrompter",
    "InteractiveTargetDecider",
    "NonInteractiveConflictPrompter",
    "prompt_transfer_format",
]
