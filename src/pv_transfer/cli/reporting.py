"""Rich console output: live progress, import plan and final report."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from pv_transfer.domain.entities import TransferJob, TransferReport
from pv_transfer.domain.monitoring_models import TransferProgressSnapshot
from pv_transfer.domain.ports import ProgressReporter
from pv_transfer.domain.quantity import format_bytes
from pv_transfer.domain.transfer_types import JobStatus

_STATUS_STYLES = {
    JobStatus.SUCCEEDED: "green",
    JobStatus.FAILED: "red",
    JobStatus.SKIPPED: "yellow",
    JobStatus.INTERRUPTED: "magenta",
}


class RichProgressReporter(ProgressReporter):
    """Live progress bar with moving-average throughput."""

    def __init__(self, console: Console) -> None:
        self._console = console
        self._progress: Progress | None = None
        self._task_id: TaskID | None = None

    def start(self, job: TransferJob, total_bytes: int | None) -> None:
        self.finish(job)
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(),
            DownloadColumn(binary_units=True),
            TextColumn("{task.fields[rate]}"),
            TextColumn("{task.fields[files]}"),
            TimeElapsedColumn(),
            console=self._console,
        )
        self._progress.start()
        self._task_id = self._progress.add_task(
            job.label, total=total_bytes or None, rate="", files=""
        )

    def update(self, snapshot: TransferProgressSnapshot) -> None:
        if self._progress is None or self._task_id is None:
            return
        files = "" if snapshot.files_done is None else f"{snapshot.files_done} files"
        self._progress.update(
            self._task_id,
            completed=snapshot.bytes_done,
            rate=f"{format_bytes(snapshot.average_rate)}/s",
            files=files,
        )

    def finish(self, job: TransferJob) -> None:
        if self._progress is not None:
            self._progress.stop()
        self._progress = None
        self._task_id = None


def render_import_plan(console: Console, jobs: Sequence[TransferJob]) -> None:
    table = Table(title="Import plan")
    table.add_column("Source")
    table.add_column("Namespace")
    table.add_column("Volume")
    table.add_column("Action")
    table.add_column("Data")
    table.add_column("Size", justify="right")
    for job in jobs:
        target = job.target
        actions = []
        if target is not None and target.create_namespace:
            actions.append("create namespace")
        if target is not None and target.create_volume:
            actions.append(f"create {target.capacity} ({target.storage_class})")
        table.add_row(
            str(job.local_path),
            job.volume.namespace,
            job.volume.name,
            ", ".join(actions) or "use existing",
            job.merge_policy.value,
            "-" if job.estimated_bytes is None else format_bytes(job.estimated_bytes),
        )
    console.print(table)


def render_report(
    console: Console,
    report: TransferReport,
    *,
    log_path: Path | None = None,
    failures: Sequence[tuple[Path, str]] = (),
) -> None:
    table = Table(title="Transfer summary")
    table.add_column("Volume")
    table.add_column("Status")
    table.add_column("Details")
    table.add_column("Duration", justify="right")
    for outcome in report.outcomes:
        details = outcome.message
        if outcome.usage is not None:
            details = (
                f"{details} {format_bytes(outcome.usage.size_bytes)}, "
                f"{outcome.usage.file_count} files"
            ).strip()
        if outcome.status is JobStatus.SUCCEEDED:
            details = f"{details} -> {outcome.job.local_path}".strip()
        if outcome.diagnostics_path is not None and outcome.status is not JobStatus.SUCCEEDED:
            details = f"{details} (diagnostics: {outcome.diagnostics_path})"
        style = _STATUS_STYLES[outcome.status]
        table.add_row(
            outcome.job.label,
            f"[{style}]{outcome.status.value}[/{style}]",
            details,
            f"{outcome.duration_seconds:.1f}s",
        )
    for source, reason in failures:
        table.add_row(str(source), "[red]unresolved[/red]", reason, "-")
    console.print(table)
    console.print(
        f"Succeeded: {len(report.succeeded)}  Failed: {len(report.failed) + len(failures)}  "
        f"Skipped: {len(report.skipped)}"
    )
    if log_path is not None:
        console.print(f"Log file: {log_path}")


__all__ = ["RichProgressReporter", "render_import_plan", "render_report"]
