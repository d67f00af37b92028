"""Command line interface for exporting and importing persistent volumes."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console

from pv_transfer import __version__
from pv_transfer.application.runtime import CancellationToken
from pv_transfer.application.services import build_export_jobs
from pv_transfer.bootstrap import (
    TransferRuntime,
    build_cluster_gateway,
    build_target_resolution_service,
    build_transfer_job_service,
    build_transfer_runtime,
)
from pv_transfer.cli.prompts import (
    AutomaticTargetDecider,
    InteractiveConflictPrompter,
    InteractiveTargetDecider,
    NonInteractiveConflictPrompter,
    prompt_transfer_format,
)
from pv_transfer.cli.reporting import RichProgressReporter, render_import_plan, render_report
from pv_transfer.config import Settings
from pv_transfer.domain.entities import EXIT_FAILURE, EXIT_INTERRUPTED, EXIT_SUCCESS
from pv_transfer.domain.errors import ClusterGatewayError, ResolutionError
from pv_transfer.domain.ports import ConflictPrompter, ProgressReporter, TargetDecider
from pv_transfer.domain.transfer_types import MergePolicy, TransferFormat
from pv_transfer.domain.volume_ref import VolumeRef
from pv_transfer.infrastructure.events import LoggingProgressReporter
from pv_transfer.logging_config import configure_logging

logger = logging.getLogger(__name__)

console = Console()


def _is_interactive() -> bool:
    return sys.stdin.isatty()


def _load_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as exc:
        raise click.ClickException(f"Invalid configuration:\n{exc}") from exc


def _install_signal_handlers(token: CancellationToken) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, token.cancel, signum.name)
        except (NotImplementedError, RuntimeError, ValueError):
            logger.debug("Cannot install handler for %s on this platform.", signum.name)


def _run_transfers(flow: Callable[[CancellationToken], Awaitable[int]]) -> int:
    """Run `flow` on a fresh loop with a token it arms once prompting is over."""

    async def main() -> int:
        return await flow(CancellationToken())

    return asyncio.run(main())


def _build_runtime(settings: Settings) -> TransferRuntime:
    try:
        gateway = build_cluster_gateway(settings)
    except ClusterGatewayError as exc:
        logger.error("Cannot reach the cluster: %s", exc)
        raise click.exceptions.Exit(EXIT_FAILURE) from exc
    reporter: ProgressReporter = (
        RichProgressReporter(console) if console.is_terminal else LoggingProgressReporter()
    )
    return build_transfer_runtime(settings, reporter=reporter, gateway=gateway)


@click.group()
@click.version_option(__version__, prog_name="pv-transfer")
def cli() -> None:
    """Export and import Kubernetes persistent volume data."""


@cli.command("export")
@click.argument("volumes", nargs=-1, required=True)
@click.option("-n", "--namespace", help="Namespace for volumes given without '@namespace'.")
@click.option(
    "-o",
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Directory receiving the exported artifacts.",
)
@click.option(
    "--compressed",
    "transfer_format",
    flag_value=TransferFormat.COMPRESSED.value,
    help="Write .tar.gz archives (default when not interactive).",
)
@click.option(
    "--uncompressed",
    "transfer_format",
    flag_value=TransferFormat.UNCOMPRESSED.value,
    help="Write .tar archives.",
)
@click.option(
    "--folder",
    "transfer_format",
    flag_value=TransferFormat.DIRECTORY.value,
    help="Copy files into a plain directory.",
)
@click.option("-v", "--verbose", is_flag=True, help="Show debug output on the console.")
@click.pass_context
def export_command(
    ctx: click.Context,
    volumes: tuple[str, ...],
    namespace: str | None,
    output_dir: Path,
    transfer_format: str | None,
    verbose: bool,
) -> None:
    """Export VOLUME[@NAMESPACE] claims to local archives or directories."""

    settings = _load_settings()
    default_namespace = namespace or settings.default_namespace
    try:
        refs = [VolumeRef.parse(text, default_namespace) for text in volumes]
    except ResolutionError as exc:
        raise click.BadParameter(str(exc), param_hint="VOLUMES") from exc

    interactive = _is_interactive()
    if transfer_format is not None:
        chosen_format = TransferFormat(transfer_format)
    elif interactive:
        chosen_format = prompt_transfer_format(console)
    else:
        chosen_format = TransferFormat.COMPRESSED

    log_path = configure_logging(log_dir=settings.log_dir, command="export", verbose=verbose)
    logger.info("pv-transfer %s export, log file %s", __version__, log_path)
    runtime = _build_runtime(settings)
    prompter: ConflictPrompter = (
        InteractiveConflictPrompter(console) if interactive else NonInteractiveConflictPrompter()
    )
    service = build_transfer_job_service(settings, runtime, prompter=prompter)
    jobs = build_export_jobs(refs, chosen_format, output_dir)

    try:
        runtime.storage.ensure_directory(output_dir)
    except OSError as exc:
        raise click.ClickException(f"Cannot use output directory {output_dir}: {exc}") from exc

    async def flow(token: CancellationToken) -> int:
        checked = await service.precheck(jobs)
        _install_signal_handlers(token)
        report = await service.execute(checked, token)
        render_report(console, report, log_path=log_path)
        return report.exit_code

    ctx.exit(_run_transfers(flow))


@cli.command("import")
@click.argument(
    "sources",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, path_type=Path),
)
@click.option("-n", "--namespace", help="Namespace used when none can be inferred.")
@click.option("-y", "--yes", is_flag=True, help="Do not ask before starting the imports.")
@click.option(
    "--create-missing",
    is_flag=True,
    help="Create missing namespaces and volumes without asking.",
)
@click.option(
    "--merge",
    "merge_policy",
    flag_value=MergePolicy.MERGE.value,
    help="Keep existing data in existing volumes.",
)
@click.option(
    "--clear",
    "merge_policy",
    flag_value=MergePolicy.CLEAR.value,
    help="Delete existing data in existing volumes before importing.",
)
@click.option("-v", "--verbose", is_flag=True, help="Show debug output on the console.")
@click.pass_context
def import_command(
    ctx: click.Context,
    sources: tuple[Path, ...],
    namespace: str | None,
    yes: bool,
    create_missing: bool,
    merge_policy: str | None,
    verbose: bool,
) -> None:
    """Import SOURCE archives or directories into persistent volumes."""

    settings = _load_settings()
    default_namespace = namespace or settings.default_namespace
    interactive = _is_interactive()

    log_path = configure_logging(log_dir=settings.log_dir, command="import", verbose=verbose)
    logger.info("pv-transfer %s import, log file %s", __version__, log_path)
    runtime = _build_runtime(settings)

    decider: TargetDecider
    prompter: ConflictPrompter
    if interactive and not (create_missing or merge_policy):
        decider = InteractiveTargetDecider(console)
        prompter = InteractiveConflictPrompter(console)
    else:
        decider = AutomaticTargetDecider(
            create_missing=create_missing,
            merge_policy=MergePolicy(merge_policy) if merge_policy else None,
        )
        prompter = (
            InteractiveConflictPrompter(console)
            if interactive
            else NonInteractiveConflictPrompter(
                allow_overwrite=merge_policy == MergePolicy.CLEAR.value
            )
        )
    resolver = build_target_resolution_service(settings, runtime, decider=decider)
    service = build_transfer_job_service(
        settings,
        runtime,
        prompter=prompter,
        provisioner=resolver,
    )

    # Prompts block the loop, so Ctrl-C there aborts through click until handlers are armed.
    outcome = asyncio.run(resolver.resolve(sources, default_namespace=default_namespace))
    if not outcome.jobs:
        logger.error("None of the %d source(s) could be resolved.", len(sources))
        ctx.exit(EXIT_FAILURE)

    render_import_plan(console, outcome.jobs)
    if interactive and not yes and not click.confirm("Proceed?", default=True):
        console.print("Import cancelled.")
        ctx.exit(EXIT_SUCCESS)

    async def flow(token: CancellationToken) -> int:
        checked = await service.precheck(outcome.jobs)
        _install_signal_handlers(token)
        report = await service.execute(checked, token)
        render_report(console, report, log_path=log_path, failures=outcome.failures)
        if report.exit_code == EXIT_SUCCESS and outcome.failures:
            return EXIT_FAILURE
        return report.exit_code

    ctx.exit(_run_transfers(flow))


def main(command: click.Command, *, prog_name: str) -> int:
    """Invoke `command` and translate click outcomes into an exit status."""

    try:
        result = command.main(prog_name=prog_name, standalone_mode=False)
    except click.Abort:
        click.echo("Aborted.", err=True)
        return EXIT_INTERRUPTED
    except click.ClickException as exc:
        exc.show()
        return exc.exit_code
    return result if isinstance(result, int) else EXIT_SUCCESS


__all__ = ["cli", "export_command", "import_command", "main"]
