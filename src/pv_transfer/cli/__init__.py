"""Command line surface."""

from pv_transfer.cli.app import cli, export_command, import_command, main

__all__ = ["cli", "export_command", "import_command", "main"]
