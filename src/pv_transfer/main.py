"""Console script entrypoints."""

import sys

from pv_transfer.cli import cli, export_command, import_command, main


def run() -> None:
    """Run the `pv-transfer` command group."""

    sys.exit(main(cli, prog_name="pv-transfer"))


def run_export() -> None:
    """Run `pv-export`, a shortcut for `pv-transfer export`."""

    sys.exit(main(export_command, prog_name="pv-export"))


def run_import() -> None:
    """Run `pv-import`, a shortcut for `pv-transfer import`."""

    sys.exit(main(import_command, prog_name="pv-import"))


if __name__ == "__main__":
    run()


__all__ = ["run", "run_export", "run_import"]
