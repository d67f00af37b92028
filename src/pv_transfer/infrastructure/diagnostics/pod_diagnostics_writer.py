"""Persist worker diagnostic snapshots next to the run log."""

from __future__ import annotations

import logging
from pathlib import Path

from pv_transfer.domain.entities import DiagnosticSnapshot
from pv_transfer.domain.volume_ref import sanitize_artifact_component

logger = logging.getLogger(__name__)


class PodDiagnosticsWriter:
    """Write `{namespace}-{volume}-{pod}-{timestamp}.log` under `<log_dir>/pod_logs`."""

    def __init__(self, log_dir: Path) -> None:
        self._directory = log_dir / "pod_logs"

    @property
    def directory(self) -> Path:
        return self._directory

    def persist(self, snapshot: DiagnosticSnapshot) -> Path | None:
        stamp = snapshot.captured_at.strftime("%Y%m%d-%H%M%S")
        name = "-".join(
            sanitize_artifact_component(part)
            for part in (snapshot.namespace, snapshot.volume_name, snapshot.pod_name, stamp)
        )
        path = self._directory / f"{name}.log"
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            path.write_text(snapshot.render(), encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not write diagnostics for %s: %s", snapshot.pod_name, exc)
            return None
        logger.info("Saved diagnostics for %s to %s", snapshot.pod_name, path)
        return path


__all__ = ["PodDiagnosticsWriter"]
