"""Worker diagnostics sinks."""

from pv_transfer.infrastructure.diagnostics.pod_diagnostics_writer import PodDiagnosticsWriter

__all__ = ["PodDiagnosticsWriter"]
