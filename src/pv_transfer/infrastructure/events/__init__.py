"""Progress reporter implementations."""

from pv_transfer.infrastructure.events.logging_progress_reporter import (
    LoggingProgressReporter,
)
from pv_transfer.infrastructure.events.noop_progress_reporter import NoopProgressReporter

__all__ = ["LoggingProgressReporter", "NoopProgressReporter"]
