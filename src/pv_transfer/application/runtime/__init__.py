"""Runtime primitives shared by transfer services."""

from pv_transfer.application.runtime.cancellation import CancellationToken
from pv_transfer.application.runtime.clock import SystemClock, TickOutcome, Ticker
from pv_transfer.application.runtime.job_context import JobContext

__all__ = ["CancellationToken", "JobContext", "SystemClock", "TickOutcome", "Ticker"]
