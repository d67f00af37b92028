"""Transfer execution adapters."""

from pv_transfer.infrastructure.transfers.worker_stream_executor import WorkerStreamExecutor

__all__ = ["WorkerStreamExecutor"]
