"""kubectl subprocess runner for streaming exec, copy and describe."""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import Sequence
from contextlib import suppress

from pv_transfer.domain.cluster_models import ExecResult
from pv_transfer.domain.errors import ClusterGatewayError

logger = logging.getLogger(__name__)

_STDERR_TAIL_BYTES = 64 * 1024
_STDERR_READ_BYTES = 4096


def detect_kubectl_command(override: Sequence[str] | None = None) -> tuple[str, ...]:
    """Return the kubectl invocation, preferring `microk8s kubectl` when installed."""

    if override:
        return tuple(override)
    if shutil.which("microk8s"):
        return ("microk8s", "kubectl")
    if shutil.which("kubectl"):
        return ("kubectl",)
    raise ClusterGatewayError(
        "Neither microk8s nor kubectl was found on PATH; install kubectl to continue."
    )


class SubprocessWorkerProcess:
    """Worker process backed by a local kubectl subprocess."""

    def __init__(self, process: asyncio.subprocess.Process, args: Sequence[str]) -> None:
        self._process = process
        self._args = tuple(args)
        self._stderr = bytearray()
        self._stderr_task = asyncio.create_task(
            self._drain_stderr(),
            name=f"kubectl-stderr-{process.pid}",
        )

    @property
    def args(self) -> tuple[str, ...]:
        return self._args

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    async def read(self, size: int) -> bytes:
        if self._process.stdout is None:
            return b""
        return await self._process.stdout.read(size)

    async def write(self, data: bytes) -> None:
        if self._process.stdin is None:
            raise BrokenPipeError("Process was started without stdin.")
        self._process.stdin.write(data)
        await self._process.stdin.drain()

    async def close_input(self) -> None:
        if self._process.stdin is None or self._process.stdin.is_closing():
            return
        self._process.stdin.close()
        with suppress(BrokenPipeError, ConnectionResetError):
            await self._process.stdin.wait_closed()

    async def wait(self) -> int:
        returncode = await self._process.wait()
        with suppress(asyncio.CancelledError):
            await self._stderr_task
        return returncode

    def terminate(self) -> None:
        if self._process.returncode is not None:
            return
        with suppress(ProcessLookupError):
            self._process.kill()

    def error_output(self) -> str:
        return self._stderr.decode("utf-8", errors="replace")

    async def _drain_stderr(self) -> None:
        stream = self._process.stderr
        if stream is None:
            return
        while chunk := await stream.read(_STDERR_READ_BYTES):
            self._stderr.extend(chunk)
            if len(self._stderr) > _STDERR_TAIL_BYTES:
                del self._stderr[: len(self._stderr) - _STDERR_TAIL_BYTES]


class KubectlRunner:
    """Run kubectl with an optional kubeconfig."""

    def __init__(self, command: Sequence[str], kubeconfig: str | None = None) -> None:
        self._command = tuple(command)
        self._kubeconfig = kubeconfig

    @property
    def command(self) -> tuple[str, ...]:
        return self._command

    def build_args(self, args: Sequence[str]) -> list[str]:
        prefix = list(self._command)
        if self._kubeconfig:
            prefix += ["--kubeconfig", self._kubeconfig]
        return prefix + list(args)

    async def run(self, args: Sequence[str], timeout: float | None = None) -> ExecResult:
        """Run to completion and capture output."""

        full_args = self.build_args(args)
        logger.debug("Running %s", " ".join(full_args))
        try:
            process = await asyncio.create_subprocess_exec(
                *full_args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ClusterGatewayError(f"Failed to run {full_args[0]}: {exc}") from exc

        try:
            if timeout:
                stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
            else:
                stdout, stderr = await process.communicate()
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise ClusterGatewayError(
                f"{' '.join(full_args)} timed out after {timeout:g}s."
            ) from exc
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        return ExecResult(
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            args=tuple(full_args),
        )

    async def start(self, args: Sequence[str], *, stdin: bool = False) -> SubprocessWorkerProcess:
        """Start a long-running kubectl process with piped stdout and stderr."""

        full_args = self.build_args(args)
        logger.debug("Starting %s", " ".join(full_args))
        try:
            process = await asyncio.create_subprocess_exec(
                *full_args,
                stdin=asyncio.subprocess.PIPE if stdin else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ClusterGatewayError(f"Failed to start {full_args[0]}: {exc}") from exc
        return SubprocessWorkerProcess(process, full_args)


__all__ = ["KubectlRunner", "SubprocessWorkerProcess", "detect_kubectl_command"]
