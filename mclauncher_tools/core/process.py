"""External process invocation with captured output."""

from __future__ import annotations

import asyncio
import subprocess
import sys
from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from mclauncher_tools.core.errors import HelperProcessError, OperationCancelledError
from mclauncher_tools.core.guards import CancellationHandle

logger = structlog.get_logger()


@dataclass
class ProcessResult:
    """Outcome of a finished process.

    Attributes:
        args: Command line that was run
        exit_code: Numeric exit status
        stdout: Decoded standard output
        stderr: Decoded standard error
    """

    args: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def check(self, what: str, hint: str | None = None) -> ProcessResult:
        """Raise HelperProcessError unless the process exited with 0."""
        if not self.ok:
            raise HelperProcessError(
                f"{what} failed (code {self.exit_code})\n{self.stdout}\n{self.stderr}".rstrip(),
                exit_code=self.exit_code,
                stdout=self.stdout,
                stderr=self.stderr,
                hint=hint,
            )
        return self


async def run_process(
    args: Sequence[str],
    cancel: CancellationHandle | None = None,
) -> ProcessResult:
    """Run a process to completion, capturing stdout and stderr.

    The process is killed if ``cancel`` fires before it exits.

    Raises:
        OperationCancelledError: If cancelled
        HelperProcessError: If the executable cannot be started
    """
    argv = [str(a) for a in args]
    kwargs = {}
    if sys.platform == "win32":
        kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW

    if cancel:
        cancel.raise_if_cancelled()
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            **kwargs,
        )
    except OSError as e:
        raise HelperProcessError(f"Could not start {argv[0]}: {e}") from e

    def kill() -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass

    loop = asyncio.get_running_loop()
    remove_callback = cancel.add_callback(lambda: loop.call_soon_threadsafe(kill)) if cancel else (lambda: None)
    try:
        stdout, stderr = await process.communicate()
    except asyncio.CancelledError:
        kill()
        raise
    finally:
        remove_callback()

    result = ProcessResult(
        args=argv,
        exit_code=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    logger.debug("process_finished", args=argv, exit_code=result.exit_code)
    if cancel and cancel.cancelled:
        raise OperationCancelledError(f"{argv[0]} was cancelled")
    return result
