"""External tool invocation with live output streaming."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import Callable, Sequence

from boardlink.core.errors import SubprocessLaunchError, SubprocessTimeoutError
from boardlink.core.model import SubprocessResult

LOGGER = logging.getLogger(__name__)

OutputSink = Callable[[str], None]

_CHUNK_SIZE = 4096


def _kill(process: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        process.kill()


class SubprocessRunner:
    """Launches a tool, forwards its output as it arrives, and reports exit status.

    What an exit status means is left to the caller; `exit_status` is `None`
    when the process was killed because `abort_on` matched.
    """

    def __init__(self, timeout_s: float | None = 600.0) -> None:
        self.timeout_s = timeout_s

    async def run(
        self,
        argv: Sequence[str | os.PathLike[str]],
        *,
        on_stdout: OutputSink | None = None,
        on_stderr: OutputSink | None = None,
        abort_on: Callable[[str], bool] | None = None,
        cwd: str | os.PathLike[str] | None = None,
    ) -> SubprocessResult:
        cmd = [os.fspath(arg) for arg in argv]
        LOGGER.debug("Running %s", " ".join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except OSError as exc:
            raise SubprocessLaunchError(f"Could not start {cmd[0]}: {exc}") from exc

        stdout_parts: list[str] = []
        stderr_parts: list[str] = []
        aborted = False

        async def _pump(
            stream: asyncio.StreamReader | None,
            parts: list[str],
            sink: OutputSink | None,
            check_abort: bool,
        ) -> None:
            nonlocal aborted
            if stream is None:
                return
            while True:
                chunk = await stream.read(_CHUNK_SIZE)
                if not chunk:
                    return
                text = chunk.decode(errors="replace")
                parts.append(text)
                if sink is not None:
                    sink(text)
                if check_abort and abort_on is not None and not aborted and abort_on(text):
                    LOGGER.debug("Aborting %s on output %r", cmd[0], text)
                    aborted = True
                    _kill(process)

        try:
            await asyncio.wait_for(
                asyncio.gather(
                    _pump(process.stdout, stdout_parts, on_stdout, True),
                    _pump(process.stderr, stderr_parts, on_stderr, False),
                    process.wait(),
                ),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError as exc:
            _kill(process)
            await process.wait()
            LOGGER.warning("%s timed out after %ss", cmd[0], self.timeout_s)
            raise SubprocessTimeoutError(
                f"{os.path.basename(cmd[0])} did not finish within {self.timeout_s}s"
            ) from exc
        except asyncio.CancelledError:
            _kill(process)
            await asyncio.shield(process.wait())
            raise

        exit_status = None if aborted else process.returncode
        LOGGER.debug("%s exited with %s", cmd[0], exit_status)
        return SubprocessResult(
            exit_status=exit_status,
            stdout="".join(stdout_parts),
            stderr="".join(stderr_parts),
            aborted=aborted,
        )
