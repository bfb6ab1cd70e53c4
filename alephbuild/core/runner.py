"""Command runner backends for external tools (cargo, rustup, docker).

Defines the ``CommandRunner`` Protocol that the toolchain provider, build
executor and packaging stage invoke, and the default subprocess-backed
implementation. No ``shell=True``: commands are argument lists.

In-flight commands honour a cancellation ``threading.Event``: the child
process is terminated (then killed) as soon as the event is set.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import threading
import time
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.2
_TERMINATE_GRACE = 10.0
_OUTPUT_TAIL_CHARS = 4000


class CommandCancelledError(RuntimeError):
    """Raised when a command was stopped because its run was cancelled."""


class CommandResult(BaseModel):
    """Outcome of one external command."""

    model_config = ConfigDict(frozen=True)

    args: tuple[str, ...]
    exit_code: int
    output: str = ""
    duration_s: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def describe(self) -> str:
        """One-line summary for failure messages."""
        cmd = " ".join(self.args)
        if self.timed_out:
            return f"`{cmd}` timed out after {self.duration_s:.0f}s"
        return f"`{cmd}` exited with code {self.exit_code}"


@runtime_checkable
class CommandRunner(Protocol):
    """Protocol for running an external command to completion."""

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        cancel: threading.Event | None = None,
    ) -> CommandResult:
        """Run *args* and return its result.

        Raises ``CommandCancelledError`` if *cancel* is set before the
        command finishes, and ``OSError`` if the command cannot be launched.
        """
        ...


class SubprocessRunner:
    """Runs commands with ``subprocess.Popen``, polling for cancellation.

    Parameters
    ----------
    timeout:
        Optional wall-clock limit in seconds per command.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._timeout = timeout

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        cancel: threading.Event | None = None,
    ) -> CommandResult:
        argv = tuple(str(a) for a in args)
        full_env = {**os.environ, **(env or {})}
        logger.info("Running %s (cwd=%s)", " ".join(argv), cwd or ".")

        start = time.monotonic()
        # Output goes to a temp file so a chatty compiler cannot fill a pipe.
        with tempfile.TemporaryFile() as log:
            proc = subprocess.Popen(
                argv,
                cwd=str(cwd) if cwd else None,
                env=full_env,
                stdout=log,
                stderr=subprocess.STDOUT,
            )
            timed_out = False
            try:
                while True:
                    try:
                        proc.wait(timeout=_POLL_INTERVAL)
                        break
                    except subprocess.TimeoutExpired:
                        pass
                    if cancel is not None and cancel.is_set():
                        self._stop(proc)
                        raise CommandCancelledError(
                            f"Cancelled while running {' '.join(argv)}"
                        )
                    if self._timeout is not None and time.monotonic() - start > self._timeout:
                        self._stop(proc)
                        timed_out = True
                        break
            finally:
                if proc.poll() is None:
                    self._stop(proc)

            log.seek(0)
            output = log.read().decode("utf-8", errors="replace")

        duration = time.monotonic() - start
        result = CommandResult(
            args=argv,
            exit_code=proc.returncode if proc.returncode is not None else -1,
            output=output[-_OUTPUT_TAIL_CHARS:],
            duration_s=duration,
            timed_out=timed_out,
        )
        logger.debug("%s finished in %.1fs", result.describe(), duration)
        return result

    @staticmethod
    def _stop(proc: subprocess.Popen) -> None:
        proc.terminate()
        try:
            proc.wait(timeout=_TERMINATE_GRACE)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
