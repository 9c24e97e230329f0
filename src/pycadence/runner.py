"""
Command runners.

The engine never spawns processes itself; it calls a CommandRunner.
``SubprocessCommandRunner`` is the production implementation; tests inject
scripted fakes.

A timeout is reported as ``CommandResult(timed_out=True, exit_code=124)``,
not raised: it is a special exit condition, not a crash.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from abc import ABC, abstractmethod
from pathlib import Path

from pycadence.errors import ConfigError
from pycadence.models import TIMEOUT_EXIT_CODE, CommandResult

logger = logging.getLogger(__name__)


class CommandRunner(ABC):
    """Runs one command line and reports how it ended."""

    @abstractmethod
    async def run(
        self,
        command: str,
        working_dir: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """
        Execute ``command``.

        Args:
            command: Shell command line
            working_dir: Directory to run in (current directory when None)
            timeout: Seconds before the command is stopped (None or 0 = none)

        Returns:
            CommandResult with exit code, combined stdout/stderr and duration

        Raises:
            ConfigError: If the command cannot be started because of its
                definition (e.g. the working directory does not exist)
        """


class SubprocessCommandRunner(CommandRunner):
    """
    Runs commands through the system shell with asyncio subprocesses.

    stdout and stderr are merged, as an operator reading the task log would
    see them.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._encoding = encoding

    async def run(
        self,
        command: str,
        working_dir: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        if working_dir and not Path(working_dir).is_dir():
            raise ConfigError(f"Working directory not found: {working_dir}")

        logger.info(f"Executing command: {command}")
        if working_dir:
            logger.debug(f"Working directory: {working_dir}")

        started = time.monotonic()
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=working_dir or None,
            start_new_session=True,
        )

        try:
            if timeout:
                stdout, _ = await asyncio.wait_for(process.communicate(), timeout)
            else:
                stdout, _ = await process.communicate()
        except TimeoutError:
            _kill_group(process)
            await process.wait()
            duration = time.monotonic() - started
            logger.error(f"Command timed out after {timeout}s: {command}")
            return CommandResult(
                exit_code=TIMEOUT_EXIT_CODE,
                output=f"Command execution timed out after {timeout} seconds",
                duration=duration,
                timed_out=True,
            )

        duration = time.monotonic() - started
        output = stdout.decode(self._encoding, errors="replace") if stdout else ""
        return CommandResult(
            exit_code=process.returncode if process.returncode is not None else -1,
            output=output,
            duration=duration,
        )


def _kill_group(process: asyncio.subprocess.Process) -> None:
    """Kill the shell and every process it started."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        # Group already exited
        pass


__all__ = ["CommandRunner", "SubprocessCommandRunner"]
