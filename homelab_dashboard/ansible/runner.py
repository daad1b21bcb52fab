"""
Subprocess execution for SSH/Ansible and local maintenance scripts.

All external processes started by the dashboard go through CommandRunner so
that the dispatcher logic can be tested with a stub runner.
"""

import logging
import os
import subprocess
import tempfile
import time
from dataclasses import dataclass
from typing import IO, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

# Seconds between checks of a running command against its time and output limits
POLL_INTERVAL = 0.2


class CommandExecutionError(Exception):
    """Exception raised when a command cannot be started."""

    pass


class CommandNotFoundError(CommandExecutionError):
    """Exception raised when the executable does not exist."""

    def __init__(self, executable: str):
        super().__init__(f"Executable not found: {executable}")
        self.executable = executable


@dataclass
class CommandResult:
    """Outcome of a finished (or killed) command."""
    args: List[str]
    exit_code: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    output_truncated: bool = False


class CommandRunner:
    """Runs commands as child processes with a timeout and an output cap."""

    def run(
        self,
        args: Sequence[str],
        timeout: float,
        max_output_bytes: Optional[int] = None,
    ) -> CommandResult:
        """
        Run a command to completion.

        Output is spooled to temporary files and at most ``max_output_bytes``
        of each stream is read back. The process is killed once it runs past
        ``timeout`` seconds or either spool grows past ``max_output_bytes``.

        Args:
            args: Command and arguments, no shell involved
            timeout: Maximum run time in seconds
            max_output_bytes: Cap applied to stdout and stderr separately

        Returns:
            CommandResult describing the run

        Raises:
            CommandNotFoundError: If the executable does not exist
            CommandExecutionError: If the process cannot be started
        """
        args = list(args)
        logger.debug(f"Running command: {args}")

        with tempfile.TemporaryFile() as out, tempfile.TemporaryFile() as err:
            process = self._start(args, stdout=out, stderr=err)
            deadline = time.monotonic() + timeout
            timed_out = overflowed = False

            while True:
                remaining = deadline - time.monotonic()
                try:
                    exit_code = process.wait(timeout=max(0, min(POLL_INTERVAL, remaining)))
                    break
                except subprocess.TimeoutExpired:
                    pass

                if max_output_bytes is not None and self._spooled_size(out, err) > max_output_bytes:
                    logger.warning(
                        f"Command output exceeded {max_output_bytes} bytes, killing pid {process.pid}"
                    )
                    overflowed = True
                elif time.monotonic() >= deadline:
                    logger.warning(f"Command exceeded {timeout}s, killing pid {process.pid}")
                    timed_out = True
                else:
                    continue

                process.kill()
                exit_code = process.wait()
                break

            stdout, stdout_truncated = self._read_capped(out, max_output_bytes)
            stderr, stderr_truncated = self._read_capped(err, max_output_bytes)

        return CommandResult(
            args=args,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            timed_out=timed_out,
            output_truncated=overflowed or stdout_truncated or stderr_truncated,
        )

    def spawn(self, args: Sequence[str], log_path: Optional[str] = None) -> subprocess.Popen:
        """
        Start a command detached from this process.

        The child gets its own session so it outlives the dashboard process.
        The caller owns the returned handle and must reap it with ``wait()``.

        Args:
            args: Command and arguments
            log_path: File receiving the combined output, appended to

        Raises:
            CommandNotFoundError: If the executable does not exist
            CommandExecutionError: If the process cannot be started
        """
        args = list(args)
        logger.info(f"Spawning detached command: {args}")

        if log_path:
            os.makedirs(os.path.dirname(os.path.abspath(log_path)), exist_ok=True)
            with open(log_path, 'ab') as log_file:
                process = self._start(
                    args, stdout=log_file, stderr=subprocess.STDOUT, start_new_session=True
                )
        else:
            process = self._start(
                args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, start_new_session=True
            )

        return process

    @staticmethod
    def _start(args: List[str], **kwargs) -> subprocess.Popen:
        try:
            return subprocess.Popen(args, stdin=subprocess.DEVNULL, **kwargs)
        except FileNotFoundError as e:
            raise CommandNotFoundError(args[0]) from e
        except OSError as e:
            raise CommandExecutionError(f"Cannot start {args[0]}: {e}") from e

    @staticmethod
    def _spooled_size(*streams: IO[bytes]) -> int:
        return max(os.fstat(stream.fileno()).st_size for stream in streams)

    @staticmethod
    def _read_capped(stream: IO[bytes], limit: Optional[int]) -> Tuple[str, bool]:
        stream.seek(0)
        if limit is None:
            data = stream.read()
            truncated = False
        else:
            data = stream.read(limit + 1)
            truncated = len(data) > limit
            data = data[:limit]
        return data.decode('utf-8', errors='replace'), truncated
