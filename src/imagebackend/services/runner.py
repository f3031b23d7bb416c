"""Run external image-management commands and capture their output."""

from __future__ import annotations

import asyncio
import codecs
import signal
from collections.abc import Callable
from pathlib import Path

from structlog.stdlib import BoundLogger

from ..events import Channel, NotificationSink
from ..exceptions import CommandError
from ..models.domain.image import ProcessResult
from .dedup import OutputDeduplicator

__all__ = ["CommandRunner", "StderrFilter"]

_CHUNK_SIZE = 64 * 1024
"""Maximum number of bytes read from a pipe at a time."""

type StderrFilter = Callable[[str, str], str]
"""Engine hook that strips known noise from a chunk of standard error.

Called with the subcommand name and the decoded chunk, and returns the chunk
with noise removed. An empty result drops the chunk entirely.
"""


class CommandRunner:
    """Spawn external commands and stream their output.

    Output is read incrementally as it arrives. Each chunk is accumulated
    and, if notifications are requested, forwarded immediately to the
    notification sink. Standard error left at exit goes through the
    deduplicator so that a repeatedly failing poll is not logged in full
    every time.

    Parameters
    ----------
    sink
        Receiver of streamed output and success notifications.
    deduplicator
        Deduplicator for standard error at exit.
    logger
        Logger to use.
    stderr_filter
        Optional engine-specific noise filter for standard error.
    """

    def __init__(
        self,
        *,
        sink: NotificationSink,
        deduplicator: OutputDeduplicator,
        logger: BoundLogger,
        stderr_filter: StderrFilter | None = None,
    ) -> None:
        self._sink = sink
        self._dedup = deduplicator
        self._logger = logger
        self._stderr_filter = stderr_filter

    async def run(
        self,
        executable: str | Path,
        args: list[str],
        *,
        send_notifications: bool = True,
        subcommand: str | None = None,
    ) -> ProcessResult:
        """Run a command to completion.

        Parameters
        ----------
        executable
            Executable to run, either a path or a name to look up on
            :envvar:`PATH`.
        args
            Arguments to the executable.
        send_notifications
            Whether to stream output to the notification sink and report the
            final output on success.
        subcommand
            Name of the subcommand for filtering and log messages. Defaults
            to the first argument.

        Returns
        -------
        ProcessResult
            Captured output of the command.

        Raises
        ------
        CommandError
            Raised if the command could not be started, exited with a
            non-zero status, or was killed by a signal. Carries any output
            captured before the failure.
        """
        command = [str(executable), *args]
        if subcommand is None:
            subcommand = args[0] if args else command[0]
        self._logger.debug("Running command", command=command)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            msg = f"Cannot run {command[0]}: {e.strerror or e}"
            raise CommandError(msg, command=command, stderr=str(e)) from e

        stdout: list[str] = []
        stderr: list[str] = []
        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(
                    self._read_stream(
                        process.stdout,
                        stdout,
                        subcommand=subcommand,
                        is_stderr=False,
                        send_notifications=send_notifications,
                    )
                )
                tg.create_task(
                    self._read_stream(
                        process.stderr,
                        stderr,
                        subcommand=subcommand,
                        is_stderr=True,
                        send_notifications=send_notifications,
                    )
                )
            returncode = await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            raise

        out = "".join(stdout)
        err = "".join(stderr)
        if err:
            self._dedup.note(err, subcommand)
        if returncode == 0:
            if send_notifications:
                self._sink.send(Channel.PROCESS_SUCCESS, out)
            return ProcessResult(stdout=out, stderr=err, code=0)
        if returncode < 0:
            name = _signal_name(-returncode)
            msg = f"{command[0]} {subcommand} was terminated"
            raise CommandError(
                msg,
                command=command,
                stdout=out,
                stderr=err,
                code=-1,
                signal=name,
            )
        msg = f"{command[0]} {subcommand} failed"
        raise CommandError(
            msg, command=command, stdout=out, stderr=err, code=returncode
        )

    async def _read_stream(
        self,
        stream: asyncio.StreamReader | None,
        accumulator: list[str],
        *,
        subcommand: str,
        is_stderr: bool,
        send_notifications: bool,
    ) -> None:
        """Read one output pipe until end of file.

        Bytes are decoded incrementally so that a multibyte character split
        across reads is not mangled.
        """
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while chunk := await stream.read(_CHUNK_SIZE):
            self._handle_chunk(
                decoder.decode(chunk),
                accumulator,
                subcommand=subcommand,
                is_stderr=is_stderr,
                send_notifications=send_notifications,
            )
        self._handle_chunk(
            decoder.decode(b"", final=True),
            accumulator,
            subcommand=subcommand,
            is_stderr=is_stderr,
            send_notifications=send_notifications,
        )

    def _handle_chunk(
        self,
        data: str,
        accumulator: list[str],
        *,
        subcommand: str,
        is_stderr: bool,
        send_notifications: bool,
    ) -> None:
        if is_stderr and self._stderr_filter:
            data = self._stderr_filter(subcommand, data)
        if not data:
            return
        accumulator.append(data)
        if send_notifications:
            self._sink.send(Channel.PROCESS_OUTPUT, data, is_stderr)


def _signal_name(signum: int) -> str:
    """Convert a signal number to its conventional name."""
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"SIG{signum}"
