"""Collapse repeated error output from polled commands."""

from __future__ import annotations

import re

from structlog.stdlib import BoundLogger

__all__ = ["OutputDeduplicator"]

_TIMESTAMP = re.compile(r'\btime=".*?"')
"""Timestamp tokens embedded in structured engine log lines."""

_ERROR_FRAGMENT = re.compile(r"(Error: .*)")
"""First line of the error carried in an output message."""


class OutputDeduplicator:
    """Log standard error from commands without flooding the log.

    A list command that fails on every poll would otherwise log the same
    multi-line message every few seconds. The first occurrence of a message
    is logged in full; identical repeats are logged as a single short line
    with a repeat count. Embedded timestamps are ignored when comparing.

    Parameters
    ----------
    engine
        Name of the engine, included in the compact repeat lines.
    logger
        Logger to use.
    """

    def __init__(self, engine: str, logger: BoundLogger) -> None:
        self._engine = engine
        self._logger = logger
        self._last_message = ""
        self._count = 0

    @property
    def count(self) -> int:
        """Number of consecutive times the current message has been seen."""
        return self._count

    def note(self, message: str, subcommand: str) -> str:
        """Record and log standard error from a finished command.

        Parameters
        ----------
        message
            Complete standard error of the command.
        subcommand
            Subcommand that produced it.

        Returns
        -------
        str
            The line that was logged.
        """
        normalized = _TIMESTAMP.sub("", message)
        if normalized != self._last_message:
            self._last_message = normalized
            self._count = 1
            line = message
        else:
            self._count += 1
            match = _ERROR_FRAGMENT.search(self._last_message)
            summary = match.group(1) if match else "same error message"
            line = f"{self._engine} {subcommand}: {summary} #{self._count}"
        self._logger.info(line)
        return line
