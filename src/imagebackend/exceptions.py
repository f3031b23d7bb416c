"""Exceptions for the image backend."""

from __future__ import annotations

from typing import Self, override

from kubernetes_asyncio.client import ApiException
from safir.slack.blockkit import (
    SlackCodeBlock,
    SlackException,
    SlackMessage,
    SlackTextBlock,
    SlackTextField,
)
from safir.slack.sentry import SentryEventInfo

__all__ = [
    "CommandError",
    "KubernetesError",
    "NotSupportedError",
]


class CommandError(SlackException):
    """An external image-management command failed.

    Raised when the command exits with a non-zero status, is terminated by a
    signal, or cannot be started at all. Whatever output was captured before
    the failure is preserved for diagnostics.

    Parameters
    ----------
    message
        Summary of error.
    command
        Command line that was run.
    stdout
        Standard output captured before the failure.
    stderr
        Standard error captured before the failure, after noise filtering.
    code
        Exit status, ``-1`` if the process was killed by a signal, or `None`
        if the process never started.
    signal
        Name of the signal that terminated the process, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        command: list[str],
        stdout: str = "",
        stderr: str = "",
        code: int | None = None,
        signal: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.command = command
        self.stdout = stdout
        self.stderr = stderr
        self.code = code
        self.signal = signal

    @override
    def __str__(self) -> str:
        if self.signal:
            return f"{self.message} (killed by {self.signal})"
        if self.code is not None:
            return f"{self.message} (exit status {self.code})"
        return self.message

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.message = str(self)
        command = " ".join(self.command)
        message.blocks.append(SlackTextBlock(heading="Command", text=command))
        if self.stderr:
            block = SlackCodeBlock(heading="Error", code=self.stderr)
            message.blocks.append(block)
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        """Return a collection of Sentry event metadata about the exception.

        Returns
        -------
        safir.slack.sentry.SentryEventInfo
            Sentry event metadata.
        """
        info = super().to_sentry()
        info.tags["command"] = self.command[0] if self.command else ""
        if self.code is not None:
            info.tags["code"] = str(self.code)
        if self.stderr:
            info.attachments["stderr"] = self.stderr
        return info


class KubernetesError(SlackException):
    """An API call to Kubernetes failed.

    Parameters
    ----------
    message
        Summary of error.
    namespace
        Namespace of object being acted on.
    name
        Name of object being acted on.
    kind
        Kind of object being acted on.
    status
        Status code of failure, if any.
    body
        Body of failure message, if any.
    """

    @classmethod
    def from_exception(
        cls,
        message: str,
        exc: ApiException,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
    ) -> Self:
        """Create an exception from a Kubernetes API exception.

        Parameters
        ----------
        message
            Brief explanation of what was being attempted.
        exc
            Kubernetes API exception.
        kind
            Kind of object being acted on.
        namespace
            Namespace of object being acted on.
        name
            Name of object being acted on.

        Returns
        -------
        KubernetesError
            Newly-created exception.
        """
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=exc.status,
            body=exc.body if exc.body else exc.reason,
        )

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.status = status
        self.body = body

    @override
    def __str__(self) -> str:
        result = self._summary()
        if self.body:
            result += f": {self.body}"
        return result

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.message = self._summary()
        if self.status:
            field = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(field)
        if self.name:
            kind = f"{self.kind} " if self.kind else ""
            if self.namespace:
                obj = f"{kind}{self.namespace}/{self.name}"
            else:
                obj = f"{kind}{self.name}"
            message.blocks.append(SlackTextBlock(heading="Object", text=obj))
        elif self.kind:
            if self.namespace:
                obj = f"{self.kind} in namespace {self.namespace}"
            else:
                obj = self.kind
            message.blocks.append(SlackTextBlock(heading="Object", text=obj))
        if self.body:
            code = SlackCodeBlock(heading="Error", code=self.body)
            message.blocks.append(code)
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        """Return a collection of Sentry event metadata about the exception.

        Returns
        -------
        safir.slack.sentry.SentryEventInfo
            Sentry event metadata for use with
            `~safir.sentry.before_send_handler`.
        """
        info = super().to_sentry()
        if self.status:
            info.tags["status"] = str(self.status)
        for key in ("kind", "namespace", "name"):
            if value := getattr(self, key):
                info.tags[key] = value
        if self.body:
            info.attachments["body"] = self.body
        return info

    def _summary(self) -> str:
        """Summarize the exception.

        Produces a single-line summary, used for the main part of the Slack
        message and part of the stringification.
        """
        result = self.message
        if self.name or self.kind or self.status:
            details = []
            if self.name:
                kind = f"{self.kind} " if self.kind else ""
                if self.namespace:
                    details.append(f"{kind}{self.namespace}/{self.name}")
                else:
                    details.append(f"{kind}{self.name}")
            elif self.kind:
                details.append(self.kind)
            if self.status:
                details.append(f"status {self.status}")
            result += f" ({', '.join(details)})"
        return result


class NotSupportedError(SlackException):
    """The selected engine or platform does not support this operation."""
