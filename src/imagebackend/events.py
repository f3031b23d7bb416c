"""Notification channels between the image backend and its consumers."""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any, Protocol

from structlog.stdlib import BoundLogger

__all__ = [
    "Channel",
    "EventChannel",
    "LoggingSink",
    "NotificationSink",
]


class Channel(str, Enum):
    """Channels on which notifications are sent to the user interface."""

    IMAGES_CHANGED = "images-changed"
    """The image list was refreshed. Payload is the list of images."""

    IMAGES_CHECK_STATE = "images-check-state"
    """Readiness changed. Payload is the new readiness as a bool."""

    IMAGES_NAMESPACES = "images-namespaces"
    """Payload is the sorted list of image namespaces."""

    PROCESS_OUTPUT = "images-process-output"
    """Streamed command output. Payload is the text and an is-stderr flag."""

    PROCESS_SUCCESS = "ok:images-process-output"
    """A command succeeded. Payload is its complete standard output."""


class NotificationSink(Protocol):
    """Receiver of fire-and-forget notifications for the user interface."""

    def send(self, channel: Channel, *payload: Any) -> None:
        """Send a notification.

        Parameters
        ----------
        channel
            Channel of the notification.
        *payload
            Channel-specific payload.
        """


class LoggingSink:
    """Notification sink that only logs what it receives.

    Used when there is no user interface attached, such as from the
    command-line interface for operations that do not stream output.

    Parameters
    ----------
    logger
        Logger to use.
    """

    def __init__(self, logger: BoundLogger) -> None:
        self._logger = logger

    def send(self, channel: Channel, *payload: Any) -> None:
        self._logger.debug(
            "Notification", channel=channel.value, payload=list(payload)
        )


class EventChannel[T]:
    """Typed in-process notification channel.

    Listeners are called synchronously in subscription order, so delivery on
    a channel is ordered. An exception from one listener is logged and does
    not prevent delivery to the others.

    Parameters
    ----------
    name
        Name of the channel, for logging.
    logger
        Logger to use for listener failures.
    on_listeners_changed
        Called with the new listener count whenever a listener is added or
        removed.
    """

    def __init__(
        self,
        name: str,
        logger: BoundLogger,
        *,
        on_listeners_changed: Callable[[int], None] | None = None,
    ) -> None:
        self._name = name
        self._logger = logger
        self._on_listeners_changed = on_listeners_changed
        self._listeners: list[Callable[[T], None]] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """Add a listener.

        Parameters
        ----------
        listener
            Called with each payload emitted on this channel.

        Returns
        -------
        Callable
            Function that removes the listener again.
        """
        self._listeners.append(listener)
        if self._on_listeners_changed:
            self._on_listeners_changed(len(self._listeners))
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Callable[[T], None]) -> None:
        """Remove a listener if it is subscribed."""
        if listener not in self._listeners:
            return
        self._listeners.remove(listener)
        if self._on_listeners_changed:
            self._on_listeners_changed(len(self._listeners))

    def emit(self, payload: T) -> None:
        """Deliver a payload to every current listener."""
        for listener in list(self._listeners):
            try:
                listener(payload)
            except Exception:
                msg = "Listener raised an exception"
                self._logger.exception(msg, channel=self._name)
