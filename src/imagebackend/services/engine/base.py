"""Interface for engine-specific command syntax and output parsing."""

from __future__ import annotations

import json
from abc import ABCMeta, abstractmethod
from pathlib import PurePath

from structlog.stdlib import BoundLogger

from ...models.domain.image import ImageRecord

__all__ = ["EngineStrategy"]

_EMPTY_REPOSITORIES = frozenset({"", "<none>", "sha256"})
"""Repository values that represent untagged or content-addressed images."""


class EngineStrategy(metaclass=ABCMeta):
    """Engine-specific behavior plugged into the shared image backend.

    An engine knows which executable to run, how to spell each image
    operation on its command line, and how to parse what its list commands
    print. Everything else (running commands, caching, readiness, polling)
    is shared.

    Parameters
    ----------
    logger
        Logger to use.
    """

    name: str
    """Name of the engine, used in log messages."""

    executable: str
    """Name of the engine's command-line tool."""

    supports_namespaces: bool
    """Whether the engine has multiple image namespaces."""

    needs_builder: bool
    """Whether the engine builds images through the in-cluster builder."""

    def __init__(self, logger: BoundLogger) -> None:
        self._logger = logger

    def build_args(
        self, directory: str, filename: str, tag: str, namespace: str
    ) -> list[str]:
        """Arguments to build an image from a Dockerfile."""
        path = str(PurePath(directory) / filename)
        args = ["build", "--file", path, "--tag", tag, directory]
        return self.in_namespace(args, namespace)

    def delete_args(self, image_id: str, namespace: str) -> list[str]:
        """Arguments to delete an image by ID."""
        return self.in_namespace(["rmi", image_id], namespace)

    def pull_args(self, tag: str, namespace: str) -> list[str]:
        """Arguments to pull an image."""
        return self.in_namespace(["pull", tag], namespace)

    def push_args(self, tag: str, namespace: str) -> list[str]:
        """Arguments to push an image."""
        return self.in_namespace(["push", tag], namespace)

    def list_args(self, namespace: str) -> list[str]:
        """Arguments to list images as one JSON object per line."""
        args = ["images", "--format", "{{json .}}"]
        return self.in_namespace(args, namespace)

    def filter_stderr(self, subcommand: str, data: str) -> str:
        """Remove known-benign noise from a chunk of standard error.

        Parameters
        ----------
        subcommand
            Subcommand that produced the output.
        data
            Chunk of standard error.

        Returns
        -------
        str
            Chunk with noise removed. The default keeps everything.
        """
        return data

    @abstractmethod
    def in_namespace(self, args: list[str], namespace: str) -> list[str]:
        """Adjust a command line to act on the given image namespace."""

    @abstractmethod
    def namespace_args(self) -> list[str]:
        """Arguments to list image namespaces, one per line.

        Raises
        ------
        NotSupportedError
            Raised if the engine does not support namespaces.
        """

    def parse_images(self, data: str) -> list[ImageRecord]:
        """Parse the output of the list command.

        The output has one JSON object per line. Lines that are not valid
        JSON are logged and skipped, and images without a repository are
        excluded.

        Parameters
        ----------
        data
            Standard output of the list command.

        Returns
        -------
        list of ImageRecord
            Images sorted by name, tag, and ID.
        """
        images = []
        for line in data.splitlines():
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                msg = "Cannot parse image list line"
                self._logger.warning(msg, line=line, error=str(e))
                continue
            if not isinstance(record, dict):
                self._logger.warning("Unexpected image record", line=line)
                continue
            repository = str(record.get("Repository") or "")
            if repository in _EMPTY_REPOSITORIES:
                continue

            # Fields may be null or numeric depending on the engine version.
            image = ImageRecord(
                name=repository,
                tag=str(record.get("Tag") or ""),
                id=str(record.get("ID") or ""),
                size=str(record.get("Size") or ""),
            )
            images.append(image)
        return sorted(self.filter_images(images), key=lambda i: i.sort_key)

    def filter_images(self, images: list[ImageRecord]) -> list[ImageRecord]:
        """Apply engine-specific filtering to parsed images.

        The default keeps all images.
        """
        return images

    def parse_namespaces(self, data: str) -> list[str]:
        """Parse the output of the namespace list command."""
        return [n.strip() for n in data.splitlines() if n.strip()]
