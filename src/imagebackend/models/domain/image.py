"""Internal models for images and the results of image commands."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    "ImageRecord",
    "ProcessResult",
]


@dataclass(frozen=True, slots=True)
class ImageRecord:
    """A single image as displayed in the images table.

    All fields are opaque display strings produced by the engine. Ordering
    compares ``name``, then ``tag``, then ``id``.
    """

    name: str
    """Repository name."""

    tag: str
    """Image tag."""

    id: str
    """Image ID, used to delete the image."""

    size: str
    """Human-readable size."""

    @property
    def sort_key(self) -> tuple[str, str, str]:
        """Key used to sort images for display."""
        return (self.name, self.tag, self.id)


@dataclass(frozen=True, slots=True)
class ProcessResult:
    """Output of a finished external command that exited successfully."""

    stdout: str
    """Everything written to standard output."""

    stderr: str
    """Everything written to standard error, after noise filtering."""

    code: int = 0
    """Exit status of the process."""

    signal: str | None = None
    """Name of the signal that terminated the process, if any."""
