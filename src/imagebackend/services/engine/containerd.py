"""Containerd engine driven through nerdctl."""

from __future__ import annotations

import re
from typing import override

from ...models.domain.image import ImageRecord
from .base import EngineStrategy

__all__ = ["ContainerdEngine"]

_BENIGN_IMAGES_WARNINGS = (
    re.compile(
        r'time=".+?"\s+level=.+?\s+msg="failed to compute image\(s\) size"\s*'
    ),
    re.compile(
        r'time=".+?"\s+level=.+?\s+msg="unparsable image name'
        r'.*?sha256:[0-9a-fA-F]{64}.*?\\""\s*'
    ),
)
"""Warnings printed by ``nerdctl images`` that do not indicate a problem.

See https://github.com/containerd/nerdctl/issues/353.
"""


class ContainerdEngine(EngineStrategy):
    """Engine driving containerd through the ``nerdctl`` CLI.

    Containerd supports multiple image namespaces, so every command is run
    against the currently selected namespace. Images are built by the
    in-cluster builder service, which must be installed once the cluster has
    started.
    """

    name = "nerdctl"
    executable = "nerdctl"
    supports_namespaces = True
    needs_builder = True

    @override
    def in_namespace(self, args: list[str], namespace: str) -> list[str]:
        return ["--namespace", namespace, *args]

    @override
    def namespace_args(self) -> list[str]:
        return ["namespace", "list", "--quiet"]

    @override
    def filter_stderr(self, subcommand: str, data: str) -> str:
        if subcommand != "images":
            return data
        for pattern in _BENIGN_IMAGES_WARNINGS:
            data = pattern.sub("", data)
        return data

    @override
    def filter_images(self, images: list[ImageRecord]) -> list[ImageRecord]:
        # nerdctl lists a multi-platform image once per platform.
        return list(dict.fromkeys(images))
