"""Docker-compatible engine."""

from __future__ import annotations

from typing import override

from ...exceptions import NotSupportedError
from .base import EngineStrategy

__all__ = ["MobyEngine"]


class MobyEngine(EngineStrategy):
    """Engine driving the Docker-compatible ``docker`` CLI.

    Docker has a single implicit image namespace and builds images itself,
    so the in-cluster builder is never needed.

    Sample output of the list command::

        {"ID":"171689e43026","Repository":"","Tag":"","Size":"119.2 MiB"}
        {"ID":"55fe4b211a51","Repository":"rancher/kim","Tag":"v0.1.0"}
    """

    name = "moby"
    executable = "docker"
    supports_namespaces = False
    needs_builder = False

    @override
    def in_namespace(self, args: list[str], namespace: str) -> list[str]:
        return args

    @override
    def namespace_args(self) -> list[str]:
        raise NotSupportedError("docker doesn't support namespaces")
