"""Cluster collaborator backed by static configuration."""

from __future__ import annotations

import sys

from ..config import ClusterConfig
from ..exceptions import NotSupportedError
from ..models.domain.cluster import ClusterState

__all__ = ["StaticCluster"]


class StaticCluster:
    """Cluster whose address and state are known up front.

    Used when the image backend runs outside the desktop application, such
    as from the command line, where the cluster is assumed to be already
    running.

    Parameters
    ----------
    config
        Cluster configuration.
    state
        State to report.
    platform
        Platform name in the format of `sys.platform`, used to decide how to
        run commands inside the VM.
    """

    def __init__(
        self,
        config: ClusterConfig,
        *,
        state: ClusterState = ClusterState.STARTED,
        platform: str = sys.platform,
    ) -> None:
        self._config = config
        self._state = state
        self._platform = platform

    @property
    def state(self) -> ClusterState:
        return self._state

    async def ip_address(self) -> str | None:
        return self._config.address

    def vm_command(self, args: list[str]) -> list[str]:
        vm = self._config.vm_name
        if self._platform == "win32":
            return ["wsl", "-d", vm, *args]
        if self._platform == "darwin" or self._platform.startswith("linux"):
            return ["limactl", "shell", vm, *args]
        msg = f"Don't know how to run commands in the VM on {self._platform}"
        raise NotSupportedError(msg)
