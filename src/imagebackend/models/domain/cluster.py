"""Data types describing the local Kubernetes cluster."""

from __future__ import annotations

from enum import Enum
from typing import Protocol

__all__ = [
    "ClusterBackend",
    "ClusterState",
    "ContainerEngine",
]


class ClusterState(Enum):
    """Lifecycle states reported by the cluster orchestration layer."""

    STOPPED = "stopped"
    STARTING = "starting"
    STARTED = "started"
    STOPPING = "stopping"
    ERROR = "error"
    DISABLED = "disabled"


class ContainerEngine(str, Enum):
    """Container engines that can back the image list."""

    MOBY = "moby"
    CONTAINERD = "containerd"


class ClusterBackend(Protocol):
    """Interface to the component that runs the local cluster.

    Starting and stopping the cluster is out of scope; the image backend only
    needs to know the cluster's state, the address at which it is reachable,
    and how to run a command inside the virtual machine hosting it.
    """

    @property
    def state(self) -> ClusterState:
        """Current lifecycle state of the cluster."""

    async def ip_address(self) -> str | None:
        """External address of the cluster, or `None` if not yet known."""

    def vm_command(self, args: list[str]) -> list[str]:
        """Wrap a command line so that it runs inside the cluster VM.

        Raises
        ------
        NotSupportedError
            Raised if commands cannot be run in the VM on this platform.
        """
