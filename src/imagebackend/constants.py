"""Global constants."""

from datetime import timedelta
from pathlib import Path

__all__ = [
    "BUILDER_COMPONENT",
    "BUILDER_EXECUTABLE",
    "BUILDER_INSTALL_TIMEOUT",
    "BUILDER_NAMESPACE",
    "BUILDER_POD_SELECTOR",
    "BUILDER_POLL_INTERVAL",
    "BUILDER_PORT_NAME",
    "BUILDER_TLS_SECRET",
    "CONFIG_FILE",
    "CONFIG_FILE_ENV_VAR",
    "DEFAULT_NAMESPACE",
    "ENV_PREFIX",
    "IMAGE_REFRESH_INTERVAL",
    "KUBERNETES_REQUEST_TIMEOUT",
    "KUBE_CONTEXT",
    "LEGACY_RUNTIME_ERROR",
    "NODE_IP_POLL_INTERVAL",
    "NODE_IP_TIMEOUT",
    "ROOT_LOGGER",
    "VM_NAME",
]

BUILDER_COMPONENT = "builder"
"""Name of the builder service and value of its component label."""

BUILDER_EXECUTABLE = "kim"
"""Executable that installs and uninstalls the image builder."""

BUILDER_INSTALL_TIMEOUT = timedelta(seconds=300)
"""Budget for each phase of a builder install.

The same budget is used for retrying the install command and for waiting for
the builder service to become ready afterwards, both measured from the start
of the install.
"""

BUILDER_NAMESPACE = "kube-image"
"""Kubernetes namespace in which the image builder runs."""

BUILDER_POD_SELECTOR = (
    "app.kubernetes.io/name=kim,app.kubernetes.io/component=builder"
)
"""Label selector matching the builder daemonset pods."""

BUILDER_POLL_INTERVAL = timedelta(seconds=3)
"""Delay between builder install retries and readiness checks."""

BUILDER_PORT_NAME = "kim"
"""Name of the endpoint port exposed by the builder service."""

BUILDER_TLS_SECRET = "kim-tls-server"
"""Secret holding the builder's TLS server certificate."""

CONFIG_FILE = Path("/etc/image-backend/config.yaml")
"""Default path to the configuration file."""

ENV_PREFIX = "IMAGE_BACKEND_"
"""Prefix for environment variables that override configuration."""

CONFIG_FILE_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
"""Environment variable that overrides the configuration file path."""

DEFAULT_NAMESPACE = "default"
"""Image namespace that always exists for containerd."""

IMAGE_REFRESH_INTERVAL = timedelta(seconds=5)
"""How frequently to refresh the image list while someone is watching."""

KUBERNETES_REQUEST_TIMEOUT = timedelta(seconds=30)
"""Upper limit on a single Kubernetes API call.

Used to avoid hanging forever if the control plane of the local cluster is
unresponsive.
"""

KUBE_CONTEXT = "rancher-desktop"
"""Default kubeconfig context for the local cluster."""

LEGACY_RUNTIME_ERROR = "Error: container runtime `docker` not supported"
"""Builder install error seen while the node still runs the old runtime.

The cluster migrates to the containerd runtime asynchronously after a switch
of engines, so this error is retried until the install budget is exhausted.
"""

NODE_IP_POLL_INTERVAL = timedelta(seconds=1)
"""Delay between checks of the node internal address."""

NODE_IP_TIMEOUT = timedelta(seconds=60)
"""How long to wait for the node to report the expected internal address."""

ROOT_LOGGER = "imagebackend"
"""Name of the root logger for the package."""

VM_NAME = "rancher-desktop"
"""Default name of the virtual machine hosting the cluster."""
