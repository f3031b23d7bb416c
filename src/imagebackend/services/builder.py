"""Install, validate, and remove the in-cluster image builder."""

from __future__ import annotations

import base64
import binascii

from structlog.stdlib import BoundLogger

from ..config import BuilderConfig
from ..constants import (
    BUILDER_COMPONENT,
    BUILDER_NAMESPACE,
    BUILDER_POD_SELECTOR,
    BUILDER_PORT_NAME,
    BUILDER_TLS_SECRET,
    LEGACY_RUNTIME_ERROR,
)
from ..exceptions import CommandError
from ..models.domain.cluster import ClusterBackend
from ..storage.kubernetes.node import NodeStorage
from ..storage.kubernetes.pod import PodStorage
from ..storage.kubernetes.secret import SecretStorage
from ..storage.kubernetes.service import ServiceStorage
from ..timeout import Timeout
from .certificate import certificate_matches, subject_alt_names
from .runner import CommandRunner

__all__ = ["BuilderReconciler"]


class BuilderReconciler:
    """Manage the image builder used by the containerd engine.

    Nothing about the builder is cached locally. Every operation derives the
    current state from the cluster, which may have been reset or moved to a
    new address since the last check.

    Parameters
    ----------
    runner
        Runner for the builder executable.
    executable
        Path to the builder executable.
    cluster
        Local cluster, used to find its external address.
    node_storage
        Storage for Kubernetes nodes.
    pod_storage
        Storage for Kubernetes pods.
    service_storage
        Storage for Kubernetes services and endpoints.
    secret_storage
        Storage for Kubernetes secrets.
    config
        Timing and addressing configuration for the builder.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        runner: CommandRunner,
        executable: str,
        cluster: ClusterBackend,
        node_storage: NodeStorage,
        pod_storage: PodStorage,
        service_storage: ServiceStorage,
        secret_storage: SecretStorage,
        config: BuilderConfig,
        logger: BoundLogger,
    ) -> None:
        self._runner = runner
        self._executable = executable
        self._cluster = cluster
        self._nodes = node_storage
        self._pods = pod_storage
        self._services = service_storage
        self._secrets = secret_storage
        self._config = config
        self._logger = logger

    async def is_install_valid(self, endpoint: str | None = None) -> bool:
        """Check whether the installed builder matches the current cluster.

        Stale builder pods are removed as a side effect, since they would
        otherwise prevent correct pods from being created even after a
        forced reinstall.

        Parameters
        ----------
        endpoint
            Address the builder should serve on. Defaults to the external
            address of the cluster.

        Returns
        -------
        bool
            `True` if the builder endpoints and TLS certificate match the
            wanted address, `False` if it needs to be reinstalled.

        Raises
        ------
        KubernetesError
            Raised for Kubernetes API errors other than a missing endpoints
            object or TLS secret.
        """
        host = await self._cluster.ip_address()
        if not host:
            self._logger.info("Cluster address unknown, builder invalid")
            return False

        # Wait for the node address first, or a pod could be recreated with
        # the stale address after it was removed.
        await self.wait_for_node_ip(host)
        await self.remove_stale_pods()

        wanted = endpoint or host
        logger = self._logger.bind(endpoint=wanted)
        endpoints = await self._services.read_endpoints(
            BUILDER_COMPONENT, BUILDER_NAMESPACE
        )
        if not endpoints:
            logger.info("Existing builder install invalid: missing endpoint")
            return False
        subset = next(
            (
                s
                for s in endpoints.subsets or []
                if any(p.name == BUILDER_PORT_NAME for p in s.ports or [])
            ),
            None,
        )
        addresses = (subset.addresses or []) if subset else []
        if not any(a.ip == wanted for a in addresses):
            msg = "Existing builder install invalid: wrong endpoint address"
            logger.info(msg)
            return False

        # A missing certificate is fine, since the installer creates one.
        secret = await self._secrets.read(
            BUILDER_TLS_SECRET, BUILDER_NAMESPACE
        )
        encoded = (secret.data or {}).get("tls.crt") if secret else None
        if not encoded:
            return True
        try:
            names = subject_alt_names(base64.b64decode(encoded))
        except (binascii.Error, ValueError) as e:
            logger.warning("Cannot parse builder certificate", error=str(e))
            return True
        if names and not certificate_matches(names, wanted):
            logger.info(
                "Existing builder install invalid: incorrect certificate",
                subject_alt_names=names,
            )
            return False
        return True

    async def wait_for_node_ip(self, host: str) -> None:
        """Wait for the cluster node to report the expected address.

        When the single-node cluster starts, its internal address can take a
        while to be updated. This wait is best-effort: once the budget is
        spent, validation proceeds anyway.

        Parameters
        ----------
        host
            Expected node internal address.

        Raises
        ------
        KubernetesError
            Raised if the nodes cannot be listed.
        """
        logger = self._logger.bind(address=host)
        logger.info("Waiting for node address")
        timeout = Timeout("Node address", self._config.node_ip_timeout)
        while True:
            addresses = await self._nodes.list_internal_addresses()
            if host in addresses:
                return
            if timeout.expired():
                logger.warning(
                    "Stopped waiting for node address",
                    timeout=timeout.timeout.total_seconds(),
                    addresses=addresses,
                )
                return
            await timeout.sleep(self._config.node_ip_poll_interval)

    async def remove_stale_pods(self) -> None:
        """Delete builder pods bound to an address no node has any more.

        Leftover pods from a previous incarnation of the cluster do not
        listen on the new address but still prevent a correct pod from being
        created. Pods without an address are left alone.

        Raises
        ------
        KubernetesError
            Raised for errors listing nodes or pods, or deleting pods.
        """
        addresses = await self._nodes.list_internal_addresses()
        pods = await self._pods.list(
            BUILDER_NAMESPACE, label_selector=BUILDER_POD_SELECTOR
        )
        for pod in pods:
            if not pod.metadata:
                continue
            name = pod.metadata.name
            namespace = pod.metadata.namespace
            if not name or not namespace:
                continue
            pod_ip = pod.status.pod_ip if pod.status else None
            logger = self._logger.bind(
                pod=f"{namespace}/{name}", pod_ip=pod_ip, addresses=addresses
            )
            if pod_ip and pod_ip not in addresses:
                logger.info("Deleting stale builder pod")
                await self._pods.delete(name, namespace)
            else:
                logger.debug("Keeping builder pod")

    async def install(
        self, *, force: bool = False, address: str | None = None
    ) -> None:
        """Install the builder if needed and wait for it to be ready.

        The install command is retried while the cluster still runs the
        legacy container runtime, since it migrates to containerd on its
        own. Any other failure would need a cluster reset and is only
        logged. Both the retries and the subsequent wait for the builder
        service share one budget measured from the start of the install.
        Giving up is logged, not raised.

        Parameters
        ----------
        force
            Reinstall even if the builder service is already ready.
        address
            Endpoint address for the builder, if not the default.

        Raises
        ------
        KubernetesError
            Raised if the builder service readiness cannot be determined.
        """
        if not force and await self._is_ready():
            self._logger.info("Skipping builder install, service is ready")
            return

        args = ["builder", "install"]
        if force:
            args.append("--force")
        if address:
            args.extend(["--endpoint-addr", address])
        budget = self._config.install_timeout
        interval = self._config.poll_interval
        timeout = Timeout("Builder install", budget)
        logger = self._logger.bind(args=args)
        logger.info("Installing image builder")

        while True:
            try:
                await self._run(args)
                break
            except CommandError as e:
                if LEGACY_RUNTIME_ERROR not in e.stderr:
                    logger.error(
                        "Failed to install image builder, a cluster reset"
                        " might be needed to build images",
                        error=str(e),
                        stderr=e.stderr,
                    )
                    return
            logger.info("Waiting for the cluster to switch runtimes")
            if timeout.expired():
                logger.warning(
                    "Gave up installing image builder, a cluster reset is"
                    " probably needed to build images",
                    timeout=budget.total_seconds(),
                )
                break
            await timeout.sleep(interval)

        while True:
            if await self._is_ready():
                logger.info("Image builder is installed and running")
                return
            if timeout.expired():
                logger.warning(
                    "Gave up waiting for image builder, it may become ready"
                    " later",
                    timeout=budget.total_seconds(),
                )
                return
            await timeout.sleep(interval)

    async def uninstall(self, *, address: str | None = None) -> None:
        """Remove any leftover builder.

        Does nothing if there are no services in the builder namespace.
        Failure of the uninstall command is logged and not retried.

        Parameters
        ----------
        address
            Endpoint address the builder was installed with, if not the
            default.

        Raises
        ------
        KubernetesError
            Raised if the builder services cannot be listed.
        """
        services = await self._services.list(BUILDER_NAMESPACE)
        if not services:
            self._logger.debug("No builder services to uninstall")
            return
        args = ["builder", "uninstall"]
        if address:
            args.extend(["--endpoint-addr", address])
        self._logger.info("Uninstalling image builder", args=args)
        try:
            await self._run(args)
        except CommandError as e:
            self._logger.error(
                "Failed to uninstall image builder",
                error=str(e),
                stderr=e.stderr,
            )

    async def _is_ready(self) -> bool:
        return await self._services.is_ready(
            BUILDER_NAMESPACE, BUILDER_COMPONENT
        )

    async def _run(self, args: list[str]) -> None:
        await self._runner.run(
            self._executable, args, send_notifications=False
        )
