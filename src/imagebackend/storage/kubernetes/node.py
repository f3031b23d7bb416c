"""Storage layer for Kubernetes node objects."""

from __future__ import annotations

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException, V1Node
from structlog.stdlib import BoundLogger

from ...constants import KUBERNETES_REQUEST_TIMEOUT
from ...exceptions import KubernetesError

__all__ = ["NodeStorage"]


class NodeStorage:
    """Storage layer for Kubernetes node objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api = client.CoreV1Api(api_client)
        self._logger = logger

    async def list(self) -> list[V1Node]:
        """Get data about Kubernetes nodes.

        Returns
        -------
        list of kubernetes_asyncio.client.models.V1Node
            List of node metadata.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        self._logger.debug("Getting node data")
        timeout = KUBERNETES_REQUEST_TIMEOUT.total_seconds()
        try:
            nodes = await self._api.list_node(_request_timeout=timeout)
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error reading node information", e, kind="Node"
            ) from e
        return nodes.items

    async def list_internal_addresses(self) -> list[str]:
        """Get the internal addresses of all nodes.

        Returns
        -------
        list of str
            Every ``InternalIP`` address reported in node status.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        addresses = []
        for node in await self.list():
            if not node.status or not node.status.addresses:
                continue
            addresses.extend(
                a.address
                for a in node.status.addresses
                if a.type == "InternalIP" and a.address
            )
        return addresses
