"""Storage layer for Kubernetes services and their endpoints."""

from __future__ import annotations

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    V1Endpoints,
    V1Service,
)
from structlog.stdlib import BoundLogger

from ...constants import KUBERNETES_REQUEST_TIMEOUT
from ...exceptions import KubernetesError

__all__ = ["ServiceStorage"]


class ServiceStorage:
    """Storage layer for Kubernetes services and endpoints.

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

    async def is_ready(self, namespace: str, name: str) -> bool:
        """Check whether a service has at least one ready endpoint.

        Parameters
        ----------
        namespace
            Namespace of the service.
        name
            Name of the service.

        Returns
        -------
        bool
            `True` if some subset of the service's endpoints has a ready
            address, `False` otherwise, including if the endpoints do not
            exist.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        endpoints = await self.read_endpoints(name, namespace)
        if not endpoints or not endpoints.subsets:
            return False
        return any(s.addresses for s in endpoints.subsets)

    async def list(self, namespace: str) -> list[V1Service]:
        """List services in a namespace.

        Parameters
        ----------
        namespace
            Namespace to search.

        Returns
        -------
        list of kubernetes_asyncio.client.models.V1Service
            Services in that namespace.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        timeout = KUBERNETES_REQUEST_TIMEOUT.total_seconds()
        try:
            services = await self._api.list_namespaced_service(
                namespace, _request_timeout=timeout
            )
        except ApiException as e:
            if e.status == 404:
                return []
            raise KubernetesError.from_exception(
                "Error listing objects", e, kind="Service", namespace=namespace
            ) from e
        return services.items

    async def read_endpoints(
        self, name: str, namespace: str
    ) -> V1Endpoints | None:
        """Read the endpoints of a service.

        Parameters
        ----------
        name
            Name of the service.
        namespace
            Namespace of the service.

        Returns
        -------
        kubernetes_asyncio.client.models.V1Endpoints or None
            Endpoints object, or `None` if it does not exist.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        timeout = KUBERNETES_REQUEST_TIMEOUT.total_seconds()
        try:
            return await self._api.read_namespaced_endpoints(
                name, namespace, _request_timeout=timeout
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading object",
                e,
                kind="Endpoints",
                namespace=namespace,
                name=name,
            ) from e
