"""Storage layer for Kubernetes pod objects."""

from __future__ import annotations

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException, V1Pod
from structlog.stdlib import BoundLogger

from ...constants import KUBERNETES_REQUEST_TIMEOUT
from ...exceptions import KubernetesError

__all__ = ["PodStorage"]


class PodStorage:
    """Storage layer for Kubernetes pod objects.

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

    async def delete(self, name: str, namespace: str) -> None:
        """Delete a pod.

        If the pod does not exist, this is silently treated as success.

        Parameters
        ----------
        name
            Name of the pod.
        namespace
            Namespace of the pod.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        timeout = KUBERNETES_REQUEST_TIMEOUT.total_seconds()
        try:
            await self._api.delete_namespaced_pod(
                name, namespace, _request_timeout=timeout
            )
        except ApiException as e:
            if e.status == 404:
                return
            raise KubernetesError.from_exception(
                "Error deleting object",
                e,
                kind="Pod",
                namespace=namespace,
                name=name,
            ) from e

    async def list(
        self, namespace: str, label_selector: str | None = None
    ) -> list[V1Pod]:
        """List pods in a namespace.

        Parameters
        ----------
        namespace
            Namespace to search.
        label_selector
            If given, only return pods matching this label selector.

        Returns
        -------
        list of kubernetes_asyncio.client.models.V1Pod
            Matching pods.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        timeout = KUBERNETES_REQUEST_TIMEOUT.total_seconds()
        try:
            pods = await self._api.list_namespaced_pod(
                namespace,
                label_selector=label_selector,
                _request_timeout=timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return []
            raise KubernetesError.from_exception(
                "Error listing objects", e, kind="Pod", namespace=namespace
            ) from e
        return pods.items
