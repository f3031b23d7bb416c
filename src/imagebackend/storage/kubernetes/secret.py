"""Storage layer for Kubernetes secrets."""

from __future__ import annotations

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException, V1Secret
from structlog.stdlib import BoundLogger

from ...constants import KUBERNETES_REQUEST_TIMEOUT
from ...exceptions import KubernetesError

__all__ = ["SecretStorage"]


class SecretStorage:
    """Storage layer for Kubernetes secrets.

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

    async def read(self, name: str, namespace: str) -> V1Secret | None:
        """Read a secret.

        Parameters
        ----------
        name
            Name of the secret.
        namespace
            Namespace of the secret.

        Returns
        -------
        kubernetes_asyncio.client.models.V1Secret or None
            Secret, or `None` if it does not exist.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        timeout = KUBERNETES_REQUEST_TIMEOUT.total_seconds()
        try:
            return await self._api.read_namespaced_secret(
                name, namespace, _request_timeout=timeout
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading object",
                e,
                kind="Secret",
                namespace=namespace,
                name=name,
            ) from e
