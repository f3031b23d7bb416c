"""Component factory and process-wide context."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from typing import Self

import structlog
from kubernetes_asyncio import client, config as kube_config
from kubernetes_asyncio.client import ApiClient
from structlog.stdlib import BoundLogger

from .config import Config
from .constants import BUILDER_EXECUTABLE, ROOT_LOGGER
from .events import LoggingSink, NotificationSink
from .models.domain.cluster import ClusterBackend, ContainerEngine
from .services.backend import ImageBackend
from .services.builder import BuilderReconciler
from .services.cluster import StaticCluster
from .services.dedup import OutputDeduplicator
from .services.engine import ContainerdEngine, EngineStrategy, MobyEngine
from .services.manager import BackendManager
from .services.runner import CommandRunner
from .storage.kubernetes.node import NodeStorage
from .storage.kubernetes.pod import PodStorage
from .storage.kubernetes.secret import SecretStorage
from .storage.kubernetes.service import ServiceStorage

__all__ = ["Factory", "ProcessContext"]


@dataclass(slots=True)
class ProcessContext:
    """Per-process global state.

    Holds the singletons shared by every component the `Factory` creates.
    Only the builder talks to Kubernetes, so the Kubernetes client is not
    created, and the kubeconfig is not loaded, until a builder is created.
    """

    config: Config
    """Image backend configuration."""

    cluster: ClusterBackend
    """Local cluster."""

    sink: NotificationSink
    """Receiver of notifications for the user interface."""

    kubernetes_client: ApiClient | None = None
    """Shared Kubernetes client, if it has been created."""

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        cluster: ClusterBackend | None = None,
        sink: NotificationSink | None = None,
    ) -> Self:
        """Create a new process context from the configuration.

        Parameters
        ----------
        config
            Image backend configuration.
        cluster
            Local cluster. Defaults to a started cluster described by the
            configuration.
        sink
            Receiver of notifications. Defaults to only logging them.

        Returns
        -------
        ProcessContext
            Shared context for an image backend process.
        """
        logger = structlog.get_logger(ROOT_LOGGER)
        return cls(
            config=config,
            cluster=cluster or StaticCluster(config.cluster),
            sink=sink or LoggingSink(logger),
        )

    async def get_kubernetes_client(self) -> ApiClient:
        """Return the shared Kubernetes client, creating it if needed.

        Returns
        -------
        kubernetes_asyncio.client.ApiClient
            Client configured from the kubeconfig context in the
            configuration.

        Raises
        ------
        kubernetes_asyncio.config.ConfigException
            Raised if the kubeconfig cannot be loaded.
        """
        if not self.kubernetes_client:
            context = self.config.kube_context
            await kube_config.load_kube_config(context=context)
            self.kubernetes_client = client.ApiClient()
        return self.kubernetes_client

    async def aclose(self) -> None:
        """Free allocated resources."""
        if self.kubernetes_client:
            await self.kubernetes_client.close()
            self.kubernetes_client = None


class Factory:
    """Build image backend components.

    Parameters
    ----------
    context
        Shared process context.
    logger
        Logger to use for messages.
    """

    @classmethod
    @asynccontextmanager
    async def standalone(
        cls, config: Config, *, sink: NotificationSink | None = None
    ) -> AsyncIterator[Self]:
        """Async context manager for image backend components.

        Intended for the command-line interface and the test suite.

        Parameters
        ----------
        config
            Image backend configuration.
        sink
            Receiver of notifications, if not just logging them.

        Yields
        ------
        Factory
            Newly-created factory. Must be used as a context manager.
        """
        logger = structlog.get_logger(ROOT_LOGGER)
        context = ProcessContext.from_config(config, sink=sink)
        factory = cls(context, logger)
        async with aclosing(factory):
            yield factory

    def __init__(self, context: ProcessContext, logger: BoundLogger) -> None:
        self._context = context
        self._logger = logger

    @property
    def config(self) -> Config:
        """Image backend configuration."""
        return self._context.config

    async def aclose(self) -> None:
        """Shut down the factory.

        After this method is called, the factory object is no longer valid and
        must not be used.
        """
        await self._context.aclose()

    def create_backend(
        self,
        engine: ContainerEngine | None = None,
        *,
        builder: BuilderReconciler | None = None,
    ) -> ImageBackend:
        """Create the image backend for a container engine.

        Parameters
        ----------
        engine
            Container engine. Defaults to the configured one.
        builder
            Builder reconciler to run on cluster state changes. Backends
            used only for image commands do not need one.

        Returns
        -------
        ImageBackend
            Newly-created backend, with periodic refreshes not yet running.
        """
        config = self._context.config
        strategy = self.create_engine(engine or config.engine)
        return ImageBackend(
            engine=strategy,
            runner=self.create_runner(strategy.name, strategy),
            executable=config.executable(strategy.executable),
            cluster=self._context.cluster,
            sink=self._context.sink,
            builder=builder,
            builder_endpoint=config.builder.endpoint_address,
            refresh_interval=config.refresh_interval,
            namespace=config.namespace,
            logger=self._logger,
        )

    async def create_managed_backend(
        self, engine: ContainerEngine
    ) -> ImageBackend:
        """Create a backend that reconciles the builder with the cluster.

        Parameters
        ----------
        engine
            Container engine.

        Returns
        -------
        ImageBackend
            Newly-created backend with a builder reconciler.

        Raises
        ------
        kubernetes_asyncio.config.ConfigException
            Raised if the kubeconfig cannot be loaded.
        """
        builder = await self.create_builder()
        return self.create_backend(engine, builder=builder)

    async def create_builder(self) -> BuilderReconciler:
        """Create the reconciler for the in-cluster image builder.

        Returns
        -------
        BuilderReconciler
            Newly-created reconciler.

        Raises
        ------
        kubernetes_asyncio.config.ConfigException
            Raised if the kubeconfig cannot be loaded.
        """
        config = self._context.config
        kubernetes_client = await self._context.get_kubernetes_client()
        return BuilderReconciler(
            runner=self.create_runner(BUILDER_EXECUTABLE),
            executable=config.executable(BUILDER_EXECUTABLE),
            cluster=self._context.cluster,
            node_storage=NodeStorage(kubernetes_client, self._logger),
            pod_storage=PodStorage(kubernetes_client, self._logger),
            service_storage=ServiceStorage(kubernetes_client, self._logger),
            secret_storage=SecretStorage(kubernetes_client, self._logger),
            config=config.builder,
            logger=self._logger,
        )

    def create_engine(self, engine: ContainerEngine) -> EngineStrategy:
        """Create the command strategy for a container engine."""
        match engine:
            case ContainerEngine.MOBY:
                return MobyEngine(self._logger)
            case ContainerEngine.CONTAINERD:
                return ContainerdEngine(self._logger)

    def create_manager(self) -> BackendManager:
        """Create the owner of the backend for the selected engine.

        Returns
        -------
        BackendManager
            Newly-created manager. No backend exists until an engine is
            selected.
        """
        return BackendManager(
            create_backend=self.create_managed_backend, logger=self._logger
        )

    def create_runner(
        self, name: str, engine: EngineStrategy | None = None
    ) -> CommandRunner:
        """Create a command runner.

        Parameters
        ----------
        name
            Name used when summarizing repeated errors.
        engine
            Engine whose standard error filter to apply, if any.

        Returns
        -------
        CommandRunner
            Newly-created runner with its own deduplicator.
        """
        return CommandRunner(
            sink=self._context.sink,
            deduplicator=OutputDeduplicator(name, self._logger),
            logger=self._logger,
            stderr_filter=engine.filter_stderr if engine else None,
        )
