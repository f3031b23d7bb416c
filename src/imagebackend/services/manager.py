"""Ownership of the image backend for the selected engine."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from aiojobs import Job, Scheduler
from structlog.stdlib import BoundLogger

from ..models.domain.cluster import ClusterState, ContainerEngine
from ..models.domain.image import ImageRecord
from .backend import ImageBackend

__all__ = ["BackendManager"]


class BackendManager:
    """Own the image backend of the currently selected container engine.

    Only one backend exists at a time, so notifications never need to be
    filtered by which engine is active. Selecting a different engine closes
    the old backend and creates a new one, which inherits the manager's
    listeners and the last known cluster state.

    Handling a cluster state change can take minutes while the builder is
    reinstalled, so it runs as a background job. Failures of that job are
    logged.

    Parameters
    ----------
    create_backend
        Async function creating the backend for an engine.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        create_backend: Callable[[ContainerEngine], Awaitable[ImageBackend]],
        logger: BoundLogger,
    ) -> None:
        self._create_backend = create_backend
        self._logger = logger
        self._backend: ImageBackend | None = None
        self._cluster_state: ClusterState | None = None
        self._image_listeners: list[Callable[[list[ImageRecord]], None]] = []
        self._readiness_listeners: list[Callable[[bool], None]] = []
        self._scheduler: Scheduler | None = None

    @property
    def backend(self) -> ImageBackend | None:
        """Backend of the selected engine, if one has been selected."""
        return self._backend

    async def select_engine(self, engine: ContainerEngine) -> ImageBackend:
        """Switch to a container engine.

        Parameters
        ----------
        engine
            Engine to select.

        Returns
        -------
        ImageBackend
            Newly-created backend for that engine.
        """
        if self._backend:
            self._logger.info(
                "Closing image backend", engine=self._backend.engine.name
            )
            await self._backend.aclose()
        backend = await self._create_backend(engine)
        self._logger.info("Selected image backend", engine=backend.engine.name)
        self._backend = backend
        for image_listener in self._image_listeners:
            backend.images_changed.subscribe(image_listener)
        for ready_listener in self._readiness_listeners:
            backend.readiness_changed.subscribe(ready_listener)
        if self._cluster_state:
            await self._spawn_cluster_state(backend, self._cluster_state)
        return backend

    def subscribe_images(
        self, listener: Callable[[list[ImageRecord]], None]
    ) -> Callable[[], None]:
        """Listen for image list changes across engine switches.

        Returns
        -------
        Callable
            Function that removes the listener again.
        """
        self._image_listeners.append(listener)
        if self._backend:
            self._backend.images_changed.subscribe(listener)

        def unsubscribe() -> None:
            if listener in self._image_listeners:
                self._image_listeners.remove(listener)
            if self._backend:
                self._backend.images_changed.unsubscribe(listener)

        return unsubscribe

    def subscribe_readiness(
        self, listener: Callable[[bool], None]
    ) -> Callable[[], None]:
        """Listen for readiness changes across engine switches."""
        self._readiness_listeners.append(listener)
        if self._backend:
            self._backend.readiness_changed.subscribe(listener)

        def unsubscribe() -> None:
            if listener in self._readiness_listeners:
                self._readiness_listeners.remove(listener)
            if self._backend:
                self._backend.readiness_changed.unsubscribe(listener)

        return unsubscribe

    async def on_cluster_state(self, state: ClusterState) -> Job[None] | None:
        """Forward a cluster state change to the current backend.

        Parameters
        ----------
        state
            New state of the cluster.

        Returns
        -------
        aiojobs.Job or None
            Background job handling the change, or `None` if no engine has
            been selected yet.
        """
        self._cluster_state = state
        if not self._backend:
            return None
        return await self._spawn_cluster_state(self._backend, state)

    async def on_settings_update(self, namespace: str) -> None:
        """Forward a new image namespace to the current backend.

        Refresh failures are logged by the backend and not raised.
        """
        if self._backend:
            await self._backend.on_settings_update(namespace)

    async def aclose(self) -> None:
        """Cancel background jobs and close the current backend."""
        if self._scheduler:
            await self._scheduler.close()
            self._scheduler = None
        if self._backend:
            await self._backend.aclose()
            self._backend = None

    async def _spawn_cluster_state(
        self, backend: ImageBackend, state: ClusterState
    ) -> Job[None]:
        if not self._scheduler:
            self._scheduler = Scheduler()
        return await self._scheduler.spawn(
            self._handle_cluster_state(backend, state)
        )

    async def _handle_cluster_state(
        self, backend: ImageBackend, state: ClusterState
    ) -> None:
        try:
            await backend.on_cluster_state(state)
        except Exception:
            self._logger.exception(
                "Uncaught exception handling cluster state",
                engine=backend.engine.name,
                state=state.value,
            )
