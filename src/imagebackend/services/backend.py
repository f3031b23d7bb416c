"""Image backend lifecycle management."""

from __future__ import annotations

from datetime import timedelta

from structlog.stdlib import BoundLogger

from ..constants import DEFAULT_NAMESPACE
from ..events import Channel, EventChannel, NotificationSink
from ..exceptions import CommandError
from ..models.domain.cluster import ClusterBackend, ClusterState
from ..models.domain.image import ImageRecord, ProcessResult
from .builder import BuilderReconciler
from .engine import EngineStrategy
from .poller import ImagePoller
from .runner import CommandRunner

__all__ = ["ImageBackend"]


class ImageBackend:
    """Cached, polled view of the images of one container engine.

    The backend owns the last known image list and its readiness. The list
    is refreshed periodically only while the cluster is started and at least
    one listener is subscribed to `images_changed`. Readiness becomes true
    after the first successful refresh and false again only after a refresh
    fails with an exit status, so a failure to even start the list command
    does not hide a previously good list.

    Failures of the list command are never raised to listeners. They are
    visible only as a readiness change plus the logged error output.

    Parameters
    ----------
    engine
        Engine-specific command syntax and parsing.
    runner
        Runner for engine commands.
    executable
        Path to the engine executable.
    cluster
        Local cluster.
    sink
        Receiver of notifications for the user interface.
    builder
        Builder reconciler, required if the engine needs a builder and
        otherwise used to remove any leftover builder.
    builder_endpoint
        Endpoint address for the builder, if not the cluster address.
    refresh_interval
        Time between image list refreshes while watching.
    namespace
        Initial image namespace.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        engine: EngineStrategy,
        runner: CommandRunner,
        executable: str,
        cluster: ClusterBackend,
        sink: NotificationSink,
        builder: BuilderReconciler | None,
        builder_endpoint: str | None = None,
        refresh_interval: timedelta,
        namespace: str = DEFAULT_NAMESPACE,
        logger: BoundLogger,
    ) -> None:
        self._engine = engine
        self._runner = runner
        self._executable = executable
        self._cluster = cluster
        self._sink = sink
        self._builder = builder
        self._builder_endpoint = builder_endpoint
        self._namespace = namespace
        self._logger = logger.bind(engine=engine.name)

        self._images: list[ImageRecord] = []
        self._ready = False
        self._cluster_started = cluster.state == ClusterState.STARTED
        self._showed_stderr = False
        self._poller = ImagePoller(
            self.refresh_images, refresh_interval, self._logger
        )

        self.images_changed = EventChannel[list[ImageRecord]](
            "images-changed",
            self._logger,
            on_listeners_changed=lambda _: self._update_watch(),
        )
        """Receives the new image list after every successful refresh.

        Subscribing the first listener starts periodic refreshes if the
        cluster is started, and removing the last one stops them.
        """

        self.readiness_changed = EventChannel[bool](
            "readiness-changed", self._logger
        )
        """Receives the new readiness whenever it changes."""

    @property
    def engine(self) -> EngineStrategy:
        """Engine behind this backend."""
        return self._engine

    @property
    def is_ready(self) -> bool:
        """Whether the image list reflects a working engine."""
        return self._ready

    @property
    def is_watching(self) -> bool:
        """Whether periodic refreshes are running."""
        return self._poller.enabled

    @property
    def namespace(self) -> str:
        """Current image namespace."""
        return self._namespace

    def list_images(self) -> list[ImageRecord]:
        """Return the cached image list without refreshing it."""
        return self._images

    async def refresh_images(self) -> None:
        """Refresh the cached image list.

        Refreshes are not serialized. If two overlap, the one that finishes
        last replaces the list.
        """
        args = self._engine.list_args(self._namespace)
        try:
            result = await self._runner.run(
                self._executable,
                args,
                send_notifications=False,
                subcommand="images",
            )
        except CommandError as e:
            if not self._showed_stderr:
                self._logger.warning(
                    "Cannot list images", error=str(e), stderr=e.stderr
                )
            self._showed_stderr = True
            if e.code is not None and self._ready:
                self._set_ready(False)
            return

        if result.stderr:
            if not self._showed_stderr:
                self._logger.info(
                    "Image list printed errors", stderr=result.stderr
                )
                self._showed_stderr = True
        else:
            self._showed_stderr = False
        self._images = self._engine.parse_images(result.stdout)
        if not self._ready:
            self._set_ready(True)
        self._sink.send(Channel.IMAGES_CHANGED, self._images)
        self.images_changed.emit(self._images)

    async def build_image(
        self, directory: str, filename: str, tag: str
    ) -> ProcessResult:
        """Build an image from a Dockerfile.

        Parameters
        ----------
        directory
            Build context directory.
        filename
            Name of the Dockerfile within that directory.
        tag
            Tag for the new image.

        Returns
        -------
        ProcessResult
            Output of the build.

        Raises
        ------
        CommandError
            Raised if the build fails.
        """
        args = self._engine.build_args(
            directory, filename, tag, self._namespace
        )
        return await self._run(args, "build")

    async def delete_image(self, image_id: str) -> ProcessResult:
        """Delete an image by ID.

        Raises
        ------
        CommandError
            Raised if the deletion fails.
        """
        args = self._engine.delete_args(image_id, self._namespace)
        return await self._run(args, "rmi")

    async def pull_image(self, tag: str) -> ProcessResult:
        """Pull an image from its registry.

        Raises
        ------
        CommandError
            Raised if the pull fails.
        """
        args = self._engine.pull_args(tag, self._namespace)
        return await self._run(args, "pull")

    async def push_image(self, tag: str) -> ProcessResult:
        """Push an image to its registry.

        Raises
        ------
        CommandError
            Raised if the push fails.
        """
        args = self._engine.push_args(tag, self._namespace)
        return await self._run(args, "push")

    async def scan_image(self, tag: str) -> ProcessResult:
        """Scan an image for vulnerabilities with trivy.

        The scanner runs inside the cluster VM, where it can see the images
        of either engine.

        Parameters
        ----------
        tag
            Image to scan.

        Returns
        -------
        ProcessResult
            Output of the scanner. Standard output is the JSON report.

        Raises
        ------
        CommandError
            Raised if the scanner fails.
        NotSupportedError
            Raised if the scanner cannot be run on this platform.
        """
        args = ["--quiet", "image", "--format", "json", tag]
        command = self._cluster.vm_command(["trivy", *args])
        return await self._runner.run(
            command[0], command[1:], subcommand=args[0]
        )

    async def get_namespaces(self) -> list[str]:
        """List the image namespaces of the engine.

        Raises
        ------
        CommandError
            Raised if the namespaces cannot be listed.
        NotSupportedError
            Raised if the engine does not support namespaces.
        """
        result = await self._runner.run(
            self._executable,
            self._engine.namespace_args(),
            send_notifications=False,
        )
        return self._engine.parse_namespaces(result.stdout)

    async def relay_namespaces(self) -> list[str]:
        """Send the sorted list of namespaces to the user interface.

        The default namespace is always included. For an engine without
        namespaces, the list is empty.

        Returns
        -------
        list of str
            The namespaces sent.

        Raises
        ------
        CommandError
            Raised if the namespaces cannot be listed.
        """
        if self._engine.supports_namespaces:
            namespaces = await self.get_namespaces()
            if DEFAULT_NAMESPACE not in namespaces:
                namespaces.append(DEFAULT_NAMESPACE)
            namespaces.sort(key=str.casefold)
        else:
            namespaces = []
        self._sink.send(Channel.IMAGES_NAMESPACES, namespaces)
        return namespaces

    async def on_cluster_state(self, state: ClusterState) -> None:
        """Handle a change in the state of the cluster.

        Watching follows the cluster state. Once the cluster has started, an
        engine that builds through the in-cluster builder validates it and
        reinstalls it if needed. Other engines remove any builder left over
        from a previous engine selection.

        Parameters
        ----------
        state
            New state of the cluster.

        Raises
        ------
        KubernetesError
            Raised if the builder cannot be checked.
        """
        self._cluster_started = state == ClusterState.STARTED
        self._update_watch()
        if not self._cluster_started or not self._builder:
            return
        if self._engine.needs_builder:
            endpoint = self._builder_endpoint
            valid = await self._builder.is_install_valid(endpoint)
            await self._builder.install(force=not valid, address=endpoint)
        else:
            await self._builder.uninstall()

    async def on_settings_update(self, namespace: str) -> None:
        """Switch to a new image namespace and refresh the list."""
        if namespace == self._namespace:
            return
        self._logger.info("Changing image namespace", namespace=namespace)
        self._namespace = namespace
        await self.refresh_images()

    async def aclose(self) -> None:
        """Stop refreshing and cancel any refresh in progress."""
        await self._poller.aclose()

    async def _run(self, args: list[str], subcommand: str) -> ProcessResult:
        return await self._runner.run(
            self._executable, args, subcommand=subcommand
        )

    def _set_ready(self, ready: bool) -> None:
        self._ready = ready
        self._logger.info("Image readiness changed", ready=ready)
        self._sink.send(Channel.IMAGES_CHECK_STATE, ready)
        self.readiness_changed.emit(ready)

    def _update_watch(self) -> None:
        watch = self._cluster_started and len(self.images_changed) > 0
        self._poller.set_watch_enabled(watch)
