"""Command-line interface for the image backend."""

from __future__ import annotations

import functools
import json
import os
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import click
from safir.asyncio import run_with_asyncio
from safir.click import display_help
from safir.sentry import initialize_sentry, report_exception
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import get_logger

from . import __version__
from .config import Config
from .constants import CONFIG_FILE, CONFIG_FILE_ENV_VAR, ROOT_LOGGER
from .events import Channel
from .factory import Factory
from .models.domain.cluster import ContainerEngine

__all__ = ["ConsoleSink", "main", "main_with_sentry"]


class ConsoleSink:
    """Notification sink that streams command output to the terminal.

    Parameters
    ----------
    show_stdout
        Whether to echo standard output as it arrives. Commands that
        reformat their output turn this off.
    """

    def __init__(self, *, show_stdout: bool = True) -> None:
        self._show_stdout = show_stdout

    def send(self, channel: Channel, *payload: Any) -> None:
        if channel != Channel.PROCESS_OUTPUT:
            return
        data, is_stderr = payload
        if is_stderr or self._show_stdout:
            click.echo(data, nl=False, err=is_stderr)


def _load_config(
    *,
    config_file: Path,
    debug: bool,
    engine: ContainerEngine | None,
    namespace: str | None,
) -> Config:
    """Load the configuration, overriding it from CLI options."""
    # Prefer config file from env var
    if env_config_path := os.getenv(CONFIG_FILE_ENV_VAR):
        config_file = Path(env_config_path)

    config = Config.from_file(config_file)
    if debug:
        config.debug = debug
        config.configure_logging()
    if engine:
        config.engine = engine
    if namespace:
        config.namespace = namespace
    return config


def _common[R](
    func: Callable[..., Awaitable[R]],
) -> Callable[..., R]:
    """Add common Click options, configuration, and error reporting."""

    @click.option(
        "--namespace",
        "-n",
        help="Image namespace (containerd only)",
        default=None,
    )
    @click.option(
        "--engine",
        "-e",
        type=click.Choice([e.value for e in ContainerEngine]),
        help="Container engine to use",
        default=None,
    )
    @click.option(
        "--debug",
        "-d",
        is_flag=True,
        help="Enable debug logging",
    )
    @click.option(
        "--config-file",
        "-c",
        help="Application configuration file",
        type=Path,
        default=CONFIG_FILE,
    )
    @run_with_asyncio
    @functools.wraps(func)
    async def wrapper(
        *args: Any,
        config_file: Path,
        debug: bool,
        engine: str | None,
        namespace: str | None,
        **kwargs: Any,
    ) -> R:
        config = _load_config(
            config_file=config_file,
            debug=debug,
            engine=ContainerEngine(engine) if engine else None,
            namespace=namespace,
        )

        # Configure slack alerting and report any exceptions
        logger = get_logger(ROOT_LOGGER)
        slack_client = None
        if config.alert_hook:
            slack_client = SlackWebhookClient(
                config.alert_hook.get_secret_value(),
                "Image Backend",
                logger=logger,
            )

        try:
            return await func(config, *args, **kwargs)
        except Exception as e:
            await report_exception(e, slack_client)
            raise

    return wrapper


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, message="%(version)s")
def main() -> None:
    """Local container image backend command-line interface."""


@main.command()
@click.argument("topic", default=None, required=False, nargs=1)
@click.argument("subtopic", default=None, required=False, nargs=1)
@click.pass_context
def help(ctx: click.Context, topic: str | None, subtopic: str | None) -> None:
    """Show help for any command."""
    display_help(main, ctx, topic, subtopic)


@main.command
@_common
async def images(config: Config) -> None:
    """List images."""
    async with Factory.standalone(config) as factory:
        backend = factory.create_backend()
        await backend.refresh_images()
        if not backend.is_ready:
            click.echo("Cannot list images", err=True)
            sys.exit(1)
        rows = [("NAME", "TAG", "ID", "SIZE")]
        for image in backend.list_images():
            rows.append((image.name, image.tag, image.id, image.size))
        widths = [max(len(r[n]) for r in rows) for n in range(3)]
        for row in rows:
            cells = [c.ljust(w) for c, w in zip(row, widths, strict=False)]
            click.echo("   ".join([*cells, row[3]]))


@main.command
@click.argument("directory", type=click.Path(file_okay=False, exists=True))
@click.option(
    "--file", "-f", "filename", default="Dockerfile", help="Dockerfile name"
)
@click.option("--tag", "-t", required=True, help="Tag of the new image")
@_common
async def build(
    config: Config, *, directory: str, filename: str, tag: str
) -> None:
    """Build an image from a directory containing a Dockerfile."""
    async with Factory.standalone(config, sink=ConsoleSink()) as factory:
        backend = factory.create_backend()
        await backend.build_image(directory, filename, tag)


@main.command
@click.argument("tag")
@_common
async def pull(config: Config, *, tag: str) -> None:
    """Pull an image."""
    async with Factory.standalone(config, sink=ConsoleSink()) as factory:
        await factory.create_backend().pull_image(tag)


@main.command
@click.argument("tag")
@_common
async def push(config: Config, *, tag: str) -> None:
    """Push an image."""
    async with Factory.standalone(config, sink=ConsoleSink()) as factory:
        await factory.create_backend().push_image(tag)


@main.command
@click.argument("image_id", metavar="ID")
@_common
async def rmi(config: Config, *, image_id: str) -> None:
    """Delete an image by ID."""
    async with Factory.standalone(config, sink=ConsoleSink()) as factory:
        await factory.create_backend().delete_image(image_id)


@main.command
@click.argument("tag")
@_common
async def scan(config: Config, *, tag: str) -> None:
    """Scan an image for vulnerabilities."""
    sink = ConsoleSink(show_stdout=False)
    async with Factory.standalone(config, sink=sink) as factory:
        result = await factory.create_backend().scan_image(tag)
    click.echo(json.dumps(json.loads(result.stdout), indent=2))


@main.command
@_common
async def namespaces(config: Config) -> None:
    """List image namespaces."""
    async with Factory.standalone(config) as factory:
        for namespace in await factory.create_backend().relay_namespaces():
            click.echo(namespace)


@main.group
def builder() -> None:
    """Manage the in-cluster image builder."""


@builder.command
@click.option(
    "--force", is_flag=True, help="Reinstall even if the install is valid"
)
@_common
async def install(config: Config, *, force: bool) -> None:
    """Install the image builder and wait for it to be ready."""
    async with Factory.standalone(config) as factory:
        reconciler = await factory.create_builder()
        endpoint = config.builder.endpoint_address
        if not force:
            force = not await reconciler.is_install_valid(endpoint)
        await reconciler.install(force=force, address=endpoint)


@builder.command
@_common
async def uninstall(config: Config) -> None:
    """Remove the image builder."""
    async with Factory.standalone(config) as factory:
        reconciler = await factory.create_builder()
        await reconciler.uninstall(address=config.builder.endpoint_address)


@builder.command
@_common
async def validate(config: Config) -> None:
    """Check whether the installed image builder matches the cluster."""
    async with Factory.standalone(config) as factory:
        reconciler = await factory.create_builder()
        endpoint = config.builder.endpoint_address
        valid = await reconciler.is_install_valid(endpoint)
    click.echo("valid" if valid else "invalid")
    if not valid:
        sys.exit(1)


def main_with_sentry() -> None:
    """Call the main command group after initializing Sentry."""
    initialize_sentry(release=__version__)
    main()
