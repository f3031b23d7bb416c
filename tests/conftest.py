"""Test fixtures for image backend tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from datetime import timedelta

import pytest
import pytest_asyncio
import structlog

from imagebackend.config import BuilderConfig, ClusterConfig, Config
from imagebackend.factory import Factory, ProcessContext
from imagebackend.services.cluster import StaticCluster

from .support.kubernetes import MockImageKubernetesApi, patch_kubernetes
from .support.runner import RecordingSink


@pytest.fixture
def config() -> Config:
    """Construct configuration for tests with short timeouts."""
    return Config(
        cluster=ClusterConfig(address="10.0.0.5"),
        builder=BuilderConfig(
            install_timeout=timedelta(seconds=0.5),
            poll_interval=timedelta(seconds=0.01),
            node_ip_timeout=timedelta(seconds=0.2),
            node_ip_poll_interval=timedelta(seconds=0.01),
        ),
        refresh_interval=timedelta(seconds=0.05),
    )


@pytest.fixture
def mock_kubernetes() -> Iterator[MockImageKubernetesApi]:
    yield from patch_kubernetes()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest_asyncio.fixture
async def factory(
    config: Config,
    sink: RecordingSink,
    mock_kubernetes: MockImageKubernetesApi,
) -> AsyncIterator[Factory]:
    """Create a component factory for tests."""
    context = ProcessContext(
        config=config,
        cluster=StaticCluster(config.cluster, platform="linux"),
        sink=sink,
    )
    factory = Factory(context, structlog.get_logger(__name__))
    yield factory
    await factory.aclose()
