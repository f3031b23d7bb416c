"""Tests for the in-cluster image builder reconciler."""

from __future__ import annotations

import asyncio
import base64
from typing import Any

import pytest
import structlog
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    V1EndpointAddress,
    V1ObjectMeta,
    V1Secret,
)

from imagebackend.config import ClusterConfig, Config
from imagebackend.constants import LEGACY_RUNTIME_ERROR
from imagebackend.exceptions import KubernetesError
from imagebackend.services.builder import BuilderReconciler
from imagebackend.services.cluster import StaticCluster
from imagebackend.storage.kubernetes.node import NodeStorage
from imagebackend.storage.kubernetes.pod import PodStorage
from imagebackend.storage.kubernetes.secret import SecretStorage
from imagebackend.storage.kubernetes.service import ServiceStorage

from ..support.certificate import make_certificate
from ..support.kubernetes import (
    MockImageKubernetesApi,
    create_builder_pod,
    make_builder_endpoints,
    make_node,
    make_service,
)
from ..support.runner import MockCommandRunner, command_failure


def make_reconciler(
    config: Config,
    runner: MockCommandRunner,
    *,
    address: str | None = "10.0.0.5",
) -> BuilderReconciler:
    logger = structlog.get_logger(__name__)
    api_client = ApiClient()
    cluster = StaticCluster(ClusterConfig(address=address), platform="linux")
    return BuilderReconciler(
        runner=runner,
        executable="kim",
        cluster=cluster,
        node_storage=NodeStorage(api_client, logger),
        pod_storage=PodStorage(api_client, logger),
        service_storage=ServiceStorage(api_client, logger),
        secret_storage=SecretStorage(api_client, logger),
        config=config.builder,
        logger=logger,
    )


async def create_certificate(
    mock_kubernetes: MockImageKubernetesApi, pem: bytes
) -> None:
    secret = V1Secret(
        metadata=V1ObjectMeta(name="kim-tls-server"),
        data={"tls.crt": base64.b64encode(pem).decode()},
    )
    await mock_kubernetes.create_namespaced_secret("kube-image", secret)


async def create_endpoints(
    mock_kubernetes: MockImageKubernetesApi, *addresses: str
) -> None:
    endpoints = make_builder_endpoints(*addresses)
    await mock_kubernetes.create_namespaced_endpoints("kube-image", endpoints)


async def list_pod_names(mock_kubernetes: MockImageKubernetesApi) -> list[str]:
    pods = await mock_kubernetes.list_namespaced_pod("kube-image")
    return sorted(p.metadata.name for p in pods.items)


@pytest.mark.asyncio
async def test_remove_stale_pods(
    config: Config, mock_kubernetes: MockImageKubernetesApi
) -> None:
    mock_kubernetes.set_nodes_for_test([make_node("node", "10.0.0.5")])
    await create_builder_pod(mock_kubernetes, "builder-a", "10.0.0.5")
    await create_builder_pod(mock_kubernetes, "builder-b", "10.0.0.9")
    await create_builder_pod(mock_kubernetes, "builder-c", None)
    reconciler = make_reconciler(config, MockCommandRunner())

    await reconciler.remove_stale_pods()

    assert await list_pod_names(mock_kubernetes) == ["builder-a", "builder-c"]


@pytest.mark.asyncio
async def test_is_install_valid(
    config: Config, mock_kubernetes: MockImageKubernetesApi
) -> None:
    mock_kubernetes.set_nodes_for_test([make_node("node", "10.0.0.5")])
    reconciler = make_reconciler(config, MockCommandRunner())

    # No endpoints at all.
    assert not await reconciler.is_install_valid()

    # Endpoints but no certificate.
    await create_endpoints(mock_kubernetes, "10.0.0.5")
    assert await reconciler.is_install_valid()
    assert not await reconciler.is_install_valid("10.0.0.6")

    # Certificate for the right address.
    pem = make_certificate(ips=["10.0.0.5"])
    await create_certificate(mock_kubernetes, pem)
    assert await reconciler.is_install_valid()


@pytest.mark.asyncio
async def test_wrong_certificate(
    config: Config, mock_kubernetes: MockImageKubernetesApi
) -> None:
    mock_kubernetes.set_nodes_for_test([make_node("node", "10.0.0.5")])
    await create_endpoints(mock_kubernetes, "10.0.0.5", "10.0.0.6")
    pem = make_certificate(ips=["10.0.0.5"])
    await create_certificate(mock_kubernetes, pem)
    reconciler = make_reconciler(config, MockCommandRunner())

    assert await reconciler.is_install_valid("10.0.0.5")
    assert not await reconciler.is_install_valid("10.0.0.6")


@pytest.mark.asyncio
async def test_dns_certificate(
    config: Config, mock_kubernetes: MockImageKubernetesApi
) -> None:
    mock_kubernetes.set_nodes_for_test([make_node("node", "10.0.0.5")])
    await create_endpoints(mock_kubernetes, "10.0.0.5")
    pem = make_certificate(ips=["10.0.0.6"], dns=["10.0.0.5"])
    await create_certificate(mock_kubernetes, pem)
    reconciler = make_reconciler(config, MockCommandRunner())

    assert await reconciler.is_install_valid()


@pytest.mark.asyncio
async def test_no_cluster_address(
    config: Config, mock_kubernetes: MockImageKubernetesApi
) -> None:
    await create_endpoints(mock_kubernetes, "10.0.0.5")
    reconciler = make_reconciler(config, MockCommandRunner(), address=None)

    assert not await reconciler.is_install_valid("10.0.0.5")


@pytest.mark.asyncio
async def test_node_ip_wait_gives_up(
    config: Config, mock_kubernetes: MockImageKubernetesApi
) -> None:
    """Validation proceeds even if the node never reports the address."""
    mock_kubernetes.set_nodes_for_test([make_node("node", "192.168.1.1")])
    await create_endpoints(mock_kubernetes, "10.0.0.5")
    await create_builder_pod(mock_kubernetes, "builder-a", "10.0.0.5")
    reconciler = make_reconciler(config, MockCommandRunner())

    assert await reconciler.is_install_valid()
    assert await list_pod_names(mock_kubernetes) == []


@pytest.mark.asyncio
async def test_kubernetes_error(
    config: Config, mock_kubernetes: MockImageKubernetesApi
) -> None:
    mock_kubernetes.set_nodes_for_test([make_node("node", "10.0.0.5")])

    def callback(method: str, *args: Any) -> None:
        if method == "read_namespaced_endpoints":
            raise ApiException(status=500, reason="Internal error")

    mock_kubernetes.error_callback = callback
    reconciler = make_reconciler(config, MockCommandRunner())

    with pytest.raises(KubernetesError) as excinfo:
        await reconciler.is_install_valid()
    assert excinfo.value.status == 500
    assert excinfo.value.kind == "Endpoints"


@pytest.mark.asyncio
async def test_install_skipped(
    config: Config, mock_kubernetes: MockImageKubernetesApi
) -> None:
    await create_endpoints(mock_kubernetes, "10.0.0.5")
    runner = MockCommandRunner()
    reconciler = make_reconciler(config, runner)

    await reconciler.install()
    assert runner.calls == []

    await reconciler.install(force=True, address="10.0.0.5")
    assert [c.args for c in runner.calls] == [
        ["builder", "install", "--force", "--endpoint-addr", "10.0.0.5"]
    ]
    assert runner.calls[0].executable == "kim"
    assert not runner.calls[0].send_notifications


@pytest.mark.asyncio
async def test_install_retries_legacy_runtime(
    config: Config, mock_kubernetes: MockImageKubernetesApi
) -> None:
    await create_endpoints(mock_kubernetes, "10.0.0.5")
    runner = MockCommandRunner()
    runner.add_result(command_failure(LEGACY_RUNTIME_ERROR, command="kim"))
    runner.add_result(command_failure(LEGACY_RUNTIME_ERROR, command="kim"))
    reconciler = make_reconciler(config, runner)

    await reconciler.install(force=True)

    assert [c.args for c in runner.calls] == [
        ["builder", "install", "--force"]
    ] * 3


@pytest.mark.asyncio
async def test_install_waits_for_ready(
    config: Config, mock_kubernetes: MockImageKubernetesApi
) -> None:
    endpoints = make_builder_endpoints()
    await mock_kubernetes.create_namespaced_endpoints("kube-image", endpoints)
    reads = 0

    # The service gains a ready address on the third check.
    def callback(method: str, *args: Any) -> None:
        nonlocal reads
        if method != "read_namespaced_endpoints":
            return
        reads += 1
        if reads == 3:
            address = V1EndpointAddress(ip="10.0.0.5")
            endpoints.subsets[0].addresses = [address]

    mock_kubernetes.error_callback = callback
    runner = MockCommandRunner()
    reconciler = make_reconciler(config, runner)
    loop = asyncio.get_running_loop()
    start = loop.time()

    await reconciler.install(force=True)

    assert reads == 3
    assert len(runner.calls) == 1
    budget = config.builder.install_timeout.total_seconds()
    assert loop.time() - start < budget


@pytest.mark.asyncio
async def test_install_ready_wait_timeout(
    config: Config, mock_kubernetes: MockImageKubernetesApi
) -> None:
    await create_endpoints(mock_kubernetes)
    reads = 0

    def callback(method: str, *args: Any) -> None:
        nonlocal reads
        if method == "read_namespaced_endpoints":
            reads += 1

    mock_kubernetes.error_callback = callback
    runner = MockCommandRunner()
    reconciler = make_reconciler(config, runner)
    loop = asyncio.get_running_loop()
    start = loop.time()

    await reconciler.install(force=True)

    # The service never becomes ready, so the whole budget is spent.
    elapsed = loop.time() - start
    budget = config.builder.install_timeout.total_seconds()
    assert budget - 0.05 <= elapsed < budget + 1
    assert reads > 1
    assert len(runner.calls) == 1


@pytest.mark.asyncio
async def test_install_other_failure(
    config: Config, mock_kubernetes: MockImageKubernetesApi
) -> None:
    runner = MockCommandRunner()
    runner.add_result(command_failure("Error: boom", command="kim"))
    reconciler = make_reconciler(config, runner)

    await reconciler.install()

    assert len(runner.calls) == 1


@pytest.mark.asyncio
async def test_install_timeout(
    config: Config, mock_kubernetes: MockImageKubernetesApi
) -> None:
    error = command_failure(LEGACY_RUNTIME_ERROR, command="kim")
    runner = MockCommandRunner(default=error)
    reconciler = make_reconciler(config, runner)

    await reconciler.install()

    assert len(runner.calls) > 1
    assert all(c.args == ["builder", "install"] for c in runner.calls)


@pytest.mark.asyncio
async def test_uninstall(
    config: Config, mock_kubernetes: MockImageKubernetesApi
) -> None:
    runner = MockCommandRunner()
    reconciler = make_reconciler(config, runner)

    await reconciler.uninstall()
    assert runner.calls == []

    service = make_service("builder")
    await mock_kubernetes.create_namespaced_service("kube-image", service)
    await reconciler.uninstall(address="10.0.0.5")
    assert [c.args for c in runner.calls] == [
        ["builder", "uninstall", "--endpoint-addr", "10.0.0.5"]
    ]

    # Failures are logged, not raised.
    runner.add_result(command_failure("Error: nope", command="kim"))
    await reconciler.uninstall()
    assert len(runner.calls) == 2
