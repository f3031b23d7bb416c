"""Tests for the command-line interface."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import yaml
from click.testing import CliRunner
from kubernetes_asyncio.config import kube_config

from imagebackend import __version__, cli
from imagebackend.cli import main
from imagebackend.constants import CONFIG_FILE_ENV_VAR
from imagebackend.exceptions import CommandError

from .support.kubernetes import (
    MockImageKubernetesApi,
    make_builder_endpoints,
    make_node,
)

DOCKER_SCRIPT = """\
#!/bin/sh
if [ "$1" = "images" ]; then
    echo '{"ID":"1","Repository":"alpine","Tag":"latest","Size":"5MB"}'
    echo '{"ID":"2","Repository":"busybox","Tag":"1.36","Size":"1MB"}'
    exit 0
fi
echo "$@"
"""


@pytest.fixture
def config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    docker = bin_dir / "docker"
    docker.write_text(DOCKER_SCRIPT)
    docker.chmod(0o755)
    config = {
        "engine": "moby",
        "binDir": str(bin_dir),
        "cluster": {"address": "10.0.0.5"},
        "builder": {"nodeIpTimeout": "1s"},
        "logLevel": "WARNING",
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(config))
    monkeypatch.setenv(CONFIG_FILE_ENV_VAR, str(path))
    return path


def test_help() -> None:
    runner = CliRunner()

    result = runner.invoke(main, ["--version"], catch_exceptions=False)
    assert result.exit_code == 0
    assert result.output.strip() == __version__

    result = runner.invoke(main, ["help"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "images" in result.output

    result = runner.invoke(main, ["help", "builder"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "validate" in result.output


@pytest.mark.usefixtures("config_file", "mock_kubernetes")
def test_images() -> None:
    runner = CliRunner()

    result = runner.invoke(main, ["images"], catch_exceptions=False)

    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines[0].split() == ["NAME", "TAG", "ID", "SIZE"]
    assert lines[1].split() == ["alpine", "latest", "1", "5MB"]
    assert lines[2].split() == ["busybox", "1.36", "2", "1MB"]


@pytest.mark.usefixtures("config_file", "mock_kubernetes")
def test_pull() -> None:
    runner = CliRunner()

    result = runner.invoke(main, ["pull", "alpine"], catch_exceptions=False)

    assert result.exit_code == 0
    assert result.output.strip() == "pull alpine"


@pytest.mark.usefixtures("config_file")
def test_images_without_kubeconfig(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    missing = str(tmp_path / "kubeconfig")
    monkeypatch.setenv("KUBECONFIG", missing)
    monkeypatch.setattr(kube_config, "KUBE_CONFIG_DEFAULT_LOCATION", missing)
    runner = CliRunner()

    result = runner.invoke(main, ["images"], catch_exceptions=False)

    assert result.exit_code == 0
    assert result.output.splitlines()[1].split()[0] == "alpine"


@pytest.mark.usefixtures("config_file", "mock_kubernetes")
def test_images_failure(tmp_path: Path) -> None:
    docker = tmp_path / "bin" / "docker"
    docker.write_text("#!/bin/sh\necho 'cannot connect' >&2\nexit 1\n")
    runner = CliRunner()

    result = runner.invoke(main, ["images"])

    assert result.exit_code == 1


@pytest.mark.usefixtures("config_file", "mock_kubernetes")
def test_pull_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    docker = tmp_path / "bin" / "docker"
    docker.write_text("#!/bin/sh\necho 'pull access denied' >&2\nexit 1\n")
    report = AsyncMock()
    monkeypatch.setattr(cli, "report_exception", report)
    runner = CliRunner()

    result = runner.invoke(main, ["pull", "private/image"])

    assert result.exit_code == 1
    assert isinstance(result.exception, CommandError)
    report.assert_awaited_once()
    error, slack_client = report.call_args.args
    assert error is result.exception
    assert "pull access denied" in error.stderr
    assert slack_client is None


@pytest.mark.usefixtures("config_file")
def test_validate(mock_kubernetes: MockImageKubernetesApi) -> None:
    mock_kubernetes.set_nodes_for_test([make_node("node", "10.0.0.5")])
    runner = CliRunner()

    result = runner.invoke(main, ["builder", "validate"])
    assert result.exit_code == 1
    assert result.output.splitlines()[-1] == "invalid"

    endpoints = make_builder_endpoints("10.0.0.5")
    asyncio.run(
        mock_kubernetes.create_namespaced_endpoints("kube-image", endpoints)
    )
    result = runner.invoke(main, ["builder", "validate"])
    assert result.exit_code == 0
    assert result.output.splitlines()[-1] == "valid"


@pytest.mark.usefixtures("config_file", "mock_kubernetes")
def test_namespaces_moby() -> None:
    runner = CliRunner()

    result = runner.invoke(main, ["namespaces"], catch_exceptions=False)

    assert result.exit_code == 0
    assert result.output == ""

    result = runner.invoke(main, ["namespaces", "-e", "podman"])
    assert result.exit_code != 0

