"""Tests for exceptions."""

from __future__ import annotations

from kubernetes_asyncio.client import ApiException
from safir.sentry import before_send_handler

from imagebackend.exceptions import CommandError, KubernetesError


def test_command_error_slack() -> None:
    error = CommandError(
        "Command failed",
        command=["nerdctl", "pull", "alpine"],
        stderr="no such host",
        code=1,
    )
    assert str(error) == "Command failed (exit status 1)"

    slack = error.to_slack()

    assert slack.message == "Command failed (exit status 1)"
    assert slack.blocks[0].heading == "Command"
    assert slack.blocks[0].text == "nerdctl pull alpine"
    assert slack.blocks[1].heading == "Error"
    assert slack.blocks[1].code == "no such host"

    error = CommandError("Command failed", command=["docker"], signal="KILL")
    assert str(error) == "Command failed (killed by KILL)"
    assert len(error.to_slack().blocks) == 1


def test_command_error_sentry() -> None:
    error = CommandError(
        "Command failed",
        command=["kim", "builder", "install"],
        stderr="boom",
        code=2,
    )

    sentry = error.to_sentry()

    assert sentry.tags == {"command": "kim", "code": "2"}
    assert sentry.attachments["stderr"] == "boom"

    # The metadata is added to the events the Sentry client sends.
    hint = {"exc_info": (CommandError, error, None)}
    event = before_send_handler({}, hint)
    assert event["tags"]["command"] == "kim"
    assert event["tags"]["code"] == "2"
    assert hint["attachments"]


def test_kubernetes_error() -> None:
    exc = ApiException(status=503, reason="Unavailable")
    error = KubernetesError.from_exception(
        "Error reading object",
        exc,
        kind="Endpoints",
        namespace="kube-image",
        name="builder",
    )
    assert str(error) == (
        "Error reading object (Endpoints kube-image/builder, status 503):"
        " Unavailable"
    )

    slack = error.to_slack()
    assert slack.message == (
        "Error reading object (Endpoints kube-image/builder, status 503)"
    )
    assert slack.fields[-1].heading == "Status"
    assert slack.blocks[0].text == "Endpoints kube-image/builder"

    sentry = error.to_sentry()
    assert sentry.tags == {
        "status": "503",
        "kind": "Endpoints",
        "namespace": "kube-image",
        "name": "builder",
    }
    assert sentry.attachments["body"] == "Unavailable"
