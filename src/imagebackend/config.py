"""Application configuration for the image backend."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Self

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
)
from pydantic.alias_generators import to_camel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from safir.logging import LogLevel, Profile, configure_logging
from safir.pydantic import HumanTimedelta

from .constants import (
    BUILDER_INSTALL_TIMEOUT,
    BUILDER_POLL_INTERVAL,
    DEFAULT_NAMESPACE,
    ENV_PREFIX,
    IMAGE_REFRESH_INTERVAL,
    KUBE_CONTEXT,
    NODE_IP_POLL_INTERVAL,
    NODE_IP_TIMEOUT,
    ROOT_LOGGER,
    VM_NAME,
)
from .models.domain.cluster import ContainerEngine

__all__ = [
    "BuilderConfig",
    "ClusterConfig",
    "Config",
    "EnvFirstSettings",
]


class BuilderConfig(BaseModel):
    """Configuration for the in-cluster image builder."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    endpoint_address: Annotated[
        str | None,
        Field(
            title="Builder endpoint address",
            description=(
                "Address the builder should listen on. If not set, the"
                " external address of the cluster is used."
            ),
            examples=["192.168.5.15"],
        ),
    ] = None

    install_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Install budget",
            description=(
                "How long to retry the install command, and separately how"
                " long to wait for the builder service to become ready, both"
                " measured from the start of the install"
            ),
        ),
    ] = BUILDER_INSTALL_TIMEOUT

    poll_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Install poll interval",
            description="Delay between install retries and readiness checks",
        ),
    ] = BUILDER_POLL_INTERVAL

    node_ip_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Node address budget",
            description=(
                "How long to wait for the node to report the cluster address"
                " before validating the builder anyway"
            ),
        ),
    ] = NODE_IP_TIMEOUT

    node_ip_poll_interval: Annotated[
        HumanTimedelta,
        Field(title="Node address poll interval"),
    ] = NODE_IP_POLL_INTERVAL


class ClusterConfig(BaseModel):
    """Configuration describing the local cluster."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    address: Annotated[
        str | None,
        Field(
            title="External address of the cluster",
            description=(
                "If not set, the builder is never considered validly"
                " installed and is reinstalled whenever the cluster starts"
            ),
            examples=["192.168.5.15"],
        ),
    ] = None

    vm_name: Annotated[
        str,
        Field(
            title="Name of the cluster VM",
            description="Used to run the image scanner inside the VM",
        ),
    ] = VM_NAME


class EnvFirstSettings(BaseSettings):
    """Base class for Pydantic settings with environment overrides.

    Classes that inherit from this base class will prioritize environment
    variables over arguments to the class constructor.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX, extra="forbid", validate_by_name=True
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Override the sources of settings.

        Deactivate :file:`.env` and secret file support. Allow environment
        variables to override init parameters, since init parameters come
        from the YAML configuration file and environment variables should
        take precedence.
        """
        return (env_settings, init_settings)


class Config(EnvFirstSettings):
    """Configuration for the image backend."""

    engine: Annotated[
        ContainerEngine,
        Field(
            title="Container engine",
            validation_alias=AliasChoices(ENV_PREFIX + "ENGINE", "engine"),
        ),
    ] = ContainerEngine.CONTAINERD

    namespace: Annotated[
        str,
        Field(
            title="Image namespace",
            description="Active containerd image namespace",
            validation_alias=AliasChoices(
                ENV_PREFIX + "NAMESPACE", "namespace"
            ),
        ),
    ] = DEFAULT_NAMESPACE

    bin_dir: Annotated[
        Path | None,
        Field(
            title="Directory of engine executables",
            description=(
                "Directory holding docker, nerdctl, and kim. If not set,"
                " executables are found on the search path."
            ),
            validation_alias=AliasChoices(ENV_PREFIX + "BIN_DIR", "binDir"),
        ),
    ] = None

    kube_context: Annotated[
        str,
        Field(
            title="Kubernetes context",
            validation_alias=AliasChoices(
                ENV_PREFIX + "KUBE_CONTEXT", "kubeContext"
            ),
        ),
    ] = KUBE_CONTEXT

    refresh_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Image list refresh interval",
            validation_alias=AliasChoices(
                ENV_PREFIX + "REFRESH_INTERVAL", "refreshInterval"
            ),
        ),
    ] = IMAGE_REFRESH_INTERVAL

    cluster: ClusterConfig = Field(
        default_factory=ClusterConfig, title="Cluster configuration"
    )

    builder: BuilderConfig = Field(
        default_factory=BuilderConfig, title="Image builder configuration"
    )

    debug: Annotated[
        bool,
        Field(
            title="Show debug output and log style",
            description=(
                "If True, then log level will be set to debug and will"
                " non-structured, human-readable output."
            ),
        ),
    ] = False

    log_profile: Annotated[
        Profile,
        Field(
            title="Logging profile",
            validation_alias=AliasChoices(
                ENV_PREFIX + "LOG_PROFILE", "logProfile"
            ),
        ),
    ] = Profile.production

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            validation_alias=AliasChoices(
                ENV_PREFIX + "LOG_LEVEL", "logLevel"
            ),
        ),
    ] = LogLevel.INFO

    add_timestamp: Annotated[
        bool,
        Field(
            title="Add timestamp to log lines",
            validation_alias=AliasChoices(
                ENV_PREFIX + "ADD_TIMESTAMP", "addTimestamp"
            ),
        ),
    ] = False

    alert_hook: Annotated[
        SecretStr | None,
        Field(
            title="Slack webhook URL used for sending alerts",
            description=(
                "An https URL, which should be considered secret."
                " If not set or set to `None`, this feature will be disabled."
            ),
            validation_alias=AliasChoices(
                ENV_PREFIX + "ALERT_HOOK", "alertHook"
            ),
        ),
    ] = None

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Construct the configuration from a YAML file.

        A missing file is not an error. The result is the default
        configuration, still subject to environment overrides.

        Parameters
        ----------
        path
            Path to the configuration file in YAML.

        Returns
        -------
        Config
            The corresponding configuration.
        """
        if path.exists():
            with path.open("r") as f:
                config = cls.model_validate(yaml.safe_load(f) or {})
        else:
            config = cls()
        config.configure_logging()
        return config

    def configure_logging(self) -> None:
        """Configure logging based on the configuration."""
        if self.debug:
            log_level = LogLevel.DEBUG
            log_profile = Profile.development
        else:
            log_level = self.log_level
            log_profile = self.log_profile

        configure_logging(
            profile=log_profile,
            log_level=log_level,
            add_timestamp=self.add_timestamp,
            name=ROOT_LOGGER,
        )

    def executable(self, name: str) -> str:
        """Resolve the path to one of the engine executables.

        Parameters
        ----------
        name
            Name of the executable.

        Returns
        -------
        str
            Full path if ``bin_dir`` is set, otherwise the bare name to be
            found on the search path.
        """
        if self.bin_dir:
            return str(self.bin_dir / name)
        return name
