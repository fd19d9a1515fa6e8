"""Runtime configuration models for the proxy reconfigurer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from proxy_reconfigurer.utils.diagnostics import CredentialMissingError


class PlatformFlavor(str, Enum):
    """Which hosted orchestration platform we talk to."""

    DOCKERCLOUD = "dockercloud"
    TUTUM = "tutum"


class TopologyMode(str, Enum):
    """Restricts which containers are considered reachable from this proxy."""

    NONE = "none"
    NODE = "node"
    REGION = "region"


@dataclass(frozen=True, slots=True)
class PlatformProfile:
    """Endpoints and conventions that differ between platform flavours."""

    api_url: str
    stream_url: str
    # Tutum's stream only accepts the credential as a query parameter.
    stream_auth_in_query: bool
    node_env_key: str


PLATFORM_PROFILES: dict[PlatformFlavor, PlatformProfile] = {
    PlatformFlavor.DOCKERCLOUD: PlatformProfile(
        api_url="https://cloud.docker.com/api/app/v1",
        stream_url="wss://ws.cloud.docker.com/api/audit/v1/events",
        stream_auth_in_query=False,
        node_env_key="DOCKERCLOUD_NODE_FQDN",
    ),
    PlatformFlavor.TUTUM: PlatformProfile(
        api_url="https://dashboard.tutum.co/api/v1",
        stream_url="wss://stream.tutum.co/v1/events",
        stream_auth_in_query=True,
        node_env_key="TUTUM_NODE_FQDN",
    ),
}


class PlatformSettings(BaseSettings):
    """How to reach the orchestration platform and where this proxy runs inside it."""

    flavor: PlatformFlavor = Field(
        default=PlatformFlavor.DOCKERCLOUD,
        description="Platform flavour; selects default endpoints and environment key names.",
    )
    auth: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("PROXY_PLATFORM_AUTH", "DOCKERCLOUD_AUTH", "TUTUM_AUTH"),
        description="Credential sent in the Authorization header. Without it the process refuses to start.",
    )
    node_fqdn: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PROXY_PLATFORM_NODE_FQDN", "DOCKERCLOUD_NODE_FQDN", "TUTUM_NODE_FQDN"),
        description="FQDN of the node this proxy runs on. Required for node and region topology modes.",
    )
    topology_mode: TopologyMode = Field(
        default=TopologyMode.NONE,
        validation_alias=AliasChoices("PROXY_PLATFORM_TOPOLOGY_MODE", "RESTRICT_MODE"),
        description="Container reachability policy: none, node (same node only) or region (same region only).",
    )
    api_url: str | None = Field(default=None, description="Override for the REST API base URL.")
    stream_url: str | None = Field(default=None, description="Override for the event stream websocket URL.")
    http_timeout_seconds: float = Field(
        default=10.0,
        ge=1.0,
        le=120.0,
        description="Transport timeout for REST calls so a hung API cannot stall the event loop forever.",
    )
    ping_interval_seconds: float = Field(
        default=240.0,
        ge=5.0,
        description="Websocket keepalive interval. A missing pong within this window closes the connection.",
    )

    model_config = SettingsConfigDict(env_prefix="PROXY_PLATFORM_", populate_by_name=True)

    @property
    def profile(self) -> PlatformProfile:
        return PLATFORM_PROFILES[self.flavor]

    @property
    def resolved_api_url(self) -> str:
        return (self.api_url or self.profile.api_url).rstrip("/")

    @property
    def resolved_stream_url(self) -> str:
        return self.stream_url or self.profile.stream_url

    def require_auth(self) -> str:
        """Return the credential or raise :class:`CredentialMissingError`."""

        if self.auth is None or not self.auth.get_secret_value().strip():
            raise CredentialMissingError()
        return self.auth.get_secret_value()


class ProxySettings(BaseSettings):
    """Where the rendered configuration lives and how the proxy is told to reload it."""

    config_path: Path = Field(
        default=Path("/etc/nginx/conf.d/default.conf"),
        validation_alias=AliasChoices("PROXY_NGINX_CONFIG_PATH", "NGINX_DEFAULT_CONF"),
        description="Destination of the rendered configuration. Also watched for external edits.",
    )
    fallback_config_path: Path | None = Field(
        default=None,
        validation_alias=AliasChoices("PROXY_NGINX_FALLBACK_CONFIG_PATH", "NGINX_FALLBACK_CONF"),
        description="Configuration copied into place when the first rebuild fails and nothing exists yet.",
    )
    template_path: Path | None = Field(
        default=None,
        description="Custom Jinja2 template. Defaults to the bundled nginx.conf.j2.",
    )
    reload_command: str = Field(
        default="nginx -s reload",
        description="Command that asks the proxy to reload its configuration.",
    )

    model_config = SettingsConfigDict(env_prefix="PROXY_NGINX_", populate_by_name=True)


class ReconfigureSettings(BaseSettings):
    """Timing knobs for the debounce, retry and reconnect behaviour."""

    quiet_period_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Idle time after the last settle event before the configuration is rebuilt.",
    )
    file_change_quiet_seconds: float = Field(
        default=3.0,
        ge=0.0,
        description="Idle time after an edit of the configuration file before the proxy is reloaded.",
    )
    retry_delay_seconds: float = Field(
        default=10.0,
        ge=0.0,
        description="Delay before retrying a rebuild that failed because the platform API was unavailable.",
    )
    retry_alert_threshold: int = Field(
        default=3,
        ge=0,
        le=100,
        description="Failed retries in a row before further failures are logged as errors. Retrying never stops.",
    )
    reconnect_initial_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="First backoff step after a failed stream connection attempt.",
    )
    reconnect_max_delay_seconds: float = Field(
        default=60.0,
        ge=1.0,
        description="Ceiling for the exponential reconnect backoff.",
    )
    reconnect_stable_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="A stream session that delivers no frame must stay open this long before the backoff resets.",
    )

    model_config = SettingsConfigDict(env_prefix="PROXY_RECONFIGURE_")


class Settings(BaseSettings):
    """Top-level settings container that aggregates subsystem configuration."""

    platform: PlatformSettings = Field(default_factory=PlatformSettings)
    proxy: ProxySettings = Field(default_factory=ProxySettings)
    reconfigure: ReconfigureSettings = Field(default_factory=ReconfigureSettings)
    log_level: str = Field(default="INFO", description="Root log level.")

    model_config = SettingsConfigDict(env_prefix="PROXY_", env_nested_delimiter="__")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached settings instance.

    Tests that tweak the environment must call ``get_settings.cache_clear()`` afterwards.
    """

    return Settings()


__all__ = [
    "Settings",
    "get_settings",
    "PlatformSettings",
    "ProxySettings",
    "ReconfigureSettings",
    "PlatformFlavor",
    "PlatformProfile",
    "PLATFORM_PROFILES",
    "TopologyMode",
]
