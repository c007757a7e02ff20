"""Configuration schema and YAML loader for rpc-monitor.

The YAML file is read with PyYAML, ``${VAR}`` references are substituted
from the environment, and the result is validated by the pydantic models
below. Loading failures surface as ConfigurationError; validation failures
name the offending field path.
"""

import os
import re
from collections.abc import Mapping
from enum import StrEnum
from pathlib import Path
from typing import Annotated, Final

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from rpc_monitor.core.methods import DEFAULT_METHOD
from rpc_monitor.types import Endpoint

# ${NAME} with NAME in upper-case letters, digits, and underscores
ENV_VAR_PATTERN: Final[re.Pattern[str]] = re.compile(r"\$\{([A-Z0-9_]+)\}")

DEFAULT_CONFIG_PATH: Final[Path] = Path("config/rpc-monitor.yaml")


class DataSource(StrEnum):
    """Where snapshots come from."""

    LOCAL = "local"
    REMOTE = "remote"


class MonitorConfig(BaseModel):
    """Configuration for the polling loop.

    Defines the poll cadence, the per-probe deadline, the initial probe
    method, and whether snapshots are produced locally or pulled from a
    remote monitor.
    """

    interval_ms: Annotated[
        int,
        Field(
            gt=0,
            description="Start-to-start poll interval in milliseconds",
        ),
    ] = 10_000
    timeout_ms: Annotated[
        int,
        Field(
            gt=0,
            description="Deadline for one probe (both hops) in milliseconds",
        ),
    ] = 5_000
    method: Annotated[
        str,
        Field(
            min_length=1,
            description="JSON-RPC method used to probe endpoints",
        ),
    ] = DEFAULT_METHOD
    data_source: Annotated[
        DataSource,
        Field(
            description="Poll endpoints locally or follow a remote monitor",
        ),
    ] = DataSource.LOCAL
    remote_url: Annotated[
        str | None,
        Field(
            description="Base URL of the remote monitor API",
        ),
    ] = None
    remote_poll_interval_ms: Annotated[
        int,
        Field(
            gt=0,
            description="Poll interval of the remote status source in milliseconds",
        ),
    ] = 5_000

    @model_validator(mode="after")
    def validate_remote_url(self) -> "MonitorConfig":
        """Require a remote URL when following a remote monitor.

        Raises:
            ValueError: If data_source is remote and remote_url is unset
        """
        if self.data_source is DataSource.REMOTE and not self.remote_url:
            msg = "remote_url is required when data_source is 'remote'"
            raise ValueError(msg)
        return self


class EndpointConfig(BaseModel):
    """One monitored RPC endpoint."""

    url: Annotated[str, Field(min_length=1, description="JSON-RPC endpoint URL")]
    name: Annotated[str, Field(description="Display name, defaults to the URL")] = ""

    @field_validator("url", mode="after")
    @classmethod
    def validate_url_scheme(cls, v: str) -> str:
        """Validate that the URL uses HTTP(S).

        Raises:
            ValueError: If the URL does not start with http:// or https://
        """
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            msg = f"Endpoint URL must start with http:// or https://, got: {v}"
            raise ValueError(msg)
        return v

    def to_endpoint(self) -> Endpoint:
        return Endpoint(url=self.url, name=self.name.strip() or self.url)


class HistoryConfig(BaseModel):
    """Configuration for history retention and persistence."""

    retention_days: Annotated[
        float,
        Field(
            gt=0,
            description="Maximum age of recorded history in days",
        ),
    ] = 30
    storage_dir: Annotated[
        Path | None,
        Field(
            description="Directory for persisted history, None keeps history in memory only",
        ),
    ] = None
    namespace: Annotated[
        str,
        Field(
            pattern=r"^[A-Za-z0-9._-]+$",
            description="Prefix of persisted blob names",
        ),
    ] = "rpc-monitor"
    persist_interval_seconds: Annotated[
        float,
        Field(
            ge=0,
            description="Minimum time between durable writes in seconds",
        ),
    ] = 30
    quota_bytes: Annotated[
        int | None,
        Field(
            gt=0,
            description="Maximum total size of persisted history in bytes",
        ),
    ] = None


class MetricsConfig(BaseModel):
    """Configuration for the gauge exporter and the time-series backend."""

    namespace: Annotated[
        str,
        Field(
            pattern=r"^[a-zA-Z_:][a-zA-Z0-9_:]*$",
            description="Prefix of exported gauge names",
        ),
    ] = "polkadot_rpc"
    prometheus_url: Annotated[
        str,
        Field(
            description="Base URL of the Prometheus server queried for history",
        ),
    ] = "http://prometheus:9090"

    @field_validator("prometheus_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class ServerConfig(BaseModel):
    """Configuration for the HTTP API."""

    enabled: Annotated[bool, Field(description="Serve the HTTP API")] = True
    host: Annotated[str, Field(description="Bind address")] = "0.0.0.0"  # noqa: S104
    port: Annotated[int, Field(ge=1, le=65535, description="Listen port")] = 3000


class ApplicationConfig(BaseModel):
    """Configuration for application-level settings."""

    log_level: Annotated[
        str,
        Field(
            description="Logging level",
            pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        ),
    ] = "INFO"
    syslog_enabled: Annotated[
        bool,
        Field(
            description="Enable syslog integration",
        ),
    ] = False


class MainConfig(BaseModel):
    """Main application configuration schema.

    Top-level configuration container aggregating all configuration sections:
    - monitor: Polling loop settings
    - endpoints: Monitored RPC endpoints
    - history: Retention and persistence
    - metrics: Gauge exporter and time-series backend
    - server: HTTP API
    - application: Application-level settings
    """

    monitor: Annotated[MonitorConfig, Field(description="Polling loop configuration")] = MonitorConfig()
    endpoints: Annotated[
        list[EndpointConfig],
        Field(
            description="Monitored RPC endpoints, in display order",
        ),
    ]
    history: Annotated[HistoryConfig, Field(description="History configuration")] = HistoryConfig()
    metrics: Annotated[MetricsConfig, Field(description="Metrics configuration")] = MetricsConfig()
    server: Annotated[ServerConfig, Field(description="HTTP API configuration")] = ServerConfig()
    application: Annotated[
        ApplicationConfig,
        Field(
            description="Application-level configuration",
        ),
    ] = ApplicationConfig()

    @field_validator("endpoints", mode="after")
    @classmethod
    def validate_unique_endpoints(cls, v: list[EndpointConfig]) -> list[EndpointConfig]:
        """Validate that at least one endpoint is configured and URLs are unique.

        Raises:
            ValueError: If the list is empty or a URL appears twice
        """
        if not v:
            msg = "At least one endpoint must be configured"
            raise ValueError(msg)

        seen: set[str] = set()
        duplicates: set[str] = set()
        for endpoint in v:
            if endpoint.url in seen:
                duplicates.add(endpoint.url)
            seen.add(endpoint.url)
        if duplicates:
            msg = f"Duplicate endpoint URL(s): {', '.join(sorted(duplicates))}"
            raise ValueError(msg)
        return v

    def to_endpoints(self) -> list[Endpoint]:
        return [endpoint.to_endpoint() for endpoint in self.endpoints]


class EnvironmentVariableError(Exception):
    """A ``${VAR}`` reference names a variable that is not set."""


def resolve_env_var(value: str) -> str:
    """Substitute every ``${VAR}`` reference in a string.

    Raises:
        EnvironmentVariableError: If a referenced variable is not set

    Examples:
        >>> os.environ["PROMETHEUS_HOST"] = "prometheus"
        >>> resolve_env_var("http://${PROMETHEUS_HOST}:9090")
        'http://prometheus:9090'
        >>> resolve_env_var("https://rpc.polkadot.io")
        'https://rpc.polkadot.io'
    """

    def substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        resolved = os.environ.get(name)
        if resolved is None:
            msg = f"Environment variable '{name}' is referenced in the configuration but not set"
            raise EnvironmentVariableError(msg)
        return resolved

    return ENV_VAR_PATTERN.sub(substitute, value)


def _resolve_node(node: object) -> object:
    if isinstance(node, str):
        return resolve_env_var(node)
    if isinstance(node, dict):
        return resolve_env_vars_in_dict(node)  # pyright: ignore[reportUnknownArgumentType]  # YAML boundary
    if isinstance(node, list):
        return [_resolve_node(item) for item in node]  # pyright: ignore[reportUnknownVariableType]  # YAML boundary
    return node


def resolve_env_vars_in_dict(data: Mapping[str, object]) -> dict[str, object]:
    """Return a copy of a YAML mapping with ``${VAR}`` references substituted.

    Nested mappings and lists are walked; only strings are rewritten.

    Raises:
        EnvironmentVariableError: If a referenced variable is not set

    Examples:
        >>> os.environ["RPC_URL"] = "https://rpc.example.org"
        >>> resolve_env_vars_in_dict({"endpoints": [{"url": "${RPC_URL}"}]})
        {'endpoints': [{'url': 'https://rpc.example.org'}]}
    """
    return {key: _resolve_node(node) for key, node in data.items()}


class ConfigurationError(Exception):
    """The configuration file is missing, unreadable, or invalid."""


def format_validation_error(error: ValidationError, config_path: Path) -> str:
    """Render pydantic errors one field per block."""
    lines = [f"Configuration validation failed for {config_path}:", ""]
    for item in error.errors():
        location = " → ".join(str(part) for part in item["loc"]) or "(root)"
        lines.extend(
            [
                f"  Field: {location}",
                f"  Error: {item['msg']}",
                f"  Type: {item['type']}",
                "",
            ]
        )
    return "\n".join(lines)


def _read_yaml(config_path: Path) -> object:
    if not config_path.exists():
        msg = (
            f"Configuration file not found: {config_path}\n"
            f"Copy config/rpc-monitor.yaml and adjust the endpoint list."
        )
        raise ConfigurationError(msg)

    try:
        with config_path.open("r") as f:
            return yaml.safe_load(f)  # pyright: ignore[reportAny]  # YAML boundary
    except yaml.YAMLError as e:
        msg = f"Failed to parse YAML in {config_path}: {e}"
        raise ConfigurationError(msg) from e
    except OSError as e:
        msg = f"Cannot read {config_path}: {e}"
        raise ConfigurationError(msg) from e


def load_main_config(config_path: Path) -> MainConfig:
    """Read, resolve, and validate the YAML configuration file.

    Raises:
        ConfigurationError: If the file is missing, unreadable, not a mapping,
            references an unset variable, or fails validation

    Examples:
        >>> config = load_main_config(Path("config/rpc-monitor.yaml"))
        >>> config.monitor.interval_ms
        10000
    """
    raw = _read_yaml(config_path)
    if not isinstance(raw, dict):
        msg = f"Expected YAML dictionary at the root of {config_path}, got: {type(raw).__name__}"
        raise ConfigurationError(msg)

    try:
        resolved = resolve_env_vars_in_dict(raw)  # pyright: ignore[reportUnknownArgumentType]  # YAML boundary
    except EnvironmentVariableError as e:
        msg = f"{config_path}: {e}"
        raise ConfigurationError(msg) from e

    try:
        return MainConfig.model_validate(resolved)
    except ValidationError as e:
        raise ConfigurationError(format_validation_error(e, config_path)) from e
