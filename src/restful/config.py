"""Configuration management for the Restful Resource Engine."""

import os
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .constants import (
    DEFAULT_CREATE_METHOD,
    DEFAULT_DELETE_METHOD,
    DEFAULT_MAX_CONNECTIONS,
    DEFAULT_MAX_KEEPALIVE,
    DEFAULT_RETRY_COUNT,
    DEFAULT_RETRY_MAX_WAIT_SEC,
    DEFAULT_RETRY_WAIT_SEC,
    DEFAULT_TIMEOUT_SEC,
    DEFAULT_UPDATE_METHOD,
)


class SecurityType(str, Enum):
    """Supported authentication schemes."""

    NONE = "none"
    HTTP_BASIC = "http_basic"
    HTTP_TOKEN = "http_token"
    API_KEY = "apikey"
    OAUTH2_CLIENT_CREDENTIALS = "oauth2_client_credentials"
    OAUTH2_PASSWORD = "oauth2_password"
    OAUTH2_REFRESH_TOKEN = "oauth2_refresh_token"


@dataclass
class ClientConfig:
    """HTTP connection configuration."""

    base_url: str
    timeout: float = DEFAULT_TIMEOUT_SEC
    verify_ssl: bool = True
    ca_certs: list[str] = field(default_factory=list)  # PEM file paths or PEM text
    client_cert: str | None = None
    client_key: str | None = None
    cookie_enabled: bool = False
    max_connections: int = DEFAULT_MAX_CONNECTIONS
    max_keepalive: int = DEFAULT_MAX_KEEPALIVE


@dataclass
class SecurityConfig:
    """
    Authentication configuration.

    Only the fields relevant to ``type`` are read.
    """

    type: SecurityType = SecurityType.NONE
    username: str | None = None
    password: str | None = None
    token: str | None = None
    scheme: str = "Bearer"
    api_keys: list[dict[str, str]] = field(default_factory=list)  # {name, value, in}
    token_url: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    refresh_token: str | None = None
    scopes: list[str] = field(default_factory=list)
    endpoint_params: dict[str, str] = field(default_factory=dict)
    credentials_in_header: bool = False


@dataclass
class RetryConfig:
    """Provider-wide retry policy. Disabled unless ``enabled`` is set."""

    enabled: bool = False
    status_codes: list[int] = field(default_factory=list)
    count: int = DEFAULT_RETRY_COUNT
    wait_sec: float = DEFAULT_RETRY_WAIT_SEC
    max_wait_sec: float = DEFAULT_RETRY_MAX_WAIT_SEC


@dataclass
class ResourceDefaults:
    """Defaults applied to every resource that does not set them."""

    create_method: str = DEFAULT_CREATE_METHOD
    update_method: str = DEFAULT_UPDATE_METHOD
    delete_method: str = DEFAULT_DELETE_METHOD
    merge_patch_disabled: bool = False
    query: dict[str, list[str]] = field(default_factory=dict)
    header: dict[str, str] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"
    file: Path | None = None


@dataclass
class EngineConfig:
    """
    Complete configuration for the engine.

    ``client`` stays None until a base URL is configured; the provider refuses
    to start without one.
    """

    client: ClientConfig | None = None
    security: SecurityConfig = field(default_factory=SecurityConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    defaults: ResourceDefaults = field(default_factory=ResourceDefaults)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # =========================================================================
    # Loading
    # =========================================================================

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EngineConfig":
        """
        Build configuration from a parsed mapping.

        Raises:
            ValueError: If a section has unknown keys or bad values.
        """

        def section(name: str) -> dict[str, Any]:
            return dict(data.get(name) or {})

        security = section("security")
        logging_section = section("logging")
        try:
            if "type" in security:
                security["type"] = SecurityType(security["type"])
            if logging_section.get("file"):
                logging_section["file"] = Path(logging_section["file"])
            return cls(
                client=ClientConfig(**section("client")) if data.get("client") else None,
                security=SecurityConfig(**security),
                retry=RetryConfig(**section("retry")),
                defaults=ResourceDefaults(**section("defaults")),
                logging=LoggingConfig(**logging_section),
            )
        except TypeError as e:
            raise ValueError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_file(cls, config_path: Path) -> "EngineConfig":
        """
        Load configuration from a YAML file.

        Raises:
            ValueError: If the file is not valid YAML or not a mapping.
        """
        try:
            data = yaml.safe_load(Path(config_path).read_text())
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ValueError(f"{config_path}: expected dictionary, got {type(data).__name__}")
        return cls.from_dict(data)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """
        Create configuration from environment variables.

        Environment variables:
            RESTFUL_BASE_URL: API base URL
            RESTFUL_TOKEN: Bearer token (http_token auth)
            RESTFUL_USERNAME / RESTFUL_PASSWORD: HTTP basic credentials
            RESTFUL_VERIFY_SSL: Set to 'false' to disable certificate checks
            RESTFUL_TIMEOUT: Request timeout in seconds
            LOG_LEVEL: Logging level (default: INFO)
            LOG_FORMAT: console or json (default: console)

        Raises:
            ValueError: If only one of RESTFUL_USERNAME/RESTFUL_PASSWORD is set
        """
        env = os.environ
        client = None
        if env.get("RESTFUL_BASE_URL"):
            client = ClientConfig(
                base_url=env["RESTFUL_BASE_URL"],
                verify_ssl=env.get("RESTFUL_VERIFY_SSL", "true").lower() not in _FALSY,
                timeout=float(env.get("RESTFUL_TIMEOUT", DEFAULT_TIMEOUT_SEC)),
            )

        security = SecurityConfig()
        credentials = {name: env.get(name, "") for name in ("RESTFUL_USERNAME", "RESTFUL_PASSWORD")}
        if env.get("RESTFUL_TOKEN"):
            security = SecurityConfig(type=SecurityType.HTTP_TOKEN, token=env["RESTFUL_TOKEN"])
        elif any(credentials.values()):
            missing = [name for name, value in credentials.items() if not value]
            if missing:
                raise ValueError(f"HTTP basic credentials are incomplete, missing: {', '.join(missing)}")
            security = SecurityConfig(
                type=SecurityType.HTTP_BASIC,
                username=credentials["RESTFUL_USERNAME"],
                password=credentials["RESTFUL_PASSWORD"],
            )

        return cls(
            client=client,
            security=security,
            logging=LoggingConfig(
                level=env.get("LOG_LEVEL", "INFO"), format=env.get("LOG_FORMAT", "console")
            ),
        )

    # =========================================================================
    # Saving
    # =========================================================================

    def to_dict(self) -> dict[str, Any]:
        """Plain mapping accepted by from_dict; enums and paths become strings."""

        def plain(value: Any) -> Any:
            if isinstance(value, Enum):
                return value.value
            if isinstance(value, Path):
                return str(value)
            return value

        data = {key: plain(value) for key, value in asdict(self).items() if key != "logging"}
        data["security"] = {key: plain(value) for key, value in data["security"].items()}
        data["logging"] = {
            key: plain(value) for key, value in asdict(self.logging).items() if value is not None
        }
        return data

    def to_file(self, config_path: Path) -> None:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False))


_FALSY = ("false", "0", "no", "off")


def load_config(config_file: Path | None = None) -> EngineConfig:
    """
    Load configuration from ``config_file``, or from the environment when none is given.

    Raises:
        FileNotFoundError: If config_file is given but does not exist.
    """
    if config_file is None:
        return EngineConfig.from_env()
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")
    return EngineConfig.from_file(config_file)
