"""Provider - One-shot engine initialisation and phase runner factories.

The host may call ``configure`` many times while planning; only the first
call builds the client and authenticator, later calls are no-ops. The
guard is a flag checked under an asyncio.Lock, so concurrent first calls
still initialise exactly once.
"""

import asyncio
from typing import Any

import structlog

from .api.auth import (
    APIKey,
    APIKeyAuthenticator,
    APIKeyLocation,
    Authenticator,
    BasicAuthenticator,
    OAuth2ClientCredentials,
    OAuth2Password,
    OAuth2RefreshToken,
    TokenAuthenticator,
)
from .api.client import RestClient
from .api.retry import RetryPolicy
from .config import EngineConfig, RetryConfig, SecurityConfig, SecurityType
from .lifecycle.data_source import DataSourceReader
from .lifecycle.ephemeral import EphemeralResourceManager
from .lifecycle.operation import ActionRunner, OperationRunner
from .lifecycle.resource import ResourceOrchestrator
from .utils.exceptions import ConfigError

logger = structlog.get_logger(__name__)


def _require(security: SecurityConfig, *names: str) -> None:
    missing = [name for name in names if not getattr(security, name)]
    if missing:
        raise ConfigError(
            f"security type {security.type.value} requires: {', '.join(missing)}"
        )


def build_authenticator(security: SecurityConfig) -> Authenticator | None:
    """
    Build the authenticator described by ``security``.

    Raises:
        ConfigError: If a field required by the security type is missing.
    """
    if security.type == SecurityType.NONE:
        return None
    if security.type == SecurityType.HTTP_BASIC:
        _require(security, "username", "password")
        return BasicAuthenticator(security.username or "", security.password or "")
    if security.type == SecurityType.HTTP_TOKEN:
        _require(security, "token")
        return TokenAuthenticator(security.token or "", security.scheme)
    if security.type == SecurityType.API_KEY:
        _require(security, "api_keys")
        try:
            keys = [
                APIKey(
                    name=key["name"],
                    value=key["value"],
                    location=APIKeyLocation(key.get("in", APIKeyLocation.HEADER.value)),
                )
                for key in security.api_keys
            ]
        except (KeyError, ValueError) as e:
            raise ConfigError(f"invalid api key entry: {e}") from e
        return APIKeyAuthenticator(keys)

    _require(security, "token_url")
    oauth: dict[str, Any] = {
        "client_id": security.client_id or "",
        "client_secret": security.client_secret or "",
        "scopes": security.scopes,
        "endpoint_params": security.endpoint_params,
        "credentials_in_header": security.credentials_in_header,
    }
    token_url = security.token_url or ""
    if security.type == SecurityType.OAUTH2_CLIENT_CREDENTIALS:
        _require(security, "client_id")
        return OAuth2ClientCredentials(token_url, **oauth)
    if security.type == SecurityType.OAUTH2_PASSWORD:
        _require(security, "username", "password")
        return OAuth2Password(token_url, security.username or "", security.password or "", **oauth)
    if security.type == SecurityType.OAUTH2_REFRESH_TOKEN:
        _require(security, "refresh_token")
        return OAuth2RefreshToken(token_url, security.refresh_token or "", **oauth)
    raise ConfigError(f"unsupported security type {security.type!r}")


def build_retry_policy(retry: RetryConfig) -> RetryPolicy | None:
    """Translate the provider retry section; None when retry is disabled."""
    if not retry.enabled:
        return None
    return RetryPolicy(
        status_codes=frozenset(retry.status_codes),
        count=retry.count,
        wait=retry.wait_sec,
        max_wait=retry.max_wait_sec,
    )


class Provider:
    """
    Entry point of the engine for a host.

    Usage:
        provider = Provider()
        await provider.configure(config)
        state = await provider.resources().create(resource_config)
    """

    def __init__(self) -> None:
        self.config: EngineConfig | None = None
        self._client: RestClient | None = None
        self._configured = False
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> "Provider":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def configured(self) -> bool:
        return self._configured

    async def configure(self, config: EngineConfig) -> bool:
        """
        Initialise the provider once.

        Args:
            config: Engine configuration; ignored after the first successful call.

        Returns:
            bool: True if this call performed the initialisation.

        Raises:
            ConfigError: If the client section is missing or security is incomplete.
        """
        if self._configured:
            return False
        async with self._lock:
            # Double-check after acquiring the lock
            if self._configured:
                return False
            if config.client is None:
                raise ConfigError("client.base_url is required")

            self._client = RestClient(
                config.client,
                authenticator=build_authenticator(config.security),
                retry=build_retry_policy(config.retry),
            )
            self.config = config
            self._configured = True
            logger.info(
                "Provider configured",
                base_url=config.client.base_url,
                security=config.security.type.value,
                retry_enabled=config.retry.enabled,
            )
            return True

    @property
    def client(self) -> RestClient:
        if self._client is None:
            raise ConfigError("provider is not configured")
        return self._client

    def resources(self) -> ResourceOrchestrator:
        if self.config is None:
            raise ConfigError("provider is not configured")
        return ResourceOrchestrator(self.client, self.config.defaults)

    def operations(self) -> OperationRunner:
        return OperationRunner(self.client)

    def actions(self) -> ActionRunner:
        return ActionRunner(self.client)

    def data_sources(self) -> DataSourceReader:
        return DataSourceReader(self.client)

    def ephemeral_resources(self) -> EphemeralResourceManager:
        return EphemeralResourceManager(self.client)

    async def close(self) -> None:
        """Close the HTTP client; the provider stays configured."""
        if self._client is not None:
            await self._client.close()
