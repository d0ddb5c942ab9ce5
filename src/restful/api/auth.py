"""Request authenticators.

Every authenticator decorates an outgoing ``httpx.Request`` just before it
is sent:

- BasicAuthenticator        Authorization: Basic <user:pass>
- TokenAuthenticator        Authorization: <scheme> <token>
- APIKeyAuthenticator       named keys in header, query or cookie
- OAuth2ClientCredentials   client_credentials grant
- OAuth2Password            password grant
- OAuth2RefreshToken        refresh_token grant

OAuth2 authenticators obtain their token lazily on the first request and
refresh it once it expires. Concurrent requests share one refresh: the
first task takes the lock and fetches, the others wait and reuse the
result (double-check pattern). A failed fetch raises AuthenticationError.
"""

import asyncio
import base64
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..constants import TOKEN_EXPIRY_LEEWAY_SEC
from ..utils.exceptions import AuthenticationError

logger = structlog.get_logger(__name__)


class Authenticator:
    """Base class: decorates requests, optionally refreshes credentials."""

    #: Whether a 401 should trigger one refresh-and-resend
    refreshable: bool = False

    async def apply(self, request: httpx.Request, http: httpx.AsyncClient) -> None:
        raise NotImplementedError

    async def refresh(self, http: httpx.AsyncClient) -> None:
        """Force new credentials. No-op for static credentials."""
        return None


class BasicAuthenticator(Authenticator):
    def __init__(self, username: str, password: str) -> None:
        self.username = username
        self.password = password

    async def apply(self, request: httpx.Request, http: httpx.AsyncClient) -> None:
        raw = f"{self.username}:{self.password}".encode()
        request.headers["Authorization"] = f"Basic {base64.b64encode(raw).decode()}"


class TokenAuthenticator(Authenticator):
    def __init__(self, token: str, scheme: str = "Bearer") -> None:
        self.token = token
        self.scheme = scheme or "Bearer"

    async def apply(self, request: httpx.Request, http: httpx.AsyncClient) -> None:
        request.headers["Authorization"] = f"{self.scheme} {self.token}"


class APIKeyLocation(str, Enum):
    """Where an API key is placed on the request."""

    HEADER = "header"
    QUERY = "query"
    COOKIE = "cookie"


@dataclass(frozen=True)
class APIKey:
    name: str
    value: str
    location: APIKeyLocation = APIKeyLocation.HEADER


class APIKeyAuthenticator(Authenticator):
    def __init__(self, keys: list[APIKey]) -> None:
        self.keys = keys

    async def apply(self, request: httpx.Request, http: httpx.AsyncClient) -> None:
        for key in self.keys:
            if key.location == APIKeyLocation.HEADER:
                request.headers[key.name] = key.value
            elif key.location == APIKeyLocation.QUERY:
                request.url = request.url.copy_merge_params({key.name: key.value})
            else:
                cookie = f"{key.name}={key.value}"
                existing = request.headers.get("Cookie")
                request.headers["Cookie"] = f"{existing}; {cookie}" if existing else cookie


@dataclass
class OAuth2Token:
    access_token: str
    token_type: str = "Bearer"
    refresh_token: str | None = None
    expires_at: float | None = None

    def valid(self) -> bool:
        return self.expires_at is None or time.monotonic() < self.expires_at


class OAuth2Authenticator(Authenticator):
    """
    Shared OAuth2 token handling.

    Subclasses provide the grant-specific form fields.

    Args:
        token_url: Token endpoint.
        client_id: OAuth2 client id.
        client_secret: OAuth2 client secret, optional for public clients.
        scopes: Requested scopes.
        endpoint_params: Extra form fields sent to the token endpoint.
        credentials_in_header: Send client credentials as HTTP basic auth
            instead of form fields.
    """

    refreshable = True
    grant_type = ""

    def __init__(
        self,
        token_url: str,
        client_id: str = "",
        client_secret: str = "",
        scopes: list[str] | None = None,
        endpoint_params: dict[str, str] | None = None,
        credentials_in_header: bool = False,
    ) -> None:
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = scopes or []
        self.endpoint_params = endpoint_params or {}
        self.credentials_in_header = credentials_in_header
        self._token: OAuth2Token | None = None
        self._lock = asyncio.Lock()

    def grant_fields(self) -> dict[str, str]:
        raise NotImplementedError

    async def apply(self, request: httpx.Request, http: httpx.AsyncClient) -> None:
        token = await self.token(http)
        request.headers["Authorization"] = f"{token.token_type} {token.access_token}"

    async def token(self, http: httpx.AsyncClient, force: bool = False) -> OAuth2Token:
        """
        Return a valid token, fetching one if needed.

        Args:
            http: Client used to call the token endpoint.
            force: Fetch even if the cached token looks valid.

        Raises:
            AuthenticationError: If the token endpoint rejects the request.
        """
        stale = self._token
        async with self._lock:
            # Double-check: another task may have refreshed while we waited
            current = self._token
            if current is not None and current.valid() and not (force and current is stale):
                return current
            try:
                self._token = await self._fetch(http)
            except httpx.HTTPError as e:
                logger.error("OAuth2 token request failed", url=self.token_url, error=str(e))
                raise AuthenticationError(f"token request failed: {e}") from e
            return self._token

    async def refresh(self, http: httpx.AsyncClient) -> None:
        await self.token(http, force=True)

    @retry(
        retry=retry_if_exception_type((httpx.NetworkError, httpx.TimeoutException)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _fetch(self, http: httpx.AsyncClient) -> OAuth2Token:
        form = dict(self.endpoint_params)
        form["grant_type"] = self.grant_type
        form.update(self.grant_fields())
        if self.scopes:
            form["scope"] = " ".join(self.scopes)

        auth = None
        if self.credentials_in_header:
            auth = httpx.BasicAuth(self.client_id, self.client_secret)
        else:
            if self.client_id:
                form["client_id"] = self.client_id
            if self.client_secret:
                form["client_secret"] = self.client_secret

        logger.info("Requesting OAuth2 token", url=self.token_url, grant_type=self.grant_type)
        response = await http.post(
            self.token_url,
            data=form,
            auth=auth,
            headers={"Accept": "application/json"},
        )

        if response.status_code != 200:
            logger.error("OAuth2 token request rejected", status=response.status_code)
            raise AuthenticationError(
                f"token endpoint returned {response.status_code}: {response.text}"
            )

        try:
            data: dict[str, Any] = response.json()
        except ValueError as e:
            raise AuthenticationError(f"token endpoint returned invalid JSON: {e}") from e
        if not isinstance(data, dict) or not data.get("access_token"):
            raise AuthenticationError("token endpoint response has no access_token")

        expires_at = None
        if data.get("expires_in"):
            expires_at = time.monotonic() + float(data["expires_in"]) - TOKEN_EXPIRY_LEEWAY_SEC

        token_type = str(data.get("token_type") or "Bearer")
        if token_type.lower() == "bearer":
            token_type = "Bearer"
        token = OAuth2Token(
            access_token=data["access_token"],
            token_type=token_type,
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at,
        )
        logger.info("OAuth2 token acquired", expires_in=data.get("expires_in"))
        return token


class OAuth2ClientCredentials(OAuth2Authenticator):
    grant_type = "client_credentials"

    def grant_fields(self) -> dict[str, str]:
        return {}


class OAuth2Password(OAuth2Authenticator):
    grant_type = "password"

    def __init__(self, token_url: str, username: str, password: str, **kwargs: Any) -> None:
        super().__init__(token_url, **kwargs)
        self.username = username
        self.password = password

    def grant_fields(self) -> dict[str, str]:
        return {"username": self.username, "password": self.password}


class OAuth2RefreshToken(OAuth2Authenticator):
    grant_type = "refresh_token"

    def __init__(self, token_url: str, refresh_token: str, **kwargs: Any) -> None:
        super().__init__(token_url, **kwargs)
        self.refresh_token = refresh_token

    def grant_fields(self) -> dict[str, str]:
        # Servers may rotate the refresh token with every grant
        if self._token is not None and self._token.refresh_token:
            return {"refresh_token": self._token.refresh_token}
        return {"refresh_token": self.refresh_token}
