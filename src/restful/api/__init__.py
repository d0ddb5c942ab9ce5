"""HTTP layer: client, authentication, retry and response locators."""

from .auth import (
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
from .client import NO_CONTENT, RestClient
from .response import RequestOptions, Response
from .retry import RetryPolicy

__all__ = [
    "APIKey",
    "APIKeyAuthenticator",
    "APIKeyLocation",
    "Authenticator",
    "BasicAuthenticator",
    "OAuth2ClientCredentials",
    "OAuth2Password",
    "OAuth2RefreshToken",
    "TokenAuthenticator",
    "NO_CONTENT",
    "RestClient",
    "RequestOptions",
    "Response",
    "RetryPolicy",
]
