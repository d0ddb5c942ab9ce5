"""Custom exceptions for the Restful Resource Engine.

Exception Hierarchy:
-------------------
EngineError (base)
├── ConfigError                     # Invalid declarative configuration
│   ├── UnresolvedReferenceError    # $(...) reference that cannot be resolved
│   ├── DisjointViolationError      # body and ephemeral_body share a path
│   └── LocatorError                # Malformed locator expression
├── ShapingError                    # JSON decode/shape/patch failure at a path
│   └── FilterConflictError         # Two filtered sources disagree on a leaf
├── HTTPStatusError                 # Non-success HTTP response
│   └── RetryExhaustedError         # Retry budget consumed
├── AuthenticationError             # Token acquisition or refresh failed
├── GoneError                       # Remote object no longer exists
├── ResourceExistsError             # Object to create is already there
├── PollFailedError                 # Poll reached a failure status
└── CanceledError                   # Host cancellation signal fired

Usage Guidelines:
----------------
1. Only GoneError is recovered by callers of Read: the host decides whether
   to forget the resource or fail.

2. Everything else aborts the running phase and is surfaced verbatim. The
   engine never checkpoints mid-phase, so a failed Create may leave the
   remote side dirty; a subsequent Read detects presence or absence.

3. Let httpx transport errors reach the retry policy. They are wrapped in
   RetryExhaustedError once the budget is spent.

4. Include context in exceptions:
   - The failing JSON path for shaping errors
   - Status code and response body for HTTP errors
   - Observed status for poll failures
"""

from typing import Any


class EngineError(Exception):
    """Base exception for all engine errors."""

    pass


class ConfigError(EngineError):
    """Raised when the declarative configuration is invalid."""

    pass


class UnresolvedReferenceError(ConfigError):
    """Raised when a $(...) reference cannot be resolved."""

    def __init__(self, reference: str, reason: str | None = None) -> None:
        """
        Initialize UnresolvedReferenceError.

        Args:
            reference: The full matched reference, e.g. "$(body.id)".
            reason: Optional detail on why resolution failed.
        """
        message = f"unresolved reference {reference}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.reference = reference
        self.reason = reason


class DisjointViolationError(ConfigError):
    """Raised when body and ephemeral_body overlap."""

    def __init__(self, message: str = "`body` and `ephemeral_body` are not disjointed") -> None:
        super().__init__(message)


class LocatorError(ConfigError):
    """Raised when a locator expression is malformed or cannot be resolved."""

    pass


class ShapingError(EngineError):
    """Raised when a JSON document cannot be shaped as requested."""

    def __init__(self, message: str, path: str | None = None) -> None:
        """
        Initialize ShapingError.

        Args:
            message: Error message.
            path: The JSON/attribute path at which shaping failed.
        """
        super().__init__(f"{path}: {message}" if path else message)
        self.path = path


class FilterConflictError(ShapingError):
    """Raised when filtered sub-documents disagree on a shared leaf."""

    pass


class HTTPStatusError(EngineError):
    """Raised for a non-success HTTP response."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: bytes | str | None = None,
    ) -> None:
        """
        Initialize HTTPStatusError.

        Args:
            message: Error message.
            status_code: HTTP status code, None for transport failures.
            body: Raw response body, if any.
        """
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def text(self) -> str:
        """Response body decoded as text."""
        if self.body is None:
            return ""
        if isinstance(self.body, bytes):
            return self.body.decode("utf-8", errors="replace")
        return self.body


class RetryExhaustedError(HTTPStatusError):
    """Raised when all retry attempts have been consumed."""

    def __init__(
        self,
        last_status: int | None,
        attempts: int,
        body: bytes | str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        """
        Initialize RetryExhaustedError.

        Args:
            last_status: Status code of the final attempt, None if it was a network error.
            attempts: Number of attempts made.
            body: Body of the final response.
            original_error: Network error raised by the final attempt.
        """
        if last_status is None:
            message = f"request failed after {attempts} attempt(s): {original_error}"
        else:
            message = f"request returned {last_status} after {attempts} attempt(s)"
        super().__init__(message, status_code=last_status, body=body)
        self.last_status = last_status
        self.attempts = attempts
        self.original_error = original_error


class AuthenticationError(EngineError):
    """Raised when credentials cannot be obtained or refreshed."""

    pass


class GoneError(EngineError):
    """Raised when the remote object does not exist anymore."""

    def __init__(self, resource_id: str, reason: str = "not found") -> None:
        """
        Initialize GoneError.

        Args:
            resource_id: Identifier of the missing resource.
            reason: Why the resource is considered gone.
        """
        super().__init__(f"{resource_id}: {reason}")
        self.resource_id = resource_id
        self.reason = reason


class ResourceExistsError(EngineError):
    """Raised when an existence check before create finds the object."""

    def __init__(self, resource_id: str, status_code: int) -> None:
        super().__init__(
            f"a resource with the ID {resource_id!r} already exists (read returned {status_code}); "
            "import it to manage it"
        )
        self.resource_id = resource_id
        self.status_code = status_code


class PollFailedError(EngineError):
    """Raised when polling reaches a failure status."""

    def __init__(
        self,
        message: str,
        observed_status: str | None = None,
        body: Any = None,
    ) -> None:
        """
        Initialize PollFailedError.

        Args:
            message: Error message.
            observed_status: The status value read by the status locator.
            body: Body of the response that carried the status.
        """
        super().__init__(message)
        self.observed_status = observed_status
        self.body = body


class CanceledError(EngineError):
    """Raised when the host cancellation signal fires during a phase."""

    def __init__(self, message: str = "operation canceled") -> None:
        super().__init__(message)
