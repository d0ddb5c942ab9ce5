"""Named defaults for the Restful Resource Engine."""

# -----------------------------------------------------------------------------
# Lifecycle Methods
# -----------------------------------------------------------------------------

DEFAULT_CREATE_METHOD: str = "POST"
DEFAULT_READ_METHOD: str = "GET"
DEFAULT_UPDATE_METHOD: str = "PUT"
DEFAULT_DELETE_METHOD: str = "DELETE"
DEFAULT_OPERATION_METHOD: str = "POST"

CREATE_METHODS: frozenset[str] = frozenset({"POST", "PUT", "PATCH"})
READ_METHODS: frozenset[str] = frozenset({"GET", "POST"})
UPDATE_METHODS: frozenset[str] = frozenset({"PUT", "PATCH", "POST"})
DELETE_METHODS: frozenset[str] = frozenset({"DELETE", "POST", "PUT", "PATCH"})
OPERATION_METHODS: frozenset[str] = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})
DATA_SOURCE_METHODS: frozenset[str] = frozenset({"GET", "POST", "HEAD"})


# -----------------------------------------------------------------------------
# Content Types
# -----------------------------------------------------------------------------

CONTENT_TYPE_JSON: str = "application/json"
CONTENT_TYPE_MERGE_PATCH: str = "application/merge-patch+json"
CONTENT_TYPE_FORM: str = "application/x-www-form-urlencoded"


# -----------------------------------------------------------------------------
# Retry
# -----------------------------------------------------------------------------

DEFAULT_RETRY_COUNT: int = 3
DEFAULT_RETRY_WAIT_SEC: float = 1.0
DEFAULT_RETRY_MAX_WAIT_SEC: float = 30.0

# Total attempts for transport failures when no retry policy is configured
DEFAULT_NETWORK_RETRY_ATTEMPTS: int = 2


# -----------------------------------------------------------------------------
# Polling
# -----------------------------------------------------------------------------

DEFAULT_POLL_DELAY_SEC: float = 10.0


# -----------------------------------------------------------------------------
# HTTP Client
# -----------------------------------------------------------------------------

DEFAULT_TIMEOUT_SEC: float = 30.0
DEFAULT_MAX_CONNECTIONS: int = 50
DEFAULT_MAX_KEEPALIVE: int = 20

# Seconds subtracted from an OAuth2 token lifetime before it is considered expired
TOKEN_EXPIRY_LEEWAY_SEC: float = 10.0


# -----------------------------------------------------------------------------
# Ephemeral Resources
# -----------------------------------------------------------------------------

EXPIRY_TYPE_TIME: str = "time"
EXPIRY_TYPE_DURATION: str = "duration"
EXPIRY_TYPE_DURATION_IN_SECONDS: str = "duration_in_seconds"
