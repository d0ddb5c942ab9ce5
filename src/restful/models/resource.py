"""Declarative configuration models with Pydantic v2 validation."""

from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from ..api import locator as locators
from ..api.retry import RetryPolicy
from ..config import ResourceDefaults
from ..constants import (
    CREATE_METHODS,
    DATA_SOURCE_METHODS,
    DEFAULT_OPERATION_METHOD,
    DEFAULT_POLL_DELAY_SEC,
    DEFAULT_READ_METHOD,
    DEFAULT_RETRY_COUNT,
    DEFAULT_RETRY_MAX_WAIT_SEC,
    DEFAULT_RETRY_WAIT_SEC,
    DELETE_METHODS,
    EXPIRY_TYPE_DURATION,
    EXPIRY_TYPE_DURATION_IN_SECONDS,
    EXPIRY_TYPE_TIME,
    OPERATION_METHODS,
    READ_METHODS,
    UPDATE_METHODS,
)
from ..utils.exceptions import ConfigError, LocatorError


def normalize_query(v: Any) -> Any:
    """
    Accept ``{"k": "v"}`` as shorthand for ``{"k": ["v"]}``.

    Args:
        v: The raw query mapping.

    Returns:
        Any: The mapping with every value turned into a list of strings.
    """
    if not isinstance(v, dict):
        return v
    out = {}
    for key, value in v.items():
        if isinstance(value, (list, tuple)):
            out[key] = [str(item) for item in value]
        else:
            out[key] = [str(value)]
    return out


def upper_method(v: Any) -> Any:
    return v.upper() if isinstance(v, str) else v


Query = Annotated[dict[str, list[str]], BeforeValidator(normalize_query)]
OptionalQuery = Annotated[dict[str, list[str]] | None, BeforeValidator(normalize_query)]
Method = Annotated[str, BeforeValidator(upper_method)]
OptionalMethod = Annotated[str | None, BeforeValidator(upper_method)]


def _check_locator(value: str | None) -> str | None:
    if value is None:
        return value
    try:
        locators.parse(value)
    except LocatorError as e:
        raise ValueError(str(e)) from e
    return value


def _check_method(value: str | None, allowed: frozenset[str], what: str) -> None:
    if value is not None and value not in allowed:
        raise ValueError(f"{what} must be one of {sorted(allowed)}, got {value!r}")


class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid")

    @classmethod
    def parse(cls, data: Any) -> Any:
        """
        Validate raw data, raising ConfigError on failure.

        Args:
            data: Decoded YAML/JSON mapping.

        Returns:
            The validated model.
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"invalid {cls.__name__}: {e}") from e


# =============================================================================
# Poll / Precheck / Retry
# =============================================================================


class PollStatus(_Model):
    """
    Status alphabet of a poll.

    ``failure`` of None means any status that is neither success nor pending
    fails the poll.
    """

    success: str
    pending: list[str] = Field(default_factory=list)
    failure: list[str] | None = None


class PollSpec(_Model):
    """Polling settings for an asynchronous phase."""

    status_locator: str
    status: PollStatus
    url_locator: str | None = None
    header: dict[str, str] | None = None
    query: OptionalQuery = None
    default_delay_sec: float = DEFAULT_POLL_DELAY_SEC

    @field_validator("status_locator", "url_locator")
    @classmethod
    def validate_locator(cls, v: str | None) -> str | None:
        return _check_locator(v)


class PrecheckApi(_Model):
    """Precheck that polls an endpoint until it reports success."""

    tag: Literal["api"] = "api"
    path: str | None = None
    status_locator: str
    status: PollStatus
    header: dict[str, str] | None = None
    query: OptionalQuery = None
    default_delay_sec: float = DEFAULT_POLL_DELAY_SEC

    @field_validator("status_locator")
    @classmethod
    def validate_locator(cls, v: str) -> str:
        return _check_locator(v)  # type: ignore[return-value]


class PrecheckMutex(_Model):
    """Precheck that holds a process-wide named lock for the phase."""

    tag: Literal["mutex"] = "mutex"
    name: str = Field(min_length=1)


PrecheckItem = Annotated[PrecheckApi | PrecheckMutex, Field(discriminator="tag")]


class RetrySpec(_Model):
    """Retry override for the requests of one resource."""

    status_codes: list[int] = Field(default_factory=list)
    count: int = Field(default=DEFAULT_RETRY_COUNT, ge=1)
    wait_sec: float = Field(default=DEFAULT_RETRY_WAIT_SEC, ge=0)
    max_wait_sec: float = Field(default=DEFAULT_RETRY_MAX_WAIT_SEC, ge=0)

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            status_codes=frozenset(self.status_codes),
            count=self.count,
            wait=self.wait_sec,
            max_wait=self.max_wait_sec,
        )


# =============================================================================
# Resource
# =============================================================================


class BodyPatch(_Model):
    """A patch applied to the update request body."""

    path: str
    raw_json: str | None = None
    removed: bool = False

    @model_validator(mode="after")
    def exactly_one_action(self) -> "BodyPatch":
        if self.removed == (self.raw_json is not None):
            raise ValueError("exactly one of `raw_json` and `removed` must be set")
        return self


class PostCreateRead(_Model):
    """A read issued right after create to obtain the canonical output."""

    path: str
    method: Method = DEFAULT_READ_METHOD
    body: Any = None
    query: OptionalQuery = None
    header: dict[str, str] | None = None
    selector: str | None = None

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        _check_method(v, READ_METHODS, "post_create_read.method")
        return v


class ResourceConfig(_Model):
    """Declarative configuration of one managed resource."""

    path: str = Field(min_length=1)
    read_path: str | None = None
    update_path: str | None = None
    delete_path: str | None = None
    id_builder: str | None = None
    name_path: str | None = None

    create_method: OptionalMethod = None
    read_method: Method = DEFAULT_READ_METHOD
    update_method: OptionalMethod = None
    delete_method: OptionalMethod = None

    body: Any = None
    ephemeral_body: Any = None

    query: Query = Field(default_factory=dict)
    header: dict[str, str] = Field(default_factory=dict)
    create_query: OptionalQuery = None
    create_header: dict[str, str] | None = None
    read_query: OptionalQuery = None
    read_header: dict[str, str] | None = None
    update_query: OptionalQuery = None
    update_header: dict[str, str] | None = None
    delete_query: OptionalQuery = None
    delete_header: dict[str, str] | None = None

    write_only_attrs: list[str] = Field(default_factory=list)
    output_attrs: list[str] = Field(default_factory=list)
    force_new_attrs: list[str] = Field(default_factory=list)
    merge_patch_disabled: bool | None = None
    use_sensitive_output: bool = False

    poll_create: PollSpec | None = None
    poll_update: PollSpec | None = None
    poll_delete: PollSpec | None = None

    precheck_create: list[PrecheckItem] = Field(default_factory=list)
    precheck_update: list[PrecheckItem] = Field(default_factory=list)
    precheck_delete: list[PrecheckItem] = Field(default_factory=list)

    retry: RetrySpec | None = None

    check_existence: bool = False
    create_selector: str | None = None
    read_selector: str | None = None
    read_response_template: str | None = None
    post_create_read: PostCreateRead | None = None
    update_body_patches: list[BodyPatch] = Field(default_factory=list)
    delete_body: Any = None
    delete_body_raw: str | None = None

    @model_validator(mode="after")
    def validate_combinations(self) -> "ResourceConfig":
        _check_method(self.create_method, CREATE_METHODS, "create_method")
        _check_method(self.read_method, READ_METHODS, "read_method")
        _check_method(self.update_method, UPDATE_METHODS, "update_method")
        _check_method(self.delete_method, DELETE_METHODS, "delete_method")
        if self.delete_body is not None and self.delete_body_raw is not None:
            raise ValueError("`delete_body` and `delete_body_raw` are mutually exclusive")
        if self.body is not None and not isinstance(self.body, dict):
            raise ValueError("`body` must be a JSON object")
        if self.ephemeral_body is not None and not isinstance(self.ephemeral_body, dict):
            raise ValueError("`ephemeral_body` must be a JSON object")
        return self

    def with_defaults(self, defaults: ResourceDefaults) -> "ResourceConfig":
        """
        Fill unset methods, merge-patch mode, query and header from provider defaults.

        Args:
            defaults: Provider-wide defaults.

        Returns:
            ResourceConfig: A new config; explicit values always win.
        """
        update: dict[str, Any] = {}
        if self.create_method is None:
            update["create_method"] = defaults.create_method.upper()
        if self.update_method is None:
            update["update_method"] = defaults.update_method.upper()
        if self.delete_method is None:
            update["delete_method"] = defaults.delete_method.upper()
        if self.merge_patch_disabled is None:
            update["merge_patch_disabled"] = defaults.merge_patch_disabled
        if defaults.query:
            update["query"] = {**normalize_query(defaults.query), **self.query}
        if defaults.header:
            update["header"] = {**defaults.header, **self.header}
        return self.model_copy(update=update)


class ImportSpec(BaseModel):
    """
    Descriptor identifying an existing remote object to adopt.

    Any extra key naming a ResourceConfig field overrides that field.
    """

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    path: str | None = None
    query: OptionalQuery = None
    header: dict[str, str] | None = None
    body: Any = None
    read_selector: str | None = None
    read_response_template: str | None = None

    @classmethod
    def parse(cls, data: Any) -> "ImportSpec":
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"invalid import spec: {e}") from e

    def to_config(self, base: ResourceConfig | None = None) -> ResourceConfig:
        """
        Build the resource config used for the import read.

        Args:
            base: Optional config to overlay; fields named in the spec win.

        Raises:
            ConfigError: If an override names an unknown field or fails validation.
        """
        data: dict[str, Any] = base.model_dump() if base else {}
        data["path"] = self.path or (base.path if base else self.id)
        if self.query is not None:
            data["query"] = self.query
        if self.header is not None:
            data["header"] = self.header
        if self.body is not None:
            data["body"] = self.body
        for key in ("read_selector", "read_response_template"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        for key, value in (self.model_extra or {}).items():
            if key not in ResourceConfig.model_fields:
                raise ConfigError(f"unknown import override {key!r}")
            data[key] = value
        return ResourceConfig.parse(data)


# =============================================================================
# One-shot resources
# =============================================================================


class OperationDelete(_Model):
    """Mirror call issued when an operation is destroyed."""

    path: str | None = None
    method: Method = "DELETE"
    body: Any = None
    query: OptionalQuery = None
    header: dict[str, str] | None = None
    poll: PollSpec | None = None
    precheck: list[PrecheckItem] = Field(default_factory=list)

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        _check_method(v, OPERATION_METHODS, "delete.method")
        return v


class OperationConfig(_Model):
    """A one-shot call whose response becomes the resource output."""

    path: str = Field(min_length=1)
    method: Method = DEFAULT_OPERATION_METHOD
    body: Any = None
    ephemeral_body: Any = None
    query: Query = Field(default_factory=dict)
    header: dict[str, str] = Field(default_factory=dict)
    id_builder: str | None = None
    poll: PollSpec | None = None
    precheck: list[PrecheckItem] = Field(default_factory=list)
    retry: RetrySpec | None = None
    output_attrs: list[str] = Field(default_factory=list)
    use_sensitive_output: bool = False
    delete: OperationDelete | None = None

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        _check_method(v, OPERATION_METHODS, "method")
        return v


class ActionConfig(_Model):
    """A fire-and-forget call that only reports progress."""

    path: str = Field(min_length=1)
    method: Method = DEFAULT_OPERATION_METHOD
    body: Any = None
    query: Query = Field(default_factory=dict)
    header: dict[str, str] = Field(default_factory=dict)
    poll: PollSpec | None = None
    precheck: list[PrecheckItem] = Field(default_factory=list)
    retry: RetrySpec | None = None
    progress_message: str | None = None

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        _check_method(v, OPERATION_METHODS, "method")
        return v


class DataSourceConfig(_Model):
    """A read-only lookup."""

    id: str = Field(min_length=1)
    method: Method = DEFAULT_READ_METHOD
    body: Any = None
    query: Query = Field(default_factory=dict)
    header: dict[str, str] = Field(default_factory=dict)
    selector: str | None = None
    output_attrs: list[str] = Field(default_factory=list)
    allow_not_exist: bool = False
    precheck: list[PrecheckItem] = Field(default_factory=list)
    retry: RetrySpec | None = None

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        _check_method(v, DATA_SOURCE_METHODS, "method")
        return v


class EphemeralRequest(_Model):
    """One request of an ephemeral resource lifecycle."""

    path: str = Field(min_length=1)
    method: Method = "POST"
    body: Any = None
    query: OptionalQuery = None
    header: dict[str, str] | None = None

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        _check_method(v, OPERATION_METHODS, "method")
        return v


class EphemeralResourceConfig(_Model):
    """Short lived credentials or sessions opened, renewed and closed per run."""

    open: EphemeralRequest
    renew: EphemeralRequest | None = None
    close: EphemeralRequest | None = None
    query: Query = Field(default_factory=dict)
    header: dict[str, str] = Field(default_factory=dict)
    expiry_locator: str | None = None
    expiry_type: str | None = None
    expiry_ahead: str | None = None
    output_attrs: list[str] = Field(default_factory=list)
    retry: RetrySpec | None = None

    @field_validator("expiry_locator")
    @classmethod
    def validate_locator(cls, v: str | None) -> str | None:
        return _check_locator(v)

    @field_validator("expiry_type")
    @classmethod
    def validate_expiry_type(cls, v: str | None) -> str | None:
        if v is None:
            return v
        kind = v.split(".", 1)[0]
        if kind not in (EXPIRY_TYPE_TIME, EXPIRY_TYPE_DURATION, EXPIRY_TYPE_DURATION_IN_SECONDS):
            raise ValueError(f"unknown expiry_type {v!r}")
        if kind != EXPIRY_TYPE_TIME and "." in v:
            raise ValueError(f"only `time` accepts a layout, got {v!r}")
        return v

    @model_validator(mode="after")
    def expiry_settings_together(self) -> "EphemeralResourceConfig":
        if (self.expiry_locator is None) != (self.expiry_type is None):
            raise ValueError("`expiry_locator` and `expiry_type` must be set together")
        return self
