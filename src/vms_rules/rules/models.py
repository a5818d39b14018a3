"""Pydantic models for detection events, rules, lookup lists and deliveries."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from ..exceptions import ConfigurationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_item(value: str) -> str:
    """Case-normalize a lookup identifier (plate, name, ...)."""
    return str(value).strip().casefold()


class _WireModel(BaseModel):
    """Accepts snake_case or the platform's camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Event(_WireModel):
    """One already-classified detection. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: str  # e.g. person, car, plate_read
    camera_name: str = ""
    occurred_at: datetime = Field(default_factory=utcnow)
    attributes: dict[str, str] = Field(default_factory=dict)
    engine: str = "generic"  # frigate, onvif, provision_isr, ...
    category: str = "object_detection"
    severity: str = "info"
    score: float | None = None

    @field_validator("occurred_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("attributes", mode="before")
    @classmethod
    def _stringify_attributes(cls, value: Any) -> Any:
        # Detection engines send numbers (speed, confidence) alongside strings
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items() if v is not None}
        return value


class ScheduleSlot(_WireModel):
    model_config = ConfigDict(frozen=True)

    day_of_week: int = Field(ge=0, le=6)  # 0 = Sunday
    hour: int = Field(ge=0, le=23)
    enabled: bool = True


class ListMode(str, Enum):
    IN_LIST = "in_list"
    NOT_IN_LIST = "not_in_list"


class ListCondition(_WireModel):
    """Require an event attribute to be in (or absent from) a lookup list."""

    model_config = ConfigDict(frozen=True)

    attribute: str  # e.g. "plate"
    list_name: str
    mode: ListMode = ListMode.IN_LIST


class AuditLogAction(_WireModel):
    type: Literal["audit_log"] = "audit_log"


class LogAction(_WireModel):
    type: Literal["log"] = "log"
    level: Literal["debug", "info", "warning", "error"] = "info"


class WebhookAction(_WireModel):
    type: Literal["webhook"] = "webhook"
    url: str
    timeout_ms: int = Field(default=5000, gt=0)
    max_retries: int = Field(default=3, ge=0)
    headers: dict[str, str] = Field(default_factory=dict)


ActionSpec = Annotated[
    Union[AuditLogAction, LogAction, WebhookAction], Field(discriminator="type")
]


class Rule(_WireModel):
    """A condition-action binding over detection events.

    The engine only ever holds read-only copies; edits arrive as a
    whole new rule set through ``RuleEngine.reload_rules``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    enabled: bool = True
    event_type: str
    camera_name: str | None = None  # None = any camera
    actions: list[ActionSpec] = Field(default_factory=list)
    schedules: list[ScheduleSlot] = Field(default_factory=list)
    conditions: list[ListCondition] = Field(default_factory=list)

    @field_validator("camera_name")
    @classmethod
    def _blank_camera_is_any(cls, value: str | None) -> str | None:
        return value or None


class ListType(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    GENERAL = "general"


_LIST_TYPE_ALIASES = {"white_list": "allow", "black_list": "deny"}


class LookupList(_WireModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"l_{uuid.uuid4().hex[:8]}")
    name: str
    type: ListType = ListType.ALLOW
    items: frozenset[str] = Field(default_factory=frozenset)
    description: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _legacy_type_names(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _LIST_TYPE_ALIASES.get(value.lower(), value.lower())
        return value

    @field_validator("items", mode="before")
    @classmethod
    def _normalize_items(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            # Stored as a comma-separated "simple array" by some backends
            value = value.split(",")
        return frozenset(normalize_item(v) for v in value if str(v).strip())


class MatchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    event: Event
    rule: Rule
    matched_at: datetime = Field(default_factory=utcnow)


class DeliveryState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SHED = "shed"


class DeliveryAttempt(BaseModel):
    """A webhook action being delivered; lives only until a terminal state."""

    id: str = Field(default_factory=lambda: f"d_{uuid.uuid4().hex[:10]}")
    action: WebhookAction
    event: Event
    rule: Rule
    attempt_number: int = 0  # Attempts started so far
    scheduled_at: datetime = Field(default_factory=utcnow)
    state: DeliveryState = DeliveryState.PENDING
    last_error: str = ""


_RULES_ADAPTER = TypeAdapter(list[Rule])
_LISTS_ADAPTER = TypeAdapter(list[LookupList])


def parse_rules(raw: list[dict[str, Any]]) -> list[Rule]:
    """Validate raw rule dicts. Unknown action kinds are rejected here."""
    try:
        return _RULES_ADAPTER.validate_python(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid rule definition: {e}") from e


def parse_lists(raw: list[dict[str, Any]]) -> list[LookupList]:
    try:
        return _LISTS_ADAPTER.validate_python(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid lookup list definition: {e}") from e
