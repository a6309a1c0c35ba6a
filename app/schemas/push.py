"""Push notification Pydantic schemas for request/response validation."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from .base import BaseSchema


# Metadata keys the dispatcher always writes into ``data``.
CLICK_URL_KEY = "url"
BASE_URL_KEY = "baseUrl"

DataValue = str | int | float | bool | None


class CamelSchema(BaseSchema):
    """Schema exchanged with the dispatch endpoint in camelCase."""

    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class DispatchPhase(str, Enum):
    """Phases of one dispatch, in the only order they may be reported."""

    tokens = "tokens"
    sending = "sending"
    cleanup = "cleanup"
    done = "done"

    @property
    def rank(self) -> int:
        return list(DispatchPhase).index(self)


class DispatchReason(str, Enum):
    """Why a dispatch reached nobody."""

    NO_TARGET_USERS = "NO_TARGET_USERS"
    NO_MATCHING_TOKENS = "NO_MATCHING_TOKENS"
    TOKEN_LOOKUP_FAILED = "TOKEN_LOOKUP_FAILED"
    REQUEST_FAILED = "REQUEST_FAILED"


class SendOutcome(str, Enum):
    """Outcome of delivering to one token."""

    success = "success"
    failed_invalid = "failed:invalid"
    failed_transient = "failed:transient"
    failed_other = "failed:other"


FailCategory = Literal["invalid", "transient", "other"]


class SendResult(BaseSchema):
    """Result of one upstream send."""

    token: str
    outcome: SendOutcome
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == SendOutcome.success

    @property
    def category(self) -> FailCategory | None:
        if self.ok:
            return None
        return self.outcome.value.split(":", 1)[1]


class PushPayload(BaseSchema):
    """Notification content as supplied by the caller."""

    title: str
    body: str
    image: str | None = None
    url: str | None = None
    icon: str | None = None
    badge: str | None = None
    data: dict[str, DataValue] = Field(default_factory=dict)


class FailReasons(BaseSchema):
    """Failure breakdown by category."""

    invalid: int = 0
    transient: int = 0
    other: int = 0


class DispatchRequest(CamelSchema):
    """Body accepted by the dispatch endpoint."""

    tokens: list[str] | None = None
    user_ids: list[str] | None = None
    title: str = ""
    body: str = ""
    image: str | None = None
    icon: str | None = None
    badge: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class DispatchResponse(CamelSchema):
    """Aggregate returned by the dispatch endpoint."""

    success: int = 0
    failed: int = 0
    total_tokens: int = 0
    invalid_tokens: list[str] = Field(default_factory=list)
    invalid_removed: int = 0
    fail_reasons: FailReasons = Field(default_factory=FailReasons)
    reason: DispatchReason | None = None
    details: dict[str, Any] | None = None


class PushProgress(BaseSchema):
    """Cumulative progress snapshot handed to ``on_progress`` callbacks."""

    phase: DispatchPhase
    total_tokens: int = 0
    sent: int = 0
    success: int = 0
    failed: int = 0
    invalid_removed: int = 0
    total_users: int | None = None
    fail_reasons: FailReasons | None = None


class FanoutResult(BaseSchema):
    """Final result of ``send_to_tokens`` / ``send_to_users``."""

    success: int = 0
    failed: int = 0
    total: int = 0
    invalid_tokens_removed: int = 0
    skipped: bool = False
    reason: DispatchReason | None = None
    details: dict[str, Any] | None = None
    fail_reasons: FailReasons | None = None
    error: str | None = None


class RegistrationState(str, Enum):
    """Outcome of a device registration attempt."""

    unsupported = "unsupported"
    sw_not_supported = "sw_not_supported"
    blocked = "blocked"
    not_granted = "not_granted"
    empty_token = "empty_token"
    saved = "saved"
    error = "error"


class TokenRegistrationRequest(BaseSchema):
    """Device environment and token reported by a browser."""

    supported: bool = Field(True, description="Push messaging is available")
    service_worker: bool = Field(True, description="Service workers are available")
    permission: Literal["granted", "denied", "default"] = Field(
        "default", description="Notification permission"
    )
    token: str | None = Field(None, description="Provider-issued push token")
    device_id: str | None = Field(None, max_length=128, description="Stable browser install ID")
    origin: str | None = Field(None, max_length=255, description="Origin the token was issued for")
    user_agent: str | None = Field(None, description="Browser user agent")


class TokenRegistrationResponse(BaseSchema):
    """Registration outcome reported back to the browser."""

    state: RegistrationState
    message: str
    token_key: str | None = None
    pruned: int = 0


class PushTokenResponse(BaseSchema):
    """One registered device, without the full token."""

    token_key: str
    token_prefix: str
    device_id: str | None = None
    origin: str | None = None
    user_agent: str | None = None
    updated_at: datetime | None = None


class PushStateResponse(BaseSchema):
    """Last recorded push diagnostics for a user."""

    user_id: str
    push_enabled: bool = False
    push_permission: str | None = None
    push_token_state: str | None = None
    last_push_check_at: datetime | None = None
    last_push_token_at: datetime | None = None
    last_push_error: str | None = None


class BroadcastRequest(BaseSchema):
    """Queue a notification for a set of users or explicit tokens."""

    user_ids: list[str] = Field(default_factory=list)
    tokens: list[str] = Field(default_factory=list)
    payload: PushPayload


__all__ = [
    "BASE_URL_KEY",
    "CLICK_URL_KEY",
    "BroadcastRequest",
    "DataValue",
    "DispatchPhase",
    "DispatchReason",
    "DispatchRequest",
    "DispatchResponse",
    "FailCategory",
    "FailReasons",
    "FanoutResult",
    "PushPayload",
    "PushProgress",
    "PushStateResponse",
    "PushTokenResponse",
    "RegistrationState",
    "SendOutcome",
    "SendResult",
    "TokenRegistrationRequest",
    "TokenRegistrationResponse",
]
