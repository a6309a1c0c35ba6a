"""Payload normalization shared by both sides of the dispatch."""

from collections.abc import Mapping
from typing import Any

from app.exceptions.push import InvalidPushPayloadError
from app.schemas.push import BASE_URL_KEY, CLICK_URL_KEY, PushPayload


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def normalize_data(data: Mapping[str, Any] | None) -> dict[str, str]:
    """Turn arbitrary metadata into the string-only map the provider accepts."""
    return {str(key): stringify(value) for key, value in (data or {}).items()}


def build_payload_data(payload: PushPayload, origin: str) -> dict[str, str]:
    """Normalized ``data`` with the reserved click URL and caller origin keys set.

    Reserved keys always overwrite caller-supplied values.
    """
    data = normalize_data(payload.data)
    if payload.url:
        data[CLICK_URL_KEY] = payload.url
    data[BASE_URL_KEY] = origin
    return data


def validate_payload(payload: PushPayload) -> None:
    """Reject payloads that cannot produce a visible notification.

    Raises:
        InvalidPushPayloadError: If the title is blank
    """
    if not payload.title or not payload.title.strip():
        raise InvalidPushPayloadError("Notification title is required")


def ensure_absolute_url(value: str | None, base_url: str) -> str | None:
    """Resolve ``value`` against ``base_url`` unless it already has a scheme."""
    if not value:
        return None
    if value.startswith(("http://", "https://")):
        return value
    if value.startswith("//"):
        return f"https:{value}"
    if value.startswith("/"):
        return f"{base_url}{value}"
    return f"{base_url}/{value}"


def resolve_base_url(data: Mapping[str, str], origin_header: str | None, default: str) -> str:
    """Base URL for links: caller-supplied ``baseUrl``, then request origin, then default."""
    raw = data.get(BASE_URL_KEY) or origin_header or default
    return raw.rstrip("/")


__all__ = [
    "stringify",
    "normalize_data",
    "build_payload_data",
    "validate_payload",
    "ensure_absolute_url",
    "resolve_base_url",
]
