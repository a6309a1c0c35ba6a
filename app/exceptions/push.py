# ruff: noqa: D107
"""Push notification exceptions."""

from typing import Any

from .base import BaseAppException


class PushServiceError(BaseAppException):
    """Base exception for push pipeline errors."""

    def __init__(
        self,
        message: str = "Push service error occurred",
        status_code: int = 500,
        error_code: str = "PUSH_SERVICE_ERROR",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, status_code, error_code, details)


class PushNotConfiguredError(PushServiceError):
    """Raised when upstream push credentials are missing or unreadable."""

    def __init__(
        self,
        message: str = "Service account not configured",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, 500, "PUSH_NOT_CONFIGURED", details)


class NoPushTargetsError(PushServiceError):
    """Raised when a dispatch request names neither tokens nor user IDs."""

    def __init__(
        self,
        message: str = "No tokens or userIds provided",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, 400, "NO_TARGETS", details)


class InvalidPushPayloadError(PushServiceError):
    """Raised before dispatch when the payload cannot be sent."""

    def __init__(
        self,
        message: str = "Invalid push payload",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, 422, "INVALID_PUSH_PAYLOAD", details)


class DispatchRequestError(PushServiceError):
    """Raised when the dispatch endpoint rejects a request for good."""

    def __init__(
        self,
        message: str = "Push request failed",
        upstream_status: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.upstream_status = upstream_status
        super().__init__(message, 502, "DISPATCH_REQUEST_FAILED", details)


class RetryableDispatchError(DispatchRequestError):
    """Raised for dispatch endpoint replies worth retrying (5xx or 429)."""

    def __init__(self, message: str = "Retryable push error", upstream_status: int | None = None):
        super().__init__(message, upstream_status)


class UpstreamAuthError(PushServiceError):
    """Raised when the upstream access token cannot be obtained."""

    def __init__(
        self,
        message: str = "Failed to get access token",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, 502, "UPSTREAM_AUTH_FAILED", details)


class TokenRegistryError(PushServiceError):
    """Raised when a token registry write or read fails."""

    def __init__(
        self,
        message: str = "Token registry operation failed",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, 500, "TOKEN_REGISTRY_ERROR", details)
