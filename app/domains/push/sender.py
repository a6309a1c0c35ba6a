"""Per-token delivery to the upstream push provider."""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from app.core.concurrency import run_bounded
from app.core.config import settings
from app.core.retry import RetryPolicy
from app.exceptions.push import PushServiceError
from app.schemas.push import FailCategory, FailReasons, SendOutcome, SendResult


logger = logging.getLogger(__name__)

TRANSIENT_ERROR_CODES = ("UNAVAILABLE", "INTERNAL", "RESOURCE_EXHAUSTED", "DEADLINE_EXCEEDED")
INVALID_TOKEN_CODES = ("UNREGISTERED", "REGISTRATION_TOKEN_NOT_REGISTERED", "NOT_FOUND")
TOKEN_FIELD_HINTS = ("REGISTRATION TOKEN", "MESSAGE.TOKEN", "TOKEN")

WEBPUSH_TTL_SECONDS = "2419200"
VIBRATE_PATTERN = [200, 100, 200]

_OUTCOMES: dict[str, SendOutcome] = {
    "invalid": SendOutcome.failed_invalid,
    "transient": SendOutcome.failed_transient,
    "other": SendOutcome.failed_other,
}


class MessageTransport(Protocol):
    project_id: str

    async def get_access_token(self) -> str: ...

    async def send_message(self, message: dict[str, Any]) -> httpx.Response: ...


class TransientSendError(Exception):
    """Upstream failure worth retrying unchanged."""


class PermanentSendError(Exception):
    """Upstream failure that retrying will not fix."""

    def __init__(self, message: str, category: FailCategory):
        super().__init__(message)
        self.category = category


def classify_error(error_text: str) -> FailCategory:
    """Map free-text provider errors onto invalid / transient / other."""
    msg = error_text.upper()

    if any(code in msg for code in INVALID_TOKEN_CODES):
        return "invalid"
    if "INVALID_ARGUMENT" in msg and any(hint in msg for hint in TOKEN_FIELD_HINTS):
        return "invalid"

    if any(code in msg for code in TRANSIENT_ERROR_CODES):
        return "transient"

    return "other"


def build_message(
    token: str,
    title: str,
    body: str,
    data: dict[str, str],
    icon: str | None = None,
    image: str | None = None,
    badge: str | None = None,
    link: str | None = None,
) -> dict[str, Any]:
    """FCM v1 ``messages:send`` body for one web push token."""
    notification = {
        "title": title,
        "body": body,
        "icon": icon,
        "image": image,
        "badge": badge,
        "vibrate": VIBRATE_PATTERN,
        "requireInteraction": False,
    }
    webpush: dict[str, Any] = {
        "headers": {"Urgency": "high", "TTL": WEBPUSH_TTL_SECONDS},
        "notification": {key: value for key, value in notification.items() if value is not None},
    }
    if link:
        webpush["fcm_options"] = {"link": link}

    return {
        "message": {
            "token": token,
            "notification": {"title": title, "body": body},
            "webpush": webpush,
            "data": data,
        }
    }


@dataclass
class SendSummary:
    """Aggregate of one batch of per-token sends."""

    total: int = 0
    success: int = 0
    failed: int = 0
    invalid_tokens: list[str] = field(default_factory=list)
    fail_reasons: FailReasons = field(default_factory=FailReasons)

    def add(self, result: SendResult) -> None:
        if result.ok:
            self.success += 1
            return
        self.failed += 1
        category = result.category or "other"
        setattr(self.fail_reasons, category, getattr(self.fail_reasons, category) + 1)
        if category == "invalid":
            self.invalid_tokens.append(result.token)


class UpstreamSender:
    """Delivers a message to each token with transient-only retry."""

    def __init__(
        self,
        transport: MessageTransport,
        retry_policy: RetryPolicy | None = None,
        concurrency: int | None = None,
    ):
        self.transport = transport
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=settings.push_send_max_retries,
            backoff_base=settings.push_send_backoff_base,
            retryable=lambda e: isinstance(e, TransientSendError),
        )
        self.concurrency = concurrency or settings.push_send_concurrency

    async def send(self, token: str, message: dict[str, Any]) -> SendResult:
        """Send one message; never raises for upstream or network failures."""
        try:
            await self.retry_policy.call(self._attempt, message, logger=logger)
        except TransientSendError as e:
            return SendResult(token=token, outcome=SendOutcome.failed_transient, error=str(e))
        except PermanentSendError as e:
            return SendResult(token=token, outcome=_OUTCOMES[e.category], error=str(e))
        except PushServiceError as e:
            logger.error(f"Push send aborted for token {token[:16]}...: {e.message}")
            return SendResult(token=token, outcome=SendOutcome.failed_other, error=e.message)
        return SendResult(token=token, outcome=SendOutcome.success)

    async def _attempt(self, message: dict[str, Any]) -> None:
        try:
            response = await self.transport.send_message(message)
        except httpx.HTTPError as e:
            raise TransientSendError(f"Network error: {str(e)}") from e

        if response.is_success:
            return

        error_text = response.text or f"HTTP {response.status_code}"
        category = classify_error(error_text)
        if category == "transient":
            raise TransientSendError(error_text)
        raise PermanentSendError(error_text, category)

    async def send_all(
        self,
        tokens: Sequence[str],
        message_for: Callable[[str], dict[str, Any]],
    ) -> SendSummary:
        """Send to every token with at most ``min(concurrency, len(tokens))`` calls in flight."""
        summary = SendSummary(total=len(tokens))

        async def handle(_index: int, token: str) -> None:
            result = await self.send(token, message_for(token))
            summary.add(result)
            if not result.ok:
                logger.debug(f"Push to {token[:16]}... {result.outcome.value}: {(result.error or '')[:200]}")

        await run_bounded(tokens, handle, min(self.concurrency, len(tokens)))

        logger.info(
            f"📊 Upstream send complete: {summary.success} sent, {summary.failed} failed "
            f"(invalid={summary.fail_reasons.invalid}, transient={summary.fail_reasons.transient}, "
            f"other={summary.fail_reasons.other})"
        )
        return summary


__all__ = [
    "UpstreamSender",
    "SendSummary",
    "MessageTransport",
    "TransientSendError",
    "PermanentSendError",
    "classify_error",
    "build_message",
    "TRANSIENT_ERROR_CODES",
]
