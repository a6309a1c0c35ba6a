"""Caller-side fan-out: chunk, dispatch with bounded concurrency, aggregate, clean up."""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import ValidationError

from app.core.concurrency import chunked, run_bounded
from app.core.config import settings
from app.core.retry import RetryPolicy
from app.domains.push.payload import build_payload_data, validate_payload
from app.domains.push.progress import ProgressCallback, ProgressReporter
from app.domains.push.registry import TokenRegistry
from app.exceptions.push import DispatchRequestError, RetryableDispatchError, TokenRegistryError
from app.schemas.push import (
    DispatchPhase,
    DispatchReason,
    DispatchResponse,
    FanoutResult,
    PushPayload,
    PushProgress,
)


logger = logging.getLogger(__name__)

# Failures that end one chunk or request without aborting the dispatch.
REQUEST_FAILURES = (DispatchRequestError, httpx.HTTPError, TimeoutError)


def is_retryable_request_error(error: BaseException) -> bool:
    return isinstance(error, (RetryableDispatchError, httpx.TransportError, TimeoutError))


@dataclass
class _Aggregate:
    success: int = 0
    failed: int = 0
    sent: int = 0
    invalid_tokens: dict[str, None] = field(default_factory=dict)


class PushFanoutClient:
    """Sends notifications through the dispatch endpoint.

    :ivar http_client: Client used for dispatch requests.
    :ivar registry: Registry used to delete tokens reported invalid; optional.
    :ivar origin: Caller origin, sent as ``baseUrl`` so links can be made absolute.
    :ivar auth_token: Bearer token presented to the dispatch endpoint.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        registry: TokenRegistry | None = None,
        origin: str | None = None,
        endpoint: str | None = None,
        retry_policy: RetryPolicy | None = None,
        chunk_size: int | None = None,
        concurrency: int | None = None,
        timeout: float | None = None,
        auth_token: str | None = None,
    ):
        self.http_client = http_client
        self.auth_token = auth_token
        self.registry = registry
        self.origin = (origin or settings.push_default_base_url).rstrip("/")
        self.endpoint = endpoint or settings.push_dispatch_endpoint
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=settings.push_request_max_retries,
            backoff_base=settings.push_request_backoff_base,
            retryable=is_retryable_request_error,
        )
        self.chunk_size = chunk_size or settings.push_chunk_size
        self.concurrency = concurrency or settings.push_chunk_concurrency
        self.timeout = timeout or settings.push_request_timeout

    async def request_with_retry(self, body: dict[str, Any]) -> httpx.Response:
        """POST ``body`` to the dispatch endpoint, retrying 5xx, 429, network errors and timeouts.

        Raises:
            DispatchRequestError: On a non-retryable reply or once retries run out
        """
        return await self.retry_policy.call(self._post_once, body, logger=logger)

    async def _post_once(self, body: dict[str, Any]) -> httpx.Response:
        response = await asyncio.wait_for(
            self.http_client.post(self.endpoint, json=body, headers=self._headers()),
            timeout=self.timeout,
        )
        if response.is_success:
            return response

        text = response.text
        if response.status_code >= 500 or response.status_code == 429:
            raise RetryableDispatchError(
                text or f"Retryable push error {response.status_code}", response.status_code
            )
        raise DispatchRequestError(
            text or f"Push request failed with {response.status_code}", response.status_code
        )

    def _headers(self) -> dict[str, str]:
        if not self.auth_token:
            return {}
        return {"Authorization": f"Bearer {self.auth_token}"}

    @staticmethod
    def _parse_reply(response: httpx.Response) -> DispatchResponse:
        try:
            return DispatchResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise DispatchRequestError(f"Unreadable dispatch reply: {str(e)[:200]}") from e

    def _request_body(self, payload: PushPayload, data: dict[str, str], **targets: Any) -> dict[str, Any]:
        return {
            **targets,
            "title": payload.title,
            "body": payload.body,
            "image": payload.image,
            "icon": payload.icon or settings.push_brand_icon_url,
            "badge": payload.badge or settings.push_brand_icon_url,
            "data": data,
        }

    async def send_to_tokens(
        self,
        tokens: Iterable[str],
        payload: PushPayload,
        on_progress: ProgressCallback | None = None,
    ) -> FanoutResult:
        """Deliver ``payload`` to explicit tokens in chunks.

        A chunk whose request fails, or whose reply cannot be read, counts every
        token in it as failed. Tokens reported invalid are removed from the
        registry once all chunks have settled.

        Raises:
            InvalidPushPayloadError: Before any request, if the payload is unusable
        """
        validate_payload(payload)
        clean_tokens = list(dict.fromkeys(t for t in tokens if t))
        if not clean_tokens:
            return FanoutResult(skipped=True)

        data = build_payload_data(payload, self.origin)
        chunks = chunked(clean_tokens, self.chunk_size)
        reporter = ProgressReporter(on_progress)
        progress = PushProgress(phase=DispatchPhase.sending, total_tokens=len(clean_tokens))
        reporter.emit(progress)

        aggregate = _Aggregate()

        async def handle(index: int, chunk: list[str]) -> None:
            try:
                response = await self.request_with_retry(self._request_body(payload, data, tokens=chunk))
                reply = self._parse_reply(response)
                aggregate.success += reply.success
                aggregate.failed += reply.failed
                for token in reply.invalid_tokens:
                    if token:
                        aggregate.invalid_tokens[token] = None
            except REQUEST_FAILURES as e:
                logger.warning(f"Push chunk {index + 1}/{len(chunks)} failed: {str(e)[:200]}")
                aggregate.failed += len(chunk)

            aggregate.sent += len(chunk)
            progress.sent = aggregate.sent
            progress.success = aggregate.success
            progress.failed = aggregate.failed
            reporter.emit(progress)

        await run_bounded(chunks, handle, self.concurrency)

        progress.phase = DispatchPhase.cleanup
        reporter.emit(progress)

        removed = await self._cleanup(list(aggregate.invalid_tokens))

        progress.phase = DispatchPhase.done
        progress.invalid_removed = removed
        progress.sent = len(clean_tokens)
        reporter.emit(progress)

        logger.info(
            f"📊 Push fan-out complete: {aggregate.success} sent, {aggregate.failed} failed, "
            f"{removed} invalid tokens removed ({len(chunks)} chunks)"
        )
        return FanoutResult(
            success=aggregate.success,
            failed=aggregate.failed,
            total=len(clean_tokens),
            invalid_tokens_removed=removed,
        )

    async def _cleanup(self, invalid_tokens: list[str]) -> int:
        if not invalid_tokens or self.registry is None:
            return 0
        try:
            return await self.registry.delete_tokens(invalid_tokens)
        except TokenRegistryError as e:
            logger.warning(f"Failed to clean up invalid push tokens: {e.message}")
            return 0

    async def send_to_users(
        self,
        user_ids: Iterable[str],
        payload: PushPayload,
        on_progress: ProgressCallback | None = None,
    ) -> FanoutResult:
        """Deliver ``payload`` to every registered device of ``user_ids``.

        Token lookup and invalid-token cleanup happen on the dispatch endpoint.
        An empty result carries a ``reason`` so "nobody to notify" is not
        mistaken for a silent failure.

        Raises:
            InvalidPushPayloadError: Before any request, if the payload is unusable
        """
        validate_payload(payload)
        unique_user_ids = list(dict.fromkeys(uid for uid in user_ids if uid))
        total_users = len(unique_user_ids)
        reporter = ProgressReporter(on_progress)
        reporter.emit(PushProgress(phase=DispatchPhase.tokens, total_users=total_users))

        if not unique_user_ids:
            reporter.emit(PushProgress(phase=DispatchPhase.done, total_users=0))
            return FanoutResult(skipped=True, reason=DispatchReason.NO_TARGET_USERS)

        # Token count is unknown until the endpoint replies; users stand in for it.
        reporter.emit(
            PushProgress(phase=DispatchPhase.sending, total_tokens=total_users, total_users=total_users)
        )

        data = build_payload_data(payload, self.origin)
        try:
            response = await self.request_with_retry(
                self._request_body(payload, data, userIds=unique_user_ids)
            )
            reply = self._parse_reply(response)
        except REQUEST_FAILURES as e:
            logger.warning(f"Push request for {total_users} users failed: {str(e)[:200]}")
            reporter.emit(PushProgress(phase=DispatchPhase.done, failed=total_users, total_users=total_users))
            return FanoutResult(
                failed=total_users,
                reason=DispatchReason.REQUEST_FAILED,
                error=str(e) or "Unknown request error",
            )

        total_tokens = reply.total_tokens or (reply.success + reply.failed)
        reporter.emit(
            PushProgress(
                phase=DispatchPhase.done,
                total_tokens=total_tokens,
                sent=total_tokens,
                success=reply.success,
                failed=reply.failed,
                invalid_removed=reply.invalid_removed,
                total_users=total_users,
                fail_reasons=reply.fail_reasons,
            )
        )

        return FanoutResult(
            success=reply.success,
            failed=reply.failed,
            total=total_tokens,
            invalid_tokens_removed=reply.invalid_removed,
            skipped=total_tokens == 0 and reply.success == 0,
            reason=reply.reason,
            details=reply.details,
            fail_reasons=reply.fail_reasons,
        )


__all__ = ["PushFanoutClient", "is_retryable_request_error", "REQUEST_FAILURES"]
