"""Dispatch endpoint service: resolve targets, fan out, sweep invalid tokens."""

import logging
from typing import Any

import httpx

from app.core.config import settings
from app.domains.push.payload import ensure_absolute_url, normalize_data, resolve_base_url
from app.domains.push.registry import TokenRegistry
from app.domains.push.sender import UpstreamSender, build_message
from app.exceptions.push import NoPushTargetsError, TokenRegistryError
from app.schemas.push import CLICK_URL_KEY, DispatchReason, DispatchRequest, DispatchResponse
from app.services.fcm_client import FCMClient


logger = logging.getLogger(__name__)

NO_TOKENS_HINT = (
    "No push tokens were found for selected users. Usually this means permission "
    "not granted yet or Firebase project mismatch."
)


class PushDispatchService:
    """Server side of the fan-out: one request in, one aggregate out."""

    def __init__(
        self,
        registry: TokenRegistry,
        http_client: httpx.AsyncClient | None = None,
        sender: UpstreamSender | None = None,
    ):
        """Initialize the dispatch service.

        Args:
            registry: Token registry used for user lookup and cleanup
            http_client: Client for the upstream provider when ``sender`` is not given
            sender: Preconfigured upstream sender
        """
        self.registry = registry
        self.http_client = http_client
        self.sender = sender

    def _get_sender(self) -> UpstreamSender:
        if self.sender is None:
            if self.http_client is None:
                raise ValueError("An http_client is required to build the upstream sender")
            self.sender = UpstreamSender(FCMClient.from_settings(self.http_client))
        return self.sender

    async def dispatch(self, request: DispatchRequest, origin: str | None = None) -> DispatchResponse:
        """Send ``request`` to its explicit tokens, or to every token of its users.

        Raises:
            NoPushTargetsError: If neither tokens nor user IDs are given
            PushNotConfiguredError: If upstream credentials are missing
            UpstreamAuthError: If the upstream access token cannot be obtained
        """
        input_tokens = list(dict.fromkeys(t for t in (request.tokens or []) if t))
        input_user_ids = list(dict.fromkeys(uid for uid in (request.user_ids or []) if uid))
        if not input_tokens and not input_user_ids:
            raise NoPushTargetsError()

        sender = self._get_sender()
        project_id = sender.transport.project_id
        await sender.transport.get_access_token()

        data = normalize_data(request.data)
        base_url = resolve_base_url(data, origin, settings.push_default_base_url)
        image_url = ensure_absolute_url(request.image, base_url)
        click_link = ensure_absolute_url(data.get(CLICK_URL_KEY) or "/", base_url)
        icon_url = request.icon or settings.push_brand_icon_url
        badge_url = request.badge or settings.push_brand_icon_url

        tokens = input_tokens
        paths_by_token: dict[str, list[str]] = {}
        if not tokens:
            try:
                lookup = await self.registry.resolve_tokens(input_user_ids)
            except TokenRegistryError as e:
                logger.error(f"Token lookup failed for {len(input_user_ids)} users: {e.message}")
                return DispatchResponse(
                    reason=DispatchReason.TOKEN_LOOKUP_FAILED,
                    details={
                        "message": e.message,
                        "targetUsers": len(input_user_ids),
                        "firebaseProjectId": project_id,
                    },
                )
            tokens = lookup.tokens
            paths_by_token = lookup.paths_by_token

        if not tokens:
            logger.info(f"No push tokens found for {len(input_user_ids)} target users")
            return DispatchResponse(
                reason=DispatchReason.NO_MATCHING_TOKENS,
                details={
                    "targetUsers": len(input_user_ids),
                    "firebaseProjectId": project_id,
                    "hint": NO_TOKENS_HINT,
                },
            )

        def message_for(token: str) -> dict[str, Any]:
            return build_message(
                token,
                title=request.title,
                body=request.body,
                data=data,
                icon=icon_url,
                image=image_url,
                badge=badge_url,
                link=click_link,
            )

        logger.info(f"🔔 Dispatching push to {len(tokens)} tokens")
        summary = await sender.send_all(tokens, message_for)

        # Without storage paths the caller owns cleanup of the reported tokens.
        invalid_removed = 0
        if paths_by_token and summary.invalid_tokens:
            try:
                invalid_removed = await self.registry.delete_tokens(summary.invalid_tokens, paths_by_token)
            except TokenRegistryError as e:
                logger.error(f"Invalid token cleanup failed: {e.message}")

        return DispatchResponse(
            success=summary.success,
            failed=summary.failed,
            total_tokens=len(tokens),
            invalid_tokens=summary.invalid_tokens,
            invalid_removed=invalid_removed,
            fail_reasons=summary.fail_reasons,
        )


__all__ = ["PushDispatchService", "NO_TOKENS_HINT"]
