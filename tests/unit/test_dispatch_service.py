"""Unit tests for the dispatch endpoint service."""

from unittest.mock import AsyncMock

import httpx
import pytest

from app.core.retry import RetryPolicy
from app.domains.push.sender import TransientSendError, UpstreamSender
from app.domains.push.service import NO_TOKENS_HINT, PushDispatchService
from app.exceptions.push import NoPushTargetsError, PushNotConfiguredError, TokenRegistryError
from app.schemas.push import DispatchReason, DispatchRequest


def make_service(registry, transport, recording_sleep):
    sender = UpstreamSender(
        transport,
        retry_policy=RetryPolicy(
            max_retries=2,
            backoff_base=0.5,
            retryable=lambda e: isinstance(e, TransientSendError),
            sleep=recording_sleep,
        ),
    )
    return PushDispatchService(registry, sender=sender)


@pytest.mark.asyncio
class TestPushDispatchService:
    """Test cases for PushDispatchService.dispatch."""

    async def test_no_targets_rejected(self, registry, fake_transport, recording_sleep):
        service = make_service(registry, fake_transport, recording_sleep)

        with pytest.raises(NoPushTargetsError) as exc_info:
            await service.dispatch(DispatchRequest(title="t", body="b", tokens=[], user_ids=[]))

        assert exc_info.value.status_code == 400
        assert fake_transport.token_requests == 0

    async def test_missing_credentials(self, registry, monkeypatch):
        from app.core.config import settings

        monkeypatch.setattr(settings, "firebase_service_account_key", "")
        async with httpx.AsyncClient() as http_client:
            service = PushDispatchService(registry, http_client=http_client)

            with pytest.raises(PushNotConfiguredError):
                await service.dispatch(DispatchRequest(title="t", body="b", tokens=["a"]))

    async def test_explicit_tokens(self, registry, fake_transport, recording_sleep):
        """Test explicit tokens are sent and invalid ones reported, not deleted."""
        fake_transport.respond = lambda token, call: (
            httpx.Response(404, text='{"error": {"status": "NOT_FOUND"}}')
            if token == "dead"
            else httpx.Response(200, json={})
        )
        service = make_service(registry, fake_transport, recording_sleep)

        response = await service.dispatch(
            DispatchRequest(title="t", body="b", tokens=["live", "dead", "live"])
        )

        assert response.total_tokens == 2
        assert response.success == 1
        assert response.failed == 1
        assert response.invalid_tokens == ["dead"]
        assert response.invalid_removed == 0
        assert response.fail_reasons.invalid == 1

    async def test_user_targets_resolve_and_clean_up(
        self, registry, seed_tokens, fake_transport, recording_sleep
    ):
        """Test user IDs resolve to tokens and invalid ones are removed from storage."""
        await seed_tokens(
            ("user-1", "live", "device-1", 20),
            ("user-1", "dead", "device-2", 10),
            ("user-2", "other", "device-1", 10),
        )
        fake_transport.respond = lambda token, call: (
            httpx.Response(404, text='{"error": {"details": [{"errorCode": "UNREGISTERED"}]}}')
            if token == "dead"
            else httpx.Response(200, json={})
        )
        service = make_service(registry, fake_transport, recording_sleep)

        response = await service.dispatch(DispatchRequest(title="t", body="b", user_ids=["user-1"]))

        assert response.total_tokens == 2
        assert response.success == 1
        assert response.invalid_removed == 1
        assert [t.token for t in await registry.list_tokens("user-1")] == ["live"]
        assert len(await registry.list_tokens("user-2")) == 1
        assert set(fake_transport.calls) == {"live", "dead"}

    async def test_cleanup_for_user_id_with_slash(self, registry, seed_tokens, fake_transport, recording_sleep):
        """Test cleanup succeeds when the user ID contains a path separator."""
        await seed_tokens(
            ("google-oauth2/123", "live", "device-1", 20),
            ("google-oauth2/123", "dead", "device-2", 10),
        )
        fake_transport.respond = lambda token, call: (
            httpx.Response(404, text='{"error": {"details": [{"errorCode": "UNREGISTERED"}]}}')
            if token == "dead"
            else httpx.Response(200, json={})
        )
        service = make_service(registry, fake_transport, recording_sleep)

        response = await service.dispatch(
            DispatchRequest(title="t", body="b", user_ids=["google-oauth2/123"])
        )

        assert response.success == 1
        assert response.invalid_tokens == ["dead"]
        assert response.invalid_removed == 1
        assert [t.token for t in await registry.list_tokens("google-oauth2/123")] == ["live"]

    async def test_transient_failures_are_kept(self, registry, seed_tokens, fake_transport, recording_sleep):
        await seed_tokens(("user-1", "busy", "device-1", 10))
        fake_transport.respond = lambda token, call: httpx.Response(
            503, text='{"error": {"status": "UNAVAILABLE"}}'
        )
        service = make_service(registry, fake_transport, recording_sleep)

        response = await service.dispatch(DispatchRequest(title="t", body="b", user_ids=["user-1"]))

        assert response.failed == 1
        assert response.fail_reasons.transient == 1
        assert response.invalid_removed == 0
        assert len(await registry.list_tokens("user-1")) == 1

    async def test_no_matching_tokens(self, registry, fake_transport, recording_sleep):
        service = make_service(registry, fake_transport, recording_sleep)

        response = await service.dispatch(DispatchRequest(title="t", body="b", user_ids=["nobody"]))

        assert response.reason == DispatchReason.NO_MATCHING_TOKENS
        assert response.details["hint"] == NO_TOKENS_HINT
        assert response.details["targetUsers"] == 1
        assert response.details["firebaseProjectId"] == fake_transport.project_id
        assert fake_transport.calls == {}

    async def test_token_lookup_failure(self, fake_transport, recording_sleep):
        registry = AsyncMock()
        registry.resolve_tokens.side_effect = TokenRegistryError("read failed")
        service = make_service(registry, fake_transport, recording_sleep)

        response = await service.dispatch(DispatchRequest(title="t", body="b", user_ids=["user-1"]))

        assert response.reason == DispatchReason.TOKEN_LOOKUP_FAILED
        assert response.details["message"] == "read failed"
        assert response.success == 0

    async def test_message_links_are_absolute(self, registry, fake_transport, recording_sleep):
        """Test image and click links resolve against the caller base URL."""
        service = make_service(registry, fake_transport, recording_sleep)

        await service.dispatch(
            DispatchRequest(
                title="t",
                body="b",
                tokens=["a"],
                image="/posters/42.jpg",
                data={"url": "/anime/42", "baseUrl": "https://site.example/", "episode": 12},
            ),
            origin="https://ignored.example",
        )

        message = fake_transport.messages[0]["message"]
        assert message["webpush"]["fcm_options"]["link"] == "https://site.example/anime/42"
        assert message["webpush"]["notification"]["image"] == "https://site.example/posters/42.jpg"
        assert message["data"]["episode"] == "12"
        assert message["webpush"]["notification"]["icon"]

    async def test_click_link_defaults_to_root(self, registry, fake_transport, recording_sleep):
        service = make_service(registry, fake_transport, recording_sleep)

        await service.dispatch(
            DispatchRequest(title="t", body="b", tokens=["a"]), origin="https://origin.example"
        )

        message = fake_transport.messages[0]["message"]
        assert message["webpush"]["fcm_options"]["link"] == "https://origin.example/"
