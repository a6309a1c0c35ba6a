"""Unit tests for the FCM HTTP v1 client."""

import json
from urllib.parse import parse_qs

import httpx
import jwt
import pytest

from app.core.config import settings
from app.exceptions.push import PushNotConfiguredError, UpstreamAuthError
from app.services.fcm_client import FCM_SCOPES, FCMClient, ServiceAccount

TOKEN_URI = "https://oauth2.example/token"
API_BASE = "https://fcm.example/v1"


class FakeGoogle:
    """Token endpoint plus ``messages:send``."""

    def __init__(self, token_status: int = 200):
        self.token_status = token_status
        self.assertions: list[str] = []
        self.sends: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == TOKEN_URI:
            form = parse_qs(request.content.decode())
            self.assertions.append(form["assertion"][0])
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": f"access-{len(self.assertions)}", "expires_in": 3600})
        self.sends.append(request)
        return httpx.Response(200, json={"name": "projects/p/messages/1"})


@pytest.fixture
def account(service_account_key):
    return ServiceAccount.model_validate_json(service_account_key)


@pytest.fixture
def google():
    return FakeGoogle()


@pytest.fixture
async def fcm_client(account, google):
    async with httpx.AsyncClient(transport=httpx.MockTransport(google)) as http_client:
        yield FCMClient(account, http_client, api_base_url=API_BASE, token_uri=TOKEN_URI)


@pytest.mark.asyncio
class TestFCMClient:
    """Test cases for FCMClient."""

    async def test_assertion_is_signed_service_account_jwt(self, fcm_client, google, account):
        await fcm_client.get_access_token()

        claims = jwt.decode(google.assertions[0], options={"verify_signature": False})
        assert claims["iss"] == account.client_email
        assert claims["aud"] == TOKEN_URI
        assert claims["scope"] == " ".join(FCM_SCOPES)
        assert claims["exp"] - claims["iat"] == 3600
        assert jwt.get_unverified_header(google.assertions[0])["alg"] == "RS256"

    async def test_access_token_is_cached(self, fcm_client, google):
        first = await fcm_client.get_access_token()
        second = await fcm_client.get_access_token()

        assert first == second == "access-1"
        assert len(google.assertions) == 1

    async def test_expired_token_is_refreshed(self, fcm_client, google):
        await fcm_client.get_access_token()
        fcm_client.token_cache.expires_at = 0

        assert await fcm_client.get_access_token() == "access-2"

    async def test_token_exchange_failure(self, account):
        google = FakeGoogle(token_status=400)
        async with httpx.AsyncClient(transport=httpx.MockTransport(google)) as http_client:
            client = FCMClient(account, http_client, api_base_url=API_BASE, token_uri=TOKEN_URI)

            with pytest.raises(UpstreamAuthError) as exc_info:
                await client.get_access_token()

        assert exc_info.value.status_code == 502
        assert "invalid_grant" in exc_info.value.message

    async def test_send_message(self, fcm_client, google, account):
        message = {"message": {"token": "token-a", "notification": {"title": "t", "body": "b"}}}

        response = await fcm_client.send_message(message)

        assert response.is_success
        request = google.sends[0]
        assert str(request.url) == f"{API_BASE}/projects/{account.project_id}/messages:send"
        assert request.headers["authorization"] == "Bearer access-1"
        assert json.loads(request.content) == message


class TestFromSettings:
    """Test cases for FCMClient.from_settings."""

    def test_missing_key(self, monkeypatch):
        monkeypatch.setattr(settings, "firebase_service_account_key", None)

        with pytest.raises(PushNotConfiguredError) as exc_info:
            FCMClient.from_settings(httpx.AsyncClient())

        assert exc_info.value.message == "Service account not configured"

    def test_malformed_key(self, monkeypatch):
        monkeypatch.setattr(settings, "firebase_service_account_key", '{"project_id": "p"}')

        with pytest.raises(PushNotConfiguredError):
            FCMClient.from_settings(httpx.AsyncClient())

    def test_valid_key(self, monkeypatch, service_account_key):
        monkeypatch.setattr(settings, "firebase_service_account_key", service_account_key)

        client = FCMClient.from_settings(httpx.AsyncClient())

        assert client.project_id == "rs-anime-test"
        assert client.api_base_url == settings.fcm_api_base_url

    async def test_clients_from_settings_share_access_token(self, monkeypatch, service_account_key):
        """Test that per-request clients reuse one token exchange."""
        monkeypatch.setattr(settings, "firebase_service_account_key", service_account_key)
        monkeypatch.setattr(settings, "google_token_uri", TOKEN_URI)
        google = FakeGoogle()

        async with httpx.AsyncClient(transport=httpx.MockTransport(google)) as http_client:
            first = FCMClient.from_settings(http_client)
            second = FCMClient.from_settings(http_client)

            assert await first.get_access_token() == "access-1"
            assert await second.get_access_token() == "access-1"

        assert first.token_cache is second.token_cache
        assert len(google.assertions) == 1
