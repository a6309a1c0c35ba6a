"""Firebase Cloud Messaging HTTP v1 client."""

import asyncio
import logging
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import httpx
import jwt
from pydantic import BaseModel, ValidationError

from app.core.config import settings
from app.exceptions.push import PushNotConfiguredError, UpstreamAuthError


logger = logging.getLogger(__name__)

FCM_SCOPES = (
    "https://www.googleapis.com/auth/firebase.messaging",
    "https://www.googleapis.com/auth/firebase.database",
)
ASSERTION_LIFETIME = 3600
# Refresh the access token this many seconds before it expires.
TOKEN_REFRESH_MARGIN = 60


class ServiceAccount(BaseModel):
    """Fields of a Google service account key used by this client."""

    client_email: str
    private_key: str
    project_id: str
    database_url: str | None = None


@dataclass
class AccessTokenCache:
    """Last issued OAuth2 access token for one service account."""

    access_token: str | None = None
    expires_at: float = 0.0

    def valid_at(self, now: float) -> bool:
        return bool(self.access_token) and now < self.expires_at - TOKEN_REFRESH_MARGIN


@lru_cache(maxsize=8)
def shared_token_cache(client_email: str, token_uri: str) -> AccessTokenCache:
    """Process-wide cache so per-request clients reuse one access token."""
    return AccessTokenCache()


class FCMClient:
    """Sends one message per call to FCM, authenticating as a service account.

    :ivar service_account: Credentials used to sign the OAuth2 assertion.
    :ivar http_client: Shared async HTTP client.
    """

    def __init__(
        self,
        service_account: ServiceAccount,
        http_client: httpx.AsyncClient,
        api_base_url: str | None = None,
        token_uri: str | None = None,
        token_cache: AccessTokenCache | None = None,
    ):
        self.service_account = service_account
        self.http_client = http_client
        self.api_base_url = (api_base_url or settings.fcm_api_base_url).rstrip("/")
        self.token_uri = token_uri or settings.google_token_uri
        self.token_cache = token_cache if token_cache is not None else AccessTokenCache()
        self._token_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, http_client: httpx.AsyncClient) -> "FCMClient":
        """Build a client from ``FIREBASE_SERVICE_ACCOUNT_KEY``.

        Raises:
            PushNotConfiguredError: If the key is missing or malformed
        """
        raw = settings.firebase_service_account_key
        if not raw:
            raise PushNotConfiguredError()
        try:
            account = ServiceAccount.model_validate_json(raw)
        except ValidationError as e:
            raise PushNotConfiguredError(
                "Service account key is invalid", details={"errors": e.error_count()}
            ) from e
        token_uri = settings.google_token_uri
        return cls(
            account,
            http_client,
            token_uri=token_uri,
            token_cache=shared_token_cache(account.client_email, token_uri),
        )

    @property
    def project_id(self) -> str:
        return self.service_account.project_id

    def _build_assertion(self, now: int) -> str:
        claims = {
            "iss": self.service_account.client_email,
            "scope": " ".join(FCM_SCOPES),
            "aud": self.token_uri,
            "iat": now,
            "exp": now + ASSERTION_LIFETIME,
        }
        return jwt.encode(claims, self.service_account.private_key, algorithm="RS256")

    async def get_access_token(self) -> str:
        """Return a cached OAuth2 access token, exchanging a new assertion when needed.

        Raises:
            UpstreamAuthError: If the token endpoint does not issue a token
        """
        async with self._token_lock:
            now = time.time()
            if self.token_cache.valid_at(now):
                return self.token_cache.access_token

            try:
                assertion = self._build_assertion(int(now))
            except (ValueError, TypeError, jwt.PyJWTError) as e:
                raise PushNotConfiguredError(f"Cannot sign service account assertion: {str(e)}") from e

            try:
                response = await self.http_client.post(
                    self.token_uri,
                    data={
                        "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                        "assertion": assertion,
                    },
                )
            except httpx.HTTPError as e:
                raise UpstreamAuthError(f"Failed to get access token: {str(e)}") from e

            try:
                body: dict[str, Any] = response.json()
            except ValueError:
                body = {}

            access_token = body.get("access_token")
            if not response.is_success or not access_token:
                raise UpstreamAuthError(f"Failed to get access token: {response.text}")

            self.token_cache.access_token = access_token
            self.token_cache.expires_at = now + float(body.get("expires_in", ASSERTION_LIFETIME))
            logger.info(f"Obtained FCM access token for project {self.project_id}")
            return access_token

    async def send_message(self, message: dict[str, Any]) -> httpx.Response:
        """POST one message to ``messages:send`` and return the raw response."""
        access_token = await self.get_access_token()
        return await self.http_client.post(
            f"{self.api_base_url}/projects/{self.project_id}/messages:send",
            json=message,
            headers={"Authorization": f"Bearer {access_token}"},
        )


__all__ = ["FCMClient", "ServiceAccount", "AccessTokenCache", "shared_token_cache", "FCM_SCOPES"]
