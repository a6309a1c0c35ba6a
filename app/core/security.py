"""Security related functions."""

from datetime import datetime, timedelta, timezone

import jwt
from jwt import InvalidTokenError

from app.core.config import settings
from app.exceptions.base import AuthenticationError


class TokenAuthenticator:
    """
    Verifies bearer tokens issued by the site's auth provider.

    Tokens are HS256 JWTs signed with the shared secret; the ``sub`` claim is
    the user identifier that owns push tokens.

    :ivar secret_key: The secret key used to verify JWT tokens.
    :type secret_key: str
    :ivar algorithm: The signing algorithm accepted.
    :type algorithm: str
    """

    def __init__(self, secret_key: str | None = None, algorithm: str | None = None):
        self.secret_key = secret_key or settings.secret_key
        self.algorithm = algorithm or settings.algorithm

    def verify_token(self, token: str) -> dict:
        """
        Decode and verify a JWT.

        :param token: The JWT token to be verified.
        :return: The decoded payload.
        :raises AuthenticationError: If the token is invalid or expired.
        """
        try:
            return jwt.decode(
                token,
                key=self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_aud": False},
            )
        except InvalidTokenError as e:
            raise AuthenticationError(f"Invalid authentication token: {str(e)}") from e

    def create_token(self, user_id: str, expires_in: timedelta | None = None, **claims) -> str:
        """Issue a short-lived token for ``user_id``; background broadcasts call the dispatch endpoint with it."""
        issued_at = datetime.now(timezone.utc)
        lifetime = expires_in or timedelta(minutes=settings.access_token_expire_minutes)
        payload = {"sub": user_id, "iat": issued_at, "exp": issued_at + lifetime, **claims}
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
