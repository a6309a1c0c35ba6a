"""
Push token model for storing device registrations for push delivery.

Each row is one provider-issued token for one browser install of one user.
Rows are addressed by the logical storage path ``tokens/{user_id}/{token_key}``
where ``token_key`` is a URL-safe encoding of the token itself.
"""

from sqlalchemy import Column, Index, String, Text, UniqueConstraint

from .base import BaseModel

TOKEN_PATH_ROOT = "tokens"


class PushToken(BaseModel):
    """
    Represents a push-capable device registration for a user.

    :ivar user_id: Identifier of the owning user.
    :type user_id: str
    :ivar token_key: URL-safe encoding of ``token``; unique per user.
    :type token_key: str
    :ivar token: Opaque token issued by the push provider.
    :type token: str
    :ivar device_id: Stable per-browser-install identifier.
    :type device_id: str
    :ivar origin: Site origin the token was issued for.
    :type origin: str
    :ivar user_agent: Browser user agent (diagnostic only).
    :type user_agent: str
    """

    __tablename__ = "push_tokens"

    user_id = Column(String(128), nullable=False)
    token_key = Column(String(1024), nullable=False)
    token = Column(Text, nullable=False)
    device_id = Column(String(128), nullable=True)
    origin = Column(String(255), nullable=True)
    user_agent = Column(String(160), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "token_key", name="uq_push_tokens_user_key"),
        Index("idx_push_tokens_user_updated", "user_id", "updated_at"),
    )

    @property
    def storage_path(self) -> str:
        return f"{TOKEN_PATH_ROOT}/{self.user_id}/{self.token_key}"

    def __repr__(self) -> str:
        return f"<PushToken(user_id={self.user_id}, device_id={self.device_id}, key={self.token_key[:12]}...)>"
