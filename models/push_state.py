"""
Push state model recording the outcome of a user's last push registration.

Used for diagnostics only; the token registry never reads it.
"""

from sqlalchemy import Boolean, Column, DateTime, String

from .base import BaseModel


class PushState(BaseModel):
    """
    Per-user snapshot of push permission and token registration state.

    :ivar user_id: Identifier of the user.
    :type user_id: str
    :ivar push_enabled: Whether push is currently usable for the user.
    :type push_enabled: bool
    :ivar push_permission: Last reported notification permission.
    :type push_permission: str
    :ivar push_token_state: Last registration outcome.
    :type push_token_state: str
    :ivar last_push_check_at: When registration was last attempted.
    :type last_push_check_at: datetime
    :ivar last_push_token_at: When a token was last saved.
    :type last_push_token_at: datetime
    :ivar last_push_error: Truncated message of the last registration error.
    :type last_push_error: str
    """

    __tablename__ = "user_push_states"

    user_id = Column(String(128), nullable=False, unique=True)
    push_enabled = Column(Boolean, nullable=False, default=False)
    push_permission = Column(String(32), nullable=True)
    push_token_state = Column(String(32), nullable=True)
    last_push_check_at = Column(DateTime, nullable=True)
    last_push_token_at = Column(DateTime, nullable=True)
    last_push_error = Column(String(140), nullable=True)
