"""
Models package initialization.
"""

from .base import Base, BaseModel
from .push_state import PushState
from .push_token import PushToken

__all__ = [
    "Base",
    "BaseModel",
    "PushToken",
    "PushState",
]
