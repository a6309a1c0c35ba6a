"""Device registration: turn a browser's push environment into a saved token."""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.domains.push.registry import TokenRegistry
from app.exceptions.push import TokenRegistryError
from app.schemas.push import (
    RegistrationState,
    TokenRegistrationRequest,
    TokenRegistrationResponse,
)
from models.base import utcnow
from models.push_state import PushState


logger = logging.getLogger(__name__)

ERROR_MESSAGE_MAX_LENGTH = 140

STATE_MESSAGES = {
    RegistrationState.unsupported: "Push messaging is not supported in this browser",
    RegistrationState.sw_not_supported: "Service workers are not supported in this browser",
    RegistrationState.blocked: (
        "Notifications are blocked. Allow notifications for this site in the browser settings"
    ),
    RegistrationState.not_granted: "Notification permission was not granted",
    RegistrationState.empty_token: "No push token was returned by the browser",
    RegistrationState.saved: "Push token saved",
    RegistrationState.error: "Push token could not be saved",
}


class PushRegistrationService:
    """Service for device push registration and its diagnostic state."""

    def __init__(self, db: AsyncSession, registry: TokenRegistry | None = None):
        self.db = db
        self.registry = registry or TokenRegistry(db)

    async def register_device(
        self, user_id: str, request: TokenRegistrationRequest
    ) -> TokenRegistrationResponse:
        """Register the reported token, or report why the device cannot receive push.

        Every outcome is returned as a state; none is raised.
        """
        if not request.supported:
            return await self._finish(user_id, RegistrationState.unsupported, push_permission="unsupported")
        if not request.service_worker:
            return await self._finish(
                user_id, RegistrationState.sw_not_supported, push_permission="unsupported"
            )
        if request.permission == "denied":
            return await self._finish(user_id, RegistrationState.blocked, push_permission="denied")
        if request.permission != "granted":
            return await self._finish(
                user_id, RegistrationState.not_granted, push_permission=request.permission
            )
        if not request.token:
            return await self._finish(
                user_id, RegistrationState.empty_token, push_enabled=True, push_permission="granted"
            )

        try:
            result = await self.registry.register(
                user_id=user_id,
                token=request.token,
                device_id=request.device_id,
                origin=request.origin,
                user_agent=request.user_agent,
            )
        except TokenRegistryError as e:
            logger.warning(f"Push registration failed for user {user_id}: {e.message}")
            return await self._finish(
                user_id,
                RegistrationState.error,
                push_enabled=False,
                last_push_error=e.message[:ERROR_MESSAGE_MAX_LENGTH],
            )

        message = STATE_MESSAGES[RegistrationState.saved]
        if result.pruned:
            message = f"{message} ({result.pruned} old token{'s' if result.pruned > 1 else ''} cleaned)"

        response = await self._finish(
            user_id,
            RegistrationState.saved,
            push_enabled=True,
            push_permission="granted",
            last_push_token_at=utcnow(),
        )
        return response.model_copy(
            update={"message": message, "token_key": result.token_key, "pruned": result.pruned}
        )

    async def _finish(
        self, user_id: str, state: RegistrationState, **patch: Any
    ) -> TokenRegistrationResponse:
        patch.setdefault("push_enabled", False)
        await self.record_state(user_id, push_token_state=state.value, **patch)
        if state != RegistrationState.saved:
            logger.info(f"Push registration for user {user_id}: {state.value}")
        return TokenRegistrationResponse(state=state, message=STATE_MESSAGES[state])

    async def record_state(self, user_id: str, **patch: Any) -> PushState | None:
        """Merge ``patch`` into the user's push state; failures are logged, not raised."""
        try:
            result = await self.db.execute(select(PushState).where(PushState.user_id == user_id))
            state = result.scalar_one_or_none()
            if state is None:
                state = PushState(user_id=user_id)
                self.db.add(state)

            state.last_push_check_at = utcnow()
            for key, value in patch.items():
                setattr(state, key, value)

            await self.db.commit()
            return state
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Failed to persist push state for user {user_id}: {str(e)}")
            return None

    async def get_state(self, user_id: str) -> PushState | None:
        result = await self.db.execute(select(PushState).where(PushState.user_id == user_id))
        return result.scalar_one_or_none()


__all__ = ["PushRegistrationService", "STATE_MESSAGES"]
