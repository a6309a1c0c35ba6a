"""Celery tasks for push broadcasts."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import all models to ensure they're registered before creating session
import models  # noqa: F401

from app.celery_app import celery_app
from app.core.config import settings
from app.core.security import TokenAuthenticator
from app.domains.push.fanout_client import PushFanoutClient
from app.domains.push.progress import ProgressCallback
from app.domains.push.registry import TokenRegistry
from app.schemas.push import PushPayload, PushProgress

logger = logging.getLogger(__name__)

PROGRESS_STATE = "PROGRESS"


@asynccontextmanager
async def get_async_session() -> AsyncIterator[AsyncSession]:
    """Create an async database session for Celery tasks.

    The engine belongs to the task's event loop and is disposed with it.

    Yields:
        Async database session
    """
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    try:
        async with async_sessionmaker(engine, expire_on_commit=False)() as session:
            yield session
    finally:
        await engine.dispose()


def _progress_publisher(task) -> ProgressCallback:
    def publish(progress: PushProgress) -> None:
        task.update_state(state=PROGRESS_STATE, meta=progress.model_dump(mode="json"))

    return publish


def _fanout_client(http_client: httpx.AsyncClient, sender_id: str, **kwargs) -> PushFanoutClient:
    # The dispatch endpoint is admin-only; act as the admin who queued the broadcast.
    token = TokenAuthenticator().create_token(sender_id)
    return PushFanoutClient(http_client, auth_token=token, **kwargs)


@celery_app.task(name="app.tasks.push_tasks.broadcast_to_users_task", bind=True)
def broadcast_to_users_task(
    self, sender_id: str, user_ids: list[str], payload: dict[str, Any]
) -> dict[str, Any]:
    """Send a notification to every registered device of ``user_ids``.

    Progress snapshots are published as task state ``PROGRESS``.

    Args:
        sender_id: Admin user the broadcast is sent on behalf of
        user_ids: Target users
        payload: Serialized ``PushPayload``

    Returns:
        The fan-out result as a dictionary
    """
    logger.info(f"🚀 Starting push broadcast to {len(user_ids)} users (Task ID: {self.request.id})")
    result = asyncio.run(
        _broadcast_to_users_async(
            sender_id, user_ids, PushPayload.model_validate(payload), _progress_publisher(self)
        )
    )
    logger.info(f"✅ Push broadcast finished: {result}")
    return result


async def _broadcast_to_users_async(
    sender_id: str, user_ids: list[str], payload: PushPayload, on_progress: ProgressCallback
) -> dict[str, Any]:
    async with httpx.AsyncClient() as http_client:
        client = _fanout_client(http_client, sender_id)
        result = await client.send_to_users(user_ids, payload, on_progress=on_progress)
    return result.model_dump(mode="json")


@celery_app.task(name="app.tasks.push_tasks.broadcast_to_tokens_task", bind=True)
def broadcast_to_tokens_task(
    self, sender_id: str, tokens: list[str], payload: dict[str, Any]
) -> dict[str, Any]:
    """Send a notification to explicit tokens, removing those reported invalid."""
    logger.info(f"🚀 Starting push broadcast to {len(tokens)} tokens (Task ID: {self.request.id})")
    result = asyncio.run(
        _broadcast_to_tokens_async(
            sender_id, tokens, PushPayload.model_validate(payload), _progress_publisher(self)
        )
    )
    logger.info(f"✅ Push broadcast finished: {result}")
    return result


async def _broadcast_to_tokens_async(
    sender_id: str, tokens: list[str], payload: PushPayload, on_progress: ProgressCallback
) -> dict[str, Any]:
    async with get_async_session() as session, httpx.AsyncClient() as http_client:
        client = _fanout_client(http_client, sender_id, registry=TokenRegistry(session))
        result = await client.send_to_tokens(tokens, payload, on_progress=on_progress)
    return result.model_dump(mode="json")
