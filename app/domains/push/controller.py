"""Push notification API controller."""

import logging

import httpx
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import (
    get_current_user_id,
    get_db,
    get_http_client,
    get_token_registry,
    require_admin,
    validate_token,
)
from app.domains.push.payload import validate_payload
from app.domains.push.registration import PushRegistrationService
from app.domains.push.registry import TokenRegistry
from app.domains.push.service import PushDispatchService
from app.exceptions.push import NoPushTargetsError
from app.schemas.base import ResponseSchema
from app.schemas.push import (
    BroadcastRequest,
    DispatchRequest,
    DispatchResponse,
    PushStateResponse,
    PushTokenResponse,
    TokenRegistrationRequest,
    TokenRegistrationResponse,
)
from app.tasks.push_tasks import broadcast_to_tokens_task, broadcast_to_users_task

logger = logging.getLogger(__name__)

TOKEN_PREFIX_LENGTH = 16

router = APIRouter(
    prefix="/api/push",
    tags=["push"],
    dependencies=[Depends(validate_token)],  # Global token validation for all routes
)


@router.post(
    "/send",
    response_model=DispatchResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_admin)],
)
async def send_push(
    _request: Request,
    dispatch_request: DispatchRequest,
    origin: str | None = Header(None),
    registry: TokenRegistry = Depends(get_token_registry),
    http_client: httpx.AsyncClient = Depends(get_http_client),
):
    """Dispatch endpoint: deliver a notification to explicit tokens or to users' tokens.

    Exactly one of ``tokens`` / ``userIds`` needs to be given; with neither
    the request is rejected with 400.
    """
    service = PushDispatchService(registry, http_client=http_client)
    return await service.dispatch(dispatch_request, origin=origin)


@router.post("/tokens", response_model=TokenRegistrationResponse)
async def register_token(
    _request: Request,
    registration: TokenRegistrationRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Register the current user's device token, pruning stale ones."""
    service = PushRegistrationService(db)
    return await service.register_device(user_id, registration)


@router.get("/tokens", response_model=list[PushTokenResponse])
async def list_tokens(
    _request: Request,
    user_id: str = Depends(get_current_user_id),
    registry: TokenRegistry = Depends(get_token_registry),
):
    """List the current user's registered devices, newest first."""
    tokens = await registry.list_tokens(user_id)
    return [
        PushTokenResponse(
            token_key=entry.token_key,
            token_prefix=entry.token[:TOKEN_PREFIX_LENGTH],
            device_id=entry.device_id,
            origin=entry.origin,
            user_agent=entry.user_agent,
            updated_at=entry.updated_at,
        )
        for entry in tokens
    ]


@router.get("/state", response_model=PushStateResponse)
async def get_push_state(
    _request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Get the outcome of the current user's last push registration."""
    state = await PushRegistrationService(db).get_state(user_id)
    if state is None:
        return PushStateResponse(user_id=user_id)
    return PushStateResponse.model_validate(state)


@router.post("/broadcast", response_model=ResponseSchema, status_code=202)
async def broadcast(
    _request: Request,
    broadcast_request: BroadcastRequest,
    admin_id: str = Depends(require_admin),
):
    """Queue a background broadcast to users or explicit tokens.

    Progress can be followed through ``/task-status/{task_id}``.
    """
    validate_payload(broadcast_request.payload)
    payload = broadcast_request.payload.model_dump(mode="json")

    if broadcast_request.tokens:
        task = broadcast_to_tokens_task.delay(admin_id, broadcast_request.tokens, payload)
        targets = {"tokens": len(broadcast_request.tokens)}
    elif broadcast_request.user_ids:
        task = broadcast_to_users_task.delay(admin_id, broadcast_request.user_ids, payload)
        targets = {"users": len(broadcast_request.user_ids)}
    else:
        raise NoPushTargetsError()

    logger.info(f"Queued push broadcast {task.id} by {admin_id}: {targets}")
    return ResponseSchema(
        status="success",
        message="Push broadcast queued successfully",
        data={"task_id": task.id, "status": "queued", "targets": targets},
    )


@router.get("/task-status/{task_id}", response_model=ResponseSchema)
async def get_task_status(
    task_id: str,
    _request: Request,
    _admin_id: str = Depends(require_admin),
):
    """Get the status, progress or result of a background broadcast.

    Args:
        task_id: The Celery task ID
    """
    try:
        from app.celery_app import celery_app

        task_result = celery_app.AsyncResult(task_id)
        info = task_result.info if isinstance(task_result.info, dict) else None

        return ResponseSchema(
            status="success",
            message="Task status retrieved successfully",
            data={
                "task_id": task_id,
                "status": task_result.status,
                "progress": info if task_result.status == "PROGRESS" else None,
                "result": task_result.result if task_result.successful() else None,
            },
        )

    except Exception as e:
        logger.error(f"Failed to get task status: {str(e)}")
        return JSONResponse(
            status_code=500,
            content=ResponseSchema(
                status="error",
                message="Failed to get task status",
                data={"error": str(e)},
            ).model_dump(),
        )
