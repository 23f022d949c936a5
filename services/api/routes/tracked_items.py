from __future__ import annotations

from typing import Any

import anyio.to_thread
import structlog
from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from modules.persistence.gateway import ErrorKind, GatewayError, ProcedureGateway, json_param
from modules.tracking.batch import (
    UPDATE_STEP_PROGRESS,
    BatchStepProgressCoordinator,
    BatchValidationError,
    parse_batch_request,
)
from modules.tracking.retry import RetryExecutor
from services.api.auth import CurrentUser, authenticate, denied_items
from services.api.errors import ApiError
from services.api.schemas.tracked_items import (
    BatchStepProgressResponse,
    ErrorResponse,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/tracked-items", tags=["tracked-items"])


def get_gateway() -> ProcedureGateway:
    return ProcedureGateway()


def get_retry_executor() -> RetryExecutor:
    return RetryExecutor()


@router.post(
    "/batch-step-progress",
    response_model=BatchStepProgressResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        500: {"model": BatchStepProgressResponse, "description": "No target was updated"},
    },
)
async def batch_step_progress(
    body: Any = Body(
        default=None,
        description="JSON object with itemIds, stepId, status and optional completed_by_user_name",
        examples=[
            {
                "itemIds": [101, 102, 103],
                "stepId": 7,
                "status": "Complete",
                "completed_by_user_name": "j.smith",
            }
        ]
    ),
    user: CurrentUser = Depends(authenticate),
    gateway: ProcedureGateway = Depends(get_gateway),
    executor: RetryExecutor = Depends(get_retry_executor),
) -> JSONResponse:
    try:
        item_ids, update = parse_batch_request(body if isinstance(body, dict) else {})
    except BatchValidationError as exc:
        raise ApiError(400, str(exc))

    denied = await anyio.to_thread.run_sync(denied_items, user, item_ids)
    if denied:
        raise ApiError(403, "Access denied to one or more items", itemIds=denied)

    try:
        result = await BatchStepProgressCoordinator(gateway, executor).apply(item_ids, update)
    except Exception as exc:  # noqa: BLE001
        logger.error("batch_progress_aborted", error=str(exc), exc_info=exc)
        raise ApiError(500, "Failed to process batch step progress update", details=str(exc))

    # Partial success is reported as 200; callers reconcile with the per-item results
    return JSONResponse(status_code=200 if result.ok else 500, content=result.to_response())


async def _update_single_step(
    item_id: int,
    step_id: int,
    body: dict[str, Any],
    user: CurrentUser,
    gateway: ProcedureGateway,
) -> JSONResponse:
    if await anyio.to_thread.run_sync(denied_items, user, [item_id]):
        raise ApiError(403, "Access denied to this item", itemIds=[item_id])

    progress = {**body, "item_id": item_id, "step_id": step_id}
    params = {"ProgressJson": json_param(progress)}
    try:
        payload = await anyio.to_thread.run_sync(gateway.execute, UPDATE_STEP_PROGRESS, params)
    except GatewayError as exc:
        if exc.kind is ErrorKind.REJECTED:
            return JSONResponse(status_code=400, content=exc.payload)
        logger.error("step_progress_failed", item_id=item_id, step_id=step_id, kind=exc.kind.value, error=exc.message)
        return JSONResponse(
            status_code=500,
            content={"error": {"ErrorMessage": "An internal server error occurred.", "details": exc.message}},
        )
    return JSONResponse(status_code=200, content=payload if payload is not None else [])


@router.post("/{item_id}/steps/{step_id}", responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}})
async def update_step_progress(
    item_id: int,
    step_id: int,
    body: dict[str, Any] | None = Body(default=None, examples=[{"status": "In Progress"}]),
    user: CurrentUser = Depends(authenticate),
    gateway: ProcedureGateway = Depends(get_gateway),
) -> JSONResponse:
    return await _update_single_step(item_id, step_id, body or {}, user, gateway)


@router.put("/{item_id}/steps/{step_id}", responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}})
async def replace_step_progress(
    item_id: int,
    step_id: int,
    body: dict[str, Any] | None = Body(default=None),
    user: CurrentUser = Depends(authenticate),
    gateway: ProcedureGateway = Depends(get_gateway),
) -> JSONResponse:
    return await _update_single_step(item_id, step_id, body or {}, user, gateway)
