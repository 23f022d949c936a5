"""Batch step-progress updates.

Targets are updated one at a time, in request order. Running them concurrently
makes the store pick more deadlock victims among our own writes, so the loop
stays sequential; each target gets its own bounded retry and one target's
failure never stops the rest of the batch.
"""
from __future__ import annotations

import time
from functools import partial
from typing import Any, Mapping, Sequence

import anyio.to_thread
import structlog

from modules.metrics import BATCH_REQUESTS, BATCH_SECONDS, BATCH_TARGETS
from modules.persistence.gateway import GatewayError, ProcedureGateway, json_param
from modules.tracking.models import BatchResult, ProgressUpdate, TargetOutcome
from modules.tracking.retry import RetryExecutor

logger = structlog.get_logger(__name__)

UPDATE_STEP_PROGRESS = "usp_UpdateTrackedItemStepProgress"


class BatchValidationError(ValueError):
    pass


def _positive_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        try:
            n = int(value.strip())
        except ValueError:
            # isdigit() admits superscripts and over-long digit runs int() refuses
            return None
        return n if n > 0 else None
    return None


def parse_batch_request(body: Mapping[str, Any]) -> tuple[list[int], ProgressUpdate]:
    """Validate a raw batch body; raises BatchValidationError with the client-facing message."""
    raw_ids = body.get("itemIds")
    if not isinstance(raw_ids, list) or not raw_ids:
        raise BatchValidationError("itemIds array is required and must not be empty")
    item_ids: list[int] = []
    for value in raw_ids:
        n = _positive_int(value)
        if n is None:
            raise BatchValidationError("itemIds must contain only positive integers")
        item_ids.append(n)

    raw_step = body.get("stepId")
    if raw_step is None or raw_step == "":
        raise BatchValidationError("stepId is required")
    step_id = _positive_int(raw_step)
    if step_id is None:
        raise BatchValidationError("stepId must be a positive integer")

    status = body.get("status")
    if not isinstance(status, str) or not status.strip():
        raise BatchValidationError("status is required")

    completed_by = body.get("completed_by_user_name")
    if completed_by is not None and not isinstance(completed_by, str):
        raise BatchValidationError("completed_by_user_name must be a string")
    return item_ids, ProgressUpdate(step_id=step_id, status=status, completed_by_user_name=completed_by)


def _error_message(exc: BaseException | None) -> str:
    if isinstance(exc, GatewayError):
        return exc.message
    if exc is None:
        return "unknown error"
    return str(exc) or type(exc).__name__


class BatchStepProgressCoordinator:
    def __init__(self, gateway: ProcedureGateway, executor: RetryExecutor | None = None) -> None:
        self._gateway = gateway
        self._executor = executor or RetryExecutor()

    async def _update_one(self, item_id: int, update: ProgressUpdate) -> Any:
        params = {"ProgressJson": json_param(update.payload_for(item_id))}
        # The gateway blocks on the driver; keep it off the event loop
        return await anyio.to_thread.run_sync(self._gateway.execute, UPDATE_STEP_PROGRESS, params)

    async def apply(self, item_ids: Sequence[int], update: ProgressUpdate) -> BatchResult:
        started = time.perf_counter()
        result = BatchResult(total=len(item_ids))
        logger.info(
            "batch_progress_started",
            items=len(item_ids),
            step_id=update.step_id,
            status=update.status,
        )

        for item_id in item_ids:
            outcome = await self._executor.run(partial(self._update_one, item_id, update), label=str(item_id))
            if outcome.succeeded:
                result.record(TargetOutcome(item_id=item_id, succeeded=True, attempts=outcome.attempts))
                BATCH_TARGETS.labels(outcome="succeeded").inc()
                logger.debug("batch_target_updated", item_id=item_id, attempts=outcome.attempts)
                continue

            message = _error_message(outcome.error)
            result.record(TargetOutcome(item_id=item_id, succeeded=False, attempts=outcome.attempts, error=message))
            BATCH_TARGETS.labels(outcome="failed").inc()
            logger.error(
                "batch_target_failed",
                item_id=item_id,
                attempts=outcome.attempts,
                kind=getattr(getattr(outcome.error, "kind", None), "value", "unexpected"),
                error=message,
            )

        BATCH_REQUESTS.inc()
        BATCH_SECONDS.observe(time.perf_counter() - started)
        logger.info(
            "batch_progress_completed",
            succeeded=result.success_count,
            failed=result.failure_count,
            total=result.total,
        )
        return result
