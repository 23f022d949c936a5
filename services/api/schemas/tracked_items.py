from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class TargetResult(BaseModel):
    itemId: int
    success: bool
    attempts: int
    error: str | None = None


class TargetError(BaseModel):
    itemId: int
    error: str
    attempts: int


class BatchStepProgressResponse(BaseModel):
    success: int
    failed: int
    total: int
    results: list[TargetResult] = []
    errors: list[TargetError] | None = None


class ErrorResponse(BaseModel):
    error: str | dict[str, Any]
    details: str | None = None
    itemIds: list[int] | None = None
