"""In-process stand-ins for the store's procedures, used with the SQLite fallback.

Each procedure takes the session plus its named parameters and returns the JSON
document a server-side procedure would put in the first column of its result.
Business errors are reported in-band as ``{"error": {...}}`` rather than raised.
"""
from __future__ import annotations

import json
from typing import Any, Callable

from sqlalchemy.orm import Session

from . import repos
from .models import StepStatus

LocalProcedure = Callable[..., str]

LOCAL_PROCEDURES: dict[str, LocalProcedure] = {}

_STATUSES = {s.value for s in StepStatus}


def local_procedure(name: str) -> Callable[[LocalProcedure], LocalProcedure]:
    def _register(fn: LocalProcedure) -> LocalProcedure:
        LOCAL_PROCEDURES[name] = fn
        return fn

    return _register


def _error(message: str, **details: Any) -> str:
    return json.dumps({"error": {"ErrorMessage": message, **details}})


@local_procedure("usp_UpdateTrackedItemStepProgress")
def update_tracked_item_step_progress(session: Session, *, ProgressJson: str) -> str:  # noqa: N803
    try:
        data = json.loads(ProgressJson)
        item_id = int(data["item_id"])
        step_id = int(data["step_id"])
    except (TypeError, ValueError, KeyError):
        return _error("ProgressJson must contain integer item_id and step_id")

    status = data.get("status")
    if status not in _STATUSES:
        return _error("Invalid step status", status=status)
    if repos.get_tracked_item(session, item_id) is None:
        return _error("Tracked item not found", item_id=item_id)

    row = repos.upsert_step_progress(
        session,
        item_id=item_id,
        step_id=step_id,
        status=status,
        completed_by_user_name=data.get("completed_by_user_name"),
    )
    return json.dumps(
        {
            "SuccessMessage": "Step progress updated",
            "item_id": row.item_id,
            "step_id": row.step_id,
            "status": row.status,
            "completion_timestamp": row.completion_timestamp.isoformat() if row.completion_timestamp else None,
        }
    )
