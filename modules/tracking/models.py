from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ProgressUpdate:
    """One progress change applied to every target of a batch."""

    step_id: int
    status: str
    completed_by_user_name: str | None = None

    def payload_for(self, item_id: int) -> dict[str, Any]:
        return {
            "item_id": int(item_id),
            "step_id": int(self.step_id),
            "status": self.status,
            "completed_by_user_name": self.completed_by_user_name,
        }


@dataclass(frozen=True)
class TargetOutcome:
    item_id: int
    succeeded: bool
    attempts: int
    error: str | None = None

    def as_result(self) -> dict[str, Any]:
        out: dict[str, Any] = {"itemId": self.item_id, "success": self.succeeded, "attempts": self.attempts}
        if self.error is not None:
            out["error"] = self.error
        return out

    def as_error(self) -> dict[str, Any]:
        return {"itemId": self.item_id, "error": self.error, "attempts": self.attempts}


@dataclass
class BatchResult:
    total: int
    outcomes: list[TargetOutcome] = field(default_factory=list)

    def record(self, outcome: TargetOutcome) -> None:
        self.outcomes.append(outcome)

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.succeeded)

    @property
    def failure_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.succeeded)

    @property
    def failures(self) -> list[TargetOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def ok(self) -> bool:
        # Partial success still counts as success at the transport level
        return self.success_count > 0

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": self.success_count,
            "failed": self.failure_count,
            "total": self.total,
            "results": [o.as_result() for o in self.outcomes],
        }
        failures = self.failures
        if failures:
            body["errors"] = [o.as_error() for o in failures]
        return body
