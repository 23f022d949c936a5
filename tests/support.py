from __future__ import annotations

import json
from typing import Any

from modules.persistence.gateway import ErrorKind, GatewayError
from services.api.auth import CurrentUser, ProgramGrant


def deadlock(message: str = "Transaction was deadlocked and has been chosen as the deadlock victim") -> GatewayError:
    return GatewayError(message, kind=ErrorKind.TRANSIENT_CONTENTION, code=1205)


def rejected(message: str = "Tracked item not found") -> GatewayError:
    return GatewayError(message, kind=ErrorKind.REJECTED, payload={"error": {"ErrorMessage": message}})


class FakeGateway:
    """Scripted stand-in for ProcedureGateway.

    ``script`` maps item_id -> outcomes consumed one per call; exceptions are
    raised, anything else is returned. Unscripted calls succeed.
    """

    def __init__(self, script: dict[int, list[Any]] | None = None) -> None:
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def execute(self, procedure: str, params: dict[str, Any] | None = None) -> Any:
        params = dict(params or {})
        self.calls.append((procedure, params))
        item_id = int(json.loads(params["ProgressJson"])["item_id"])
        outcome: Any = {"SuccessMessage": "Step progress updated", "item_id": item_id}
        steps = self.script.get(item_id)
        if steps:
            outcome = steps.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def item_calls(self) -> list[int]:
        return [int(json.loads(p["ProgressJson"])["item_id"]) for _, p in self.calls]


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def scoped_user(program_id: int, level: str) -> CurrentUser:
    return CurrentUser(
        user_id=99,
        user_name="scoped",
        certificate_subject="CN=scoped",
        program_access=[ProgramGrant(program_id=program_id, access_level=level, program_name="P", program_code="P")],
    )
