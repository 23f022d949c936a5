import json
import sqlite3
from contextlib import contextmanager

import pytest
from sqlalchemy.exc import DBAPIError, OperationalError, ResourceClosedError

from modules.persistence import repos
from modules.persistence.db import get_session
from modules.persistence.gateway import (
    MSSQL_DEADLOCK_VICTIM,
    ErrorKind,
    GatewayError,
    ProcedureGateway,
    classify,
    vendor_code,
)
from modules.tracking.batch import UPDATE_STEP_PROGRESS


class MssqlError(Exception):
    number = MSSQL_DEADLOCK_VICTIM


class PgError(Exception):
    def __init__(self, message: str, sqlstate: str) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate


def _wrap(orig: BaseException) -> DBAPIError:
    return DBAPIError("EXEC usp_X", {}, orig)


@pytest.mark.parametrize(
    "orig, expected_code",
    [
        (MssqlError("deadlock victim"), 1205),
        (PgError("deadlock detected", "40P01"), "40P01"),
        (PgError("could not serialize access", "40001"), "40001"),
        (
            Exception(
                "40001",
                "[40001] [SQL Server]Transaction (Process ID 52) was deadlocked on lock resources with another "
                "process and has been chosen as the deadlock victim. Rerun the transaction. (1205) (SQLExecDirectW)",
            ),
            1205,
        ),
    ],
)
def test_contention_codes_classify_as_transient(orig, expected_code) -> None:
    err = _wrap(orig)
    assert vendor_code(err) == expected_code
    assert classify(err) is ErrorKind.TRANSIENT_CONTENTION


def test_sqlite_lock_is_transient() -> None:
    err = OperationalError("UPDATE ...", {}, sqlite3.OperationalError("database is locked"))
    assert classify(err) is ErrorKind.TRANSIENT_CONTENTION


def test_other_errors_are_not_transient() -> None:
    assert classify(_wrap(PgError("duplicate key", "23505"))) is ErrorKind.OTHER
    assert classify(_wrap(Exception("syntax error near EXEC"))) is ErrorKind.OTHER
    assert vendor_code(_wrap(Exception("syntax error near EXEC"))) is None


def test_statement_per_backend() -> None:
    params = {"ProgressJson": "{}"}
    pg = ProcedureGateway(backend="postgresql")
    assert pg.statement("usp_UpdateTrackedItemStepProgress", params) == (
        "SELECT usp_UpdateTrackedItemStepProgress(ProgressJson => :ProgressJson)"
    )
    ms = ProcedureGateway(backend="mssql")
    assert ms.statement("dbo.usp_UpdateTrackedItemStepProgress", params) == (
        "EXEC dbo.usp_UpdateTrackedItemStepProgress @ProgressJson = :ProgressJson"
    )
    with pytest.raises(ValueError):
        ms.statement("usp_x; DROP TABLE users", params)
    with pytest.raises(GatewayError):
        ProcedureGateway(backend="oracle").statement("usp_x", params)


class _Row(tuple):
    pass


class _Result:
    def __init__(self, row, returns_rows=True):
        self._row = row
        self.returns_rows = returns_rows

    def first(self):
        if not self.returns_rows:
            raise ResourceClosedError("This result object does not return rows. It has been closed automatically.")
        return self._row


class _NoRowsSession:
    def execute(self, stmt, params=None):
        return _Result(None, returns_rows=False)


class _Session:
    def __init__(self, outcome):
        self.outcome = outcome
        self.statements = []

    def execute(self, stmt, params=None):
        self.statements.append((str(stmt), params))
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return _Result(self.outcome)


def _factory(session):
    @contextmanager
    def _cm():
        yield session

    return _cm


def test_driver_deadlock_becomes_transient_gateway_error() -> None:
    session = _Session(_wrap(MssqlError("chosen as the deadlock victim")))
    gw = ProcedureGateway(_factory(session), backend="mssql")
    with pytest.raises(GatewayError) as exc:
        gw.execute("usp_UpdateTrackedItemStepProgress", {"ProgressJson": "{}"})
    assert exc.value.transient
    assert exc.value.code == 1205
    assert "deadlock victim" in exc.value.message


def test_procedure_error_payload_is_rejected() -> None:
    doc = {"error": {"ErrorMessage": "Tracked item not found", "item_id": 5}}
    gw = ProcedureGateway(_factory(_Session(_Row([json.dumps(doc)]))), backend="postgresql")
    with pytest.raises(GatewayError) as exc:
        gw.execute("usp_UpdateTrackedItemStepProgress", {"ProgressJson": "{}"})
    assert exc.value.kind is ErrorKind.REJECTED
    assert exc.value.message == "Tracked item not found"
    assert exc.value.payload == doc


def test_success_payload_is_parsed_and_empty_result_is_none() -> None:
    gw = ProcedureGateway(_factory(_Session(_Row(['{"SuccessMessage": "ok"}']))), backend="mssql")
    assert gw.execute("usp_UpdateTrackedItemStepProgress", {"ProgressJson": "{}"}) == {"SuccessMessage": "ok"}

    gw_empty = ProcedureGateway(_factory(_Session(None)), backend="mssql")
    assert gw_empty.execute("usp_UpdateTrackedItemStepProgress", {"ProgressJson": "{}"}) is None


def test_write_only_procedure_without_result_set_succeeds() -> None:
    committed = []

    @contextmanager
    def _cm():
        yield _NoRowsSession()
        committed.append(True)

    gw = ProcedureGateway(_cm, backend="mssql")
    assert gw.execute("usp_UpdateTrackedItemStepProgress", {"ProgressJson": "{}"}) is None
    assert committed == [True]


def test_sqlite_procedure_updates_progress_row(seed_program) -> None:
    seeded = seed_program(items=1)
    item_id = seeded["item_ids"][0]
    gw = ProcedureGateway()
    payload = gw.execute(
        UPDATE_STEP_PROGRESS,
        {"ProgressJson": json.dumps({"item_id": item_id, "step_id": 3, "status": "Complete", "completed_by_user_name": "ops"})},
    )
    assert payload["SuccessMessage"] == "Step progress updated"
    assert payload["completion_timestamp"]

    # Moving back out of Complete clears the completion stamp
    gw.execute(UPDATE_STEP_PROGRESS, {"ProgressJson": json.dumps({"item_id": item_id, "step_id": 3, "status": "In Progress"})})
    with get_session() as session:
        row = repos.get_step_progress(session, item_id=item_id, step_id=3)
        assert row.status == "In Progress"
        assert row.completion_timestamp is None
        assert row.completed_by_user_name is None


def test_sqlite_procedure_rejects_unknown_item_and_status(seed_program) -> None:
    item_id = seed_program(items=1)["item_ids"][0]
    gw = ProcedureGateway()
    with pytest.raises(GatewayError) as missing:
        gw.execute(UPDATE_STEP_PROGRESS, {"ProgressJson": json.dumps({"item_id": 987654321, "step_id": 1, "status": "Complete"})})
    assert missing.value.kind is ErrorKind.REJECTED

    with pytest.raises(GatewayError) as bad_status:
        gw.execute(UPDATE_STEP_PROGRESS, {"ProgressJson": json.dumps({"item_id": item_id, "step_id": 1, "status": "Done-ish"})})
    assert bad_status.value.kind is ErrorKind.REJECTED
    assert bad_status.value.message == "Invalid step status"


def test_sqlite_unknown_procedure_is_other_error() -> None:
    with pytest.raises(GatewayError) as exc:
        ProcedureGateway().execute("usp_DoesNotExist", {})
    assert exc.value.kind is ErrorKind.OTHER
