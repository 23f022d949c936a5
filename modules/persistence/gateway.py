"""Data access gateway: runs one named store procedure per call.

Driver failures are translated into ``GatewayError`` with an explicit
``ErrorKind`` so callers never inspect vendor codes themselves.
"""
from __future__ import annotations

import enum
import json
import re
from contextlib import AbstractContextManager
from typing import Any, Callable, Mapping

import structlog
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session

from .db import backend_name, get_session
from .procedures import LOCAL_PROCEDURES, LocalProcedure

logger = structlog.get_logger(__name__)

# SQL Server: "Transaction was deadlocked ... chosen as the deadlock victim"
MSSQL_DEADLOCK_VICTIM = 1205
# PostgreSQL: deadlock_detected, serialization_failure
PG_TRANSIENT_SQLSTATES = frozenset({"40P01", "40001"})

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")
_NATIVE_CODE_IN_MESSAGE = re.compile(r"\((\d{3,5})\)")


class ErrorKind(str, enum.Enum):
    TRANSIENT_CONTENTION = "transient_contention"
    REJECTED = "rejected"
    OTHER = "other"


class GatewayError(Exception):
    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.OTHER,
        code: int | str | None = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.code = code
        self.payload = payload

    @property
    def transient(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT_CONTENTION


def vendor_code(exc: BaseException) -> int | str | None:
    """Best-effort native error code from a DBAPI error (psycopg, pymssql, pyodbc)."""
    orig = getattr(exc, "orig", None) or exc
    sqlstate = getattr(orig, "sqlstate", None)
    if sqlstate:
        return str(sqlstate)
    number = getattr(orig, "number", None)
    if isinstance(number, int):
        return number
    args = getattr(orig, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    # pyodbc puts the native code at the end of the message, e.g. "... (1205) (SQLExecDirectW)"
    m = _NATIVE_CODE_IN_MESSAGE.search(str(orig))
    if m:
        return int(m.group(1))
    if args and isinstance(args[0], str) and len(args[0]) == 5:
        return args[0]
    return None


def classify(exc: BaseException) -> ErrorKind:
    code = vendor_code(exc)
    if code == MSSQL_DEADLOCK_VICTIM or code in PG_TRANSIENT_SQLSTATES:
        return ErrorKind.TRANSIENT_CONTENTION
    orig = getattr(exc, "orig", None) or exc
    if "database is locked" in str(orig).lower():
        return ErrorKind.TRANSIENT_CONTENTION
    return ErrorKind.OTHER


def json_param(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), default=str)


def _parse_payload(raw: Any) -> Any:
    if raw is None or raw == "":
        return None
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except ValueError:
            return raw
    return raw


def _rejection_message(payload: Mapping[str, Any]) -> str:
    err = payload.get("error")
    if isinstance(err, Mapping):
        return str(err.get("ErrorMessage") or err.get("message") or json.dumps(err))
    return str(err)


class ProcedureGateway:
    """Executes named procedures through a SQLAlchemy session.

    PostgreSQL functions are called with named notation, SQL Server procedures
    with ``EXEC``; on SQLite the registered in-process procedures are used.
    """

    def __init__(
        self,
        session_factory: Callable[[], AbstractContextManager[Session]] = get_session,
        *,
        backend: str | None = None,
        local_procedures: Mapping[str, LocalProcedure] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._backend = backend or backend_name()
        self._local = LOCAL_PROCEDURES if local_procedures is None else local_procedures

    def statement(self, procedure: str, params: Mapping[str, Any]) -> str:
        for name in (procedure, *params):
            if not _IDENTIFIER.match(name):
                raise ValueError(f"invalid identifier: {name!r}")
        if self._backend.startswith("postgresql"):
            args = ", ".join(f"{k} => :{k}" for k in params)
            return f"SELECT {procedure}({args})"
        if self._backend.startswith("mssql"):
            args = ", ".join(f"@{k} = :{k}" for k in params)
            return f"EXEC {procedure} {args}".rstrip()
        raise GatewayError(f"procedures are not supported on backend {self._backend!r}")

    def _run(self, session: Session, procedure: str, params: Mapping[str, Any]) -> Any:
        if self._backend.startswith("sqlite"):
            fn = self._local.get(procedure)
            if fn is None:
                raise GatewayError(f"procedure {procedure} is not available on {self._backend}")
            return fn(session, **params)
        result = session.execute(text(self.statement(procedure, params)), dict(params))
        # Write-only procedures produce no result set; that is still success
        if not result.returns_rows:
            return None
        row = result.first()
        return row[0] if row else None

    def execute(self, procedure: str, params: Mapping[str, Any] | None = None) -> Any:
        """Run ``procedure`` in its own transaction and return its parsed JSON payload.

        Raises GatewayError; a payload carrying an ``error`` key is raised as REJECTED.
        """
        params = dict(params or {})
        try:
            with self._session_factory() as session:
                raw = self._run(session, procedure, params)
        except GatewayError:
            raise
        except DBAPIError as exc:
            kind = classify(exc)
            code = vendor_code(exc)
            logger.debug("store_call_failed", procedure=procedure, kind=kind.value, code=code)
            raise GatewayError(str(exc.orig), kind=kind, code=code) from exc
        except SQLAlchemyError as exc:
            raise GatewayError(str(exc)) from exc

        payload = _parse_payload(raw)
        if isinstance(payload, Mapping) and payload.get("error"):
            raise GatewayError(_rejection_message(payload), kind=ErrorKind.REJECTED, payload=payload)
        return payload

    def ping(self) -> None:
        with self._session_factory() as session:
            session.execute(text("SELECT 1")).first()
