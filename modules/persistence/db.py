from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.engine import Engine

from .models import Base


def _db_url() -> str:
    url = os.getenv("FT_DB_URL")
    if url:
        return url
    # Fallback for local dev/tests without a procedure-capable server
    os.makedirs("db", exist_ok=True)
    return "sqlite+pysqlite:///db/dev.sqlite3"


def _connect_args(url: str) -> dict:
    # The gateway runs in the threadpool, so SQLite connections cross threads
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


_URL = _db_url()
_ENGINE: Engine = create_engine(_URL, future=True, connect_args=_connect_args(_URL))

# For SQLite fallback in dev/tests, auto-create tables so tests can run without a real server
if _ENGINE.url.get_backend_name().startswith("sqlite"):
    Base.metadata.create_all(_ENGINE)
SessionLocal = sessionmaker(
    bind=_ENGINE,
    autoflush=False,
    autocommit=False,
    future=True,
    expire_on_commit=False,
    class_=Session,
)


def get_engine() -> Engine:
    return _ENGINE


def backend_name() -> str:
    return _ENGINE.url.get_backend_name()


@contextmanager
def get_session() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:  # noqa: BLE001
        session.rollback()
        raise
    finally:
        session.close()
