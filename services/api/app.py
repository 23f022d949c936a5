from __future__ import annotations

import datetime as dt
import os
import time
from typing import Any

import psycopg
from sqlalchemy.engine import make_url
from fastapi import FastAPI, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from modules.metrics import HEALTH_HITS, REGISTRY
from modules.persistence.db import backend_name
from modules.persistence.gateway import ProcedureGateway

from .config import get_settings
from .errors import install_error_handlers
from .log_setup import configure_logging
from .routes import router as api_router


_STARTED = time.monotonic()


def _normalize_conninfo(url: str) -> str:
    # Support SQLAlchemy-style URLs (e.g., postgresql+psycopg://) by normalizing to psycopg form.
    try:
        if "+" in url.split("://", 1)[0]:
            sa_url = make_url(url).set(drivername="postgresql")
            url = sa_url.render_as_string(hide_password=False)
    except Exception:
        pass
    return url


def _check_db(url: str, timeout_s: int = 1) -> None:
    url = _normalize_conninfo(url)
    with psycopg.connect(url, connect_timeout=timeout_s) as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
            cur.fetchone()


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat().replace("+00:00", "Z")


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)

    app = FastAPI(title="Floor Tracker API", version="0.3.0")
    install_error_handlers(app)

    @app.get("/", tags=["meta"])
    def root() -> dict[str, str]:
        return {"service": "floor-tracker", "status": "running"}

    @app.get("/api/health", tags=["meta"])
    def health() -> dict[str, Any]:
        HEALTH_HITS.inc()
        return {
            "status": "OK",
            "system": "Floor Tracker Multi-Tenant API",
            "timestamp": _now_iso(),
            "uptime": round(time.monotonic() - _STARTED, 3),
        }

    @app.get("/api/health/db", tags=["meta"])
    def health_db() -> Any:
        url = os.getenv("FT_DB_URL") or settings.db_url
        try:
            if url and url.startswith("postgresql"):
                _check_db(url)
            else:
                ProcedureGateway().ping()
            return {"database": "connected", "backend": backend_name(), "timestamp": _now_iso()}
        except Exception as exc:  # noqa: BLE001
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"database": "error", "error": str(exc), "timestamp": _now_iso()},
            )

    @app.get("/metrics", tags=["meta"])
    def metrics() -> Response:
        output = generate_latest(REGISTRY)
        return Response(output, media_type=CONTENT_TYPE_LATEST)

    app.include_router(api_router)

    return app


app = create_app()
