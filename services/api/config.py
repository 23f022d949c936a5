from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field

DEV_SUBJECT = "CN=development-user,OU=Development,OU=Test,O=Development,C=US"


class Settings(BaseModel):
    env: Literal["dev", "test", "staging", "prod"] = Field(
        default="dev", description="Deployment environment label"
    )

    # Database
    db_url: str | None = Field(default=None, description="Store URL, e.g., postgresql+psycopg://... (unset: SQLite fallback)")

    # Identity: the TLS-terminating proxy forwards the client certificate subject in this header
    subject_header: str = "X-Client-Subject"
    # Used when the header is absent, only in dev/test
    dev_subject: str = DEV_SUBJECT

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @property
    def allows_dev_identity(self) -> bool:
        return self.env in {"dev", "test"}


def _truthy(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Bind FT_* variables explicitly; unset ones keep the model defaults
    values: dict[str, object] = {}
    for field, var in (
        ("env", "FT_ENV"),
        ("db_url", "FT_DB_URL"),
        ("subject_header", "FT_SUBJECT_HEADER"),
        ("dev_subject", "FT_DEV_SUBJECT"),
        ("log_level", "FT_LOG_LEVEL"),
    ):
        v = os.getenv(var)
        if v:
            values[field] = v
    if os.getenv("FT_LOG_JSON"):
        values["log_json"] = _truthy(os.environ["FT_LOG_JSON"])
    return Settings(**values)  # type: ignore[arg-type]
