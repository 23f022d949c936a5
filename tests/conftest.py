import os
import uuid
from typing import Any, Callable

import pytest

# The engine is bound at import time; force the SQLite fallback before the app loads
os.environ.pop("FT_DB_URL", None)
os.environ["FT_ENV"] = "test"

from modules.persistence import repos  # noqa: E402
from modules.persistence.db import get_session  # noqa: E402
from services.api.auth import CurrentUser  # noqa: E402
from services.api.config import get_settings  # noqa: E402
from tests.support import RecordingSleep  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def admin_user() -> CurrentUser:
    return CurrentUser(
        user_id=1,
        user_name="admin",
        display_name="Admin",
        is_system_admin=True,
        certificate_subject="CN=admin",
    )


@pytest.fixture
def seed_program() -> Callable[..., dict[str, Any]]:
    """Create a program with ``items`` tracked items; returns their ids."""

    def _seed(items: int = 3) -> dict[str, Any]:
        code = f"PRG-{uuid.uuid4().hex[:8]}"
        with get_session() as session:
            program = repos.upsert_program(session, program_code=code, program_name=f"Program {code}")
            item_ids = [
                repos.create_tracked_item(session, program_id=program.program_id, item_identifier=f"{code}-{n}").item_id
                for n in range(items)
            ]
            return {"program_id": program.program_id, "program_code": code, "item_ids": item_ids}

    return _seed


@pytest.fixture
def seed_user() -> Callable[..., str]:
    """Create an active user with the given grants; returns the certificate subject."""

    def _seed(grants: dict[int, str] | None = None, *, admin: bool = False) -> str:
        subject = f"CN=user-{uuid.uuid4().hex[:8]},OU=Test"
        with get_session() as session:
            user = repos.upsert_user(session, certificate_subject=subject, user_name=subject[3:16], is_system_admin=admin)
            for program_id, level in (grants or {}).items():
                repos.grant_program_access(session, user_id=user.user_id, program_id=program_id, access_level=level)
        return subject

    return _seed
