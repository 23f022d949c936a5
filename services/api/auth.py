"""Caller identity and program scope.

The certificate subject arrives in a proxy header; certificate parsing happens
upstream. System admins see every program, everyone else only the programs
they hold an active grant for.
"""
from __future__ import annotations

from typing import Iterable

from fastapi import Request
from pydantic import BaseModel

from modules.persistence import repos
from modules.persistence.db import get_session
from services.api.config import Settings, get_settings
from services.api.errors import ApiError

ACCESS_LEVELS = {"Read": 1, "Write": 2, "Admin": 3}


class ProgramGrant(BaseModel):
    program_id: int
    access_level: str
    program_name: str
    program_code: str


class CurrentUser(BaseModel):
    user_id: int
    user_name: str
    display_name: str | None = None
    is_system_admin: bool = False
    certificate_subject: str
    extracted_from: str = "header"
    program_access: list[ProgramGrant] = []

    @property
    def accessible_programs(self) -> list[int]:
        return [g.program_id for g in self.program_access]

    def level_for(self, program_id: int) -> int:
        for grant in self.program_access:
            if grant.program_id == program_id:
                return ACCESS_LEVELS.get(grant.access_level, 0)
        return 0

    def can(self, program_id: int, required: str = "Read") -> bool:
        if self.is_system_admin:
            return True
        return self.level_for(program_id) >= ACCESS_LEVELS.get(required, 1)


def resolve_subject(request: Request, settings: Settings) -> tuple[str | None, str]:
    subject = (request.headers.get(settings.subject_header) or "").strip()
    if subject:
        return subject, "header"
    if settings.allows_dev_identity:
        return settings.dev_subject, "fallback"
    return None, "none"


def load_user(subject: str, *, extracted_from: str = "header") -> CurrentUser | None:
    with get_session() as session:
        user = repos.get_user_by_subject(session, subject)
        if not user:
            return None
        grants = [
            ProgramGrant(
                program_id=access.program_id,
                access_level=access.access_level,
                program_name=program.program_name,
                program_code=program.program_code,
            )
            for access, program in repos.list_program_grants(session, user.user_id)
        ]
        return CurrentUser(
            user_id=user.user_id,
            user_name=user.user_name,
            display_name=user.display_name,
            is_system_admin=bool(user.is_system_admin),
            certificate_subject=user.certificate_subject,
            extracted_from=extracted_from,
            program_access=grants,
        )


def authenticate(request: Request) -> CurrentUser:
    """FastAPI dependency resolving the calling user or failing with 401."""
    subject, source = resolve_subject(request, get_settings())
    if not subject:
        raise ApiError(401, "Client certificate subject is required")
    user = load_user(subject, extracted_from=source)
    if user is None:
        raise ApiError(401, "User not found or not authorized")
    return user


def denied_items(user: CurrentUser, item_ids: Iterable[int], required: str = "Write") -> list[int]:
    """Item ids whose program the user lacks ``required`` access to.

    Ids with no matching item are not reported; the store rejects them per item.
    """
    ids = list(item_ids)
    if user.is_system_admin or not ids:
        return []
    with get_session() as session:
        programs = repos.program_ids_for_items(session, ids)
    denied: list[int] = []
    for item_id in ids:
        program_id = programs.get(item_id)
        if program_id is not None and not user.can(program_id, required) and item_id not in denied:
            denied.append(item_id)
    return denied
