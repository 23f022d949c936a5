from __future__ import annotations

from pydantic import BaseModel


class ProgramAccessOut(BaseModel):
    program_id: int
    access_level: str
    program_name: str
    program_code: str


class MeUser(BaseModel):
    user_id: int
    username: str
    displayName: str | None = None
    is_system_admin: bool
    program_access: list[ProgramAccessOut] = []
    accessible_programs: list[int] = []


class MeResponse(BaseModel):
    user: MeUser
    extractedFrom: str
