from __future__ import annotations

from fastapi import APIRouter, Depends

from services.api.auth import CurrentUser, authenticate
from services.api.schemas.auth import MeResponse, MeUser, ProgramAccessOut
from services.api.schemas.tracked_items import ErrorResponse


router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=MeResponse, responses={401: {"model": ErrorResponse}})
def me(user: CurrentUser = Depends(authenticate)) -> MeResponse:
    return MeResponse(
        user=MeUser(
            user_id=user.user_id,
            username=user.user_name,
            displayName=user.display_name,
            is_system_admin=user.is_system_admin,
            program_access=[ProgramAccessOut(**g.model_dump()) for g in user.program_access],
            accessible_programs=user.accessible_programs,
        ),
        extractedFrom=user.extracted_from,
    )
