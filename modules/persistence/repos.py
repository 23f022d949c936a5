from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import Program, ProgramAccess, StepStatus, TrackedItem, TrackedItemStepProgress, User
UTC = timezone.utc

COMPLETE_STATUS = StepStatus.COMPLETE.value


def _utcnow() -> datetime:
    return datetime.now(UTC)


# --- Identity & program scope ---

def get_user_by_subject(session: Session, certificate_subject: str) -> User | None:
    # Use integer semantics (0/1) for cross-dialect compatibility
    stmt = select(User).where(User.certificate_subject == certificate_subject, User.is_active == 1)
    return session.scalars(stmt).first()


def list_program_grants(session: Session, user_id: int) -> list[tuple[ProgramAccess, Program]]:
    """Active grants for a user, joined to their (active) programs, ordered by program name."""
    stmt = (
        select(ProgramAccess, Program)
        .join(Program, ProgramAccess.program_id == Program.program_id)
        .where(ProgramAccess.user_id == user_id, ProgramAccess.is_active == 1, Program.is_active == 1)
        .order_by(Program.program_name.asc())
    )
    return [(row[0], row[1]) for row in session.execute(stmt).all()]


def program_ids_for_items(session: Session, item_ids: Iterable[int]) -> dict[int, int]:
    """Map item_id -> program_id for the items that exist; unknown ids are absent."""
    ids = sorted({int(i) for i in item_ids})
    if not ids:
        return {}
    stmt = select(TrackedItem.item_id, TrackedItem.program_id).where(TrackedItem.item_id.in_(ids))
    return {int(item_id): int(program_id) for item_id, program_id in session.execute(stmt).all()}


# --- Tracked items ---

def get_tracked_item(session: Session, item_id: int) -> TrackedItem | None:
    return session.get(TrackedItem, int(item_id))


def get_step_progress(session: Session, *, item_id: int, step_id: int) -> TrackedItemStepProgress | None:
    stmt = select(TrackedItemStepProgress).where(
        TrackedItemStepProgress.item_id == int(item_id),
        TrackedItemStepProgress.step_id == int(step_id),
    )
    return session.scalars(stmt).first()


def upsert_step_progress(
    session: Session,
    *,
    item_id: int,
    step_id: int,
    status: str,
    completed_by_user_name: str | None,
) -> TrackedItemStepProgress:
    """Insert or update the progress row for (item, step).

    A completion timestamp is stamped when the status becomes Complete and cleared otherwise.
    """
    now = _utcnow()
    completed_at = now if status == COMPLETE_STATUS else None
    existing = get_step_progress(session, item_id=item_id, step_id=step_id)
    if existing:
        existing.status = status
        existing.completion_timestamp = completed_at
        existing.completed_by_user_name = completed_by_user_name if completed_at else None
        existing.updated_at = now
        session.flush()
        return existing

    row = TrackedItemStepProgress(
        item_id=int(item_id),
        step_id=int(step_id),
        status=status,
        completion_timestamp=completed_at,
        completed_by_user_name=completed_by_user_name if completed_at else None,
        updated_at=now,
    )
    session.add(row)
    session.flush()
    return row


# --- Provisioning (dev seed script and tests) ---

def upsert_program(session: Session, *, program_code: str, program_name: str, description: str | None = None) -> Program:
    existing = session.scalars(select(Program).where(Program.program_code == program_code)).first()
    if existing:
        existing.program_name = program_name
        if description is not None:
            existing.program_description = description
        session.flush()
        return existing
    prog = Program(
        program_name=program_name,
        program_code=program_code,
        program_description=description,
        is_active=1,
        date_created=_utcnow(),
    )
    session.add(prog)
    session.flush()
    return prog


def upsert_user(
    session: Session,
    *,
    certificate_subject: str,
    user_name: str,
    display_name: str | None = None,
    is_system_admin: bool = False,
) -> User:
    existing = session.scalars(select(User).where(User.certificate_subject == certificate_subject)).first()
    if existing:
        existing.user_name = user_name
        existing.display_name = display_name
        existing.is_system_admin = 1 if is_system_admin else 0
        existing.is_active = 1
        session.flush()
        return existing
    user = User(
        user_name=user_name,
        display_name=display_name,
        certificate_subject=certificate_subject,
        is_system_admin=1 if is_system_admin else 0,
        is_active=1,
        date_created=_utcnow(),
    )
    session.add(user)
    session.flush()
    return user


def grant_program_access(session: Session, *, user_id: int, program_id: int, access_level: str) -> ProgramAccess:
    stmt = select(ProgramAccess).where(ProgramAccess.user_id == user_id, ProgramAccess.program_id == program_id)
    existing = session.scalars(stmt).first()
    if existing:
        existing.access_level = access_level
        existing.is_active = 1
        session.flush()
        return existing
    grant = ProgramAccess(user_id=user_id, program_id=program_id, access_level=access_level, is_active=1)
    session.add(grant)
    session.flush()
    return grant


def create_tracked_item(session: Session, *, program_id: int, item_identifier: str, project_id: int | None = None) -> TrackedItem:
    item = TrackedItem(
        program_id=program_id,
        project_id=project_id,
        item_identifier=item_identifier,
        current_overall_status="Pending",
        date_created=_utcnow(),
    )
    session.add(item)
    session.flush()
    return item
