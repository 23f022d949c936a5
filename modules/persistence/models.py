from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Program(Base):
    __tablename__ = "programs"

    program_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    program_name: Mapped[str] = mapped_column(String, nullable=False)
    program_code: Mapped[str] = mapped_column(String, nullable=False)
    program_description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Integer, default=1, nullable=False)
    date_created: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("program_code", name="programs_code_uniq"),)


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_name: Mapped[str] = mapped_column(String, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String)
    certificate_subject: Mapped[str] = mapped_column(String, nullable=False)
    is_system_admin: Mapped[bool] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Integer, default=1, nullable=False)
    date_created: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (Index("users_certificate_subject_uniq", "certificate_subject", unique=True),)


class ProgramAccess(Base):
    __tablename__ = "program_access"

    access_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    program_id: Mapped[int] = mapped_column(Integer, ForeignKey("programs.program_id", ondelete="CASCADE"), nullable=False)
    access_level: Mapped[str] = mapped_column(String, nullable=False, default="Read")
    is_active: Mapped[bool] = mapped_column(Integer, default=1, nullable=False)

    program: Mapped[Program] = relationship("Program")

    __table_args__ = (
        CheckConstraint("access_level in ('Read','Write','Admin')", name="program_access_level_check"),
        UniqueConstraint("user_id", "program_id", name="program_access_user_program_uniq"),
    )


class TrackedItem(Base):
    __tablename__ = "tracked_items"

    item_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    program_id: Mapped[int] = mapped_column(Integer, ForeignKey("programs.program_id"), nullable=False)
    project_id: Mapped[int | None] = mapped_column(Integer)
    item_identifier: Mapped[str] = mapped_column(String, nullable=False)
    current_overall_status: Mapped[str | None] = mapped_column(String)
    date_created: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (Index("tracked_items_program_idx", "program_id"),)


class TrackedItemStepProgress(Base):
    __tablename__ = "tracked_item_step_progress"

    progress_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(Integer, ForeignKey("tracked_items.item_id", ondelete="CASCADE"), nullable=False)
    step_id: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    completion_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_by_user_name: Mapped[str | None] = mapped_column(String)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("item_id", "step_id", name="step_progress_item_step_uniq"),
        Index("step_progress_item_idx", "item_id"),
    )


class StepStatus(str, enum.Enum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    COMPLETE = "Complete"
    NOT_APPLICABLE = "N/A"
