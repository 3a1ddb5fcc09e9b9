"""Activity log entries attached to either an instructor or a student."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, Index, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from lessonbook.core.ulid_helper import generate_ulid
from lessonbook.database import Base
from lessonbook.models.base_enum import create_safe_enum
from lessonbook.models.enums import SubjectKind


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    __table_args__ = (Index("ix_activity_logs_subject", "subject_kind", "subject_id"),)

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    subject_kind: Mapped[SubjectKind] = mapped_column(create_safe_enum(SubjectKind, "subject_kind"), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(26), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_now_utc,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<ActivityLog(subject={self.subject_kind}:{self.subject_id}, category={self.category})>"
