"""Repository for activity log entries."""

from typing import List

from sqlalchemy.orm import Session

from ..models.activity_log import ActivityLog
from ..models.enums import SubjectKind
from .base_repository import BaseRepository


class ActivityLogRepository(BaseRepository[ActivityLog]):
    def __init__(self, db: Session):
        super().__init__(db, ActivityLog)

    def list_for_subject(self, kind: SubjectKind, subject_id: str, limit: int = 50) -> List[ActivityLog]:
        query = (
            self.db.query(ActivityLog)
            .filter(ActivityLog.subject_kind == kind, ActivityLog.subject_id == subject_id)
            .order_by(ActivityLog.created_at.desc())
            .limit(limit)
        )
        return self._execute_query(query)
