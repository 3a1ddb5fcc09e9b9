# backend/lessonbook/services/activity_log_service.py
"""
Activity log service.

Entries attach to exactly one subject, an instructor or a student, named by
an ``ActivitySubject`` tag. The tag is validated here rather than trusting
whatever kind string a caller passes.
"""

from dataclasses import dataclass
import logging
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from ..core.clock import SystemClock
from ..core.exceptions import LookupNotFoundError, ValidationException
from ..models.activity_log import ActivityLog
from ..models.enums import SubjectKind
from ..models.instructor import Instructor
from ..models.student import Student
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

MAX_CATEGORY_LENGTH = 50


@dataclass(frozen=True)
class ActivitySubject:
    kind: SubjectKind
    id: str

    @classmethod
    def of(cls, entity: Union[Instructor, Student]) -> "ActivitySubject":
        if isinstance(entity, Instructor):
            return cls(SubjectKind.INSTRUCTOR, entity.id)
        if isinstance(entity, Student):
            return cls(SubjectKind.STUDENT, entity.id)
        raise ValidationException(
            f"Activity cannot be logged against {type(entity).__name__}",
            code="INVALID_ACTIVITY_SUBJECT",
        )

    @classmethod
    def parse(cls, kind: str, subject_id: str) -> "ActivitySubject":
        try:
            return cls(SubjectKind(kind), subject_id)
        except ValueError as exc:
            raise ValidationException(
                f"Unknown activity subject kind: {kind}",
                code="INVALID_ACTIVITY_SUBJECT",
                details={"kind": kind},
            ) from exc


class ActivityLogService(BaseService):
    def __init__(self, db: Session, clock: Optional[SystemClock] = None):
        super().__init__(db, clock)
        self.repository = RepositoryFactory.create_activity_log_repository(db)
        self.instructor_repository = RepositoryFactory.create_instructor_repository(db)
        self.student_repository = RepositoryFactory.create_student_repository(db)

    @BaseService.measure_operation("log_activity")
    def log_activity(
        self,
        subject: ActivitySubject,
        message: str,
        category: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ActivityLog:
        if not category or len(category) > MAX_CATEGORY_LENGTH:
            raise ValidationException(
                f"Category must be 1-{MAX_CATEGORY_LENGTH} characters",
                code="INVALID_ACTIVITY_CATEGORY",
                details={"category": category},
            )

        with self.transaction():
            if subject.kind == SubjectKind.INSTRUCTOR:
                exists = self.instructor_repository.exists(id=subject.id)
            else:
                exists = self.student_repository.exists(id=subject.id)
            if not exists:
                raise LookupNotFoundError(subject.kind.value.capitalize(), subject.id)

            entry = self.repository.create(
                subject_kind=subject.kind,
                subject_id=subject.id,
                category=category,
                message=message,
                details=metadata or {},
                created_at=self.clock.now(),
            )
        return entry

    def list_for(self, subject: ActivitySubject, limit: int = 50) -> List[ActivityLog]:
        return self.repository.list_for_subject(subject.kind, subject.id, limit=limit)
