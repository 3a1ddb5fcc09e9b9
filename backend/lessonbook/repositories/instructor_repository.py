# backend/lessonbook/repositories/instructor_repository.py
"""Instructor and student lookups used by the booking engine."""

from typing import Optional

from sqlalchemy.orm import Session

from ..models.instructor import Instructor
from ..models.student import Student
from .base_repository import BaseRepository


class InstructorRepository(BaseRepository[Instructor]):
    def __init__(self, db: Session):
        super().__init__(db, Instructor)

    def get_by_stripe_account_id(self, account_id: str, for_update: bool = False) -> Optional[Instructor]:
        query = self.db.query(Instructor).filter(Instructor.stripe_account_id == account_id)
        if for_update:
            query = query.with_for_update()
        return query.first()


class StudentRepository(BaseRepository[Student]):
    def __init__(self, db: Session):
        super().__init__(db, Student)
