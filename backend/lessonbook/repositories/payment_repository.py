# backend/lessonbook/repositories/payment_repository.py
"""Lesson payment (weekly dues) and payout data access."""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

from ..models.enums import LessonPaymentStatus
from ..models.order import Lesson, LessonPayment, Payout
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class LessonPaymentRepository(BaseRepository[LessonPayment]):
    def __init__(self, db: Session):
        super().__init__(db, LessonPayment)

    def get_by_lesson_id(self, lesson_id: str, for_update: bool = False) -> Optional[LessonPayment]:
        query = self.db.query(LessonPayment).filter(LessonPayment.lesson_id == lesson_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_by_invoice_reference(self, reference: str, for_update: bool = False) -> Optional[LessonPayment]:
        query = self.db.query(LessonPayment).filter(LessonPayment.invoice_reference == reference)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def find_uninvoiced_due_before(self, cutoff: datetime) -> List[LessonPayment]:
        """Due payments without an invoice whose due date is at or before ``cutoff``."""
        query = (
            self.db.query(LessonPayment)
            .options(
                joinedload(LessonPayment.lesson).joinedload(Lesson.order),
            )
            .filter(
                LessonPayment.status == LessonPaymentStatus.DUE,
                LessonPayment.invoice_reference.is_(None),
                LessonPayment.due_date <= cutoff,
            )
            .order_by(LessonPayment.due_date)
        )
        return self._execute_query(query)


class PayoutRepository(BaseRepository[Payout]):
    def __init__(self, db: Session):
        super().__init__(db, Payout)
