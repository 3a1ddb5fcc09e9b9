# backend/lessonbook/repositories/order_repository.py
"""Order and lesson data access."""

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ..models.enums import LessonStatus
from ..models.order import Lesson, Order
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class OrderRepository(BaseRepository[Order]):
    def __init__(self, db: Session):
        super().__init__(db, Order)

    def get_by_checkout_session(self, reference: str, for_update: bool = False) -> Optional[Order]:
        query = self.db.query(Order).filter(Order.checkout_session_reference == reference)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_by_payment_intent(self, reference: str, for_update: bool = False) -> Optional[Order]:
        query = self.db.query(Order).filter(Order.payment_intent_reference == reference)
        if for_update:
            query = query.with_for_update()
        return query.first()


class LessonRepository(BaseRepository[Lesson]):
    def __init__(self, db: Session):
        super().__init__(db, Lesson)

    def get_with_relations(self, lesson_id: str) -> Optional[Lesson]:
        """Lesson with its order, payment, payout and slot loaded."""
        return (
            self.db.query(Lesson)
            .options(
                joinedload(Lesson.order),
                joinedload(Lesson.payment),
                joinedload(Lesson.payout),
                joinedload(Lesson.time_slot),
            )
            .filter(Lesson.id == lesson_id)
            .first()
        )

    def count_unfinished_for_order(self, order_id: str) -> int:
        """Lessons under the order whose status is anything but completed."""
        query = self.db.query(func.count(Lesson.id)).filter(
            Lesson.order_id == order_id,
            Lesson.status != LessonStatus.COMPLETED,
        )
        return int(self._execute_scalar(query) or 0)
