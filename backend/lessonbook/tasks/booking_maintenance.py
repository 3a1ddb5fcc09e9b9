# backend/lessonbook/tasks/booking_maintenance.py
"""
Periodic booking maintenance: the abandoned-draft sweep and weekly invoicing.
"""

import logging
from typing import Dict

from lessonbook.database import get_db_session
from lessonbook.services.booking_state_service import BookingStateService
from lessonbook.services.order_service import OrderService
from lessonbook.tasks.celery_app import typed_task

logger = logging.getLogger(__name__)


@typed_task(name="lessonbook.tasks.booking_maintenance.cleanup_draft_slots", ignore_result=True)
def cleanup_draft_slots(dry_run: bool = False) -> int:
    """Delete draft slots left behind by abandoned booking funnels."""
    with get_db_session() as db:
        deleted = BookingStateService(db).cleanup_abandoned_drafts(dry_run=dry_run)
    logger.info("[BOOKING-MAINT] Draft sweep finished: %d slots", deleted)
    return deleted


@typed_task(name="lessonbook.tasks.booking_maintenance.send_lesson_invoices")
def send_lesson_invoices() -> Dict[str, int]:
    """Invoice weekly lesson payments falling due soon."""
    with get_db_session() as db:
        counts = OrderService(db).send_due_invoices()
    if counts["failed"]:
        logger.warning("[BOOKING-MAINT] %d lesson invoices failed", counts["failed"])
    return counts
