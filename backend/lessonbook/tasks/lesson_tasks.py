# backend/lessonbook/tasks/lesson_tasks.py
"""
Queued lesson sign-off.

Infrastructure failures (database, network) are retried with a fixed delay.
Domain failures, such as an already signed off lesson or a rejected transfer,
are final on the first attempt since retrying cannot change the outcome.
"""

import logging
from typing import Any, Dict

from lessonbook.core.config import settings
from lessonbook.core.exceptions import DomainException
from lessonbook.database import get_db_session
from lessonbook.services.lesson_signoff_service import LessonSignOffService
from lessonbook.tasks.celery_app import typed_task

logger = logging.getLogger(__name__)


@typed_task(
    bind=True,
    max_retries=settings.sign_off_max_retries,
    name="lessonbook.tasks.lesson_tasks.process_lesson_sign_off",
)
def process_lesson_sign_off(self: Any, lesson_id: str, instructor_id: str) -> Dict[str, Any]:
    """
    Run the sign-off pipeline for one lesson.

    Returns:
        Dict with the payout id and whether the order completed
    """
    try:
        with get_db_session() as db:
            result = LessonSignOffService(db).sign_off_lesson(lesson_id, instructor_id)
            summary = {
                "lesson_id": lesson_id,
                "payout_id": result.payout.id,
                "order_completed": result.order_completed,
            }
    except DomainException as exc:
        logger.error(
            f"Lesson sign-off failed: {exc.message}",
            extra={"lesson_id": lesson_id, "instructor_id": instructor_id, "code": exc.code},
        )
        raise
    except Exception as exc:
        if self.request.retries >= self.max_retries:
            logger.critical(
                "Lesson sign-off job failed after all retries",
                extra={"lesson_id": lesson_id, "instructor_id": instructor_id, "error": str(exc)},
            )
            raise
        logger.warning(
            f"Lesson sign-off attempt {self.request.retries + 1} failed: {exc}",
            extra={"lesson_id": lesson_id, "instructor_id": instructor_id},
        )
        raise self.retry(exc=exc, countdown=settings.sign_off_retry_backoff_seconds)

    logger.info(
        "Lesson sign-off processed successfully",
        extra={"instructor_id": instructor_id, **summary},
    )
    return summary
