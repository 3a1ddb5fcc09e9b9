# backend/lessonbook/tasks/__init__.py
"""
Celery tasks package for the booking engine.

This package contains:
- Lesson sign-off jobs (payments queue)
- Draft slot sweeps and weekly invoice runs (maintenance queue)
"""

from lessonbook.tasks.booking_maintenance import cleanup_draft_slots, send_lesson_invoices
from lessonbook.tasks.celery_app import celery_app
from lessonbook.tasks.lesson_tasks import process_lesson_sign_off

__all__ = [
    "celery_app",
    "cleanup_draft_slots",
    "send_lesson_invoices",
    "process_lesson_sign_off",
]
