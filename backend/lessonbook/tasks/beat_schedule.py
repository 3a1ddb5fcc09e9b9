# backend/lessonbook/tasks/beat_schedule.py
"""
Celery Beat schedule for the booking engine.

Times are in the school's timezone (see ``celery_app`` configuration).
"""

from typing import Any

from celery.schedules import crontab

CELERYBEAT_SCHEDULE: dict[str, dict[str, Any]] = {
    # Reclaim slots held by funnels abandoned before today
    "cleanup-abandoned-draft-slots": {
        "task": "lessonbook.tasks.booking_maintenance.cleanup_draft_slots",
        "schedule": crontab(hour=0, minute=15),
        "options": {"queue": "maintenance", "priority": 3},
    },
    # Invoice weekly lessons falling due in the next day
    "send-lesson-invoices": {
        "task": "lessonbook.tasks.booking_maintenance.send_lesson_invoices",
        "schedule": crontab(minute=0),
        "options": {"queue": "maintenance", "priority": 5},
    },
}

SCHEDULE_CONFIG: dict[str, dict[str, dict[str, Any]]] = {
    "development": {
        "send-lesson-invoices": {
            "task": "lessonbook.tasks.booking_maintenance.send_lesson_invoices",
            "schedule": crontab(minute="*/15"),
            "options": {"queue": "maintenance", "priority": 5},
        },
    },
}


def get_beat_schedule(environment: str = "production") -> dict[str, dict[str, Any]]:
    """
    Get the beat schedule for the specified environment.

    Args:
        environment: The environment name (production, development, testing)

    Returns:
        Mapping of schedule entry name to Celery beat configuration dict
    """
    base: dict[str, dict[str, Any]] = dict(CELERYBEAT_SCHEDULE)
    overrides = SCHEDULE_CONFIG.get(environment)
    if overrides:
        base.update(overrides)
    return base
