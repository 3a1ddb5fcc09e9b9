"""
Periodic maintenance tasks, run against the test database.
"""

from contextlib import contextmanager
from datetime import date
from unittest.mock import MagicMock, patch

import pytest

from lessonbook.models import TimeSlot
from lessonbook.tasks import booking_maintenance
from lessonbook.tasks.booking_maintenance import cleanup_draft_slots, send_lesson_invoices


@pytest.fixture
def task_session(db):
    @contextmanager
    def _session_scope():
        yield db
        db.commit()

    with patch.object(booking_maintenance, "get_db_session", _session_scope):
        yield db


class TestCleanupDraftSlots:
    def test_sweeps_drafts_left_by_abandoned_funnels(self, task_session, booking_service, make_slot):
        # The fixtures run on a 2025 clock; the task uses the wall clock, so this draft is long stale
        draft = booking_service.hold_as_draft(make_slot(date(2025, 6, 10)).id)
        open_slot = make_slot(date(2025, 6, 11))

        assert cleanup_draft_slots() == 1

        assert task_session.get(TimeSlot, draft.id) is None
        assert task_session.get(TimeSlot, open_slot.id) is not None

    def test_dry_run(self, task_session, booking_service, make_slot):
        draft = booking_service.hold_as_draft(make_slot(date(2025, 6, 10)).id)

        assert cleanup_draft_slots(dry_run=True) == 1
        assert task_session.get(TimeSlot, draft.id) is not None


class TestSendLessonInvoices:
    def test_returns_counts(self, task_session):
        order_service = MagicMock()
        order_service.send_due_invoices.return_value = {"sent": 2, "failed": 1}

        with patch.object(booking_maintenance, "OrderService", MagicMock(return_value=order_service)) as service_cls:
            with patch.object(booking_maintenance.logger, "warning") as warning:
                assert send_lesson_invoices() == {"sent": 2, "failed": 1}

        service_cls.assert_called_once_with(task_session)
        warning.assert_called_once()
