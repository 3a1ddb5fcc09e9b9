"""
Tests for the queued lesson sign-off task.
"""

from contextlib import contextmanager
from unittest.mock import MagicMock, patch

from celery.exceptions import Retry
import pytest

from lessonbook.core.config import settings
from lessonbook.core.exceptions import AlreadyCompletedError, ServiceException
from lessonbook.tasks import lesson_tasks
from lessonbook.tasks.lesson_tasks import process_lesson_sign_off


@pytest.fixture
def mock_db():
    db = MagicMock()

    @contextmanager
    def _session_scope():
        yield db

    with patch.object(lesson_tasks, "get_db_session", _session_scope):
        yield db


@pytest.fixture
def mock_service(mock_db):
    service = MagicMock()
    with patch.object(lesson_tasks, "LessonSignOffService", MagicMock(return_value=service)) as service_cls:
        service.service_cls = service_cls
        yield service


class TestProcessLessonSignOff:
    def test_success_returns_summary(self, mock_db, mock_service):
        mock_service.sign_off_lesson.return_value = MagicMock(payout=MagicMock(id="payout-1"), order_completed=True)

        result = process_lesson_sign_off("lesson-1", "instructor-1")

        assert result == {"lesson_id": "lesson-1", "payout_id": "payout-1", "order_completed": True}
        mock_service.service_cls.assert_called_once_with(mock_db)
        mock_service.sign_off_lesson.assert_called_once_with("lesson-1", "instructor-1")

    def test_domain_errors_are_not_retried(self, mock_service):
        mock_service.sign_off_lesson.side_effect = AlreadyCompletedError("lesson-1")

        with patch.object(process_lesson_sign_off, "retry") as retry:
            with pytest.raises(AlreadyCompletedError):
                process_lesson_sign_off("lesson-1", "instructor-1")

        retry.assert_not_called()

    def test_transfer_failure_is_final(self, mock_service):
        mock_service.sign_off_lesson.side_effect = ServiceException("Stripe transfer failed: declined")

        with patch.object(process_lesson_sign_off, "retry") as retry:
            with pytest.raises(ServiceException):
                process_lesson_sign_off("lesson-1", "instructor-1")

        retry.assert_not_called()

    def test_infrastructure_errors_retry_with_backoff(self, mock_service):
        error = ConnectionError("database went away")
        mock_service.sign_off_lesson.side_effect = error

        with patch.object(process_lesson_sign_off, "retry", side_effect=Retry("retrying")) as retry:
            with pytest.raises(Retry):
                process_lesson_sign_off("lesson-1", "instructor-1")

        retry.assert_called_once_with(exc=error, countdown=settings.sign_off_retry_backoff_seconds)

    def test_gives_up_after_max_retries(self, mock_service):
        mock_service.sign_off_lesson.side_effect = ConnectionError("database went away")

        with patch.object(process_lesson_sign_off, "max_retries", 0), patch.object(
            process_lesson_sign_off, "retry"
        ) as retry, patch.object(lesson_tasks.logger, "critical") as critical:
            with pytest.raises(ConnectionError):
                process_lesson_sign_off("lesson-1", "instructor-1")

        retry.assert_not_called()
        critical.assert_called_once()
        assert critical.call_args.args[0] == "Lesson sign-off job failed after all retries"

    def test_task_registered_under_module_name(self):
        assert process_lesson_sign_off.name == "lessonbook.tasks.lesson_tasks.process_lesson_sign_off"
        assert process_lesson_sign_off.max_retries == settings.sign_off_max_retries

    def test_eager_run_attempts_once_plus_max_retries(self, mock_service):
        mock_service.sign_off_lesson.side_effect = ConnectionError("database went away")

        with patch.object(lesson_tasks.logger, "critical") as critical:
            result = process_lesson_sign_off.apply(args=("lesson-1", "instructor-1"))

        assert result.failed()
        assert mock_service.sign_off_lesson.call_count == settings.sign_off_max_retries + 1
        critical.assert_called_once()
