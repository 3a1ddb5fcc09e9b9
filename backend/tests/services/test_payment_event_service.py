"""
Inbound payment events: exactly-once admission and dispatch to handlers.
"""

from unittest.mock import MagicMock, patch

import pytest

from lessonbook.models import LessonPayment, LessonPaymentStatus, OrderStatus, PaymentMode, ProcessedEvent
from lessonbook.monitoring.prometheus_metrics import REGISTRY
from lessonbook.services.payment_event_service import EventIntakeService, PaymentEventService
from lessonbook.services.stripe_service import InboundEvent


@pytest.fixture
def event_service(db, clock, order_service) -> PaymentEventService:
    return PaymentEventService(db, clock, order_service=order_service)


def _event(event_id: str, name: str, payload: dict) -> InboundEvent:
    return InboundEvent(id=event_id, name=name, payload=payload, source_type=name)


def _inbound_count(event_type: str, outcome: str) -> float:
    value = REGISTRY.get_sample_value(
        "lessonbook_inbound_events_total", {"event_type": event_type, "outcome": outcome}
    )
    return value or 0.0


class TestEventIntake:
    def test_first_delivery_admitted(self, db, clock):
        intake = EventIntakeService(db, clock)

        assert intake.admit("evt_1", "checkout_completed", {"id": "cs_1"}) is True
        assert intake.admit("evt_1", "checkout_completed") is False
        assert db.query(ProcessedEvent).count() == 1

    def test_concurrent_delivery_loses_on_unique_key(self, db, clock):
        intake = EventIntakeService(db, clock)
        intake.admit("evt_race", "invoice_paid")

        # The other delivery passed its existence check before our row landed
        with patch.object(intake.repository, "has_processed", return_value=False):
            assert intake.admit("evt_race", "invoice_paid") is False

        assert db.query(ProcessedEvent).filter_by(external_event_id="evt_race").count() == 1


class TestCheckoutEvents:
    def test_checkout_completed_activates_order(self, db, event_service, make_order):
        order = make_order(PaymentMode.UPFRONT).order
        order.checkout_session_reference = "cs_live_1"
        db.commit()

        result = event_service.handle_event(
            _event(
                "evt_1",
                "checkout_completed",
                {"id": "cs_live_1", "payment_status": "paid", "payment_intent": "pi_1"},
            )
        )

        assert result == {"status": "success"}
        assert order.status == OrderStatus.ACTIVE
        assert order.payment_intent_reference == "pi_1"
        assert db.query(ProcessedEvent).filter_by(external_event_id="evt_1").count() == 1

    def test_checkout_completed_sends_confirmation(self, db, event_service, email_service, make_order, student):
        order = make_order(PaymentMode.UPFRONT).order
        order.checkout_session_reference = "cs_live_5"
        db.commit()
        event = _event("evt_11", "checkout_completed", {"id": "cs_live_5", "payment_status": "paid"})

        event_service.handle_event(event)
        event_service.handle_event(event)

        email_service.send_order_confirmation.assert_called_once_with(order, student)

    def test_confirmation_failure_does_not_fail_event(self, db, event_service, email_service, make_order):
        email_service.send_order_confirmation.side_effect = RuntimeError("smtp down")
        order = make_order(PaymentMode.UPFRONT).order
        order.checkout_session_reference = "cs_live_6"
        db.commit()

        result = event_service.handle_event(
            _event("evt_12", "checkout_completed", {"id": "cs_live_6", "payment_status": "paid"})
        )

        assert result == {"status": "success"}
        assert order.status == OrderStatus.ACTIVE
        assert db.query(ProcessedEvent).filter_by(external_event_id="evt_12").count() == 1

    def test_replay_is_acknowledged_without_reprocessing(self, db, event_service, make_order):
        order = make_order().order
        order.checkout_session_reference = "cs_live_1"
        db.commit()
        event = _event("evt_1", "checkout_completed", {"id": "cs_live_1", "payment_status": "paid"})
        before = _inbound_count("checkout_completed", "already_processed")

        event_service.handle_event(event)
        with patch.object(event_service.order_service, "apply_payment_confirmed") as confirm:
            assert event_service.handle_event(event) == {"status": "already_processed"}
            confirm.assert_not_called()

        assert db.query(ProcessedEvent).count() == 1
        assert _inbound_count("checkout_completed", "already_processed") == before + 1

    def test_unpaid_checkout_leaves_order_pending(self, db, event_service, make_order):
        order = make_order().order
        order.checkout_session_reference = "cs_live_2"
        db.commit()

        event_service.handle_event(
            _event("evt_2", "checkout_completed", {"id": "cs_live_2", "payment_status": "unpaid"})
        )

        assert order.status == OrderStatus.PENDING
        assert db.query(ProcessedEvent).count() == 1

    def test_unknown_session_is_recorded(self, db, event_service):
        result = event_service.handle_event(
            _event("evt_3", "checkout_completed", {"id": "cs_unknown", "payment_status": "paid"})
        )

        assert result == {"status": "success"}
        assert db.query(ProcessedEvent).count() == 1

    def test_payment_succeeded_matches_payment_intent(self, db, event_service, make_order):
        order = make_order().order
        order.payment_intent_reference = "pi_42"
        db.commit()

        event_service.handle_event(_event("evt_4", "payment_succeeded", {"id": "pi_42"}))

        assert order.status == OrderStatus.ACTIVE

    def test_payment_failed_changes_nothing(self, event_service, make_order):
        order = make_order().order

        result = event_service.handle_event(
            _event("evt_5", "payment_failed", {"id": "pi_9", "last_payment_error": {"message": "card declined"}})
        )

        assert result == {"status": "success"}
        assert order.status == OrderStatus.PENDING


class TestAccountAndInvoiceEvents:
    def test_account_updated_syncs_onboarding_flags(self, db, event_service, other_instructor):
        other_instructor.stripe_account_id = "acct_new"
        db.commit()
        assert other_instructor.can_receive_payouts is False

        event_service.handle_event(
            _event(
                "evt_6",
                "account_updated",
                {"id": "acct_new", "details_submitted": True, "charges_enabled": True, "payouts_enabled": True},
            )
        )

        assert other_instructor.onboarding_complete is True
        assert other_instructor.charges_enabled is True
        assert other_instructor.can_receive_payouts is True

    def test_invoice_paid_marks_lesson_payment(self, db, event_service, make_order):
        lesson = make_order(PaymentMode.WEEKLY).lessons[0]

        event_service.handle_event(
            _event("evt_7", "invoice_paid", {"id": "in_7", "metadata": {"lesson_id": lesson.id}})
        )

        payment = db.query(LessonPayment).filter_by(lesson_id=lesson.id).one()
        assert payment.status == LessonPaymentStatus.PAID
        assert payment.invoice_reference == "in_7"

    def test_invoice_payment_failed_is_recorded(self, db, event_service):
        result = event_service.handle_event(_event("evt_8", "invoice_payment_failed", {"id": "in_8"}))

        assert result == {"status": "success"}
        assert db.query(ProcessedEvent).count() == 1


class TestDispatch:
    def test_unknown_event_admitted_and_ignored(self, db, event_service):
        before = _inbound_count("customer.created", "ignored")

        result = event_service.handle_event(_event("evt_9", "customer.created", {"id": "cus_1"}))

        assert result == {"status": "success"}
        assert db.query(ProcessedEvent).count() == 1
        assert _inbound_count("customer.created", "ignored") == before + 1

    def test_handler_failure_rolls_back_admission(self, db, event_service):
        event = _event("evt_10", "payment_failed", {"id": "pi_10"})
        original = event_service._handlers["payment_failed"]
        event_service._handlers["payment_failed"] = MagicMock(side_effect=RuntimeError("handler crashed"))

        with pytest.raises(RuntimeError):
            event_service.handle_event(event)
        assert db.query(ProcessedEvent).count() == 0

        # Redelivery is handled afresh
        event_service._handlers["payment_failed"] = original
        assert event_service.handle_event(event) == {"status": "success"}
        assert db.query(ProcessedEvent).count() == 1
