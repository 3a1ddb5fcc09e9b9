# backend/lessonbook/services/payment_event_service.py
"""
Payment Event Service

Applies verified processor events to orders, lesson payments and instructor
accounts, exactly once per external event id.

The event id is written to the processed-event ledger in the same unit of
work as the handler's changes. A handler that fails rolls the ledger row back
with it, so the processor's redelivery is handled afresh. A duplicate
delivery loses the insert on the ledger's unique key and is answered as
already processed.
"""

import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..core.clock import SystemClock
from ..core.exceptions import EventAlreadyProcessedError, RepositoryException
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.base_repository import is_integrity_violation
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .order_service import OrderService
from .stripe_service import InboundEvent

logger = logging.getLogger(__name__)


class EventIntakeService(BaseService):
    """Append-only ledger of external event ids."""

    def __init__(self, db: Session, clock: Optional[SystemClock] = None):
        super().__init__(db, clock)
        self.repository = RepositoryFactory.create_processed_event_repository(db)

    @BaseService.measure_operation("admit_event")
    def admit(self, event_id: str, event_type: str = "", payload: Optional[Dict[str, Any]] = None) -> bool:
        """
        Record an event id the first time it is seen.

        Returns:
            True if the event is new and should be handled, False if it was
            already recorded (including by a concurrent delivery)
        """
        with self.transaction():
            if self.repository.has_processed(event_id):
                return False
            try:
                self.repository.record(event_id, event_type, payload)
            except RepositoryException as exc:
                if is_integrity_violation(exc):
                    self.logger.info(
                        f"Event {event_id} recorded by a concurrent delivery",
                        extra={"event_id": event_id},
                    )
                    return False
                raise
        return True


class PaymentEventService(BaseService):
    def __init__(
        self,
        db: Session,
        clock: Optional[SystemClock] = None,
        order_service: Optional[OrderService] = None,
        intake_service: Optional[EventIntakeService] = None,
    ):
        super().__init__(db, clock)
        self.order_service = order_service or OrderService(db, self.clock)
        self.intake_service = intake_service or EventIntakeService(db, self.clock)
        self.order_repository = RepositoryFactory.create_order_repository(db)
        self.instructor_repository = RepositoryFactory.create_instructor_repository(db)
        self._handlers: Dict[str, Callable[[Dict[str, Any]], None]] = {
            "checkout_completed": self._handle_checkout_completed,
            "payment_succeeded": self._handle_payment_succeeded,
            "payment_failed": self._handle_payment_failed,
            "account_updated": self._handle_account_updated,
            "invoice_paid": self._handle_invoice_paid,
            "invoice_payment_failed": self._handle_invoice_payment_failed,
        }

    @BaseService.measure_operation("handle_event")
    def handle_event(self, event: InboundEvent) -> Dict[str, str]:
        """
        Admit and dispatch one inbound event.

        Returns:
            {"status": "success"} for a newly handled event (known or not),
            {"status": "already_processed"} for a replay
        """
        try:
            with self.transaction():
                if not self.intake_service.admit(event.id, event.name, event.payload):
                    raise EventAlreadyProcessedError(event.id)

                handler = self._handlers.get(event.name)
                if handler is None:
                    self.logger.info(
                        f"Ignoring unhandled event type: {event.source_type or event.name}",
                        extra={"event_id": event.id},
                    )
                    outcome = "ignored"
                else:
                    handler(event.payload)
                    outcome = "processed"
        except EventAlreadyProcessedError:
            self.logger.info(f"Event {event.id} already processed", extra={"event_id": event.id})
            prometheus_metrics.record_inbound_event(event.name, "already_processed")
            return {"status": "already_processed"}

        prometheus_metrics.record_inbound_event(event.name, outcome)
        self.logger.info(
            f"Handled {event.name} event {event.id}",
            extra={"event_id": event.id, "event_type": event.name, "outcome": outcome},
        )
        return {"status": "success"}

    # Handlers

    def _handle_checkout_completed(self, payload: Dict[str, Any]) -> None:
        session_id = payload.get("id")
        order = self.order_repository.get_by_checkout_session(session_id, for_update=True) if session_id else None
        if order is None:
            self.logger.warning(
                "Checkout completed for unknown session",
                extra={"checkout_session_reference": session_id},
            )
            return
        if payload.get("payment_status") != "paid":
            self.logger.info(
                f"Checkout for order {order.id} completed without payment",
                extra={"order_id": order.id, "payment_status": payload.get("payment_status")},
            )
            return

        payment_intent = payload.get("payment_intent")
        if payment_intent and not order.payment_intent_reference:
            order.payment_intent_reference = payment_intent
            self.db.flush()
        self.order_service.apply_payment_confirmed(order.id)

    def _handle_payment_succeeded(self, payload: Dict[str, Any]) -> None:
        intent_id = payload.get("id")
        order = self.order_repository.get_by_payment_intent(intent_id) if intent_id else None
        if order is None:
            self.logger.warning(
                "Payment succeeded for unknown payment intent",
                extra={"payment_intent_reference": intent_id},
            )
            return
        self.order_service.apply_payment_confirmed(order.id)

    def _handle_payment_failed(self, payload: Dict[str, Any]) -> None:
        error = (payload.get("last_payment_error") or {}).get("message")
        self.logger.warning(
            f"Payment failed for payment intent {payload.get('id')}",
            extra={"payment_intent_reference": payload.get("id"), "error": error},
        )

    def _handle_account_updated(self, payload: Dict[str, Any]) -> None:
        account_id = payload.get("id")
        instructor = (
            self.instructor_repository.get_by_stripe_account_id(account_id, for_update=True) if account_id else None
        )
        if instructor is None:
            self.logger.warning("Account update for unknown instructor", extra={"account_id": account_id})
            return

        instructor.onboarding_complete = bool(payload.get("details_submitted"))
        instructor.charges_enabled = bool(payload.get("charges_enabled"))
        instructor.payouts_enabled = bool(payload.get("payouts_enabled"))
        self.db.flush()
        self.logger.info(
            f"Instructor {instructor.id} account status updated",
            extra={
                "instructor_id": instructor.id,
                "onboarding_complete": instructor.onboarding_complete,
                "payouts_enabled": instructor.payouts_enabled,
            },
        )

    def _handle_invoice_paid(self, payload: Dict[str, Any]) -> None:
        invoice_id = payload.get("id")
        lesson_id = (payload.get("metadata") or {}).get("lesson_id")
        if not invoice_id:
            self.logger.warning("Paid invoice event without an invoice id", extra={"lesson_id": lesson_id})
            return
        self.order_service.apply_invoice_paid(invoice_id, lesson_id=lesson_id)

    def _handle_invoice_payment_failed(self, payload: Dict[str, Any]) -> None:
        self.logger.error(
            f"Invoice payment failed for invoice {payload.get('id')}",
            extra={
                "invoice_reference": payload.get("id"),
                "lesson_id": (payload.get("metadata") or {}).get("lesson_id"),
            },
        )
