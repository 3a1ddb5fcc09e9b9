# backend/lessonbook/services/stripe_service.py
"""
Stripe Service

The payment-processor boundary. Every call returns a ``ProcessorResult``
(success plus an id, or an error message) instead of raising, so callers
decide how a failed charge, transfer or invoice affects their own state.

Inbound webhooks are verified here and normalised into ``InboundEvent``
objects carrying the internal event names the booking engine dispatches on.
"""

from dataclasses import dataclass, field
from datetime import date
import logging
from typing import Any, Dict, Mapping, Optional

import stripe

from ..core.config import settings
from ..core.exceptions import ServiceException, ValidationException

logger = logging.getLogger(__name__)

# Stripe event type -> internal event name
STRIPE_EVENT_NAMES: Dict[str, str] = {
    "checkout.session.completed": "checkout_completed",
    "payment_intent.succeeded": "payment_succeeded",
    "payment_intent.payment_failed": "payment_failed",
    "account.updated": "account_updated",
    "invoice.paid": "invoice_paid",
    "invoice.payment_failed": "invoice_payment_failed",
}


@dataclass(frozen=True)
class ProcessorResult:
    success: bool
    id: Optional[str] = None
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, id: Optional[str], **data: Any) -> "ProcessorResult":
        return cls(success=True, id=id, data=data)

    @classmethod
    def failed(cls, error: str) -> "ProcessorResult":
        return cls(success=False, error=error)


@dataclass(frozen=True)
class InboundEvent:
    """A verified processor event, reduced to what the engine needs."""

    id: str
    name: str
    payload: Dict[str, Any]
    source_type: Optional[str] = None


def normalize_event(event: Mapping[str, Any]) -> InboundEvent:
    """Translate a raw Stripe event into an InboundEvent."""
    event_type = str(event.get("type") or "")
    data_object = dict(((event.get("data") or {}).get("object")) or {})
    return InboundEvent(
        id=str(event.get("id") or ""),
        name=STRIPE_EVENT_NAMES.get(event_type, event_type),
        payload=data_object,
        source_type=event_type,
    )


class StripeService:
    """Thin wrapper around the ``stripe`` library."""

    def __init__(self, currency: Optional[str] = None):
        self.currency = currency or settings.stripe_currency
        self.logger = logging.getLogger(self.__class__.__name__)
        secret = settings.stripe_secret_key.get_secret_value()
        self.stripe_configured = bool(secret)
        if self.stripe_configured:
            stripe.api_key = secret
            stripe.max_network_retries = 1
        else:
            self.logger.warning("Stripe secret key not configured - processor calls will fail")

    # Customers and catalog

    def create_customer(self, email: Optional[str], name: str, metadata: Dict[str, str]) -> ProcessorResult:
        try:
            customer = stripe.Customer.create(email=email, name=name, metadata=metadata)
            return ProcessorResult.ok(customer.id)
        except stripe.StripeError as e:
            self.logger.error(f"Stripe customer creation failed: {str(e)}", extra={"metadata": metadata})
            return ProcessorResult.failed(str(e))

    def create_price(self, product_name: str, amount_pence: int, metadata: Dict[str, str]) -> ProcessorResult:
        """Create a product and a one-off price for it in a single call."""
        try:
            price = stripe.Price.create(
                unit_amount=amount_pence,
                currency=self.currency,
                product_data={"name": product_name, "metadata": metadata},
                metadata=metadata,
            )
            return ProcessorResult.ok(price.id, product_id=price.product)
        except stripe.StripeError as e:
            self.logger.error(f"Stripe price creation failed: {str(e)}", extra={"metadata": metadata})
            return ProcessorResult.failed(str(e))

    def create_checkout_session(
        self,
        *,
        customer_id: Optional[str],
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> ProcessorResult:
        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                customer=customer_id,
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
            )
            return ProcessorResult.ok(session.id, url=session.url)
        except stripe.StripeError as e:
            self.logger.error(f"Stripe checkout session creation failed: {str(e)}", extra={"metadata": metadata})
            return ProcessorResult.failed(str(e))

    # Money movement

    def create_transfer(
        self,
        *,
        amount_pence: int,
        destination: str,
        metadata: Dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> ProcessorResult:
        try:
            transfer = stripe.Transfer.create(
                amount=amount_pence,
                currency=self.currency,
                destination=destination,
                metadata=metadata,
                idempotency_key=idempotency_key,
            )
            return ProcessorResult.ok(transfer.id)
        except stripe.StripeError as e:
            self.logger.error(
                f"Stripe transfer failed: {str(e)}",
                extra={"destination": destination, "amount_pence": amount_pence, **metadata},
            )
            return ProcessorResult.failed(str(e))

    def create_invoice(
        self,
        *,
        customer_id: str,
        amount_pence: int,
        description: str,
        metadata: Dict[str, str],
        due_date: Optional[date] = None,
    ) -> ProcessorResult:
        """Raise a single-line invoice and finalise it so Stripe sends it."""
        try:
            stripe.InvoiceItem.create(
                customer=customer_id,
                amount=amount_pence,
                currency=self.currency,
                description=description,
                metadata=metadata,
            )
            invoice = stripe.Invoice.create(
                customer=customer_id,
                auto_advance=True,
                collection_method="send_invoice",
                days_until_due=1,
                pending_invoice_items_behavior="include",
                metadata=metadata,
            )
            invoice = stripe.Invoice.finalize_invoice(invoice.id)
            return ProcessorResult.ok(invoice.id, hosted_invoice_url=invoice.hosted_invoice_url)
        except stripe.StripeError as e:
            self.logger.error(f"Stripe invoice creation failed: {str(e)}", extra=dict(metadata))
            return ProcessorResult.failed(str(e))

    # Accounts

    def retrieve_account(self, account_id: str) -> ProcessorResult:
        try:
            account = stripe.Account.retrieve(account_id)
            return ProcessorResult.ok(
                account.id,
                details_submitted=bool(account.details_submitted),
                charges_enabled=bool(account.charges_enabled),
                payouts_enabled=bool(account.payouts_enabled),
            )
        except stripe.StripeError as e:
            self.logger.error(f"Stripe account lookup failed: {str(e)}", extra={"account_id": account_id})
            return ProcessorResult.failed(str(e))

    # Webhooks

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> InboundEvent:
        """
        Verify a webhook delivery and return the normalised event.

        Raises:
            ValidationException: missing or invalid signature, or bad payload
            ServiceException: no webhook secret configured
        """
        if not signature:
            raise ValidationException("Missing Stripe signature", code="MISSING_SIGNATURE")

        webhook_secret = settings.stripe_webhook_secret.get_secret_value()
        if not webhook_secret:
            raise ServiceException("Webhook secret not configured")

        try:
            event = stripe.Webhook.construct_event(payload, signature, webhook_secret)
        except stripe.SignatureVerificationError as e:
            self.logger.warning(f"Invalid webhook signature: {str(e)}")
            raise ValidationException("Invalid webhook signature", code="INVALID_SIGNATURE")
        except ValueError as e:
            self.logger.warning(f"Invalid webhook payload: {str(e)}")
            raise ValidationException("Invalid webhook payload", code="INVALID_PAYLOAD")

        return normalize_event(event.to_dict() if hasattr(event, "to_dict") else event)
