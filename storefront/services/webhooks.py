"""Payment webhook reconciliation.

The gateway delivers at least once and in any order. Every branch here is
safe to replay: only ``mark_paid`` writes, and it is a compare-and-set.
"""
import enum
import logging

from sqlalchemy import select

from ..extensions import db
from ..models import Order, OrderStatus
from .gateway import PAYMENT_FAILED, PAYMENT_SUCCEEDED
from .notifications import (
    ADMIN_RECIPIENT, ORDER_PAID, PAYMENT_FOR_CLOSED_ORDER, STOCK_UNAVAILABLE, safe_notify,
)
from .order_state import PaymentOutcome

logger = logging.getLogger(__name__)


class WebhookOutcome(str, enum.Enum):
    PAID = 'paid'
    ALREADY_PAID = 'already_paid'
    UNKNOWN_REFERENCE = 'unknown_reference'
    IGNORED = 'ignored'
    STOCK_UNAVAILABLE = 'stock_unavailable'
    AMOUNT_MISMATCH = 'amount_mismatch'
    PAYMENT_FAILED = 'payment_failed'
    UNHANDLED = 'unhandled'


_FROM_PAYMENT = {
    PaymentOutcome.PAID: WebhookOutcome.PAID,
    PaymentOutcome.ALREADY_PAID: WebhookOutcome.ALREADY_PAID,
    PaymentOutcome.IGNORED: WebhookOutcome.IGNORED,
    PaymentOutcome.STOCK_UNAVAILABLE: WebhookOutcome.STOCK_UNAVAILABLE,
}


class PaymentWebhookHandler:
    def __init__(self, gateway, state_machine, notifier):
        self.gateway = gateway
        self.state = state_machine
        self.notifier = notifier

    def handle(self, payload, signature):
        """Verify, then reconcile. Raises SignatureError before reading anything."""
        event = self.gateway.verify(payload, signature)

        if event.type == PAYMENT_SUCCEEDED:
            return self._succeeded(event)
        if event.type == PAYMENT_FAILED:
            logger.warning('[Webhook] payment failed for %s: %s',
                           event.reference, event.failure_message or 'no reason given')
            return WebhookOutcome.PAYMENT_FAILED
        logger.info('[Webhook] ignoring %s event %s', event.type, event.id)
        return WebhookOutcome.UNHANDLED

    def _succeeded(self, event):
        order = db.session.execute(
            select(Order.id, Order.order_number, Order.status, Order.total_cents)
            .where(Order.payment_reference == event.reference)
        ).one_or_none()
        if order is None:
            logger.warning('[Webhook] no order for payment %s (event %s)', event.reference, event.id)
            return WebhookOutcome.UNKNOWN_REFERENCE

        if order.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            logger.error('[Webhook] payment %s succeeded for %s order %s, not reopening',
                         event.reference, order.status.value, order.order_number)
            self._closed_order_paid(order, event)
            return WebhookOutcome.IGNORED
        if order.status != OrderStatus.PENDING:
            return WebhookOutcome.ALREADY_PAID

        if event.amount_cents is not None and event.amount_cents != order.total_cents:
            logger.error('[Webhook] payment %s received %s but order %s totals %s',
                         event.reference, event.amount_cents, order.order_number, order.total_cents)
            return WebhookOutcome.AMOUNT_MISMATCH

        result = self.state.mark_paid(order.id, note=f'Payment {event.reference} confirmed')
        outcome = _FROM_PAYMENT[result.outcome]

        if outcome == WebhookOutcome.PAID:
            paid = db.session.get(Order, order.id)
            safe_notify(self.notifier, paid.contact_email, ORDER_PAID,
                        order_number=order.order_number, total_cents=order.total_cents)
        elif outcome == WebhookOutcome.STOCK_UNAVAILABLE:
            logger.critical('[Webhook] order %s paid but %s is no longer in stock; manual action needed',
                            order.order_number, result.sku)
            safe_notify(self.notifier, ADMIN_RECIPIENT, STOCK_UNAVAILABLE,
                        order_number=order.order_number, sku=result.sku,
                        payment_reference=event.reference)
        elif outcome == WebhookOutcome.IGNORED:
            logger.error('[Webhook] order %s was closed before payment %s could be applied',
                         order.order_number, event.reference)
            self._closed_order_paid(order, event)
        return outcome

    def _closed_order_paid(self, order, event):
        # The customer was charged for an order that will not ship; someone has to refund it
        safe_notify(self.notifier, ADMIN_RECIPIENT, PAYMENT_FOR_CLOSED_ORDER,
                    order_number=order.order_number, payment_reference=event.reference,
                    amount_cents=event.amount_cents)
