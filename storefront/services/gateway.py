"""Payment gateway collaborator.

The engine only needs three things from a payment provider: create a payment
intent, refund against it, and verify a signed webhook. ``StripeGateway``
covers all three with the stripe client; tests subclass it.
"""
from dataclasses import dataclass
import json
import logging
from typing import Optional

import stripe

from .errors import GatewayError, SignatureError

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = 'payment_intent.succeeded'
PAYMENT_FAILED = 'payment_intent.payment_failed'


@dataclass(frozen=True)
class PaymentIntent:
    reference: str
    client_secret: str
    amount_cents: int


@dataclass(frozen=True)
class GatewayRefund:
    id: str
    amount_cents: int
    status: str = 'succeeded'


@dataclass(frozen=True)
class WebhookEvent:
    id: str
    type: str
    reference: Optional[str] = None
    amount_cents: Optional[int] = None
    failure_message: Optional[str] = None


class PaymentGateway:
    def create_intent(self, amount_cents, currency, metadata=None, idempotency_key=None):
        raise NotImplementedError

    def refund(self, reference, amount_cents, idempotency_key=None, metadata=None):
        raise NotImplementedError

    def verify(self, payload, signature):
        raise NotImplementedError


class StripeGateway(PaymentGateway):
    def __init__(self, api_key, webhook_secret):
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def create_intent(self, amount_cents, currency, metadata=None, idempotency_key=None):
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=currency,
                metadata=metadata or {},
                automatic_payment_methods={'enabled': True},
                idempotency_key=idempotency_key,
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            logger.warning('Stripe PaymentIntent.create failed: %s', exc)
            raise GatewayError(str(exc) or None) from exc
        return PaymentIntent(intent.id, intent.client_secret, intent.amount)

    def refund(self, reference, amount_cents, idempotency_key=None, metadata=None):
        try:
            refund = stripe.Refund.create(
                payment_intent=reference,
                amount=amount_cents,
                reason='requested_by_customer',
                metadata=metadata or {},
                idempotency_key=idempotency_key,
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            logger.warning('Stripe Refund.create failed for %s: %s', reference, exc)
            raise GatewayError(str(exc) or None) from exc
        return GatewayRefund(refund.id, refund.amount, refund.status)

    def verify(self, payload, signature):
        if not signature or not self.webhook_secret:
            raise SignatureError('Missing signature or webhook secret')
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise SignatureError(str(exc)) from exc
        except ValueError as exc:
            raise SignatureError('Malformed webhook payload') from exc
        return parse_event(payload)


def parse_event(payload):
    if isinstance(payload, bytes):
        payload = payload.decode('utf-8')
    try:
        body = json.loads(payload)
    except ValueError as exc:
        raise SignatureError('Malformed webhook payload') from exc

    obj = (body.get('data') or {}).get('object') or {}
    amount = obj.get('amount_received')
    if amount is None:
        amount = obj.get('amount')
    error = obj.get('last_payment_error') or {}
    return WebhookEvent(
        id=body.get('id', ''),
        type=body.get('type', ''),
        reference=obj.get('id'),
        amount_cents=amount,
        failure_message=error.get('message'),
    )
