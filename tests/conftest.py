"""Pytest fixtures for storefront tests."""

import hashlib
import hmac
import json
import time

import pytest
from flask import g

from storefront import create_app
from storefront.config import TestingConfig
from storefront.extensions import db
from storefront.models import Customer, DeliveryZone, Product, User
from storefront.models.user import hash_password
from storefront.services import get_engine
from storefront.services.broadcast import StockBroadcaster
from storefront.services.checkout import CheckoutRequest
from storefront.services.errors import GatewayError
from storefront.services.gateway import GatewayRefund, PaymentIntent, StripeGateway
from storefront.services.geocoding import StaticGeocoder

# About 22 km and 8 km from the default warehouse coordinate
FAR_ADDRESS = '10 Hamersley Rd, Subiaco'
FAR_POINT = (-31.9471, 115.7147)
NEAR_ADDRESS = '5 Ranford Rd, Thornlie'
NEAR_POINT = (-32.0570, 115.9970)
OUTBACK_ADDRESS = '1 Great Eastern Hwy, Kalgoorlie'
OUTBACK_POINT = (-30.7490, 121.4660)


class FakeGateway(StripeGateway):
    """Stripe gateway with network calls replaced; webhook verification stays real."""

    def __init__(self):
        super().__init__(TestingConfig.STRIPE_SECRET_KEY, TestingConfig.STRIPE_WEBHOOK_SECRET)
        self.intents = []
        self.refunds = []
        self.fail_intents = 0
        self.fail_refunds = 0
        self.refund_status = 'succeeded'
        self.on_refund = None
        self._refunds_by_key = {}

    def create_intent(self, amount_cents, currency, metadata=None, idempotency_key=None):
        if self.fail_intents:
            self.fail_intents -= 1
            raise GatewayError('card network unavailable')
        reference = f'pi_test_{len(self.intents) + 1}'
        intent = PaymentIntent(reference, f'{reference}_secret_abc', amount_cents)
        self.intents.append({'intent': intent, 'currency': currency,
                             'metadata': metadata, 'idempotency_key': idempotency_key})
        return intent

    def refund(self, reference, amount_cents, idempotency_key=None, metadata=None):
        if self.fail_refunds:
            self.fail_refunds -= 1
            raise GatewayError('refund declined by processor')
        if idempotency_key in self._refunds_by_key:
            return self._refunds_by_key[idempotency_key]
        refund = GatewayRefund(f're_test_{len(self.refunds) + 1}', amount_cents, self.refund_status)
        self.refunds.append({'refund': refund, 'reference': reference, 'idempotency_key': idempotency_key})
        self._refunds_by_key[idempotency_key] = refund
        if self.on_refund is not None:
            self.on_refund()
        return refund


class RecordingTransport:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, channel, event_name, data):
        if self.fail:
            raise ConnectionError('broadcast backend unreachable')
        self.sent.append((channel, event_name, data))


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    def notify(self, recipient, event, **context):
        if self.fail:
            raise RuntimeError('smtp down')
        self.sent.append((recipient, event, context))

    def events(self):
        return [event for _, event, _ in self.sent]


def sign(payload, secret=TestingConfig.STRIPE_WEBHOOK_SECRET, timestamp=None):
    """Stripe-Signature header for ``payload`` (t=<ts>,v1=<hmac>)."""
    timestamp = int(timestamp or time.time())
    digest = hmac.new(secret.encode('utf-8'), f'{timestamp}.{payload}'.encode('utf-8'),
                      hashlib.sha256).hexdigest()
    return f't={timestamp},v1={digest}'


def payment_event(reference, amount, event_type='payment_intent.succeeded', event_id='evt_test_1'):
    obj = {'id': reference, 'object': 'payment_intent', 'amount': amount}
    if event_type == 'payment_intent.succeeded':
        obj['amount_received'] = amount
    else:
        obj['last_payment_error'] = {'message': 'Your card was declined.'}
    return json.dumps({
        'id': event_id,
        'object': 'event',
        'type': event_type,
        'data': {'object': obj},
    })


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def geocoder():
    return StaticGeocoder({
        FAR_ADDRESS: FAR_POINT,
        NEAR_ADDRESS: NEAR_POINT,
        OUTBACK_ADDRESS: OUTBACK_POINT,
    })


@pytest.fixture
def app(gateway, transport, notifier, geocoder):
    app = create_app(TestingConfig, gateway=gateway, broadcaster=StockBroadcaster(transport),
                     geocoder=geocoder, notifier=notifier)

    # The app context below spans the whole test, so every request shares one
    # ``g``; drop Flask-Login's cached user so each client authenticates itself.
    @app.before_request
    def _reset_login_cache():
        g.pop('_login_user', None)

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def engine(app):
    return get_engine()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_product(app):
    def _make(sku='ACM-3MM-WHITE', stock=10, price=10000, **fields):
        product = Product(sku=sku, name=fields.pop('name', f'ACM sheet {sku}'),
                          base_price_cents=price, stock=stock, **fields)
        db.session.add(product)
        db.session.commit()
        return product
    return _make


@pytest.fixture
def zones(app):
    inner = DeliveryZone(name='Metro', radius_km=15, base_fee_cents=3000,
                         per_unit_fee_cents=0, min_order_units=1)
    outer = DeliveryZone(name='Greater Perth', radius_km=50, base_fee_cents=6000,
                         per_unit_fee_cents=500, min_order_units=2)
    db.session.add_all([outer, inner])
    db.session.commit()
    return inner, outer


@pytest.fixture
def customer(app):
    customer = Customer(name='Jo Builder', email='jo@example.com',
                        password=hash_password('hunter22'), phone='0400000000')
    db.session.add(customer)
    db.session.commit()
    return customer


@pytest.fixture
def admin(app):
    user = User(username='admin', email='admin@example.com', password=hash_password('secret'))
    db.session.add(user)
    db.session.commit()
    return user


def login_as(client, account, auth_type):
    with client.session_transaction() as sess:
        sess['_user_id'] = str(account.id)
        sess['_fresh'] = True
        sess['auth_type'] = auth_type
    return client


@pytest.fixture
def admin_client(app, admin):
    return login_as(app.test_client(), admin, 'admin')


@pytest.fixture
def customer_client(app, customer):
    return login_as(app.test_client(), customer, 'customer')


@pytest.fixture
def place_order(engine):
    """Run a checkout through the orchestrator and return its CheckoutResult."""
    def _place(items, method='click_collect', originator='guest:abc', customer_id=None,
               address=None, discount_code=None):
        payload = {
            'items': [{'sku': sku, 'quantity': qty} for sku, qty in items],
            'delivery_method': method,
            'delivery_address': address,
            'guest': {'name': 'Sam Guest', 'email': 'sam@example.com'},
            'discount_code': discount_code,
        }
        request = CheckoutRequest.from_payload(payload, customer_id=customer_id, originator=originator)
        return engine.checkout.checkout(request)
    return _place


@pytest.fixture
def deliver_webhook(client):
    """POST a signed payment event to the webhook endpoint."""
    def _deliver(reference, amount, event_type='payment_intent.succeeded', event_id='evt_test_1'):
        payload = payment_event(reference, amount, event_type, event_id)
        return client.post('/webhooks/stripe', data=payload,
                           headers={'Stripe-Signature': sign(payload),
                                    'Content-Type': 'application/json'})
    return _deliver
