"""Order lifecycle and inventory engine.

``build_engine`` wires the collaborators once per application; views and CLI
commands reach them through ``get_engine()``.
"""
from dataclasses import dataclass

from flask import current_app

from .broadcast import PusherTransport, SignalTransport, StockBroadcaster
from .checkout import CheckoutOrchestrator
from .discount_codes import DiscountCodes
from .gateway import PaymentGateway, StripeGateway
from .geocoding import Geocoder, NullGeocoder
from .ledger import InventoryLedger
from .notifications import LogNotifier, Notifier
from .order_state import OrderStateMachine
from .refunds import RefundWorkflow
from .stock_alerts import StockAlerts
from .sweeper import ReservationSweeper
from .webhooks import PaymentWebhookHandler
from .zones import Coordinate

EXTENSION_KEY = 'storefront'


@dataclass
class Engine:
    gateway: PaymentGateway
    broadcaster: StockBroadcaster
    geocoder: Geocoder
    notifier: Notifier
    ledger: InventoryLedger
    orders: OrderStateMachine
    refunds: RefundWorkflow
    checkout: CheckoutOrchestrator
    webhooks: PaymentWebhookHandler
    sweeper: ReservationSweeper
    discounts: DiscountCodes
    alerts: StockAlerts


def _transport(config):
    backend = config['BROADCAST_BACKEND']
    if backend == 'pusher':
        return PusherTransport.from_config(config)
    if backend == 'signal':
        return SignalTransport()
    raise ValueError(f'Unknown BROADCAST_BACKEND {backend!r}')


def build_engine(app, gateway=None, broadcaster=None, geocoder=None, notifier=None):
    config = app.config
    gateway = gateway or StripeGateway(config['STRIPE_SECRET_KEY'], config['STRIPE_WEBHOOK_SECRET'])
    broadcaster = broadcaster or StockBroadcaster(_transport(config))
    geocoder = geocoder or NullGeocoder()
    notifier = notifier or LogNotifier()

    alerts = StockAlerts(notifier)
    ledger = InventoryLedger(broadcaster, hold_minutes=config['RESERVATION_HOLD_MINUTES'], alerts=alerts)
    orders = OrderStateMachine(ledger)
    discounts = DiscountCodes()
    engine = Engine(
        gateway=gateway,
        broadcaster=broadcaster,
        geocoder=geocoder,
        notifier=notifier,
        ledger=ledger,
        orders=orders,
        refunds=RefundWorkflow(gateway, orders, notifier),
        checkout=CheckoutOrchestrator(
            ledger, orders, gateway, geocoder,
            warehouse=Coordinate(config['WAREHOUSE_LAT'], config['WAREHOUSE_LNG']),
            currency=config['CURRENCY'],
            minimum_charge_cents=config['MINIMUM_CHARGE_CENTS'],
            gateway_attempts=config['GATEWAY_MAX_ATTEMPTS'],
            gateway_retry_delay=config['GATEWAY_RETRY_DELAY'],
            discounts=discounts,
        ),
        webhooks=PaymentWebhookHandler(gateway, orders, notifier),
        sweeper=ReservationSweeper(ledger, orders,
                                   pending_ttl_minutes=config['PENDING_ORDER_TTL_MINUTES']),
        discounts=discounts,
        alerts=alerts,
    )
    app.extensions[EXTENSION_KEY] = engine
    return engine


def get_engine():
    return current_app.extensions[EXTENSION_KEY]
