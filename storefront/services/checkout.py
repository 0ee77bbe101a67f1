"""Checkout: price on the server, reserve stock, open a pending order, start payment.

Only the payment webhook can move the resulting order to paid. Holds that are
never paid for lapse and are returned by the reservation sweeper.
"""
from collections import OrderedDict, namedtuple
from dataclasses import dataclass
from datetime import datetime
import logging
import time
from typing import List, Optional
import uuid

from sqlalchemy import select

from ..extensions import atomic, db
from ..models import BulkDiscount, DeliveryMethod, DeliveryZone, Order, OrderItem, OrderStatus, Product
from .discount_codes import DiscountCodes
from .errors import (
    AddressNotFound, BelowZoneMinimum, GatewayError, GeocoderError, InsufficientStock,
    InvalidTransition, OrderNotFound, OutOfDeliveryRange, ProductNotFound, ValidationError,
)
from .order_state import SYSTEM_ACTOR
from .pricing import Tier, price_line
from .retry import retry
from .zones import delivery_fee, resolve_zone

logger = logging.getLogger(__name__)

CREATED_NOTE = 'Order created - awaiting payment confirmation'
PAYMENT_FAILED_NOTE = 'Payment could not be started'

CartLine = namedtuple('CartLine', 'sku quantity')


@dataclass
class GuestContact:
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class CheckoutRequest:
    lines: List[CartLine]
    delivery_method: DeliveryMethod
    originator: Optional[str] = None
    customer_id: Optional[int] = None
    guest: Optional[GuestContact] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    discount_code: Optional[str] = None

    @classmethod
    def from_payload(cls, payload, customer_id=None, originator=None):
        """Build a request from the checkout JSON body.

        Client-side prices and tier snapshots are accepted and ignored.
        """
        if not isinstance(payload, dict):
            raise ValidationError('Checkout body must be a JSON object')

        items = payload.get('items')
        if not isinstance(items, list) or not items:
            raise ValidationError('Your cart is empty', field='items')

        merged = OrderedDict()
        for item in items:
            if not isinstance(item, dict):
                raise ValidationError('Each cart line must be an object', field='items')
            sku = item.get('sku')
            quantity = item.get('quantity')
            if not isinstance(sku, str) or not sku.strip():
                raise ValidationError('Cart line is missing a SKU', field='sku')
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
                raise ValidationError('Quantity must be a positive whole number',
                                      field='quantity', sku=sku)
            sku = sku.strip()
            merged[sku] = merged.get(sku, 0) + quantity

        try:
            method = DeliveryMethod(payload.get('delivery_method'))
        except ValueError:
            raise ValidationError('Choose click & collect or local delivery',
                                  field='delivery_method') from None

        address = (payload.get('delivery_address') or '').strip() or None
        if method == DeliveryMethod.LOCAL_DELIVERY and not address:
            raise ValidationError('A delivery address is required', field='delivery_address')

        guest = None
        if customer_id is None:
            contact = payload.get('guest') or {}
            name = (contact.get('name') or '').strip()
            email = (contact.get('email') or '').strip() or None
            phone = (contact.get('phone') or '').strip() or None
            if not name:
                raise ValidationError('Please enter your name', field='guest.name')
            if not email and not phone:
                raise ValidationError('Please enter an email or phone number', field='guest.email')
            if email and '@' not in email:
                raise ValidationError('Please enter a valid email address', field='guest.email')
            guest = GuestContact(name, email, phone)

        return cls(
            lines=[CartLine(sku, qty) for sku, qty in merged.items()],
            delivery_method=method,
            originator=originator,
            customer_id=customer_id,
            guest=guest,
            address=address,
            notes=(payload.get('notes') or '').strip() or None,
            discount_code=(payload.get('discount_code') or '').strip() or None,
        )


@dataclass
class CheckoutResult:
    order_id: int
    order_number: str
    payment_reference: str
    client_secret: str
    total_cents: int
    balance_due_cents: int
    delivery_fee_cents: int
    expires_at: datetime
    discount_cents: int = 0

    def to_dict(self):
        return {
            'order_id': self.order_id,
            'order_number': self.order_number,
            'payment_reference': self.payment_reference,
            'client_secret': self.client_secret,
            'total_cents': self.total_cents,
            'balance_due_cents': self.balance_due_cents,
            'delivery_fee_cents': self.delivery_fee_cents,
            'discount_cents': self.discount_cents,
            'expires_at': self.expires_at.isoformat(),
        }


PricedLine = namedtuple('PricedLine', 'product quantity quote')


class CheckoutOrchestrator:
    def __init__(self, ledger, state_machine, gateway, geocoder, warehouse,
                 currency='aud', minimum_charge_cents=50, gateway_attempts=3,
                 gateway_retry_delay=0.5, sleep=time.sleep, discounts=None):
        self.ledger = ledger
        self.state = state_machine
        self.gateway = gateway
        self.geocoder = geocoder
        self.warehouse = warehouse
        self.currency = currency
        self.minimum_charge_cents = minimum_charge_cents
        self.gateway_attempts = gateway_attempts
        self.gateway_retry_delay = gateway_retry_delay
        self.sleep = sleep
        self.discounts = discounts or DiscountCodes()

    def checkout(self, request):
        priced = self._price(request.lines)
        units = sum(line.quantity for line in priced)
        subtotal = sum(line.quote.line_total_cents for line in priced)

        fee = 0
        holding_fee = 0
        zone_name = None
        holding_days = None
        if request.delivery_method == DeliveryMethod.LOCAL_DELIVERY:
            zone = self._zone_for(request.address, units)
            zone_name = zone.name
            fee = delivery_fee(zone, units)

        # Before the code is checked, so a use held by the superseded order is free again
        if request.originator:
            self._supersede(request.originator)

        discount = None
        discount_cents = 0
        if request.discount_code:
            discount = self.discounts.evaluate(request.discount_code, request.customer_id, subtotal, fee)
            discount_cents = discount.amount_cents

        if request.delivery_method == DeliveryMethod.LOCAL_DELIVERY:
            total = subtotal + fee - discount_cents
        else:
            # Only the goods can be discounted here, there is no delivery fee
            holding_fee = sum(line.product.holding_fee_cents * line.quantity for line in priced)
            total = min(subtotal - discount_cents, holding_fee)
            holding_days = min(line.product.holding_period_days for line in priced)
        balance_due = subtotal + fee - discount_cents - total

        if total < self.minimum_charge_cents:
            raise ValidationError(field='total', reason='below_minimum_charge',
                                  total_cents=total, minimum_cents=self.minimum_charge_cents)

        reservations = self._reserve_all(priced, request.originator)
        tokens = [r.token for r in reservations]
        try:
            with atomic() as session:
                order = Order(
                    order_number=f'NEW-{uuid.uuid4().hex[:12]}',
                    customer_id=request.customer_id,
                    guest_name=request.guest.name if request.guest else None,
                    guest_email=request.guest.email if request.guest else None,
                    guest_phone=request.guest.phone if request.guest else None,
                    originator=request.originator,
                    status=OrderStatus.PENDING,
                    delivery_method=request.delivery_method,
                    delivery_zone_name=zone_name,
                    delivery_address=request.address,
                    subtotal_cents=subtotal,
                    delivery_fee_cents=fee,
                    holding_fee_cents=holding_fee,
                    total_cents=total,
                    balance_due_cents=balance_due,
                    discount_code_id=discount.code_id if discount else None,
                    discount_cents=discount_cents,
                    holding_period_days=holding_days,
                    customer_notes=request.notes,
                )
                session.add(order)
                session.flush()
                order.order_number = f'SUB-{order.id:04d}'
                for line in priced:
                    session.add(OrderItem(
                        order_id=order.id,
                        product_id=line.product.id,
                        sku=line.product.sku,
                        name=line.product.name,
                        quantity=line.quantity,
                        base_price_cents=line.product.base_price_cents,
                        unit_price_cents=line.quote.unit_price_cents,
                        discount_percent=line.quote.discount_percent,
                        line_total_cents=line.quote.line_total_cents,
                    ))
                if discount is not None:
                    self.discounts.redeem_in(session, discount, request.customer_id, order.id)
                self.ledger.attach_in(session, tokens, order.id)
                self.state.record_in(session, order.id, OrderStatus.PENDING, CREATED_NOTE,
                                     actor=request.originator or SYSTEM_ACTOR)
                order_id, order_number = order.id, order.order_number
        except Exception:
            self.ledger.release_all(tokens)
            raise

        try:
            intent = retry(
                lambda: self.gateway.create_intent(
                    total, self.currency,
                    metadata={'order_id': str(order_id), 'order_number': order_number},
                    idempotency_key=f'checkout-{order_number}',
                ),
                attempts=self.gateway_attempts,
                base_delay=self.gateway_retry_delay,
                retry_on=(GatewayError,),
                sleep=self.sleep,
            )
        except GatewayError:
            logger.warning('[Checkout] payment intent failed for %s, cancelling', order_number)
            self.state.cancel(order_id, note=PAYMENT_FAILED_NOTE, actor=SYSTEM_ACTOR)
            raise

        with atomic() as session:
            session.get(Order, order_id).payment_reference = intent.reference

        logger.info('[Checkout] %s created: %s units, total %s, intent %s',
                    order_number, units, total, intent.reference)
        return CheckoutResult(
            order_id=order_id,
            order_number=order_number,
            payment_reference=intent.reference,
            client_secret=intent.client_secret,
            total_cents=total,
            balance_due_cents=balance_due,
            delivery_fee_cents=fee,
            expires_at=min(r.expires_at for r in reservations),
            discount_cents=discount_cents,
        )

    def abandon(self, order_number, originator):
        """Shopper left checkout: cancel their pending order and free its holds."""
        order_id, status = self._own_order(order_number, originator)
        if status != OrderStatus.PENDING:
            raise InvalidTransition(reason='not_pending', order_number=order_number,
                                    current=status.value)
        return self.state.cancel(order_id, note='Checkout abandoned', actor=f'shopper:{originator}')

    def _own_order(self, order_number, originator):
        row = db.session.execute(
            select(Order.id, Order.status, Order.originator).where(Order.order_number == order_number)
        ).one_or_none()
        if row is None or not originator or row.originator != originator:
            raise OrderNotFound(order_number=order_number)
        return row.id, row.status

    def _price(self, lines):
        skus = [line.sku for line in lines]
        products = {p.sku: p for p in Product.query.filter(Product.sku.in_(skus)).all()}

        priced = []
        for line in lines:
            product = products.get(line.sku)
            if product is None or not product.active:
                raise ProductNotFound(sku=line.sku)
            tiers = [Tier(t.min_quantity, t.discount_percent)
                     for t in BulkDiscount.ladder_for(product.id)]
            priced.append(PricedLine(product, line.quantity,
                                     price_line(product.base_price_cents, line.quantity, tiers)))
        return priced

    def _zone_for(self, address, units):
        coordinate = retry(
            lambda: self.geocoder.resolve(address),
            attempts=self.gateway_attempts,
            base_delay=self.gateway_retry_delay,
            retry_on=(GeocoderError,),
            sleep=self.sleep,
        )
        if coordinate is None:
            raise AddressNotFound(address=address)

        zones = DeliveryZone.query.filter_by(active=True).all()
        zone, distance = resolve_zone(self.warehouse, coordinate, zones)
        if zone is None:
            raise OutOfDeliveryRange(distance_km=round(distance, 1))
        if units < zone.min_order_units:
            raise BelowZoneMinimum(zone=zone.name, minimum_units=zone.min_order_units, units=units)
        return zone

    def _reserve_all(self, priced, originator):
        # Fixed SKU order keeps concurrent checkouts from interleaving their holds
        held = []
        for line in sorted(priced, key=lambda line: line.product.sku):
            outcome = self.ledger.reserve(line.product.sku, line.quantity, originator=originator)
            if isinstance(outcome, InsufficientStock):
                self.ledger.release_all([r.token for r in held])
                raise outcome
            held.append(outcome)
        return held

    def _supersede(self, originator):
        previous = db.session.execute(
            select(Order.id).where(Order.originator == originator,
                                   Order.status == OrderStatus.PENDING)
        ).scalars().all()
        for order_id in previous:
            try:
                self.state.cancel(order_id, note='Superseded by a new checkout', actor=SYSTEM_ACTOR)
            except InvalidTransition:
                logger.info('[Checkout] order %s settled before it could be superseded', order_id)
