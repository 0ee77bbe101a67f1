"""Tests for the checkout orchestrator."""

from datetime import timedelta

import pytest

from storefront.extensions import db
from storefront.models import (
    BulkDiscount, Order, OrderStatus, OrderStatusHistory, Product, Reservation, ReservationStatus,
)
from storefront.services.checkout import CheckoutRequest
from storefront.services.errors import (
    AddressNotFound, BelowZoneMinimum, GatewayError, InsufficientStock, InvalidTransition,
    OrderNotFound, OutOfDeliveryRange, ProductNotFound, ValidationError,
)

from conftest import FAR_ADDRESS, NEAR_ADDRESS, OUTBACK_ADDRESS


def stock_of(sku):
    return db.session.execute(db.select(Product.stock).where(Product.sku == sku)).scalar_one()


class TestCheckoutRequest:
    def test_duplicate_skus_merged_and_client_prices_ignored(self):
        request = CheckoutRequest.from_payload({
            'items': [
                {'sku': 'A', 'quantity': 2, 'unit_price': 1},
                {'sku': 'B', 'quantity': 1, 'tiers': [{'min_quantity': 1, 'discount_percent': 99}]},
                {'sku': 'A', 'quantity': 3},
            ],
            'delivery_method': 'click_collect',
            'guest': {'name': 'Sam', 'phone': '0400111222'},
        })
        assert [(line.sku, line.quantity) for line in request.lines] == [('A', 5), ('B', 1)]
        assert request.guest.phone == '0400111222'

    @pytest.mark.parametrize('payload', [
        {},
        {'items': [], 'delivery_method': 'click_collect'},
        {'items': [{'sku': 'A', 'quantity': 0}], 'delivery_method': 'click_collect'},
        {'items': [{'sku': 'A', 'quantity': '2'}], 'delivery_method': 'click_collect'},
        {'items': [{'quantity': 1}], 'delivery_method': 'click_collect'},
        {'items': [{'sku': 'A', 'quantity': 1}], 'delivery_method': 'drone'},
        {'items': [{'sku': 'A', 'quantity': 1}], 'delivery_method': 'local_delivery',
         'guest': {'name': 'Sam', 'email': 'sam@example.com'}},
        {'items': [{'sku': 'A', 'quantity': 1}], 'delivery_method': 'click_collect',
         'guest': {'name': 'Sam'}},
        {'items': [{'sku': 'A', 'quantity': 1}], 'delivery_method': 'click_collect',
         'guest': {'email': 'sam@example.com'}},
        {'items': [{'sku': 'A', 'quantity': 1}], 'delivery_method': 'click_collect',
         'guest': {'name': 'Sam', 'email': 'not-an-email'}},
    ])
    def test_invalid_payloads(self, payload):
        with pytest.raises(ValidationError):
            CheckoutRequest.from_payload(payload)

    def test_logged_in_customer_needs_no_guest_contact(self):
        request = CheckoutRequest.from_payload(
            {'items': [{'sku': 'A', 'quantity': 1}], 'delivery_method': 'click_collect'},
            customer_id=7,
        )
        assert request.customer_id == 7
        assert request.guest is None


class TestClickAndCollect:
    def test_creates_pending_order_with_holding_fee(self, engine, make_product, place_order, gateway):
        make_product(stock=10, price=12000, holding_fee_cents=5000)
        result = place_order([('ACM-3MM-WHITE', 3)])

        order = db.session.get(Order, result.order_id)
        assert result.order_number == f'SUB-{order.id:04d}'
        assert order.status == OrderStatus.PENDING
        assert order.subtotal_cents == 36000
        assert result.total_cents == order.total_cents == 15000
        assert result.balance_due_cents == order.balance_due_cents == 21000
        assert order.holding_period_days == 7
        assert order.payment_reference == result.payment_reference == 'pi_test_1'
        assert result.client_secret.startswith('pi_test_1')
        assert gateway.intents[0]['idempotency_key'] == f'checkout-{result.order_number}'
        assert stock_of('ACM-3MM-WHITE') == 7

        history = OrderStatusHistory.query.filter_by(order_id=order.id).all()
        assert [(h.status, h.note) for h in history] == [
            (OrderStatus.PENDING, 'Order created - awaiting payment confirmation'),
        ]
        assert all(r.order_id == order.id and r.status == ReservationStatus.ACTIVE
                   for r in Reservation.query.all())

    def test_cheap_order_charges_subtotal_only(self, engine, make_product, place_order):
        make_product(stock=10, price=3000, holding_fee_cents=5000)
        result = place_order([('ACM-3MM-WHITE', 1)])
        assert result.total_cents == 3000
        assert result.balance_due_cents == 0

    def test_bulk_discount_recomputed_on_server(self, engine, make_product, place_order):
        product = make_product(stock=100, price=10000, holding_fee_cents=100000)
        db.session.add(BulkDiscount(product_id=product.id, min_quantity=10, discount_percent=10))
        db.session.add(BulkDiscount(product_id=None, min_quantity=5, discount_percent=5))
        db.session.commit()

        result = place_order([('ACM-3MM-WHITE', 12)])
        item = db.session.get(Order, result.order_id).items[0]
        assert item.discount_percent == 10
        assert item.unit_price_cents == 9000
        assert item.line_total_cents == 108000
        assert result.total_cents == 108000

    def test_below_minimum_charge(self, engine, make_product, place_order):
        make_product(stock=10, price=20)
        with pytest.raises(ValidationError):
            place_order([('ACM-3MM-WHITE', 1)])
        assert stock_of('ACM-3MM-WHITE') == 10


class TestLocalDelivery:
    def test_22km_address_uses_50km_zone(self, engine, make_product, place_order, zones):
        make_product(stock=10, price=10000)
        result = place_order([('ACM-3MM-WHITE', 2)], method='local_delivery', address=FAR_ADDRESS)

        order = db.session.get(Order, result.order_id)
        assert order.delivery_zone_name == 'Greater Perth'
        assert result.delivery_fee_cents == 6000 + 2 * 500
        assert result.total_cents == 20000 + 7000
        assert result.balance_due_cents == 0

    def test_near_address_uses_inner_zone(self, engine, make_product, place_order, zones):
        make_product(stock=10, price=10000)
        result = place_order([('ACM-3MM-WHITE', 1)], method='local_delivery', address=NEAR_ADDRESS)
        assert db.session.get(Order, result.order_id).delivery_zone_name == 'Metro'
        assert result.delivery_fee_cents == 3000

    def test_out_of_range(self, engine, make_product, place_order, zones):
        make_product(stock=10)
        with pytest.raises(OutOfDeliveryRange):
            place_order([('ACM-3MM-WHITE', 2)], method='local_delivery', address=OUTBACK_ADDRESS)
        assert stock_of('ACM-3MM-WHITE') == 10

    def test_unknown_address(self, engine, make_product, place_order, zones):
        make_product(stock=10)
        with pytest.raises(AddressNotFound):
            place_order([('ACM-3MM-WHITE', 2)], method='local_delivery', address='Nowhere Lane')

    def test_zone_minimum_units(self, engine, make_product, place_order, zones):
        make_product(stock=10)
        with pytest.raises(BelowZoneMinimum):
            place_order([('ACM-3MM-WHITE', 1)], method='local_delivery', address=FAR_ADDRESS)


class TestReservationFailure:
    def test_all_or_nothing(self, engine, make_product, place_order):
        make_product(sku='ACM-3MM-WHITE', stock=10)
        make_product(sku='ACM-4MM-BLACK', stock=1)

        with pytest.raises(InsufficientStock) as exc:
            place_order([('ACM-3MM-WHITE', 4), ('ACM-4MM-BLACK', 2)])

        assert exc.value.sku == 'ACM-4MM-BLACK'
        assert stock_of('ACM-3MM-WHITE') == 10
        assert stock_of('ACM-4MM-BLACK') == 1
        assert Order.query.count() == 0
        assert Reservation.query.filter_by(status=ReservationStatus.ACTIVE).count() == 0

    def test_two_checkouts_for_3_and_4_of_5(self, engine, make_product, place_order):
        make_product(stock=5)
        place_order([('ACM-3MM-WHITE', 3)], originator='guest:one')
        with pytest.raises(InsufficientStock):
            place_order([('ACM-3MM-WHITE', 4)], originator='guest:two')
        assert stock_of('ACM-3MM-WHITE') == 2

    def test_unknown_product(self, engine, app, place_order):
        with pytest.raises(ProductNotFound):
            place_order([('GHOST', 1)])


class TestGatewayFailure:
    def test_retries_transient_failures(self, engine, make_product, place_order, gateway):
        make_product(stock=10)
        gateway.fail_intents = 2
        result = place_order([('ACM-3MM-WHITE', 1)])
        assert result.payment_reference == 'pi_test_1'

    def test_persistent_failure_cancels_order_and_frees_stock(self, engine, make_product, place_order,
                                                              gateway):
        make_product(stock=10)
        gateway.fail_intents = 3

        with pytest.raises(GatewayError):
            place_order([('ACM-3MM-WHITE', 2)])

        db.session.expire_all()
        order = Order.query.one()
        assert order.status == OrderStatus.CANCELLED
        statuses = [h.status for h in OrderStatusHistory.query.filter_by(order_id=order.id)
                    .order_by(OrderStatusHistory.id)]
        assert statuses == [OrderStatus.PENDING, OrderStatus.CANCELLED]
        assert stock_of('ACM-3MM-WHITE') == 10
        assert Reservation.query.filter_by(status=ReservationStatus.ACTIVE).count() == 0

    def test_failed_checkout_number_is_never_reissued(self, engine, make_product, place_order, gateway):
        make_product(stock=10)
        gateway.fail_intents = 3
        with pytest.raises(GatewayError):
            place_order([('ACM-3MM-WHITE', 1)])

        result = place_order([('ACM-3MM-WHITE', 1)])

        assert result.order_number == 'SUB-0002'
        keys = [i['idempotency_key'] for i in gateway.intents]
        assert keys == ['checkout-SUB-0002']
        assert OrderStatusHistory.query.count() == 0
        assert stock_of('ACM-3MM-WHITE') == 10
        assert Reservation.query.filter_by(status=ReservationStatus.ACTIVE).count() == 0


class TestAbandonAndSupersede:
    def test_abandon_releases_holds(self, engine, make_product, place_order):
        make_product(stock=10)
        result = place_order([('ACM-3MM-WHITE', 4)], originator='guest:me')

        assert engine.checkout.abandon(result.order_number, 'guest:me') == OrderStatus.CANCELLED
        assert stock_of('ACM-3MM-WHITE') == 10

    def test_cannot_abandon_someone_elses_order(self, engine, make_product, place_order):
        make_product(stock=10)
        result = place_order([('ACM-3MM-WHITE', 4)], originator='guest:me')
        with pytest.raises(OrderNotFound):
            engine.checkout.abandon(result.order_number, 'guest:you')

    def test_cannot_abandon_paid_order(self, engine, make_product, place_order):
        make_product(stock=10)
        result = place_order([('ACM-3MM-WHITE', 4)], originator='guest:me')
        engine.orders.mark_paid(result.order_id)
        with pytest.raises(InvalidTransition):
            engine.checkout.abandon(result.order_number, 'guest:me')

    def test_new_checkout_supersedes_previous_pending(self, engine, make_product, place_order):
        make_product(stock=5)
        first = place_order([('ACM-3MM-WHITE', 4)], originator='guest:me')
        second = place_order([('ACM-3MM-WHITE', 5)], originator='guest:me')

        db.session.expire_all()
        assert db.session.get(Order, first.order_id).status == OrderStatus.CANCELLED
        assert db.session.get(Order, second.order_id).status == OrderStatus.PENDING
        assert stock_of('ACM-3MM-WHITE') == 0

    def test_expires_at_matches_hold_window(self, engine, make_product, place_order, app):
        make_product(stock=5)
        result = place_order([('ACM-3MM-WHITE', 1)])
        reservation = Reservation.query.one()
        assert result.expires_at == reservation.expires_at
        window = reservation.expires_at - reservation.created_at
        assert timedelta(minutes=4) < window <= timedelta(minutes=app.config['RESERVATION_HOLD_MINUTES'])
