import uuid

from flask import Blueprint, current_app, jsonify, request, session
from flask_login import current_user, login_required

from ..extensions import csrf
from ..models import Customer, Order
from ..services import get_engine
from ..services.checkout import CheckoutRequest
from ..services.errors import OrderNotFound, ProductNotFound, ValidationError

main_bp = Blueprint('main', __name__)
# JSON API для витрины: CSRF-токены не используются
csrf.exempt(main_bp)


def current_customer():
    if current_user.is_authenticated and isinstance(current_user, Customer):
        return current_user
    return None


def shopper_handle():
    """Stable per-browser handle used to tag reservations and stock events."""
    customer = current_customer()
    if customer is not None:
        return f'customer:{customer.id}'
    if 'shopper_id' not in session:
        session['shopper_id'] = uuid.uuid4().hex
    return f'guest:{session["shopper_id"]}'


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Expected a JSON object body')
    return data


@main_bp.route('/checkout', methods=['POST'])
def checkout():
    customer = current_customer()
    checkout_request = CheckoutRequest.from_payload(
        _json_body(),
        customer_id=customer.id if customer else None,
        originator=shopper_handle(),
    )
    result = get_engine().checkout.checkout(checkout_request)
    current_app.logger.info('[Checkout] %s started by %s', result.order_number, checkout_request.originator)
    return jsonify(result.to_dict()), 201


@main_bp.route('/checkout/<order_number>/abandon', methods=['POST'])
def abandon_checkout(order_number):
    status = get_engine().checkout.abandon(order_number, shopper_handle())
    return jsonify({'order_number': order_number, 'status': status.value})


@main_bp.route('/stock/<sku>')
def stock_level(sku):
    available = get_engine().ledger.available(sku)
    if available is None:
        raise ProductNotFound(sku=sku)
    return jsonify({'sku': sku, 'available': available})


def _subscriber_email(data=None):
    customer = current_customer()
    email = data.get('email') if isinstance(data, dict) else None
    if not email and customer is not None:
        email = customer.email
    return email


@main_bp.route('/stock/<sku>/subscribe', methods=['POST'])
def subscribe_to_stock(sku):
    """Оповестить покупателя, когда товар снова появится."""
    customer = current_customer()
    subscription, created = get_engine().alerts.subscribe(
        sku, _subscriber_email(request.get_json(silent=True)),
        customer_id=customer.id if customer else None,
    )
    return jsonify(subscription.to_dict()), 201 if created else 200


@main_bp.route('/stock/<sku>/subscription')
@login_required
def stock_subscription(sku):
    if current_customer() is None:
        raise ProductNotFound(sku=sku)
    return jsonify({'sku': sku, 'subscribed': get_engine().alerts.is_subscribed(sku, _subscriber_email())})


@main_bp.route('/stock/<sku>/unsubscribe', methods=['POST'])
@login_required
def unsubscribe_from_stock(sku):
    if current_customer() is None:
        raise ProductNotFound(sku=sku)
    removed = get_engine().alerts.unsubscribe(sku, _subscriber_email())
    return jsonify({'sku': sku, 'removed': removed})


def _customer_order(order_number):
    order = Order.query.filter_by(order_number=order_number).first()
    if order is None or order.customer_id != current_user.id:
        raise OrderNotFound(order_number=order_number)
    return order


@main_bp.route('/orders/<order_number>')
@login_required
def order_detail(order_number):
    if current_customer() is None:
        raise OrderNotFound(order_number=order_number)
    return jsonify(_customer_order(order_number).to_dict(with_history=True))


@main_bp.route('/orders/<order_number>/refund-request', methods=['POST'])
@login_required
def request_refund(order_number):
    if current_customer() is None:
        raise OrderNotFound(order_number=order_number)
    order = _customer_order(order_number)
    data = _json_body()
    refund = get_engine().refunds.request(
        order.id, current_user.id, data.get('reason'), amount=data.get('amount_cents'),
    )
    return jsonify(refund.to_dict()), 201
