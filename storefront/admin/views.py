from flask import current_app, jsonify, request
from flask_login import current_user

from . import admin_bp
from .decorators import admin_required
from .forms import (
    ApproveRefundForm, BulkDiscountForm, DiscountCodeForm, OrderStatusForm, RejectRefundForm, RestockForm,
)
from ..extensions import atomic, db
from ..models import BulkDiscount, DiscountCode, Order, Product, RefundRequest, RefundStatus
from ..services import get_engine
from ..services.errors import ProductNotFound, ValidationError
from ..services.order_state import coerce_status
from ..services.pricing import Tier, validate_ladder


def _validated(form):
    if not form.validate_on_submit():
        raise ValidationError('Please correct the highlighted fields', errors=form.errors)
    return form


def _actor():
    return current_user.actor


# ---------------------------
#     ЗАКАЗЫ
# ---------------------------

@admin_bp.route('/orders', methods=['GET'])
@admin_required
def admin_orders():
    """Список заказов с пагинацией и фильтрацией по статусу."""
    status = request.args.get('status', '').strip()
    page = request.args.get('page', 1, type=int)
    per_page = 20

    query = Order.query.order_by(Order.created_at.desc(), Order.id.desc())
    if status:
        query = query.filter(Order.status == coerce_status(status))

    orders = query.paginate(page=page, per_page=per_page)
    return jsonify({
        'orders': [order.to_dict() for order in orders.items],
        'page': orders.page,
        'pages': orders.pages,
        'total': orders.total,
    })


@admin_bp.route('/orders/<int:order_id>', methods=['GET'])
@admin_required
def admin_order_view(order_id):
    order = db.get_or_404(Order, order_id)
    return jsonify(order.to_dict(with_history=True))


@admin_bp.route('/orders/<int:order_id>/status', methods=['POST'])
@admin_required
def update_order_status(order_id):
    form = _validated(OrderStatusForm())
    status = get_engine().orders.update_status(
        order_id, form.status.data, note=form.note.data or None, actor=_actor(),
    )
    current_app.logger.info('[Admin] order %s set to %s by %s', order_id, status.value, _actor())
    return jsonify({'order_id': order_id, 'status': status.value})


# ---------------------------
#     ВОЗВРАТЫ
# ---------------------------

@admin_bp.route('/refunds', methods=['GET'])
@admin_required
def admin_refunds():
    status = request.args.get('status', RefundStatus.PENDING.value).strip()
    query = RefundRequest.query.order_by(RefundRequest.created_at.desc(), RefundRequest.id.desc())
    if status != 'all':
        try:
            query = query.filter(RefundRequest.status == RefundStatus(status))
        except ValueError:
            raise ValidationError('Unknown refund status', status=status) from None

    page = request.args.get('page', 1, type=int)
    refunds = query.paginate(page=page, per_page=20)
    return jsonify({
        'refunds': [refund.to_dict() for refund in refunds.items],
        'page': refunds.page,
        'pages': refunds.pages,
        'total': refunds.total,
    })


@admin_bp.route('/refunds/<int:request_id>/approve', methods=['POST'])
@admin_required
def approve_refund(request_id):
    form = _validated(ApproveRefundForm())
    refund = get_engine().refunds.approve(
        request_id, form.amount_cents.data, notes=form.notes.data or None, actor=_actor(),
    )
    return jsonify(refund.to_dict())


@admin_bp.route('/refunds/<int:request_id>/reject', methods=['POST'])
@admin_required
def reject_refund(request_id):
    form = _validated(RejectRefundForm())
    refund = get_engine().refunds.reject(request_id, form.notes.data, actor=_actor())
    return jsonify(refund.to_dict())


# ---------------------------
#     СКИДКИ И ОСТАТКИ
# ---------------------------

def _tiers(discounts):
    return [Tier(d.min_quantity, d.discount_percent) for d in discounts]


@admin_bp.route('/bulk-discounts', methods=['POST'])
@admin_required
def create_bulk_discount():
    form = _validated(BulkDiscountForm())
    new_tier = Tier(form.min_quantity.data, form.discount_percent.data)
    sku = (form.sku.data or '').strip()

    product = None
    if sku:
        product = Product.query.filter_by(sku=sku).first()
        if product is None:
            raise ProductNotFound(sku=sku)
        validate_ladder(_tiers(BulkDiscount.ladder_for(product.id)) + [new_tier])
    else:
        # A global tier joins every product's ladder
        globals_only = BulkDiscount.query.filter(BulkDiscount.product_id.is_(None),
                                                 BulkDiscount.active.is_(True)).all()
        validate_ladder(_tiers(globals_only) + [new_tier])
        for each in Product.query.all():
            validate_ladder(_tiers(BulkDiscount.ladder_for(each.id)) + [new_tier])

    with atomic() as session:
        discount = BulkDiscount(
            product_id=product.id if product else None,
            min_quantity=new_tier.min_quantity,
            discount_percent=new_tier.discount_percent,
            active=True,
        )
        session.add(discount)

    current_app.logger.info('[Admin] bulk discount %s%% from %s units on %s',
                            new_tier.discount_percent, new_tier.min_quantity, sku or 'all products')
    return jsonify(discount.to_dict()), 201


@admin_bp.route('/bulk-discounts/<int:discount_id>/delete', methods=['POST'])
@admin_required
def delete_bulk_discount(discount_id):
    discount = db.get_or_404(BulkDiscount, discount_id)
    with atomic() as session:
        session.delete(discount)
    return jsonify({'id': discount_id, 'deleted': True})


@admin_bp.route('/products/<sku>/restock', methods=['POST'])
@admin_required
def restock_product(sku):
    form = _validated(RestockForm())
    available = get_engine().ledger.restock(sku, form.quantity.data, originator=_actor())
    return jsonify({'sku': sku, 'available': available})


@admin_bp.route('/stock-subscriptions', methods=['GET'])
@admin_required
def stock_subscriptions():
    """Товары, которых ждут покупатели."""
    return jsonify({'products': get_engine().alerts.waiting_by_product()})


# ---------------------------
#     ПРОМОКОДЫ
# ---------------------------

@admin_bp.route('/discount-codes', methods=['GET'])
@admin_required
def discount_codes():
    codes = DiscountCode.query.order_by(DiscountCode.created_at.desc(), DiscountCode.id.desc()).all()
    return jsonify({'discount_codes': [code.to_dict() for code in codes]})


@admin_bp.route('/discount-codes', methods=['POST'])
@admin_required
def create_discount_code():
    form = _validated(DiscountCodeForm())
    code = get_engine().discounts.create(
        form.code.data,
        form.discount_type.data,
        form.discount_value.data,
        discount_target=form.discount_target.data,
        description=form.description.data or None,
        min_purchase_cents=form.min_purchase_cents.data,
        max_discount_cents=form.max_discount_cents.data,
        max_uses=form.max_uses.data,
        max_uses_per_customer=form.max_uses_per_customer.data,
        starts_at=form.starts_at.data,
        ends_at=form.ends_at.data,
        actor=_actor(),
    )
    return jsonify(code.to_dict()), 201


@admin_bp.route('/discount-codes/<int:code_id>/toggle', methods=['POST'])
@admin_required
def toggle_discount_code(code_id):
    code = db.get_or_404(DiscountCode, code_id)
    code = get_engine().discounts.set_active(code_id, not code.active)
    return jsonify(code.to_dict())


@admin_bp.route('/discount-codes/<int:code_id>/delete', methods=['POST'])
@admin_required
def delete_discount_code(code_id):
    deleted = get_engine().discounts.remove(code_id)
    # Used codes stay for the order history and are only switched off
    return jsonify({'id': code_id, 'deleted': deleted})
