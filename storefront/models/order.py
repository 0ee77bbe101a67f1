# order.py
import enum

from ..extensions import db
from .base import BaseModel, enum_column, utcnow


class OrderStatus(str, enum.Enum):
    PENDING = 'pending'
    PAID = 'paid'
    PROCESSING = 'processing'
    SHIPPED = 'shipped'
    DELIVERED = 'delivered'
    COLLECTED = 'collected'
    CANCELLED = 'cancelled'
    REFUND_REQUESTED = 'refund_requested'
    REFUNDED = 'refunded'


class DeliveryMethod(str, enum.Enum):
    CLICK_COLLECT = 'click_collect'
    LOCAL_DELIVERY = 'local_delivery'


class Order(BaseModel):
    __tablename__ = 'orders'

    order_number = db.Column(db.String(50), unique=True, nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=True, index=True)
    # Guest contact snapshot when there is no customer account
    guest_name = db.Column(db.String(255), nullable=True)
    guest_email = db.Column(db.String(255), nullable=True)
    guest_phone = db.Column(db.String(50), nullable=True)
    # Shopper handle used for stock events and checkout abandonment
    originator = db.Column(db.String(255), nullable=True, index=True)

    status = enum_column(OrderStatus, nullable=False, default=OrderStatus.PENDING, index=True)
    status_before_refund = enum_column(OrderStatus, nullable=True)
    delivery_method = enum_column(DeliveryMethod, nullable=False)
    delivery_zone_name = db.Column(db.String(100), nullable=True)
    delivery_address = db.Column(db.Text, nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    delivery_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_code_id = db.Column(db.Integer, db.ForeignKey('discount_codes.id'), nullable=True)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)  # from a discount code
    holding_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)  # amount charged through the gateway
    balance_due_cents = db.Column(db.Integer, nullable=False, default=0)  # payable at pickup
    refunded_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_reference = db.Column(db.String(255), unique=True, nullable=True)
    holding_period_days = db.Column(db.Integer, nullable=True)
    holding_expires_at = db.Column(db.DateTime, nullable=True)
    customer_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    items = db.relationship('OrderItem', backref='order', order_by='OrderItem.id',
                            cascade='all, delete-orphan')
    history = db.relationship('OrderStatusHistory', backref='order',
                              order_by='OrderStatusHistory.id', cascade='all, delete-orphan')
    reservations = db.relationship('Reservation', backref='order')
    refund_requests = db.relationship('RefundRequest', backref='order',
                                      order_by='RefundRequest.id', cascade='all, delete-orphan')

    __table_args__ = (
        db.CheckConstraint('refunded_cents >= 0 AND refunded_cents <= total_cents',
                           name='ck_orders_refunded_within_total'),
        # order_number is built from the id, which must never be handed out twice
        {'sqlite_autoincrement': True},
    )

    @property
    def refundable_cents(self):
        return self.total_cents - self.refunded_cents

    @property
    def contact_email(self):
        if self.customer is not None:
            return self.customer.email
        return self.guest_email or self.guest_phone

    def to_dict(self, with_history=False):
        data = {
            'id': self.id,
            'order_number': self.order_number,
            'status': self.status.value,
            'delivery_method': self.delivery_method.value,
            'delivery_zone': self.delivery_zone_name,
            'subtotal_cents': self.subtotal_cents,
            'delivery_fee_cents': self.delivery_fee_cents,
            'discount_cents': self.discount_cents,
            'holding_fee_cents': self.holding_fee_cents,
            'total_cents': self.total_cents,
            'balance_due_cents': self.balance_due_cents,
            'refunded_cents': self.refunded_cents,
            'payment_reference': self.payment_reference,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'paid_at': self.paid_at.isoformat() if self.paid_at else None,
            'items': [item.to_dict() for item in self.items],
        }
        if with_history:
            data['history'] = [entry.to_dict() for entry in self.history]
            data['refund_requests'] = [r.to_dict() for r in self.refund_requests]
        return data


class OrderItem(BaseModel):
    """Snapshot of a line at order time; never recomputed from the catalogue."""
    __tablename__ = 'order_items'

    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=True)
    sku = db.Column(db.String(100), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    base_price_cents = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_percent = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self):
        return {
            'sku': self.sku,
            'name': self.name,
            'quantity': self.quantity,
            'unit_price_cents': self.unit_price_cents,
            'discount_percent': self.discount_percent,
            'line_total_cents': self.line_total_cents,
        }


class OrderStatusHistory(BaseModel):
    """Append-only audit trail; one row per status transition."""
    __tablename__ = 'order_status_history'

    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False, index=True)
    status = enum_column(OrderStatus, nullable=False)
    note = db.Column(db.Text, nullable=True)
    actor = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            'status': self.status.value,
            'note': self.note,
            'actor': self.actor,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
