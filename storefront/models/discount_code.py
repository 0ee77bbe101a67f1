import enum

from ..extensions import db
from .base import BaseModel, enum_column, utcnow


class DiscountType(str, enum.Enum):
    PERCENTAGE = 'percentage'
    FIXED = 'fixed'


class DiscountTarget(str, enum.Enum):
    SUBTOTAL = 'subtotal'
    SHIPPING = 'shipping'


class DiscountCode(BaseModel):
    __tablename__ = 'discount_codes'

    code = db.Column(db.String(50), unique=True, nullable=False)  # stored upper-case
    description = db.Column(db.String(255), nullable=True)
    discount_type = enum_column(DiscountType, nullable=False)
    discount_target = enum_column(DiscountTarget, nullable=False, default=DiscountTarget.SUBTOTAL)
    # Percent (1-100) or a fixed amount in cents, depending on discount_type
    discount_value = db.Column(db.Integer, nullable=False)
    min_purchase_cents = db.Column(db.Integer, nullable=True)
    max_discount_cents = db.Column(db.Integer, nullable=True)
    max_uses = db.Column(db.Integer, nullable=True)
    max_uses_per_customer = db.Column(db.Integer, nullable=True)
    used_count = db.Column(db.Integer, nullable=False, default=0)
    active = db.Column(db.Boolean, nullable=False, default=True)
    starts_at = db.Column(db.DateTime, nullable=True)
    ends_at = db.Column(db.DateTime, nullable=True)
    created_by = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    usages = db.relationship('DiscountCodeUsage', backref='discount_code', cascade='all, delete-orphan')

    __table_args__ = (
        db.CheckConstraint('discount_value > 0', name='ck_discount_codes_value_positive'),
        db.CheckConstraint('used_count >= 0', name='ck_discount_codes_used_count'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'description': self.description,
            'discount_type': self.discount_type.value,
            'discount_target': self.discount_target.value,
            'discount_value': self.discount_value,
            'min_purchase_cents': self.min_purchase_cents,
            'max_discount_cents': self.max_discount_cents,
            'max_uses': self.max_uses,
            'max_uses_per_customer': self.max_uses_per_customer,
            'used_count': self.used_count,
            'active': self.active,
            'starts_at': self.starts_at.isoformat() if self.starts_at else None,
            'ends_at': self.ends_at.isoformat() if self.ends_at else None,
        }


class DiscountCodeUsage(BaseModel):
    """One redemption; removed again if the order is cancelled before payment."""
    __tablename__ = 'discount_code_usage'

    discount_code_id = db.Column(db.Integer, db.ForeignKey('discount_codes.id'), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False, unique=True)
    used_at = db.Column(db.DateTime, default=utcnow)
