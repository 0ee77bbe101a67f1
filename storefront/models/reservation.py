import enum

from ..extensions import db
from .base import BaseModel, enum_column, utcnow


class ReservationStatus(str, enum.Enum):
    ACTIVE = 'active'
    COMMITTED = 'committed'
    RELEASED = 'released'
    EXPIRED = 'expired'


class Reservation(BaseModel):
    """A temporary hold on stock. While active its quantity is already out of Product.stock."""
    __tablename__ = 'reservations'

    token = db.Column(db.String(64), unique=True, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=True, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    status = enum_column(ReservationStatus, nullable=False, default=ReservationStatus.ACTIVE, index=True)
    originator = db.Column(db.String(255), nullable=True, index=True)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    resolved_at = db.Column(db.DateTime, nullable=True)

    product = db.relationship('Product')

    __table_args__ = (
        db.CheckConstraint('quantity > 0', name='ck_reservations_quantity_positive'),
    )

    def __repr__(self):
        return f'<Reservation {self.token} {self.status.value} x{self.quantity}>'
