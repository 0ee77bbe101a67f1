import enum

from ..extensions import db
from .base import BaseModel, enum_column, utcnow


class RefundStatus(str, enum.Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'  # claimed by an approval, gateway call in flight
    APPROVED = 'approved'
    REJECTED = 'rejected'


class RefundRequest(BaseModel):
    __tablename__ = 'refund_requests'

    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False)
    status = enum_column(RefundStatus, nullable=False, default=RefundStatus.PENDING, index=True)
    reason = db.Column(db.Text, nullable=False)
    requested_cents = db.Column(db.Integer, nullable=False)

    # Admin response. On a pending request gateway_refund_id is the last declined attempt
    approved_cents = db.Column(db.Integer, nullable=True)
    gateway_refund_id = db.Column(db.String(255), nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)
    processed_by = db.Column(db.String(255), nullable=True)
    processed_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    customer = db.relationship('Customer')

    def to_dict(self):
        return {
            'id': self.id,
            'order_id': self.order_id,
            'status': self.status.value,
            'reason': self.reason,
            'requested_cents': self.requested_cents,
            'approved_cents': self.approved_cents,
            'gateway_refund_id': self.gateway_refund_id,
            'admin_notes': self.admin_notes,
            'processed_at': self.processed_at.isoformat() if self.processed_at else None,
        }
