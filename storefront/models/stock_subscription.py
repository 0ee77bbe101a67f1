from ..extensions import db
from .base import BaseModel, utcnow


class StockSubscription(BaseModel):
    """Back-in-stock request: one email per product, waiting until notified_at is set."""
    __tablename__ = 'stock_subscriptions'

    product_id = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False)
    email = db.Column(db.String(255), nullable=False)  # lower-cased
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=True)
    notified_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    product = db.relationship('Product')

    __table_args__ = (
        db.Index('ix_stock_subscriptions_waiting', 'product_id', 'notified_at'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'sku': self.product.sku,
            'email': self.email,
            'notified_at': self.notified_at.isoformat() if self.notified_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
