from ..extensions import db
from .base import BaseModel, utcnow


class Product(BaseModel):
    __tablename__ = 'products'

    sku = db.Column(db.String(100), unique=True, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    base_price_cents = db.Column(db.Integer, nullable=False)
    # Available (unreserved) units; only InventoryLedger writes this column
    stock = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=5)
    holding_fee_cents = db.Column(db.Integer, nullable=False, default=5000)  # click & collect, per unit
    holding_period_days = db.Column(db.Integer, nullable=False, default=7)
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    bulk_discounts = db.relationship('BulkDiscount', backref='product', cascade='all, delete-orphan')

    __table_args__ = (
        db.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
    )

    def __repr__(self):
        return f'<Product {self.sku} stock={self.stock}>'


class BulkDiscount(BaseModel):
    __tablename__ = 'bulk_discounts'

    # NULL product_id means the tier applies to every product
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=True, index=True)
    min_quantity = db.Column(db.Integer, nullable=False)
    discount_percent = db.Column(db.Integer, nullable=False)
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.CheckConstraint('min_quantity >= 1', name='ck_bulk_discounts_min_quantity'),
        db.CheckConstraint('discount_percent BETWEEN 1 AND 100', name='ck_bulk_discounts_percent'),
    )

    @classmethod
    def ladder_for(cls, product_id):
        """Active tiers that apply to a product: its own plus the global ones."""
        return cls.query.filter(
            cls.active.is_(True),
            db.or_(cls.product_id == product_id, cls.product_id.is_(None)),
        ).all()

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'min_quantity': self.min_quantity,
            'discount_percent': self.discount_percent,
            'active': self.active,
        }
