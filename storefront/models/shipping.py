from ..extensions import db
from .base import BaseModel, utcnow


class DeliveryZone(BaseModel):
    """Circle around the warehouse; zones are matched by ascending radius."""
    __tablename__ = 'delivery_zones'

    name = db.Column(db.String(100), nullable=False)
    radius_km = db.Column(db.Integer, nullable=False)
    base_fee_cents = db.Column(db.Integer, nullable=False)
    per_unit_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    min_order_units = db.Column(db.Integer, nullable=False, default=1)
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f'<DeliveryZone {self.name} {self.radius_km}km>'
