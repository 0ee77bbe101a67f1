from flask_login import UserMixin

from ..extensions import db
from .base import BaseModel, utcnow
from .user import check_password, hash_password


class Customer(BaseModel, UserMixin):
    __tablename__ = 'customers'

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(50), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    orders = db.relationship('Order', backref='customer')

    def check_password(self, password):
        return check_password(password, self.password)


def addCustomer(name, email, password, phone=None):
    customer = Customer(name=name, email=email, password=hash_password(password), phone=phone)
    db.session.add(customer)
    db.session.commit()
    return customer
