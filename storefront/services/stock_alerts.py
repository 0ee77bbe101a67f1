"""Back-in-stock subscriptions.

Shoppers leave an email against a sold-out product. When a release or a
restock takes the product from zero to something, every waiting subscriber
is marked notified (a conditional update, so each is told once) and then
emailed through the notifier.
"""
import logging
import re

from sqlalchemy import delete, func, select, update

from ..extensions import atomic, db
from ..models import Product, StockSubscription
from ..models.base import utcnow
from .errors import ProductNotFound, ValidationError
from .notifications import BACK_IN_STOCK, safe_notify

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def normalise_email(email):
    email = (email or '').strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError(field='email')
    return email


def crossed_zero(event):
    """True when a StockReleased event took the product from none left to some."""
    return event.available_after > 0 and event.available_after - event.quantity <= 0


class StockAlerts:
    def __init__(self, notifier, clock=utcnow):
        self.notifier = notifier
        self.clock = clock

    def subscribe(self, sku, email, customer_id=None):
        """Returns ``(subscription, created)``; an existing waiting entry is reused."""
        email = normalise_email(email)
        product_id = self._product_id(sku)

        existing = StockSubscription.query.filter(
            StockSubscription.product_id == product_id,
            StockSubscription.email == email,
            StockSubscription.notified_at.is_(None),
        ).first()
        if existing is not None:
            return existing, False

        with atomic() as session:
            subscription = StockSubscription(product_id=product_id, email=email,
                                             customer_id=customer_id, created_at=self.clock())
            session.add(subscription)
        logger.info('[StockAlert] %s waiting for %s', email, sku)
        return subscription, True

    def unsubscribe(self, sku, email):
        email = normalise_email(email)
        product_id = self._product_id(sku)
        with atomic() as session:
            removed = session.execute(
                delete(StockSubscription).where(StockSubscription.product_id == product_id,
                                                StockSubscription.email == email)
            ).rowcount
        return removed

    def is_subscribed(self, sku, email):
        return db.session.execute(
            select(StockSubscription.id)
            .join(Product, Product.id == StockSubscription.product_id)
            .where(Product.sku == sku,
                   StockSubscription.email == normalise_email(email),
                   StockSubscription.notified_at.is_(None))
        ).first() is not None

    def waiting_by_product(self):
        rows = db.session.execute(
            select(Product.sku, Product.name, Product.stock,
                   func.count(StockSubscription.id).label('subscribers'))
            .join(StockSubscription, StockSubscription.product_id == Product.id)
            .where(StockSubscription.notified_at.is_(None))
            .group_by(Product.id, Product.sku, Product.name, Product.stock)
            .order_by(Product.sku)
        ).all()
        return [
            {'sku': r.sku, 'name': r.name, 'stock': r.stock, 'subscribers': r.subscribers}
            for r in rows
        ]

    def on_stock_returned(self, event):
        if crossed_zero(event):
            return self.back_in_stock(event.sku)
        return 0

    def back_in_stock(self, sku):
        """Notify everyone waiting on ``sku``. Returns how many were told."""
        now = self.clock()
        with atomic() as session:
            waiting = session.execute(
                select(StockSubscription.id, StockSubscription.email, Product.name)
                .join(Product, Product.id == StockSubscription.product_id)
                .where(Product.sku == sku, StockSubscription.notified_at.is_(None))
                .order_by(StockSubscription.id)
            ).all()
            claimed = []
            for row in waiting:
                result = session.execute(
                    update(StockSubscription)
                    .where(StockSubscription.id == row.id, StockSubscription.notified_at.is_(None))
                    .values(notified_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    claimed.append(row)

        for row in claimed:
            safe_notify(self.notifier, row.email, BACK_IN_STOCK, sku=sku, product_name=row.name)
        if claimed:
            logger.info('[StockAlert] %s back in stock, %s subscribers notified', sku, len(claimed))
        return len(claimed)

    def _product_id(self, sku):
        product_id = db.session.execute(
            select(Product.id).where(Product.sku == sku)
        ).scalar_one_or_none()
        if product_id is None:
            raise ProductNotFound(sku=sku)
        return product_id
