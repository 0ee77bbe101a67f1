"""Inventory ledger: the only code that moves ``products.stock``.

Every stock change is a single conditional UPDATE (``WHERE stock >= qty`` or
``WHERE status = <expected>``) whose rowcount tells the caller whether it won.
Values are re-read with column selects after the write; ORM attributes loaded
earlier in the session may be stale and are never trusted for stock.
"""
from collections import namedtuple
from datetime import timedelta
import enum
import logging
import uuid

from sqlalchemy import select, update

from ..extensions import atomic, db
from ..models import Product, Reservation, ReservationStatus
from ..models.base import utcnow
from .broadcast import StockReleased, StockReserved
from .errors import (
    InsufficientStock, IntegrityViolation, ProductNotFound, ReservationNotFound, ValidationError,
)

logger = logging.getLogger(__name__)


class CommitOutcome(str, enum.Enum):
    COMMITTED = 'committed'
    ALREADY_COMMITTED = 'already_committed'
    RECLAIMED = 'reclaimed'  # hold had lapsed but the stock was still there
    STOCK_UNAVAILABLE = 'stock_unavailable'  # hold lapsed and the stock is gone


CommitResult = namedtuple('CommitResult', 'outcome event')


class InventoryLedger:
    def __init__(self, broadcaster, hold_minutes=5, clock=utcnow, alerts=None):
        self.broadcaster = broadcaster
        self.alerts = alerts
        self.hold = timedelta(minutes=hold_minutes)
        self.clock = clock

    # -- reads ------------------------------------------------------------

    def available(self, sku):
        return db.session.execute(
            select(Product.stock).where(Product.sku == sku)
        ).scalar_one_or_none()

    def expired_tokens(self, now=None, limit=500):
        now = now or self.clock()
        return db.session.execute(
            select(Reservation.token)
            .where(Reservation.status == ReservationStatus.ACTIVE,
                   Reservation.expires_at <= now)
            .order_by(Reservation.expires_at)
            .limit(limit)
        ).scalars().all()

    # -- public operations, one transaction each --------------------------

    def reserve(self, sku, quantity, originator=None, hold=None):
        """Hold ``quantity`` units of ``sku``.

        Returns the active Reservation, or an ``InsufficientStock`` value (not
        raised) when the stock is not there.
        """
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError(field='quantity', sku=sku, quantity=quantity)

        product_id = db.session.execute(
            select(Product.id).where(Product.sku == sku, Product.active.is_(True))
        ).scalar_one_or_none()
        if product_id is None:
            logger.info('[Ledger] reserve %s x%s: unknown or inactive SKU', sku, quantity)
            return InsufficientStock(sku, quantity, 0)

        shortfall = None
        with atomic() as session:
            if self._take(session, product_id, quantity):
                reservation = Reservation(
                    token=uuid.uuid4().hex,
                    product_id=product_id,
                    quantity=quantity,
                    status=ReservationStatus.ACTIVE,
                    originator=originator,
                    expires_at=self.clock() + (hold or self.hold),
                )
                session.add(reservation)
                available = self._stock(session, product_id)
            else:
                shortfall = InsufficientStock(sku, quantity, self._stock(session, product_id))

        if shortfall is not None:
            logger.info('[Ledger] reserve %s x%s refused, %s available',
                        sku, quantity, shortfall.available)
            return shortfall

        logger.info('[Ledger] reserved %s x%s (%s left) token=%s',
                    sku, quantity, available, reservation.token)
        self.announce([StockReserved(sku, quantity, available, originator)])
        return reservation

    def commit(self, token):
        with atomic() as session:
            result = self.commit_in(session, token)
        self.announce([result.event])
        return result.outcome

    def release(self, token, status=ReservationStatus.RELEASED):
        """Return a held quantity to stock. False when there was nothing to release."""
        with atomic() as session:
            event = self.release_in(session, token, status)
        self.announce([event])
        return event is not None

    def release_all(self, tokens, status=ReservationStatus.RELEASED):
        with atomic() as session:
            events = [self.release_in(session, token, status) for token in tokens]
        self.announce(events)
        return sum(1 for e in events if e is not None)

    def attach(self, tokens, order_id):
        with atomic() as session:
            self.attach_in(session, tokens, order_id)

    def restock(self, sku, quantity, originator=None):
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError(field='quantity', sku=sku, quantity=quantity)

        with atomic() as session:
            product_id = session.execute(
                select(Product.id).where(Product.sku == sku)
            ).scalar_one_or_none()
            if product_id is None:
                raise ProductNotFound(sku=sku)
            self._give(session, product_id, quantity)
            available = self._stock(session, product_id)

        logger.info('[Ledger] restocked %s +%s (now %s)', sku, quantity, available)
        self.announce([StockReleased(sku, quantity, available, originator)])
        return available

    # -- helpers for callers that own the transaction ---------------------

    def commit_in(self, session, token):
        row = self._row(session, token)

        if row.status == ReservationStatus.COMMITTED:
            return CommitResult(CommitOutcome.ALREADY_COMMITTED, None)

        if row.status == ReservationStatus.ACTIVE:
            if self._set_status(session, row.id, ReservationStatus.ACTIVE, ReservationStatus.COMMITTED):
                return CommitResult(CommitOutcome.COMMITTED, None)
            # Lost a race with a sweep, a release or another commit
            row = self._row(session, token)
            if row.status == ReservationStatus.COMMITTED:
                return CommitResult(CommitOutcome.ALREADY_COMMITTED, None)

        # Released or expired: the stock went back to the pool, take it again
        if not self._take(session, row.product_id, row.quantity):
            logger.warning('[Ledger] reservation %s lapsed and %s x%s is no longer available',
                           token, row.sku, row.quantity)
            return CommitResult(CommitOutcome.STOCK_UNAVAILABLE, None)
        if not self._set_status(session, row.id, row.status, ReservationStatus.COMMITTED):
            self._give(session, row.product_id, row.quantity)
            return CommitResult(CommitOutcome.ALREADY_COMMITTED, None)

        available = self._stock(session, row.product_id)
        logger.info('[Ledger] reclaimed lapsed reservation %s (%s x%s)', token, row.sku, row.quantity)
        return CommitResult(CommitOutcome.RECLAIMED,
                            StockReserved(row.sku, row.quantity, available, row.originator))

    def release_in(self, session, token, status=ReservationStatus.RELEASED):
        if status not in (ReservationStatus.RELEASED, ReservationStatus.EXPIRED):
            raise ValidationError(field='status', status=status)

        row = self._row(session, token)
        if row.status != ReservationStatus.ACTIVE:
            return None
        if not self._set_status(session, row.id, ReservationStatus.ACTIVE, status):
            return None

        self._give(session, row.product_id, row.quantity)
        available = self._stock(session, row.product_id)
        logger.info('[Ledger] %s %s x%s (now %s) token=%s',
                    status.value, row.sku, row.quantity, available, token)
        return StockReleased(row.sku, row.quantity, available, row.originator)

    def release_for_order_in(self, session, order_id, status=ReservationStatus.RELEASED):
        tokens = session.execute(
            select(Reservation.token).where(
                Reservation.order_id == order_id,
                Reservation.status == ReservationStatus.ACTIVE,
            )
        ).scalars().all()
        events = [self.release_in(session, token, status) for token in tokens]
        return [e for e in events if e is not None]

    def attach_in(self, session, tokens, order_id):
        if not tokens:
            return 0
        result = session.execute(
            update(Reservation)
            .where(Reservation.token.in_(list(tokens)))
            .values(order_id=order_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def announce(self, events):
        """Publish events from a transaction that has already committed."""
        for event in events:
            if event is None:
                continue
            self.broadcaster.publish(event)
            if isinstance(event, StockReserved):
                self._warn_if_low(event.sku, event.available_after)
            elif self.alerts is not None:
                self._alert_subscribers(event)

    # -- internals --------------------------------------------------------

    def _row(self, session, token):
        row = session.execute(
            select(Reservation.id, Reservation.product_id, Reservation.quantity,
                   Reservation.status, Reservation.originator, Product.sku)
            .join(Product, Product.id == Reservation.product_id)
            .where(Reservation.token == token)
        ).one_or_none()
        if row is None:
            raise ReservationNotFound(token=token)
        return row

    def _take(self, session, product_id, quantity):
        result = session.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _give(self, session, product_id, quantity):
        session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity)
            .execution_options(synchronize_session=False)
        )

    def _set_status(self, session, reservation_id, expected, new):
        result = session.execute(
            update(Reservation)
            .where(Reservation.id == reservation_id, Reservation.status == expected)
            .values(status=new, resolved_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _stock(self, session, product_id):
        stock = session.execute(
            select(Product.stock).where(Product.id == product_id)
        ).scalar_one()
        if stock < 0:
            logger.critical('[Ledger] negative stock %s observed for product %s', stock, product_id)
            raise IntegrityViolation(reason='negative_stock', product_id=product_id, stock=stock)
        return stock

    def _alert_subscribers(self, event):
        # Best-effort: the stock change itself has already committed
        try:
            self.alerts.on_stock_returned(event)
        except Exception:
            logger.warning('[Ledger] back-in-stock alerts for %s failed', event.sku, exc_info=True)

    def _warn_if_low(self, sku, available):
        threshold = db.session.execute(
            select(Product.low_stock_threshold).where(Product.sku == sku)
        ).scalar_one_or_none()
        if threshold is not None and available <= threshold:
            logger.warning('[Ledger] low stock: %s has %s left (threshold %s)', sku, available, threshold)
