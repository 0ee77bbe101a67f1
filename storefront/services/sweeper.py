"""Background release of lapsed reservations and abandoned pending orders.

Safe to run from several processes at once: each release is a conditional
update on the reservation status, so a token is returned to stock by at most
one caller, and a late webhook can still reclaim it through the ledger.
"""
from collections import namedtuple
from datetime import timedelta
import logging

from sqlalchemy import exists, select

from ..extensions import db
from ..models import Order, OrderStatus, Reservation, ReservationStatus
from ..models.base import utcnow
from .errors import InvalidTransition
from .order_state import SYSTEM_ACTOR

logger = logging.getLogger(__name__)

SweepReport = namedtuple('SweepReport', 'released cancelled')


class ReservationSweeper:
    def __init__(self, ledger, state_machine, pending_ttl_minutes=60, clock=utcnow):
        self.ledger = ledger
        self.state = state_machine
        self.pending_ttl = timedelta(minutes=pending_ttl_minutes)
        self.clock = clock

    def sweep(self, now=None, batch_size=500):
        now = now or self.clock()

        released = 0
        while True:
            tokens = self.ledger.expired_tokens(now, limit=batch_size)
            if not tokens:
                break
            count = self.ledger.release_all(tokens, status=ReservationStatus.EXPIRED)
            released += count
            if len(tokens) < batch_size or count == 0:
                break

        cancelled = 0
        for order_id in self._stale_orders(now - self.pending_ttl, batch_size):
            try:
                self.state.cancel(order_id, note='Payment not received in time', actor=SYSTEM_ACTOR)
            except InvalidTransition:
                # Paid or cancelled by someone else since we looked
                continue
            cancelled += 1

        if released or cancelled:
            logger.info('[Sweep] released %s reservations, cancelled %s orders', released, cancelled)
        return SweepReport(released, cancelled)

    def _stale_orders(self, cutoff, limit):
        holding = exists().where(
            Reservation.order_id == Order.id,
            Reservation.status == ReservationStatus.ACTIVE,
        )
        return db.session.execute(
            select(Order.id)
            .where(Order.status == OrderStatus.PENDING, Order.created_at <= cutoff, ~holding)
            .order_by(Order.id)
            .limit(limit)
        ).scalars().all()
