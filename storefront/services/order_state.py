"""Order lifecycle.

    pending -> paid -> processing -> shipped -> delivered   (local delivery)
    pending -> paid -> processing -> collected              (click & collect)
    paid..collected -> refund_requested -> refunded | back to previous status
    pending, paid..collected -> cancelled

Every status write is a compare-and-set on the current status, committed in
the same transaction as its history row.
"""
from collections import namedtuple
from datetime import timedelta
import enum
import logging

from sqlalchemy import select, update

from ..extensions import atomic
from ..models import (
    DeliveryMethod, Order, OrderStatus, OrderStatusHistory, Product, Reservation,
)
from ..models.base import utcnow
from .discount_codes import restore_usage_in
from .errors import InvalidTransition, OrderNotFound, ValidationError
from .ledger import CommitOutcome

logger = logging.getLogger(__name__)

# Forward-only fulfilment ladder. Delivered and collected share a rank, so
# neither can follow the other.
FULFILMENT_RANK = {
    OrderStatus.PAID: 0,
    OrderStatus.PROCESSING: 1,
    OrderStatus.SHIPPED: 2,
    OrderStatus.DELIVERED: 3,
    OrderStatus.COLLECTED: 3,
}

PAYMENT_CONFIRMED = frozenset(FULFILMENT_RANK)

SYSTEM_ACTOR = 'system'
WEBHOOK_ACTOR = 'payment-webhook'


class PaymentOutcome(str, enum.Enum):
    PAID = 'paid'
    ALREADY_PAID = 'already_paid'
    IGNORED = 'ignored'
    STOCK_UNAVAILABLE = 'stock_unavailable'


PaymentResult = namedtuple('PaymentResult', 'outcome order_id sku')


class _StockGone(Exception):
    def __init__(self, sku):
        super().__init__(sku)
        self.sku = sku


def admin_refusal(current, target, method):
    """Reason code for refusing an admin move from ``current`` to ``target``.

    Returns None when the move is allowed.
    """
    if target == OrderStatus.PENDING:
        return 'cannot_return_to_pending'
    if target == OrderStatus.PAID:
        return 'paid_by_payment_only'
    if target == OrderStatus.REFUND_REQUESTED:
        return 'requested_by_customer_only'
    if target == OrderStatus.REFUNDED:
        return 'refund_approval_required'
    if target == OrderStatus.CANCELLED:
        if current == OrderStatus.PENDING or current in PAYMENT_CONFIRMED:
            return None
        return 'not_cancellable'
    if target == OrderStatus.COLLECTED and method != DeliveryMethod.CLICK_COLLECT:
        return 'click_collect_only'
    if target in (OrderStatus.SHIPPED, OrderStatus.DELIVERED) and method != DeliveryMethod.LOCAL_DELIVERY:
        return 'local_delivery_only'
    if target in (OrderStatus.PROCESSING, OrderStatus.SHIPPED,
                  OrderStatus.DELIVERED, OrderStatus.COLLECTED):
        if current not in PAYMENT_CONFIRMED:
            return 'not_payment_confirmed'
        if FULFILMENT_RANK[target] <= FULFILMENT_RANK[current]:
            return 'backwards'
        return None
    raise ValueError(f'Unhandled order status {target!r}')


class OrderStateMachine:
    def __init__(self, ledger, clock=utcnow):
        self.ledger = ledger
        self.clock = clock

    # -- admin ------------------------------------------------------------

    def update_status(self, order_id, target, note=None, actor=None):
        target = coerce_status(target)
        with atomic() as session:
            current, method = self._status(session, order_id)
            reason = admin_refusal(current, target, method)
            if reason is not None:
                raise InvalidTransition(reason=reason, order_id=order_id,
                                        current=current.value, target=target.value)
            self._swap_or_fail(session, order_id, current, target)

            events = []
            if target == OrderStatus.CANCELLED:
                events = self.ledger.release_for_order_in(session, order_id)
                if current == OrderStatus.PENDING:
                    restore_usage_in(session, order_id)
            self.record_in(session, order_id, target, note, actor)

        logger.info('[Order] %s: %s -> %s by %s', order_id, current.value, target.value, actor)
        self.ledger.announce(events)
        return target

    def cancel(self, order_id, note=None, actor=SYSTEM_ACTOR):
        return self.update_status(order_id, OrderStatus.CANCELLED, note, actor)

    # -- payment ----------------------------------------------------------

    def mark_paid(self, order_id, note='Payment confirmed', actor=WEBHOOK_ACTOR):
        """pending -> paid, committing every reservation of the order.

        Idempotent: an order that is already paid (or further along) gives
        ALREADY_PAID, a cancelled or refunded one gives IGNORED. If any hold
        lapsed and its stock is gone, nothing is written and the outcome is
        STOCK_UNAVAILABLE.
        """
        events = []
        try:
            with atomic() as session:
                row = session.execute(
                    select(Order.status, Order.delivery_method, Order.holding_period_days)
                    .where(Order.id == order_id)
                ).one_or_none()
                if row is None:
                    raise OrderNotFound(order_id=order_id)
                if row.status != OrderStatus.PENDING:
                    return PaymentResult(_settled(row.status), order_id, None)

                now = self.clock()
                values = {'paid_at': now}
                if row.delivery_method == DeliveryMethod.CLICK_COLLECT and row.holding_period_days:
                    values['holding_expires_at'] = now + timedelta(days=row.holding_period_days)

                if not self._swap_in(session, order_id, OrderStatus.PENDING, OrderStatus.PAID, **values):
                    current, _ = self._status(session, order_id)
                    return PaymentResult(_settled(current), order_id, None)

                holds = session.execute(
                    select(Reservation.token, Product.sku)
                    .join(Product, Product.id == Reservation.product_id)
                    .where(Reservation.order_id == order_id)
                    .order_by(Product.sku)
                ).all()
                for token, sku in holds:
                    result = self.ledger.commit_in(session, token)
                    if result.outcome == CommitOutcome.STOCK_UNAVAILABLE:
                        raise _StockGone(sku)
                    events.append(result.event)

                self.record_in(session, order_id, OrderStatus.PAID, note, actor)
        except _StockGone as exc:
            return PaymentResult(PaymentOutcome.STOCK_UNAVAILABLE, order_id, exc.sku)

        logger.info('[Order] %s paid', order_id)
        self.ledger.announce(events)
        return PaymentResult(PaymentOutcome.PAID, order_id, None)

    # -- refunds (caller owns the transaction) -----------------------------

    def request_refund_in(self, session, order_id, note=None, actor=None):
        current, _ = self._status(session, order_id)
        if current not in PAYMENT_CONFIRMED:
            raise InvalidTransition(reason='not_payment_confirmed', order_id=order_id,
                                    current=current.value)
        self._swap_or_fail(session, order_id, current, OrderStatus.REFUND_REQUESTED,
                           status_before_refund=current)
        self.record_in(session, order_id, OrderStatus.REFUND_REQUESTED, note, actor)
        return current

    def finish_refund_in(self, session, order_id, fully_refunded, note=None, actor=None):
        """Leave refund_requested: refunded when nothing is left, else the prior status."""
        row = session.execute(
            select(Order.status, Order.status_before_refund).where(Order.id == order_id)
        ).one_or_none()
        if row is None:
            raise OrderNotFound(order_id=order_id)
        if row.status != OrderStatus.REFUND_REQUESTED:
            raise InvalidTransition(reason='no_refund_in_progress', order_id=order_id,
                                    current=row.status.value)

        target = OrderStatus.REFUNDED if fully_refunded else (row.status_before_refund or OrderStatus.PAID)
        self._swap_or_fail(session, order_id, OrderStatus.REFUND_REQUESTED, target,
                           status_before_refund=None)
        self.record_in(session, order_id, target, note, actor)
        return target

    # -- shared -----------------------------------------------------------

    def record_in(self, session, order_id, status, note=None, actor=None):
        session.add(OrderStatusHistory(
            order_id=order_id, status=status, note=note, actor=actor, created_at=self.clock(),
        ))

    def _status(self, session, order_id):
        row = session.execute(
            select(Order.status, Order.delivery_method).where(Order.id == order_id)
        ).one_or_none()
        if row is None:
            raise OrderNotFound(order_id=order_id)
        return row.status, row.delivery_method

    def _swap_in(self, session, order_id, expected, target, **values):
        result = session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == expected)
            .values(status=target, updated_at=self.clock(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _swap_or_fail(self, session, order_id, expected, target, **values):
        if not self._swap_in(session, order_id, expected, target, **values):
            raise InvalidTransition(reason='concurrent_update', order_id=order_id,
                                    current=expected.value, target=target.value)


def _settled(status):
    if status in PAYMENT_CONFIRMED or status == OrderStatus.REFUND_REQUESTED:
        return PaymentOutcome.ALREADY_PAID
    return PaymentOutcome.IGNORED


def coerce_status(value):
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(field='status', status=value) from None
