"""Refund requests: customer asks, admin approves (money moves) or rejects.

An approval first claims the request (pending -> processing) so only one
admin can reach the gateway for it. The claim is released if the processor
declines; once money has moved the request is only ever approved, or left in
processing and escalated when the order could not be credited.
"""
import logging

from sqlalchemy import select, update

from ..extensions import atomic, db
from ..models import Order, OrderStatus, RefundRequest, RefundStatus
from ..models.base import utcnow
from .errors import (
    AlreadyPending, AmountExceedsRefundable, GatewayError, IntegrityViolation, NoPaymentReference,
    NothingRefundable, OrderNotFound, RefundAlreadyResolved, RefundNotFound, ValidationError,
)
from .notifications import (
    ADMIN_RECIPIENT, REFUND_PROCESSED, REFUND_REJECTED, REFUND_UNRECORDED, safe_notify,
)

logger = logging.getLogger(__name__)

# Processor refund states that mean no money was returned
DECLINED = frozenset({'failed', 'canceled'})


def format_cents(cents):
    return f'${cents / 100:,.2f}'


def _positive_int(value, field):
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValidationError(field=field, value=value)
    return value


class RefundWorkflow:
    def __init__(self, gateway, state_machine, notifier, clock=utcnow):
        self.gateway = gateway
        self.state = state_machine
        self.notifier = notifier
        self.clock = clock

    def request(self, order_id, customer_id, reason, amount=None):
        reason = (reason or '').strip()
        if not reason:
            raise ValidationError(field='reason')
        if amount is not None:
            _positive_int(amount, 'amount')

        with atomic() as session:
            order = session.execute(
                select(Order.customer_id, Order.status, Order.total_cents, Order.refunded_cents)
                .where(Order.id == order_id)
            ).one_or_none()
            if order is None or order.customer_id != customer_id:
                raise OrderNotFound(order_id=order_id)

            refundable = order.total_cents - order.refunded_cents
            if refundable <= 0:
                raise NothingRefundable(order_id=order_id)
            open_request = session.execute(
                select(RefundRequest.id).where(
                    RefundRequest.order_id == order_id,
                    RefundRequest.status.in_((RefundStatus.PENDING, RefundStatus.PROCESSING)),
                )
            ).first()
            if open_request is not None or order.status == OrderStatus.REFUND_REQUESTED:
                raise AlreadyPending(order_id=order_id)

            requested = refundable if amount is None else min(amount, refundable)
            self.state.request_refund_in(
                session, order_id,
                note=f'Refund of {format_cents(requested)} requested: {reason}',
                actor=f'customer:{customer_id}',
            )
            refund = RefundRequest(order_id=order_id, customer_id=customer_id, reason=reason,
                                   requested_cents=requested, status=RefundStatus.PENDING)
            session.add(refund)

        logger.info('[Refund] request %s for order %s: %s', refund.id, order_id, requested)
        return refund

    def approve(self, request_id, amount, notes=None, actor=None):
        """Refund ``amount`` through the gateway, then record it.

        A gateway error or a declined refund puts the request back to pending
        with the order untouched. A refund the processor accepted but the
        order could not absorb raises IntegrityViolation and alerts the admin.
        """
        _positive_int(amount, 'amount')
        row = self._load(request_id)
        if row.status != RefundStatus.PENDING:
            raise RefundAlreadyResolved(request_id=request_id, status=row.status.value)

        refundable = row.total_cents - row.refunded_cents
        if amount > refundable:
            raise AmountExceedsRefundable(amount=amount, refundable=refundable)
        if not row.payment_reference:
            raise NoPaymentReference(order_id=row.order_id)

        if not self._move(request_id, RefundStatus.PENDING, RefundStatus.PROCESSING):
            raise RefundAlreadyResolved(request_id=request_id)

        # Same attempt, same key: a retried call cannot pay out twice. The
        # processor replays a declined answer for an old key, so a new attempt
        # after a decline gets a new one.
        idempotency_key = f'refund-{request_id}'
        if row.gateway_refund_id:
            idempotency_key = f'{idempotency_key}-{row.gateway_refund_id}'
        try:
            gateway_refund = self.gateway.refund(
                row.payment_reference, amount,
                idempotency_key=idempotency_key,
                metadata={'order_id': str(row.order_id), 'refund_request_id': str(request_id)},
            )
        except GatewayError:
            self._move(request_id, RefundStatus.PROCESSING, RefundStatus.PENDING)
            raise

        if gateway_refund.status in DECLINED:
            self._move(request_id, RefundStatus.PROCESSING, RefundStatus.PENDING,
                       gateway_refund_id=gateway_refund.id)
            logger.warning('[Refund] gateway refund %s for request %s came back %s',
                           gateway_refund.id, request_id, gateway_refund.status)
            raise GatewayError(reason='refund_declined', request_id=request_id,
                               gateway_refund_id=gateway_refund.id, status=gateway_refund.status)

        try:
            self._record(request_id, row.order_id, amount, gateway_refund, notes, actor)
        except IntegrityViolation as exc:
            self._escalate(request_id, gateway_refund, exc)
            raise

        logger.info('[Refund] request %s approved, %s refunded on order %s (%s)',
                    request_id, amount, row.order_id, gateway_refund.status)
        refund = db.session.get(RefundRequest, request_id)
        safe_notify(self.notifier, refund.order.contact_email, REFUND_PROCESSED,
                    order_number=refund.order.order_number, amount_cents=amount, notes=notes)
        return refund

    def reject(self, request_id, notes, actor=None):
        notes = (notes or '').strip()
        if not notes:
            raise ValidationError(field='notes')

        row = self._load(request_id)
        with atomic() as session:
            claimed = session.execute(
                update(RefundRequest)
                .where(RefundRequest.id == request_id, RefundRequest.status == RefundStatus.PENDING)
                .values(status=RefundStatus.REJECTED, admin_notes=notes, processed_by=actor,
                        processed_at=self.clock(), updated_at=self.clock())
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                raise RefundAlreadyResolved(request_id=request_id)
            self.state.finish_refund_in(session, row.order_id, fully_refunded=False,
                                        note=f'Refund rejected: {notes}', actor=actor)

        logger.info('[Refund] request %s rejected by %s', request_id, actor)
        refund = db.session.get(RefundRequest, request_id)
        safe_notify(self.notifier, refund.order.contact_email, REFUND_REJECTED,
                    order_number=refund.order.order_number, notes=notes)
        return refund

    def _record(self, request_id, order_id, amount, gateway_refund, notes, actor):
        unrecorded = dict(reason='refund_unrecorded', request_id=request_id, order_id=order_id,
                          gateway_refund_id=gateway_refund.id, amount_cents=amount)
        with atomic() as session:
            approved = session.execute(
                update(RefundRequest)
                .where(RefundRequest.id == request_id, RefundRequest.status == RefundStatus.PROCESSING)
                .values(status=RefundStatus.APPROVED, approved_cents=amount,
                        gateway_refund_id=gateway_refund.id, admin_notes=notes,
                        processed_by=actor, processed_at=self.clock(), updated_at=self.clock())
                .execution_options(synchronize_session=False)
            )
            if approved.rowcount != 1:
                raise IntegrityViolation(**unrecorded)

            credited = session.execute(
                update(Order)
                .where(Order.id == order_id,
                       Order.status == OrderStatus.REFUND_REQUESTED,
                       Order.refunded_cents + amount <= Order.total_cents)
                .values(refunded_cents=Order.refunded_cents + amount)
                .execution_options(synchronize_session=False)
            )
            if credited.rowcount != 1:
                raise IntegrityViolation(**unrecorded)

            totals = session.execute(
                select(Order.total_cents, Order.refunded_cents).where(Order.id == order_id)
            ).one()
            note = f'Refunded {format_cents(amount)}'
            if notes:
                note = f'{note}: {notes}'
            self.state.finish_refund_in(session, order_id,
                                        fully_refunded=totals.refunded_cents >= totals.total_cents,
                                        note=note, actor=actor)

    def _escalate(self, request_id, gateway_refund, exc):
        # Money has left; keep the processor's id on the request for reconciliation
        with atomic() as session:
            session.execute(
                update(RefundRequest)
                .where(RefundRequest.id == request_id, RefundRequest.status == RefundStatus.PROCESSING)
                .values(gateway_refund_id=gateway_refund.id, updated_at=self.clock())
                .execution_options(synchronize_session=False)
            )
        logger.critical('[Refund] gateway refund %s for request %s was paid out but not recorded: %s',
                        gateway_refund.id, request_id, exc.details)
        safe_notify(self.notifier, ADMIN_RECIPIENT, REFUND_UNRECORDED, **exc.details)

    def _move(self, request_id, expected, target, **values):
        with atomic() as session:
            result = session.execute(
                update(RefundRequest)
                .where(RefundRequest.id == request_id, RefundRequest.status == expected)
                .values(status=target, updated_at=self.clock(), **values)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1

    def _load(self, request_id):
        row = db.session.execute(
            select(RefundRequest.status, RefundRequest.order_id, RefundRequest.gateway_refund_id,
                   Order.total_cents, Order.refunded_cents, Order.payment_reference)
            .join(Order, Order.id == RefundRequest.order_id)
            .where(RefundRequest.id == request_id)
        ).one_or_none()
        if row is None:
            raise RefundNotFound(request_id=request_id)
        return row
