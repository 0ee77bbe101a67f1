"""Discount codes a signed-in shopper enters at checkout.

A code takes a percentage or a fixed amount off either the goods subtotal or
the delivery fee. Redemptions are counted inside the transaction that creates
the order, with a conditional increment, so ``max_uses`` holds under
concurrent checkouts. Cancelling the unpaid order gives the redemption back.
"""
from collections import namedtuple
import logging

from sqlalchemy import delete, func, or_, select, update

from ..extensions import atomic, db
from ..models import DiscountCode, DiscountCodeUsage, DiscountTarget, DiscountType
from ..models.base import utcnow
from .errors import DiscountCodeNotFound, InvalidDiscountCode, ValidationError

logger = logging.getLogger(__name__)

CodeDiscount = namedtuple('CodeDiscount', 'code_id code amount_cents target')


def normalise_code(code):
    return (code or '').strip().upper()


def discount_amount(discount_type, value, target_cents, max_discount_cents=None):
    """Cents taken off ``target_cents``, never more than the target itself."""
    if discount_type == DiscountType.PERCENTAGE:
        amount = (target_cents * value + 50) // 100
        if max_discount_cents is not None:
            amount = min(amount, max_discount_cents)
    else:
        amount = value
    return min(amount, target_cents)


def refusal(code, now, subtotal_cents, shipping_cents):
    """Why ``code`` cannot be used right now, or None."""
    if not code.active:
        return 'inactive'
    if code.starts_at is not None and code.starts_at > now:
        return 'not_started'
    if code.ends_at is not None and code.ends_at < now:
        return 'expired'
    if code.max_uses is not None and code.used_count >= code.max_uses:
        return 'usage_limit_reached'
    if code.min_purchase_cents is not None and subtotal_cents < code.min_purchase_cents:
        return 'minimum_not_met'
    if code.discount_target == DiscountTarget.SHIPPING and shipping_cents <= 0:
        return 'no_shipping_fee'
    return None


def restore_usage_in(session, order_id):
    """Hand back the redemption held by an order that will never be paid."""
    usage = session.execute(
        select(DiscountCodeUsage.id, DiscountCodeUsage.discount_code_id)
        .where(DiscountCodeUsage.order_id == order_id)
    ).one_or_none()
    if usage is None:
        return False
    if session.execute(delete(DiscountCodeUsage).where(DiscountCodeUsage.id == usage.id)).rowcount != 1:
        return False
    session.execute(
        update(DiscountCode)
        .where(DiscountCode.id == usage.discount_code_id, DiscountCode.used_count > 0)
        .values(used_count=DiscountCode.used_count - 1)
        .execution_options(synchronize_session=False)
    )
    return True


def _enum(enum_cls, value, field):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(field=field, value=value) from None


class DiscountCodes:
    def __init__(self, clock=utcnow):
        self.clock = clock

    # -- checkout ---------------------------------------------------------

    def evaluate(self, code, customer_id, subtotal_cents, shipping_cents=0, now=None):
        normalised = normalise_code(code)
        if customer_id is None:
            raise InvalidDiscountCode(reason='sign_in_required', discount_code=normalised)

        row = DiscountCode.query.filter_by(code=normalised).first()
        if row is None:
            raise InvalidDiscountCode(reason='not_found', discount_code=normalised)

        reason = refusal(row, now or self.clock(), subtotal_cents, shipping_cents)
        if reason is None and row.max_uses_per_customer is not None:
            if self._uses_by(db.session, row.id, customer_id) >= row.max_uses_per_customer:
                reason = 'already_used'
        if reason is not None:
            logger.info('[Discount] %s refused for customer %s: %s', normalised, customer_id, reason)
            raise InvalidDiscountCode(reason=reason, discount_code=normalised)

        target = shipping_cents if row.discount_target == DiscountTarget.SHIPPING else subtotal_cents
        amount = discount_amount(row.discount_type, row.discount_value, target, row.max_discount_cents)
        return CodeDiscount(row.id, row.code, amount, row.discount_target)

    def redeem_in(self, session, discount, customer_id, order_id):
        claimed = session.execute(
            update(DiscountCode)
            .where(DiscountCode.id == discount.code_id,
                   DiscountCode.active.is_(True),
                   or_(DiscountCode.max_uses.is_(None), DiscountCode.used_count < DiscountCode.max_uses))
            .values(used_count=DiscountCode.used_count + 1, updated_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise InvalidDiscountCode(reason='usage_limit_reached', discount_code=discount.code)

        per_customer = session.execute(
            select(DiscountCode.max_uses_per_customer).where(DiscountCode.id == discount.code_id)
        ).scalar_one()
        if per_customer is not None and self._uses_by(session, discount.code_id, customer_id) >= per_customer:
            raise InvalidDiscountCode(reason='already_used', discount_code=discount.code)

        session.add(DiscountCodeUsage(discount_code_id=discount.code_id, customer_id=customer_id,
                                      order_id=order_id, used_at=self.clock()))

    # -- admin ------------------------------------------------------------

    def create(self, code, discount_type, discount_value, discount_target=DiscountTarget.SUBTOTAL,
               description=None, min_purchase_cents=None, max_discount_cents=None, max_uses=None,
               max_uses_per_customer=None, starts_at=None, ends_at=None, actor=None):
        normalised = normalise_code(code)
        if not normalised:
            raise ValidationError(field='code')
        discount_type = _enum(DiscountType, discount_type, 'discount_type')
        discount_target = _enum(DiscountTarget, discount_target, 'discount_target')
        if discount_value is None or discount_value <= 0:
            raise ValidationError(field='discount_value', value=discount_value)
        if discount_type == DiscountType.PERCENTAGE and discount_value > 100:
            raise ValidationError(field='discount_value', value=discount_value)
        if starts_at and ends_at and ends_at <= starts_at:
            raise ValidationError(field='ends_at')
        if DiscountCode.query.filter_by(code=normalised).first() is not None:
            raise ValidationError(field='code', reason='duplicate', discount_code=normalised)

        with atomic() as session:
            row = DiscountCode(
                code=normalised,
                description=description,
                discount_type=discount_type,
                discount_target=discount_target,
                discount_value=discount_value,
                min_purchase_cents=min_purchase_cents,
                max_discount_cents=max_discount_cents,
                max_uses=max_uses,
                max_uses_per_customer=max_uses_per_customer,
                starts_at=starts_at,
                ends_at=ends_at,
                active=True,
                created_by=actor,
            )
            session.add(row)

        logger.info('[Discount] code %s created by %s', normalised, actor)
        return row

    def set_active(self, code_id, active):
        with atomic():
            row = self._get(code_id)
            row.active = active
        logger.info('[Discount] code %s %s', row.code, 'enabled' if active else 'disabled')
        return row

    def remove(self, code_id):
        """Delete an unused code. A code with redemptions is only deactivated.

        Returns True when the row was deleted.
        """
        with atomic() as session:
            row = self._get(code_id)
            if row.used_count > 0:
                row.active = False
                deleted = False
            else:
                session.delete(row)
                deleted = True
        return deleted

    def _get(self, code_id):
        row = db.session.get(DiscountCode, code_id)
        if row is None:
            raise DiscountCodeNotFound(code_id=code_id)
        return row

    @staticmethod
    def _uses_by(session, code_id, customer_id):
        return session.execute(
            select(func.count(DiscountCodeUsage.id))
            .where(DiscountCodeUsage.discount_code_id == code_id,
                   DiscountCodeUsage.customer_id == customer_id)
        ).scalar_one()
