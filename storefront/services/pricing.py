"""Bulk-quantity pricing. Pure functions, no database access."""
from collections import namedtuple

from .errors import ValidationError

Tier = namedtuple('Tier', 'min_quantity discount_percent')
Quote = namedtuple('Quote', 'unit_price_cents discount_percent line_total_cents')


def select_tier(quantity, tiers):
    """Tier with the highest min_quantity the quantity satisfies.

    Ties on min_quantity go to the larger discount. Returns None when no tier
    applies.
    """
    eligible = [t for t in tiers if t.min_quantity <= quantity]
    if not eligible:
        return None
    return max(eligible, key=lambda t: (t.min_quantity, t.discount_percent))


def discounted_price(base_price_cents, discount_percent):
    # Round half up to the cent
    return (base_price_cents * (100 - discount_percent) + 50) // 100


def price_line(base_price_cents, quantity, tiers=()):
    if quantity <= 0:
        raise ValidationError(field='quantity', quantity=quantity)
    if base_price_cents < 0:
        raise ValidationError(field='price', price=base_price_cents)

    tier = select_tier(quantity, tiers)
    percent = tier.discount_percent if tier else 0
    unit = discounted_price(base_price_cents, percent)
    return Quote(unit, percent, unit * quantity)


def validate_ladder(tiers):
    """Reject ladders whose discount shrinks as quantity grows.

    With a non-decreasing ladder, select_tier can never raise the unit price
    when the quantity goes up.
    """
    best = {}
    for tier in tiers:
        if tier.min_quantity < 1:
            raise ValidationError(field='min_quantity', min_quantity=tier.min_quantity)
        if not 1 <= tier.discount_percent <= 100:
            raise ValidationError(field='discount_percent',
                                  discount_percent=tier.discount_percent)
        best[tier.min_quantity] = max(best.get(tier.min_quantity, 0), tier.discount_percent)

    previous = 0
    for min_quantity in sorted(best):
        if best[min_quantity] < previous:
            raise ValidationError(
                field='discount_percent', reason='decreasing_ladder',
                min_quantity=min_quantity, discount_percent=best[min_quantity],
            )
        previous = best[min_quantity]
    return True
