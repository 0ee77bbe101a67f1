"""Tests for the inventory ledger."""

from datetime import timedelta

import pytest
from sqlalchemy import update

from storefront.extensions import db
from storefront.models import Product, Reservation, ReservationStatus
from storefront.services.errors import (
    InsufficientStock, ProductNotFound, ReservationNotFound, ValidationError,
)
from storefront.services.ledger import CommitOutcome


def stock_of(sku):
    return db.session.execute(db.select(Product.stock).where(Product.sku == sku)).scalar_one()


def status_of(token):
    return db.session.execute(
        db.select(Reservation.status).where(Reservation.token == token)
    ).scalar_one()


class TestReserve:
    def test_reserve_takes_stock_and_creates_active_hold(self, engine, make_product):
        make_product(stock=10)
        reservation = engine.ledger.reserve('ACM-3MM-WHITE', 4, originator='guest:a')

        assert isinstance(reservation, Reservation)
        assert reservation.status == ReservationStatus.ACTIVE
        assert reservation.quantity == 4
        assert reservation.expires_at > reservation.created_at
        assert stock_of('ACM-3MM-WHITE') == 6

    def test_insufficient_stock_is_returned_not_raised(self, engine, make_product):
        make_product(stock=2)
        outcome = engine.ledger.reserve('ACM-3MM-WHITE', 3)

        assert isinstance(outcome, InsufficientStock)
        assert outcome.sku == 'ACM-3MM-WHITE'
        assert outcome.requested == 3
        assert outcome.available == 2
        assert stock_of('ACM-3MM-WHITE') == 2
        assert Reservation.query.count() == 0

    def test_unknown_sku_reports_zero_available(self, engine, app):
        outcome = engine.ledger.reserve('NOPE', 1)
        assert isinstance(outcome, InsufficientStock)
        assert outcome.available == 0

    def test_inactive_product_cannot_be_reserved(self, engine, make_product):
        make_product(stock=5, active=False)
        assert isinstance(engine.ledger.reserve('ACM-3MM-WHITE', 1), InsufficientStock)

    @pytest.mark.parametrize('quantity', [0, -1, True, 2.5])
    def test_bad_quantity_is_a_validation_error(self, engine, make_product, quantity):
        make_product(stock=5)
        with pytest.raises(ValidationError):
            engine.ledger.reserve('ACM-3MM-WHITE', quantity)

    def test_stock_5_requests_3_and_4_only_one_wins(self, engine, make_product):
        make_product(stock=5)
        first = engine.ledger.reserve('ACM-3MM-WHITE', 3)
        second = engine.ledger.reserve('ACM-3MM-WHITE', 4)

        assert isinstance(first, Reservation)
        assert isinstance(second, InsufficientStock)
        assert stock_of('ACM-3MM-WHITE') == 2

    def test_stale_orm_copy_does_not_allow_oversell(self, engine, make_product):
        product = make_product(stock=5)
        # Another worker takes 4 units behind this session's back
        db.session.execute(update(Product).where(Product.id == product.id).values(stock=1))
        db.session.commit()

        outcome = engine.ledger.reserve('ACM-3MM-WHITE', 3)
        assert isinstance(outcome, InsufficientStock)
        assert outcome.available == 1

    def test_never_commits_more_than_starting_stock(self, engine, make_product):
        make_product(stock=7)
        results = [engine.ledger.reserve('ACM-3MM-WHITE', qty) for qty in (3, 2, 4, 1, 1, 2)]
        held = sum(r.quantity for r in results if isinstance(r, Reservation))

        assert held <= 7
        assert held + stock_of('ACM-3MM-WHITE') == 7


class TestRelease:
    def test_release_returns_stock_once(self, engine, make_product):
        make_product(stock=5)
        reservation = engine.ledger.reserve('ACM-3MM-WHITE', 3)

        assert engine.ledger.release(reservation.token) is True
        assert engine.ledger.release(reservation.token) is False
        assert stock_of('ACM-3MM-WHITE') == 5
        assert status_of(reservation.token) == ReservationStatus.RELEASED

    def test_release_after_commit_is_noop(self, engine, make_product):
        make_product(stock=5)
        reservation = engine.ledger.reserve('ACM-3MM-WHITE', 3)
        engine.ledger.commit(reservation.token)

        assert engine.ledger.release(reservation.token) is False
        assert stock_of('ACM-3MM-WHITE') == 2

    def test_expire_marks_expired(self, engine, make_product):
        make_product(stock=5)
        reservation = engine.ledger.reserve('ACM-3MM-WHITE', 2)
        engine.ledger.release(reservation.token, ReservationStatus.EXPIRED)
        assert status_of(reservation.token) == ReservationStatus.EXPIRED

    def test_release_to_committed_status_rejected(self, engine, make_product):
        make_product(stock=5)
        reservation = engine.ledger.reserve('ACM-3MM-WHITE', 2)
        with pytest.raises(ValidationError):
            engine.ledger.release(reservation.token, ReservationStatus.COMMITTED)

    def test_unknown_token(self, engine, app):
        with pytest.raises(ReservationNotFound):
            engine.ledger.release('missing')

    def test_release_all_counts_only_real_releases(self, engine, make_product):
        make_product(stock=10)
        a = engine.ledger.reserve('ACM-3MM-WHITE', 2)
        b = engine.ledger.reserve('ACM-3MM-WHITE', 3)
        engine.ledger.release(a.token)

        assert engine.ledger.release_all([a.token, b.token]) == 1
        assert stock_of('ACM-3MM-WHITE') == 10


class TestCommit:
    def test_commit_is_idempotent(self, engine, make_product):
        make_product(stock=5)
        reservation = engine.ledger.reserve('ACM-3MM-WHITE', 3)

        assert engine.ledger.commit(reservation.token) == CommitOutcome.COMMITTED
        assert engine.ledger.commit(reservation.token) == CommitOutcome.ALREADY_COMMITTED
        assert stock_of('ACM-3MM-WHITE') == 2
        assert status_of(reservation.token) == ReservationStatus.COMMITTED

    def test_lapsed_hold_is_reclaimed_when_stock_remains(self, engine, make_product):
        make_product(stock=5)
        reservation = engine.ledger.reserve('ACM-3MM-WHITE', 3)
        engine.ledger.release(reservation.token, ReservationStatus.EXPIRED)

        assert engine.ledger.commit(reservation.token) == CommitOutcome.RECLAIMED
        assert stock_of('ACM-3MM-WHITE') == 2
        assert status_of(reservation.token) == ReservationStatus.COMMITTED

    def test_lapsed_hold_with_stock_gone_is_unavailable(self, engine, make_product):
        make_product(stock=5)
        reservation = engine.ledger.reserve('ACM-3MM-WHITE', 3)
        engine.ledger.release(reservation.token, ReservationStatus.EXPIRED)
        engine.ledger.reserve('ACM-3MM-WHITE', 4)

        assert engine.ledger.commit(reservation.token) == CommitOutcome.STOCK_UNAVAILABLE
        assert stock_of('ACM-3MM-WHITE') == 1
        assert status_of(reservation.token) == ReservationStatus.EXPIRED


class TestRestockAndQueries:
    def test_restock_adds_stock_and_broadcasts(self, engine, make_product, transport):
        make_product(stock=1)
        assert engine.ledger.restock('ACM-3MM-WHITE', 9) == 10
        channel, event, data = transport.sent[-1]
        assert channel == 'inventory-ACM-3MM-WHITE'
        assert event == 'stock-released'
        assert data['available_after'] == 10

    def test_restock_unknown_sku(self, engine, app):
        with pytest.raises(ProductNotFound):
            engine.ledger.restock('NOPE', 3)

    def test_available(self, engine, make_product):
        make_product(stock=4)
        assert engine.ledger.available('ACM-3MM-WHITE') == 4
        assert engine.ledger.available('NOPE') is None

    def test_expired_tokens_only_lists_lapsed_active_holds(self, engine, make_product):
        make_product(stock=10)
        lapsed = engine.ledger.reserve('ACM-3MM-WHITE', 1, hold=timedelta(minutes=-1))
        fresh = engine.ledger.reserve('ACM-3MM-WHITE', 1)
        released = engine.ledger.reserve('ACM-3MM-WHITE', 1, hold=timedelta(minutes=-1))
        engine.ledger.release(released.token)

        tokens = engine.ledger.expired_tokens()
        assert tokens == [lapsed.token]
        assert fresh.token not in tokens


class TestBroadcast:
    def test_reserve_publishes_with_originator(self, engine, make_product, transport):
        make_product(stock=10)
        engine.ledger.reserve('ACM-3MM-WHITE', 4, originator='guest:a')

        channel, event, data = transport.sent[-1]
        assert channel == 'inventory-ACM-3MM-WHITE'
        assert event == 'stock-reserved'
        assert data == {'sku': 'ACM-3MM-WHITE', 'quantity': 4, 'available_after': 6,
                        'originator': 'guest:a'}

    def test_refused_reserve_publishes_nothing(self, engine, make_product, transport):
        make_product(stock=1)
        engine.ledger.reserve('ACM-3MM-WHITE', 4)
        assert transport.sent == []

    def test_broadcast_failure_does_not_fail_reservation(self, engine, make_product, transport):
        make_product(stock=10)
        transport.fail = True

        reservation = engine.ledger.reserve('ACM-3MM-WHITE', 2)
        assert isinstance(reservation, Reservation)
        assert stock_of('ACM-3MM-WHITE') == 8
        assert engine.ledger.release(reservation.token) is True
        assert stock_of('ACM-3MM-WHITE') == 10

    def test_low_stock_warning_logged(self, engine, make_product, caplog):
        make_product(stock=6, low_stock_threshold=3)
        with caplog.at_level('WARNING', logger='storefront.services.ledger'):
            engine.ledger.reserve('ACM-3MM-WHITE', 3)
        assert 'low stock' in caplog.text
