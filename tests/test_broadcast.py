"""Tests for stock event broadcasting."""

import pytest

from storefront import create_app
from storefront.config import TestingConfig
from storefront.services import build_engine
from storefront.services.broadcast import (
    PusherTransport, SignalTransport, StockBroadcaster, StockReleased, StockReserved, channel_for,
)


class FakePusherClient:
    def __init__(self):
        self.triggered = []

    def trigger(self, channel, event_name, data):
        self.triggered.append((channel, event_name, data))


class TestSignalTransport:
    def test_subscriber_receives_events_for_its_sku(self):
        broadcaster = StockBroadcaster(SignalTransport())
        seen = []
        receiver = broadcaster.subscribe('SKU-SIG-1', lambda name, data: seen.append((name, data)))
        try:
            broadcaster.publish(StockReserved('SKU-SIG-1', 2, 8, 'guest:a'))
            broadcaster.publish(StockReserved('SKU-SIG-OTHER', 1, 3, 'guest:a'))
        finally:
            broadcaster.unsubscribe('SKU-SIG-1', receiver)

        assert seen == [('stock-reserved', {'sku': 'SKU-SIG-1', 'quantity': 2,
                                             'available_after': 8, 'originator': 'guest:a'})]

    def test_own_events_suppressed(self):
        broadcaster = StockBroadcaster(SignalTransport())
        seen = []
        receiver = broadcaster.subscribe('SKU-SIG-2', lambda name, data: seen.append(name),
                                         originator='guest:me')
        try:
            broadcaster.publish(StockReserved('SKU-SIG-2', 1, 4, 'guest:me'))
            broadcaster.publish(StockReleased('SKU-SIG-2', 1, 5, 'guest:someone'))
        finally:
            broadcaster.unsubscribe('SKU-SIG-2', receiver)

        assert seen == ['stock-released']

    def test_failing_subscriber_is_swallowed(self, caplog):
        broadcaster = StockBroadcaster(SignalTransport())

        def broken(name, data):
            raise RuntimeError('socket closed')

        receiver = broadcaster.subscribe('SKU-SIG-3', broken)
        try:
            with caplog.at_level('WARNING'):
                assert broadcaster.publish(StockReleased('SKU-SIG-3', 1, 1)) is False
        finally:
            broadcaster.unsubscribe('SKU-SIG-3', receiver)
        assert 'dropped' in caplog.text


class TestPusherTransport:
    def test_triggers_on_inventory_channel(self):
        client = FakePusherClient()
        StockBroadcaster(PusherTransport(client)).publish(StockReleased('ACM-3MM-WHITE', 3, 9))

        assert client.triggered == [(
            'inventory-ACM-3MM-WHITE', 'stock-released',
            {'sku': 'ACM-3MM-WHITE', 'quantity': 3, 'available_after': 9, 'originator': None},
        )]

    def test_from_config_builds_client(self):
        transport = PusherTransport.from_config({
            'PUSHER_APP_ID': '123', 'PUSHER_KEY': 'key', 'PUSHER_SECRET': 'secret',
            'PUSHER_CLUSTER': 'ap4',
        })
        assert transport.client is not None


class PusherConfig(TestingConfig):
    BROADCAST_BACKEND = 'pusher'
    PUSHER_APP_ID = '123'
    PUSHER_KEY = 'key'
    PUSHER_SECRET = 'secret'


def test_engine_picks_transport_from_config(gateway):
    app = create_app(PusherConfig, gateway=gateway)
    assert isinstance(app.extensions['storefront'].broadcaster.transport, PusherTransport)


def test_unknown_backend_rejected(app):
    app.config['BROADCAST_BACKEND'] = 'carrier-pigeon'
    with pytest.raises(ValueError):
        build_engine(app)


def test_channel_name():
    assert channel_for('ACM-3MM-WHITE') == 'inventory-ACM-3MM-WHITE'
