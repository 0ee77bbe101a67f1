"""Stock event broadcast.

Publishing is best-effort and at-most-once: a transport failure is logged and
dropped, and nothing here runs inside a database transaction. Subscribers must
re-read stock before acting on an event.
"""
from dataclasses import asdict, dataclass
import logging
from typing import Optional

from blinker import Namespace
import pusher

logger = logging.getLogger(__name__)

_signals = Namespace()


@dataclass(frozen=True)
class StockReserved:
    sku: str
    quantity: int
    available_after: int
    originator: Optional[str] = None

    name = 'stock-reserved'


@dataclass(frozen=True)
class StockReleased:
    sku: str
    quantity: int
    available_after: int
    originator: Optional[str] = None

    name = 'stock-released'


def channel_for(sku):
    return f'inventory-{sku}'


class SignalTransport:
    """In-process delivery over blinker signals, one signal per channel."""

    def send(self, channel, event_name, data):
        _signals.signal(channel).send(event_name, data=data)

    def connect(self, channel, receiver):
        _signals.signal(channel).connect(receiver, weak=False)
        return receiver

    def disconnect(self, channel, receiver):
        _signals.signal(channel).disconnect(receiver)


class PusherTransport:
    def __init__(self, client):
        self.client = client

    @classmethod
    def from_config(cls, config):
        client = pusher.Pusher(
            app_id=config['PUSHER_APP_ID'],
            key=config['PUSHER_KEY'],
            secret=config['PUSHER_SECRET'],
            cluster=config['PUSHER_CLUSTER'],
            ssl=True,
        )
        return cls(client)

    def send(self, channel, event_name, data):
        self.client.trigger(channel, event_name, data)


class StockBroadcaster:
    def __init__(self, transport):
        self.transport = transport

    def publish(self, event):
        try:
            self.transport.send(channel_for(event.sku), event.name, asdict(event))
        except Exception:
            logger.warning('[Broadcast] %s for %s dropped', event.name, event.sku, exc_info=True)
            return False
        return True

    def subscribe(self, sku, callback, originator=None):
        """Call ``callback(event_name, data)`` for events on ``sku``.

        Events whose originator equals ``originator`` are skipped so a shopper
        is not warned about their own reservation. Returns the receiver, to be
        passed to ``unsubscribe``.
        """
        def receiver(event_name, data=None):
            if originator is not None and data.get('originator') == originator:
                return
            callback(event_name, data)

        return self.transport.connect(channel_for(sku), receiver)

    def unsubscribe(self, sku, receiver):
        self.transport.disconnect(channel_for(sku), receiver)
