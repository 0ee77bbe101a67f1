import logging

logger = logging.getLogger(__name__)

ORDER_PAID = 'order_paid'
REFUND_PROCESSED = 'refund_processed'
REFUND_REJECTED = 'refund_rejected'
STOCK_UNAVAILABLE = 'stock_unavailable'
PAYMENT_FOR_CLOSED_ORDER = 'payment_for_closed_order'
REFUND_UNRECORDED = 'refund_unrecorded'
BACK_IN_STOCK = 'back_in_stock'

ADMIN_RECIPIENT = 'admin'


class Notifier:
    def notify(self, recipient, event, **context):
        raise NotImplementedError


class LogNotifier(Notifier):
    def notify(self, recipient, event, **context):
        logger.info('[Notify] %s -> %s %s', event, recipient, context)


def safe_notify(notifier, recipient, event, **context):
    """Fire-and-forget: delivery problems are logged, never raised."""
    if not recipient:
        logger.info('[Notify] %s skipped, no recipient', event)
        return False
    try:
        notifier.notify(recipient, event, **context)
    except Exception:
        logger.warning('[Notify] %s to %s failed', event, recipient, exc_info=True)
        return False
    return True
