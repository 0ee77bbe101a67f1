import logging
import time

logger = logging.getLogger(__name__)


def retry(fn, attempts=3, base_delay=0.5, retry_on=(Exception,), sleep=time.sleep):
    """Call ``fn`` until it succeeds, backing off exponentially between tries.

    Only for idempotent calls. The last failure is re-raised unchanged.
    """
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            if attempt == attempts:
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning('Attempt %s/%s failed (%s), retrying in %.2fs',
                           attempt, attempts, exc, delay)
            sleep(delay)
