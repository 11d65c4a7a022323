import logging

from celery import shared_task

from .services import expire_stale_orders, release_due_orders

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=2)
def auto_release_escrow(self):
    """Release funds for shipped orders past the release window (run by beat)."""
    try:
        released = release_due_orders()
    except Exception as exc:
        logger.exception("auto-release sweep failed")
        raise self.retry(exc=exc, countdown=60)
    return {'released': [str(o.pk) for o in released]}


@shared_task(bind=True, max_retries=2)
def expire_pending_orders(self):
    """Cancel pending orders whose acceptance deadline passed."""
    try:
        expired = expire_stale_orders()
    except Exception as exc:
        logger.exception("expiry sweep failed")
        raise self.retry(exc=exc, countdown=60)
    return {'expired': [str(o.pk) for o in expired]}
