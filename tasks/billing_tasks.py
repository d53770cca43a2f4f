"""
Celery beat tasks for time-based lifecycle triggers

- mark_overdue_invoices: payment_needed engagements past due become payment_overdue
- expire_stale_quotes: sent quotes past due are canceled
"""

from flask import current_app

from celery_worker import celery
from logging_config import get_logger
from services.common.errors import EngagementError, InvalidTransition
from services.enums import EngagementStatus
from utils.datetime_utils import utc_now

logger = get_logger(__name__)

QUOTE_EXPIRED_NOTE = 'Quote expired'


def sweep_due_engagements(engagement_service, store, status: EngagementStatus, command, now=None):
    """
    Apply a command to every engagement in a status whose due time has passed.

    Each engagement is transitioned in its own transaction by the command. One
    whose state moved in the meantime is logged and skipped.

    Args:
        engagement_service: EngagementService used for the transitions
        store: EngagementStore for the due lookup
        status: Status the engagements must be in
        command: Callable taking an engagement id
        now: Cutoff, defaults to the current UTC time

    Returns:
        Dict with processed and skipped counts
    """
    cutoff = now or utc_now()
    due = store.engagements.find_due_before(status, cutoff)
    processed = 0
    skipped = 0

    for engagement_id in [engagement.id for engagement in due]:
        try:
            command(engagement_id)
            processed += 1
        except InvalidTransition as e:
            skipped += 1
            logger.info("Engagement moved before scheduled trigger",
                        engagement_id=engagement_id, current_status=e.current_status)
        except EngagementError as e:
            skipped += 1
            logger.error("Scheduled trigger failed", engagement_id=engagement_id, error=e.message)

    logger.info("Scheduled sweep complete", status=status.value, processed=processed, skipped=skipped)
    return {'processed': processed, 'skipped': skipped}


@celery.task
def mark_overdue_invoices():
    """Move unpaid invoices past their due time to payment_overdue"""
    engagement_service = current_app.services.get('engagement')
    return sweep_due_engagements(
        engagement_service,
        engagement_service.store,
        EngagementStatus.PAYMENT_NEEDED,
        engagement_service.mark_overdue,
    )


@celery.task
def expire_stale_quotes():
    """Cancel quotes that were never answered before their due time"""
    engagement_service = current_app.services.get('engagement')
    return sweep_due_engagements(
        engagement_service,
        engagement_service.store,
        EngagementStatus.SENT,
        lambda engagement_id: engagement_service.cancel(engagement_id, reason=QUOTE_EXPIRED_NOTE),
    )
