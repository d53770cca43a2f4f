"""
Celery tasks for notification delivery

Tasks:
- deliver_notification: POST one outbox row to the notification service
- flush_pending_notifications: Periodic sweep re-queuing rows left pending

A row is claimed (pending to in_flight) before the POST, so a message queued
twice is still delivered once.

Rows are written to the outbox after the lifecycle transaction commits, so a
delivery failure never affects engagement state.
"""

import time
from datetime import timedelta

import requests
from flask import current_app

from celery_worker import celery
from logging_config import get_logger, performance_logger
from utils.datetime_utils import utc_now

logger = get_logger(__name__)

DELIVERY_TIMEOUT = 10
MAX_DELIVERY_RETRIES = 5
# Longer than the largest retry countdown (60 * 2 ** 4 seconds)
RETRY_QUIET_PERIOD = timedelta(seconds=60 * 2 ** MAX_DELIVERY_RETRIES)
STALE_CLAIM_AFTER = timedelta(hours=1)


class DeliveryError(Exception):
    """Raised when the notification service rejects or cannot take a message"""


def send_outbox_message(store, outbox_id: int, service_url, timeout: int = DELIVERY_TIMEOUT) -> str:
    """
    Deliver a single outbox row.

    Args:
        store: EngagementStore bound to the current session
        outbox_id: ID of the NotificationOutbox row
        service_url: Notification service endpoint; None only logs the message
        timeout: Request timeout in seconds

    Returns:
        'sent', 'skipped' (another worker owns or finished it) or 'missing'

    Raises:
        DeliveryError: If the notification service call fails
    """
    message = store.outbox.get_by_id(outbox_id)
    if message is None:
        logger.warning("Outbox row not found", outbox_id=outbox_id)
        return 'missing'
    with store.transaction():
        claimed = store.outbox.claim(outbox_id)
    if not claimed:
        logger.info("Outbox row not claimable", outbox_id=outbox_id)
        return 'skipped'

    payload = message.to_message()
    if service_url:
        started = time.monotonic()
        try:
            response = requests.post(service_url, json=payload, timeout=timeout)
        except requests.exceptions.RequestException as e:
            raise DeliveryError(str(e)) from e
        performance_logger.log_api_call('notifications', service_url,
                                        (time.monotonic() - started) * 1000, response.status_code)
        if response.status_code >= 400:
            raise DeliveryError(f"Notification service returned {response.status_code}")
    else:
        logger.info("Notification service not configured; message logged only",
                    outbox_id=outbox_id, message=payload)

    with store.transaction():
        store.outbox.mark_sent(outbox_id)
    logger.info("Notification delivered", outbox_id=outbox_id, type=message.type,
                recipient_id=message.recipient_id)
    return 'sent'


def record_delivery_failure(store, outbox_id: int, error: str, final: bool) -> None:
    with store.transaction():
        store.outbox.mark_failed(outbox_id, error, final=final)


@celery.task(bind=True, max_retries=MAX_DELIVERY_RETRIES, default_retry_delay=60)
def deliver_notification(self, outbox_id: int):
    """Deliver one queued notification, retrying with backoff on failure"""
    store = current_app.services.get('store')
    try:
        outcome = send_outbox_message(store, outbox_id, current_app.config.get('NOTIFICATION_SERVICE_URL'))
        return {'outbox_id': outbox_id, 'outcome': outcome}
    except DeliveryError as e:
        final = self.request.retries >= self.max_retries
        record_delivery_failure(store, outbox_id, str(e), final)
        logger.warning("Notification delivery failed",
                       outbox_id=outbox_id, attempt=self.request.retries + 1, final=final, error=str(e))
        if final:
            return {'outbox_id': outbox_id, 'outcome': 'failed'}
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))


@celery.task
def flush_pending_notifications(limit: int = 100):
    """Queue delivery for outbox rows still pending and not waiting on a retry"""
    store = current_app.services.get('store')
    now = utc_now()
    with store.transaction():
        released = store.outbox.release_stale_claims(now - STALE_CLAIM_AFTER)
    if released:
        logger.warning("Stale notification claims released", count=released)

    pending = store.outbox.find_pending(limit=limit, attempted_before=now - RETRY_QUIET_PERIOD)
    for message in pending:
        deliver_notification.delay(message.id)
    logger.info("Pending notifications queued", count=len(pending))
    return {'queued': len(pending)}
