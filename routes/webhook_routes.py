import hashlib
import hmac
from functools import wraps

from flask import Blueprint, request, jsonify, current_app

from logging_config import get_logger, security_logger

logger = get_logger(__name__)

webhook_bp = Blueprint('webhooks', __name__)

SIGNATURE_HEADER = 'X-Billing-Signature'


def compute_signature(secret: str, payload: bytes) -> str:
    """Hex HMAC-SHA256 of the raw request body"""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_billing_signature(f):
    """Decorator to verify the billing webhook signature when a secret is configured."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        secret = current_app.config.get('BILLING_WEBHOOK_SECRET')
        if not secret:
            return f(*args, **kwargs)

        received = request.headers.get(SIGNATURE_HEADER, '')
        if received.startswith('sha256='):
            received = received[len('sha256='):]
        expected = compute_signature(secret, request.get_data())

        if not received or not hmac.compare_digest(received, expected):
            security_logger.log_webhook_signature_failure('billing', request.remote_addr)
            return jsonify({'error': 'Invalid signature', 'code': 'INVALID_SIGNATURE'}), 401
        return f(*args, **kwargs)
    return decorated_function


@webhook_bp.route('/webhooks/billing', methods=['POST'])
@verify_billing_signature
def billing_webhook():
    """
    Billing provider webhook. Acknowledged once the signature checks out;
    processing outcomes are logged and never returned to the provider.
    """
    envelope = request.get_json(silent=True)
    result = current_app.services.get('billing_reconciliation').process_webhook(envelope)

    if result.is_failure:
        logger.warning("Billing webhook not applied", code=result.error_code, error=result.error)
    else:
        logger.info("Billing webhook processed", **result.data)

    return jsonify({'received': True}), 200
