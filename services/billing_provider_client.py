"""
Billing Provider API Client

Command surface toward the billing provider:
- Quotes (create, finalize, accept)
- Payment intents
Authentication is a bearer API key. Rate limits and 5xx responses are
retried with exponential backoff.
"""

import time
import uuid
from typing import Any, Dict, List, Optional

import requests

from logging_config import get_logger, performance_logger
from services.common.errors import BillingProviderError

logger = get_logger(__name__)


class BillingProviderClient:
    """Client for the billing provider HTTP API"""

    def __init__(self, api_key: str, base_url: str = "https://api.billing.example.com/v1",
                 max_retries: int = 3, retry_delay: float = 1):
        """
        Initialize billing provider client.

        Args:
            api_key: Provider secret key
            base_url: Base URL for the provider API
            max_retries: Attempts after the first for retryable failures
            retry_delay: Initial backoff in seconds
        """
        if not api_key:
            raise ValueError("Billing provider API key not configured")
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.timeout = (5, 30)  # Connection timeout, read timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def _make_request(self, method: str, endpoint: str, json_data: Optional[Dict] = None,
                      idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        """
        Make HTTP request to the provider with retry logic.

        Raises:
            BillingProviderError: On API errors after retries exhausted
        """
        url = f"{self.base_url}/{endpoint}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        last_error = None
        for attempt in range(self.max_retries + 1):
            if attempt:
                time.sleep(self.retry_delay * (2 ** (attempt - 1)))

            started = time.monotonic()
            try:
                response = requests.request(
                    method=method,
                    url=url,
                    headers=headers,
                    json=json_data,
                    timeout=self.timeout,
                )
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                last_error = str(e)
                logger.warning("Billing provider unreachable", endpoint=endpoint,
                               attempt=attempt, error=last_error)
                continue
            except requests.exceptions.RequestException as e:
                raise BillingProviderError(f"Billing provider request failed: {e}",
                                           details={'endpoint': endpoint}) from e

            performance_logger.log_api_call(
                service="billing_provider",
                endpoint=endpoint,
                duration_ms=round((time.monotonic() - started) * 1000, 1),
                status_code=response.status_code,
            )

            if response.status_code == 429 or response.status_code >= 500:
                last_error = f"HTTP {response.status_code}"
                logger.warning("Billing provider retryable failure", endpoint=endpoint,
                               attempt=attempt, status_code=response.status_code)
                continue

            if response.status_code >= 400:
                raise BillingProviderError(
                    "Billing provider rejected the request",
                    details={'endpoint': endpoint, 'status_code': response.status_code,
                             'body': response.text[:500]},
                )

            try:
                return response.json()
            except ValueError as e:
                raise BillingProviderError("Billing provider returned invalid JSON",
                                           details={'endpoint': endpoint}) from e

        raise BillingProviderError(
            f"Billing provider request failed after {self.max_retries} retries",
            details={'endpoint': endpoint, 'last_error': last_error},
        )

    def create_quote(self, customer_ref: str, line_items: List[Dict[str, Any]],
                     metadata: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        Create a draft quote for a customer.

        Args:
            customer_ref: Provider customer ID
            line_items: [{'description', 'quantity', 'unit_amount_cents'}, ...]
            metadata: Opaque key/value pairs echoed back in webhooks

        Returns:
            Provider quote object (its 'id' is the quote ref)
        """
        payload = {
            'customer': customer_ref,
            'line_items': [
                {
                    'description': item['description'],
                    'quantity': item['quantity'],
                    'unit_amount': item['unit_amount_cents'],
                }
                for item in line_items
            ],
            'metadata': metadata or {},
        }
        return self._make_request('POST', 'quotes', payload, idempotency_key=str(uuid.uuid4()))

    def finalize_quote(self, quote_ref: str) -> Dict[str, Any]:
        return self._make_request('POST', f'quotes/{quote_ref}/finalize')

    def accept_quote(self, quote_ref: str) -> Dict[str, Any]:
        """Accept a finalized quote; the provider then creates the invoice"""
        return self._make_request('POST', f'quotes/{quote_ref}/accept')

    def create_payment_intent(self, customer_ref: str, amount_cents: int,
                              metadata: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        Create a payment intent for an outstanding amount.

        Args:
            customer_ref: Provider customer ID
            amount_cents: Amount to collect in cents
            metadata: Opaque key/value pairs

        Returns:
            Provider payment intent object
        """
        payload = {
            'customer': customer_ref,
            'amount': amount_cents,
            'currency': 'usd',
            'metadata': metadata or {},
        }
        return self._make_request('POST', 'payment_intents', payload, idempotency_key=str(uuid.uuid4()))
