"""
Billing provider webhook events.

Envelopes look like ``{"id": "evt_...", "type": "invoice.paid",
"data": {"object": {...}}}``. Recognized types are parsed into one of the
frozen dataclasses below; everything else is ignored by the reconciler.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union


class MalformedBillingEvent(ValueError):
    """The envelope or its object is missing required fields"""


@dataclass(frozen=True)
class QuoteAccepted:
    event_id: Optional[str]
    quote_ref: str
    customer_ref: Optional[str] = None
    type: str = 'quote.accepted'


@dataclass(frozen=True)
class QuoteFinalized:
    event_id: Optional[str]
    quote_ref: str
    customer_ref: Optional[str] = None
    type: str = 'quote.finalized'


@dataclass(frozen=True)
class InvoiceCreated:
    event_id: Optional[str]
    invoice_ref: str
    quote_ref: Optional[str] = None
    customer_ref: Optional[str] = None
    type: str = 'invoice.created'


@dataclass(frozen=True)
class InvoicePaid:
    event_id: Optional[str]
    invoice_ref: str
    amount_paid_cents: Optional[int] = None
    customer_ref: Optional[str] = None
    type: str = 'invoice.paid'


BillingEvent = Union[QuoteAccepted, QuoteFinalized, InvoiceCreated, InvoicePaid]


def _required_str(obj: Dict[str, Any], key: str, event_type: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str) or not value:
        raise MalformedBillingEvent(f"{event_type} event is missing '{key}'")
    return value


def _optional_str(obj: Dict[str, Any], key: str) -> Optional[str]:
    value = obj.get(key)
    # Expanded references arrive as objects carrying their own id
    if isinstance(value, dict):
        value = value.get('id')
    return value if isinstance(value, str) and value else None


def _quote_accepted(event_id, obj):
    return QuoteAccepted(event_id=event_id,
                         quote_ref=_required_str(obj, 'id', 'quote.accepted'),
                         customer_ref=_optional_str(obj, 'customer'))


def _quote_finalized(event_id, obj):
    return QuoteFinalized(event_id=event_id,
                          quote_ref=_required_str(obj, 'id', 'quote.finalized'),
                          customer_ref=_optional_str(obj, 'customer'))


def _invoice_created(event_id, obj):
    return InvoiceCreated(event_id=event_id,
                          invoice_ref=_required_str(obj, 'id', 'invoice.created'),
                          quote_ref=_optional_str(obj, 'quote'),
                          customer_ref=_optional_str(obj, 'customer'))


def _invoice_paid(event_id, obj):
    amount = obj.get('amount_paid')
    if amount is not None and (not isinstance(amount, int) or isinstance(amount, bool)):
        raise MalformedBillingEvent("invoice.paid 'amount_paid' must be an integer")
    return InvoicePaid(event_id=event_id,
                       invoice_ref=_required_str(obj, 'id', 'invoice.paid'),
                       amount_paid_cents=amount,
                       customer_ref=_optional_str(obj, 'customer'))


_PARSERS = {
    'quote.accepted': _quote_accepted,
    'quote.finalized': _quote_finalized,
    'invoice.created': _invoice_created,
    'invoice.paid': _invoice_paid,
}

SUPPORTED_EVENT_TYPES = frozenset(_PARSERS)


def parse_event(envelope: Any) -> Optional[BillingEvent]:
    """
    Parse a webhook envelope.

    Args:
        envelope: Decoded JSON body

    Returns:
        The typed event, or None for an event type that is not handled

    Raises:
        MalformedBillingEvent: The envelope or the object of a handled
            type is malformed
    """
    if not isinstance(envelope, dict):
        raise MalformedBillingEvent("Envelope must be a JSON object")

    event_type = envelope.get('type')
    if not isinstance(event_type, str) or not event_type:
        raise MalformedBillingEvent("Envelope is missing 'type'")

    parser = _PARSERS.get(event_type)
    if parser is None:
        return None

    event_id = envelope.get('id')
    if event_id is not None and not isinstance(event_id, str):
        raise MalformedBillingEvent("Envelope 'id' must be a string")

    data = envelope.get('data')
    obj = data.get('object') if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        raise MalformedBillingEvent("Envelope is missing 'data.object'")

    return parser(event_id or None, obj)
