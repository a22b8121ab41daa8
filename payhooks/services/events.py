"""Typed views over inbound Asaas webhook payloads.

The provider sends loosely-typed JSON. parse_event() turns it into one of
a closed set of event variants keyed on the (uppercased) event type, with
UnrecognizedEvent as the fallback for types this system does not model.

Inbound shape:
    {id, event, dateCreated, subscription?: {id}, payment?: {id},
     value?, method?, planId?, customerId?, unitId?}
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Union

SUBSCRIPTION_CREATED = "SUBSCRIPTION_CREATED"
CONFIRMED = "CONFIRMED"
PAYMENT_RECEIVED = "PAYMENT_RECEIVED"  # legacy alias of CONFIRMED


def _nested_id(payload, key):
    """Return payload[key]["id"] if present, else None."""
    obj = payload.get(key)
    if isinstance(obj, dict):
        return obj.get("id") or None
    return None


@dataclass(frozen=True)
class SubscriptionCreated:
    event_id: Optional[str]
    subscription_id: Optional[str]
    plan_id: Optional[str] = None
    customer_id: Optional[str] = None
    unit_id: Optional[str] = None
    event_type: str = SUBSCRIPTION_CREATED
    raw: dict = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class PaymentConfirmed:
    event_id: Optional[str]
    payment_id: Optional[str]
    subscription_id: Optional[str] = None
    value: Any = None
    method: Any = None
    event_type: str = CONFIRMED
    raw: dict = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class UnrecognizedEvent:
    event_id: Optional[str]
    event_type: str
    raw: dict = field(default_factory=dict, repr=False)


WebhookPayload = Union[SubscriptionCreated, PaymentConfirmed, UnrecognizedEvent]


def parse_event(event_type, payload):
    """Build the typed variant for event_type from a raw payload dict."""
    payload = payload if isinstance(payload, dict) else {}
    key = (event_type or "").upper()
    event_id = payload.get("id") or None

    if key == SUBSCRIPTION_CREATED:
        return SubscriptionCreated(
            event_id=event_id,
            subscription_id=_nested_id(payload, "subscription"),
            plan_id=payload.get("planId") or None,
            customer_id=payload.get("customerId") or None,
            unit_id=payload.get("unitId") or None,
            raw=payload,
        )
    if key in (CONFIRMED, PAYMENT_RECEIVED):
        return PaymentConfirmed(
            event_id=event_id,
            payment_id=_nested_id(payload, "payment"),
            subscription_id=_nested_id(payload, "subscription"),
            value=payload.get("value"),
            method=payload.get("method"),
            event_type=key,
            raw=payload,
        )
    return UnrecognizedEvent(event_id=event_id, event_type=key, raw=payload)


def external_id_for(payload):
    """The id a webhook row refers to: subscription, then payment, then event."""
    return (
        _nested_id(payload, "subscription")
        or _nested_id(payload, "payment")
        or payload.get("id")
    )
