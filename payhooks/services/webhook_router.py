"""Webhook router — maps Asaas event types to domain handlers.

Responsible for:
- Dispatching on the uppercased event type (unknown types are ignored)
- SUBSCRIPTION_CREATED: creating the local subscription once per external_ref
- CONFIRMED / PAYMENT_RECEIVED: recording the payment once per
  external_payment_ref and reactivating the subscription when allowed
- A best-effort audit row in asaas_webhook_events, for callers that reach
  the router without going through process_webhook()

Handlers are idempotent: redelivery of the same event finds the existing
subscription or hits the payment's unique constraint and changes nothing.
"""

import calendar
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from payhooks.exceptions import DuplicateKeyError, PersistenceFailure
from payhooks.models.subscription import PLACEHOLDER_ID, Subscription
from payhooks.services.events import (
    CONFIRMED,
    PAYMENT_RECEIVED,
    SUBSCRIPTION_CREATED,
    external_id_for,
    parse_event,
)
from payhooks.services.store import PAYMENTS, SUBSCRIPTIONS, WEBHOOK_EVENTS

logger = logging.getLogger(__name__)

_METHOD_ALIASES = {
    "credit_card": "cartao",
    "cartao": "cartao",
    "card": "cartao",
    "pix": "pix",
    "boleto": "boleto",
    "bank_slip": "boleto",
}


# ──────────────────────────────────────────────
# Normalization helpers
# ──────────────────────────────────────────────

def normalize_method(value):
    """Map a provider billing type to cartao | pix | boleto (default cartao)."""
    key = str(value or "").strip().lower()
    return _METHOD_ALIASES.get(key, "cartao")


def to_non_negative_amount(value):
    """Coerce a provider value (number or numeric string) to a Decimal >= 0.

    Missing, non-numeric, non-finite and negative values become 0.
    """
    if value is None or isinstance(value, bool):
        return Decimal("0")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal("0")
    if not amount.is_finite() or amount < 0:
        return Decimal("0")
    return amount


def add_one_month(day):
    """Same day next month, clamped to the last day of that month."""
    year = day.year + day.month // 12
    month = day.month % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return day.replace(year=year, month=month, day=min(day.day, last_day))


def can_transition(current, target):
    """Subscription status guard for automated (webhook-driven) updates.

    - target must be a known status
    - no update when already in the target status
    - cancelada is terminal: never reactivated automatically
    - anything else (expirada, unknown, None) may move to target
    """
    if target not in Subscription.STATUSES:
        return False
    if current == target:
        return False
    if current == "cancelada":
        return False
    return True


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _handle_subscription_created(event, store):
    """Handle SUBSCRIPTION_CREATED.

    Creates the subscription with a one-month window starting today and
    status ativa. An existing row for the same external_ref is left as is.
    """
    external_ref = event.subscription_id
    if not external_ref:
        logger.warning(f"SUBSCRIPTION_CREATED {event.event_id} has no subscription id")
        return

    existing = store.select_one(SUBSCRIPTIONS, "external_ref", external_ref)
    if existing:
        logger.info(
            f"assinatura_existente: subscription {external_ref} already "
            f"recorded as {existing.get('id')}, skipping"
        )
        return

    references = {
        "plano_id": event.plan_id,
        "cliente_id": event.customer_id,
        "unidade_id": event.unit_id,
    }
    missing = sorted(name for name, value in references.items() if not value)
    if missing:
        logger.warning(
            f"Subscription {external_ref} created with placeholder "
            f"{', '.join(missing)}; flagged for reconciliation"
        )

    today = datetime.now(timezone.utc).date()
    row = {name: value or PLACEHOLDER_ID for name, value in references.items()}
    row.update(
        external_ref=external_ref,
        inicio=today,
        fim=add_one_month(today),
        status="ativa",
        needs_reconciliation=bool(missing),
    )

    try:
        created = store.insert(SUBSCRIPTIONS, row)
    except DuplicateKeyError:
        # Created by a concurrent delivery between our lookup and insert
        logger.info(f"assinatura_existente: subscription {external_ref} created concurrently")
        return

    logger.info(f"Created subscription {created.get('id')} for {external_ref}")


def _handle_payment_confirmed(event, store):
    """Handle CONFIRMED / PAYMENT_RECEIVED.

    Records the payment (once per payment id), then reactivates the owning
    subscription if the status guard allows it.
    """
    payment_ref = event.payment_id
    if not payment_ref:
        logger.warning(f"{event.event_type} {event.event_id} has no payment id")
        return

    subscription = None
    if event.subscription_id:
        subscription = store.select_one(
            SUBSCRIPTIONS, "external_ref", event.subscription_id
        )
        if subscription is None:
            logger.warning(
                f"Payment {payment_ref}: no local subscription for "
                f"{event.subscription_id}, recording without link"
            )

    try:
        store.insert(PAYMENTS, {
            "external_payment_ref": payment_ref,
            "assinatura_id": subscription["id"] if subscription else None,
            "valor": to_non_negative_amount(event.value),
            "metodo": normalize_method(event.method),
            "status": "pago",
        })
    except DuplicateKeyError:
        logger.info(f"Payment {payment_ref} already recorded, skipping insert")

    if not subscription:
        return

    current = subscription.get("status")
    if can_transition(current, "ativa"):
        store.update(SUBSCRIPTIONS, {"status": "ativa"}, "id", subscription["id"])
        logger.info(f"Subscription {subscription['id']} status {current} -> ativa")
    else:
        reason = "assinatura_cancelada" if current == "cancelada" else "sem_alteracao"
        logger.info(
            f"skip_update_status: subscription {subscription['id']} "
            f"stays {current} ({reason})"
        )


HANDLERS = {
    SUBSCRIPTION_CREATED: _handle_subscription_created,
    CONFIRMED: _handle_payment_confirmed,
    PAYMENT_RECEIVED: _handle_payment_confirmed,
}


# ──────────────────────────────────────────────
# Dispatch
# ──────────────────────────────────────────────

def _record_audit_row(event_type, payload, store):
    """Insert a pending audit row for this event. Returns its id or None.

    Best-effort: when the row already exists (the ingestor inserted it) or
    the insert fails, routing continues without an audit row.
    """
    event_id = payload.get("id") or f"{event_type}-{int(time.time() * 1000)}"
    try:
        row = store.insert(WEBHOOK_EVENTS, {
            "event_id": event_id,
            "event_type": event_type,
            "external_id": external_id_for(payload),
            "payload": payload,
            "status": "pending",
        })
    except DuplicateKeyError:
        return None
    except PersistenceFailure as e:
        logger.warning(f"Could not record webhook event {event_id} (continuing): {e}")
        return None
    return row.get("id")


def _finalize_audit_row(store, row_id, values):
    try:
        store.update(WEBHOOK_EVENTS, values, "id", row_id)
    except PersistenceFailure as e:
        logger.warning(f"Could not finalize webhook event row {row_id}: {e}")


def route_event(event_type, payload, store):
    """Route one webhook event to its handler.

    Unknown event types are ignored. Handler exceptions are re-raised
    after the audit row (if this call created one) is marked failed.
    """
    key = (event_type or "").upper()
    handler = HANDLERS.get(key)
    if handler is None:
        logger.info(f"Ignoring unhandled webhook event type {key}")
        return

    payload = payload if isinstance(payload, dict) else {}
    event = parse_event(key, payload)

    started = time.monotonic()
    row_id = _record_audit_row(key, payload, store)

    try:
        handler(event, store)
    except Exception as e:
        if row_id:
            _finalize_audit_row(store, row_id, {
                "status": "failed",
                "last_error": str(e),
            })
        raise

    if row_id:
        _finalize_audit_row(store, row_id, {
            "status": "processed",
            "processed_at": datetime.now(timezone.utc),
            "processing_time_ms": int((time.monotonic() - started) * 1000),
        })
