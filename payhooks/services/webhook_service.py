"""Webhook service — idempotent ingestion of Asaas webhook events.

Responsible for:
- Validating the inbound event (id + event type required)
- Recording it in asaas_webhook_events, deduplicated by the unique
  event_id (a duplicate delivery is reported as already processed and
  never reaches the router)
- Running the router and finalizing the row as processed or failed, with
  timing and the captured error

process_webhook() never raises for expected conditions; the outcome is
always returned as a ProcessResult.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from payhooks.exceptions import (
    DuplicateKeyError,
    InvalidPayload,
    PersistenceFailure,
    RouterFailure,
)
from payhooks.services.events import external_id_for
from payhooks.services.store import WEBHOOK_EVENTS
from payhooks.services.webhook_router import route_event

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    success: bool
    error: Optional[str] = None
    already_processed: bool = False
    error_code: Optional[str] = None

    @classmethod
    def failure(cls, error, error_code):
        return cls(success=False, error=error, error_code=error_code)


def validate_event(event):
    """Raise InvalidPayload unless event has a non-empty id and type."""
    if not isinstance(event, dict):
        raise InvalidPayload("Invalid webhook payload")
    for key in ("id", "event"):
        value = event.get(key)
        if not isinstance(value, str) or not value.strip():
            raise InvalidPayload("Invalid webhook payload")


def _resolve_row_id(event, store, reprocess_existing):
    """Insert the pending row, or look up the existing one when reprocessing.

    Returns the row id, or None for a duplicate delivery.
    """
    event_id = event["id"]

    if reprocess_existing:
        existing = store.select_one(WEBHOOK_EVENTS, "event_id", event_id)
        if existing is None:
            raise PersistenceFailure(f"Webhook event {event_id} not found")
        return existing["id"]

    try:
        row = store.insert(WEBHOOK_EVENTS, {
            "event_id": event_id,
            "event_type": event["event"],
            "external_id": external_id_for(event),
            "payload": event,
            "status": "pending",
        })
    except DuplicateKeyError:
        return None
    return row["id"]


def process_webhook(event, store, router=None, reprocess_existing=False):
    """Ingest one webhook event.

    Args:
        event: Decoded provider payload (dict).
        store: Persistence interface (see services.store.SqlAlchemyStore).
        router: Callable(event_type, payload, store); defaults to route_event.
        reprocess_existing: Look up the existing row instead of inserting.
            Used by the retry job.

    Returns:
        ProcessResult.
    """
    try:
        validate_event(event)
    except InvalidPayload as e:
        logger.warning(f"Rejected webhook payload: {e}")
        return ProcessResult.failure(str(e), InvalidPayload.error_code)

    event_id = event["id"]
    event_type = event["event"]
    router = router or route_event

    try:
        row_id = _resolve_row_id(event, store, reprocess_existing)
        if row_id is None:
            logger.info(f"Duplicate webhook event {event_id}, skipping")
            return ProcessResult(success=True, already_processed=True)

        started = time.monotonic()
        try:
            router(event_type, event, store)
        except Exception as e:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.error(f"Error handling {event_type} ({event_id}): {e}", exc_info=True)
            try:
                store.update(WEBHOOK_EVENTS, {
                    "status": "failed",
                    "last_error": str(e),
                    "processed_at": datetime.now(timezone.utc),
                    "processing_time_ms": elapsed_ms,
                }, "id", row_id)
            except PersistenceFailure as update_error:
                # Row keeps its previous status; the caller still gets the router error
                logger.error(f"Could not mark webhook {event_id} failed: {update_error}")
            return ProcessResult.failure(str(e), RouterFailure.error_code)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        store.update(WEBHOOK_EVENTS, {
            "status": "processed",
            "processed_at": datetime.now(timezone.utc),
            "processing_time_ms": elapsed_ms,
            "last_error": None,
        }, "id", row_id)
    except PersistenceFailure as e:
        logger.error(f"Store error while processing webhook {event_id}: {e}")
        return ProcessResult.failure(str(e), PersistenceFailure.error_code)
    except Exception as e:
        logger.error(f"Unexpected error processing webhook {event_id}: {e}", exc_info=True)
        return ProcessResult.failure(str(e), PersistenceFailure.error_code)

    logger.info(f"Processed webhook {event_id} ({event_type}) in {elapsed_ms}ms")
    return ProcessResult(success=True)
