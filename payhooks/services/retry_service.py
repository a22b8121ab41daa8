"""Retry service — re-drives pending and failed webhook events.

Selects asaas_webhook_events rows that are pending or failed and still
under the retry ceiling, and runs each one back through
process_webhook(reprocess_existing=True), one at a time.

Bookkeeping:
  - success on a previously failed row -> retry_count + 1
  - success on a pending row           -> retry_count unchanged
  - failure                            -> retry_count + 1, last_error,
                                          status failed
A row whose retry_count reaches max_retry_count is never selected again.

Designed to be called from a Flask CLI command (`flask retry-webhooks`)
on a cron schedule.
"""

import json
import logging
import time
from dataclasses import dataclass, field

from payhooks.exceptions import InvalidPayload, PersistenceFailure
from payhooks.services.store import WEBHOOK_EVENTS
from payhooks.services.webhook_service import ProcessResult, process_webhook

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH = 25
DEFAULT_MAX_RETRY_COUNT = 5


@dataclass
class RetrySummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    duration_ms: int = 0
    errors: list = field(default_factory=list)  # [{"event_id", "error"}]


def select_retryable_events(store, max_batch=DEFAULT_MAX_BATCH,
                            max_retry_count=DEFAULT_MAX_RETRY_COUNT):
    """Return up to max_batch pending/failed rows under the retry ceiling, in store order."""
    rows = store.select_many(WEBHOOK_EVENTS, "status", ["pending", "failed"])
    retryable = [
        row for row in rows
        if int(row.get("retry_count") or 0) < max_retry_count
    ]
    return retryable[:max_batch]


def _decode_payload(payload):
    if isinstance(payload, str):
        return json.loads(payload)
    return payload


def _record_attempt(store, event_id, values):
    try:
        store.update(WEBHOOK_EVENTS, values, "event_id", event_id)
    except PersistenceFailure as e:
        logger.error(f"Could not update retry bookkeeping for {event_id}: {e}")


def retry_webhook_events(store, max_batch=DEFAULT_MAX_BATCH,
                         max_retry_count=DEFAULT_MAX_RETRY_COUNT, router=None):
    """Reprocess one batch of pending/failed webhook events.

    One event's failure never stops the batch.

    Returns:
        RetrySummary with counts, per-event errors and batch duration.
    """
    started = time.monotonic()
    summary = RetrySummary()

    rows = select_retryable_events(store, max_batch, max_retry_count)
    logger.info(f"Retrying {len(rows)} webhook event(s)")

    for row in rows:
        event_id = row["event_id"]
        prior_status = row.get("status")
        retry_count = int(row.get("retry_count") or 0)
        summary.processed += 1

        try:
            payload = _decode_payload(row.get("payload"))
        except ValueError as e:
            result = ProcessResult.failure(
                f"Undecodable payload: {e}", InvalidPayload.error_code
            )
        else:
            result = process_webhook(
                payload, store, router=router, reprocess_existing=True
            )

        if result.success:
            summary.succeeded += 1
            if prior_status == "failed":
                _record_attempt(store, event_id, {"retry_count": retry_count + 1})
            continue

        error = result.error or "unknown"
        attempts = retry_count + 1
        summary.errors.append({"event_id": event_id, "error": error})
        _record_attempt(store, event_id, {
            "retry_count": attempts,
            "last_error": error,
            "status": "failed",
        })
        if attempts >= max_retry_count:
            logger.warning(
                f"Webhook event {event_id} exhausted {attempts} retries: {error}"
            )
        else:
            logger.info(f"Webhook event {event_id} retry {attempts} failed: {error}")

    summary.failed = summary.processed - summary.succeeded
    summary.duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        f"Webhook retry batch done: {summary.succeeded}/{summary.processed} "
        f"succeeded in {summary.duration_ms}ms"
    )
    return summary
