"""Webhook event model (durable event log + idempotency table).

Every provider event is recorded by its provider-assigned event_id. The
unique constraint on event_id is the deduplication mechanism: a second
insert of the same id fails and the delivery is reported as already
processed. Rows are finalized in place by the ingestor and the retry job.
"""

import uuid
from datetime import datetime, timezone

from payhooks.extensions import db


def _utcnow():
    return datetime.now(timezone.utc)


class WebhookEvent(db.Model):
    __tablename__ = "asaas_webhook_events"

    # -- Valid statuses --
    STATUSES = ["pending", "processed", "failed"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_6f1c..."
    event_type = db.Column(
        db.String(100), nullable=False
    )  # e.g. "SUBSCRIPTION_CREATED"
    external_id = db.Column(
        db.String(255), nullable=True
    )  # subscription or payment id the event refers to
    payload = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(
        db.String(20), nullable=False, default="pending", index=True
    )  # pending | processed | failed
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processing_time_ms = db.Column(db.Integer, nullable=True)
    # Python-side default keeps sub-second ordering for the retry job
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def __repr__(self):
        return f"<WebhookEvent {self.event_id} ({self.event_type}, {self.status})>"
