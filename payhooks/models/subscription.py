"""Subscription model (assinaturas).

external_ref is the provider subscription id and the join key to webhook
events. status is one of ativa | expirada | cancelada; cancelada is
terminal for automated transitions.

plano_id / cliente_id / unidade_id come from the webhook payload when it
carries them. When it does not, PLACEHOLDER_ID is stored and the row is
flagged with needs_reconciliation so an operator can fix the references.
"""

import uuid
from datetime import datetime, timezone

from payhooks.extensions import db

PLACEHOLDER_ID = "00000000-0000-0000-0000-000000000000"


class Subscription(db.Model):
    __tablename__ = "assinaturas"

    # -- Valid statuses --
    STATUSES = ["ativa", "expirada", "cancelada"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    external_ref = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "sub_VXJBYgP2u0eO"
    plano_id = db.Column(db.String(36), nullable=False, default=PLACEHOLDER_ID)
    cliente_id = db.Column(db.String(36), nullable=False, default=PLACEHOLDER_ID)
    unidade_id = db.Column(db.String(36), nullable=False, default=PLACEHOLDER_ID)
    inicio = db.Column(db.Date, nullable=True)
    fim = db.Column(db.Date, nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="ativa", index=True
    )  # ativa | expirada | cancelada
    needs_reconciliation = db.Column(
        db.Boolean, nullable=False, default=False, index=True
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    # --- Relationships ---
    payments = db.relationship("Payment", back_populates="subscription")

    def __repr__(self):
        return f"<Subscription {self.external_ref} ({self.status})>"
