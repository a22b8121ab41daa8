"""Payment model (pagamentos_assinaturas).

One row per confirmed provider payment, deduplicated by the unique
external_payment_ref. assinatura_id is nullable: a payment can arrive
before (or without) a subscription we can resolve.
"""

import uuid
from datetime import datetime, timezone

from payhooks.extensions import db


class Payment(db.Model):
    __tablename__ = "pagamentos_assinaturas"

    METHODS = ["cartao", "pix", "boleto"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    external_payment_ref = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "pay_080225913252"
    assinatura_id = db.Column(
        db.String(36), db.ForeignKey("assinaturas.id"), nullable=True
    )
    valor = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    metodo = db.Column(
        db.String(20), nullable=False, default="cartao"
    )  # cartao | pix | boleto
    status = db.Column(db.String(20), nullable=False, default="pago")
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    # --- Relationships ---
    subscription = db.relationship("Subscription", back_populates="payments")

    def __repr__(self):
        return f"<Payment {self.external_payment_ref} ({self.valor} {self.metodo})>"
