"""Reconciliation backlog — subscriptions created with placeholder references.

SUBSCRIPTION_CREATED payloads do not always carry the plan, client and
unit the subscription belongs to. Those rows are stored with the
placeholder id and needs_reconciliation=True; this lists them for an
operator to fix.
"""

from payhooks.models.subscription import PLACEHOLDER_ID
from payhooks.services.store import SUBSCRIPTIONS


def list_reconciliation_backlog(store):
    """Return flagged subscriptions with the names of their placeholder fields."""
    rows = store.select_many(SUBSCRIPTIONS, "needs_reconciliation", [True])
    backlog = []
    for row in rows:
        placeholders = [
            name for name in ("plano_id", "cliente_id", "unidade_id")
            if row.get(name) == PLACEHOLDER_ID
        ]
        backlog.append({
            "id": row["id"],
            "external_ref": row["external_ref"],
            "status": row.get("status"),
            "placeholders": placeholders,
        })
    return backlog
