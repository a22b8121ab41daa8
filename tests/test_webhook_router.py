"""Tests for the webhook router and its handlers.

Covers:
- Dispatch (case-insensitive, unknown types ignored)
- SUBSCRIPTION_CREATED (create once, placeholders flagged)
- CONFIRMED / PAYMENT_RECEIVED (payment once, value/method normalization)
- Subscription status guard (cancelada terminal, expirada reactivated)
- Best-effort audit row when the router is called directly
- Normalization helpers and payload parsing
"""

import logging
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from payhooks.extensions import db
from payhooks.models.payment import Payment
from payhooks.models.subscription import PLACEHOLDER_ID, Subscription
from payhooks.models.webhook_event import WebhookEvent
from payhooks.services.events import (
    PaymentConfirmed,
    SubscriptionCreated,
    UnrecognizedEvent,
    parse_event,
)
from payhooks.services.store import SUBSCRIPTIONS
from payhooks.services.webhook_router import (
    HANDLERS,
    add_one_month,
    can_transition,
    normalize_method,
    route_event,
    to_non_negative_amount,
)


def _subscription(external_ref="sub_a", status="ativa", **extra):
    sub = Subscription(external_ref=external_ref, status=status, **extra)
    db.session.add(sub)
    db.session.commit()
    return sub.id


def _payment_event(event_id="evt_pay", payment_id="pay_1", sub_id="sub_a",
                   value="10.50", method="credit_card", event_type="CONFIRMED"):
    payload = {
        "id": event_id,
        "event": event_type,
        "dateCreated": "2026-10-19",
        "payment": {"id": payment_id},
        "value": value,
        "method": method,
    }
    if sub_id:
        payload["subscription"] = {"id": sub_id}
    return payload


class TestDispatch:
    """Event type dispatch."""

    def test_unknown_event_type_is_noop(self, store):
        """UNKNOWN_EVT -> no exception, nothing written."""
        route_event("UNKNOWN_EVT", {"id": "evt_u", "event": "UNKNOWN_EVT"}, store)

        assert WebhookEvent.query.count() == 0
        assert Subscription.query.count() == 0
        assert Payment.query.count() == 0

    def test_unknown_event_type_makes_no_store_calls(self, memory_store):
        route_event("PAYMENT_OVERDUE", {"id": "evt_u"}, memory_store)

        assert memory_store.calls == []

    def test_event_type_is_case_insensitive(self, store):
        """subscription_created is dispatched like SUBSCRIPTION_CREATED."""
        route_event(
            "subscription_created",
            {"id": "evt_lc", "subscription": {"id": "sub_lc"}},
            store,
        )

        assert Subscription.query.filter_by(external_ref="sub_lc").count() == 1

    def test_payment_received_alias(self, store):
        """PAYMENT_RECEIVED routes to the payment handler."""
        route_event(
            "PAYMENT_RECEIVED",
            _payment_event(event_type="PAYMENT_RECEIVED", sub_id=None),
            store,
        )

        assert Payment.query.filter_by(external_payment_ref="pay_1").count() == 1


class TestSubscriptionCreated:
    """SUBSCRIPTION_CREATED handler."""

    def test_creates_subscription_with_window(self, store):
        """New external_ref -> ativa subscription, one-month window."""
        route_event(
            "SUBSCRIPTION_CREATED",
            {
                "id": "evt_s1",
                "subscription": {"id": "sub_new"},
                "planId": "plan-1",
                "customerId": "cust-1",
                "unitId": "unit-1",
            },
            store,
        )

        sub = Subscription.query.filter_by(external_ref="sub_new").first()
        assert sub.status == "ativa"
        assert sub.plano_id == "plan-1"
        assert sub.cliente_id == "cust-1"
        assert sub.unidade_id == "unit-1"
        assert sub.needs_reconciliation is False
        assert sub.fim == add_one_month(sub.inicio)

    def test_placeholders_flag_reconciliation(self, store):
        """Payload without plan/customer/unit -> placeholders + flagged."""
        route_event(
            "SUBSCRIPTION_CREATED",
            {"id": "evt_s2", "subscription": {"id": "sub_bare"}},
            store,
        )

        sub = Subscription.query.filter_by(external_ref="sub_bare").first()
        assert sub.plano_id == PLACEHOLDER_ID
        assert sub.cliente_id == PLACEHOLDER_ID
        assert sub.unidade_id == PLACEHOLDER_ID
        assert sub.needs_reconciliation is True

    def test_existing_subscription_untouched(self, store, caplog):
        """Redelivery for an existing external_ref -> no-op, logged."""
        _subscription("sub_a", status="expirada")

        with caplog.at_level(logging.INFO):
            route_event(
                "SUBSCRIPTION_CREATED",
                {"id": "evt_s3", "subscription": {"id": "sub_a"}},
                store,
            )

        subs = Subscription.query.filter_by(external_ref="sub_a").all()
        assert len(subs) == 1
        assert subs[0].status == "expirada"
        assert "assinatura_existente" in caplog.text

    def test_missing_subscription_id_is_noop(self, store):
        route_event("SUBSCRIPTION_CREATED", {"id": "evt_s4"}, store)

        assert Subscription.query.count() == 0


class TestPaymentConfirmed:
    """CONFIRMED handler."""

    def test_value_and_method_normalized(self, store):
        """value "10.50", method credit_card -> valor 10.5, metodo cartao."""
        sub_id = _subscription("sub_a")

        route_event("CONFIRMED", _payment_event(), store)

        payment = Payment.query.filter_by(external_payment_ref="pay_1").first()
        assert payment.valor == Decimal("10.50")
        assert float(payment.valor) == 10.5
        assert payment.metodo == "cartao"
        assert payment.status == "pago"
        assert payment.assinatura_id == sub_id

    def test_payment_without_subscription(self, store):
        """Payment with no resolvable subscription -> stored unlinked."""
        route_event("CONFIRMED", _payment_event(sub_id="sub_unknown"), store)

        payment = Payment.query.filter_by(external_payment_ref="pay_1").first()
        assert payment.assinatura_id is None

    def test_duplicate_payment_ignored(self, store):
        """Same payment id twice -> one row, no error."""
        route_event("CONFIRMED", _payment_event(event_id="evt_p1"), store)
        route_event("CONFIRMED", _payment_event(event_id="evt_p2"), store)

        assert Payment.query.filter_by(external_payment_ref="pay_1").count() == 1

    def test_negative_and_garbage_values_become_zero(self, store):
        route_event("CONFIRMED", _payment_event(payment_id="pay_neg", value=-5), store)
        route_event("CONFIRMED", _payment_event(payment_id="pay_txt", value="abc"), store)

        assert Payment.query.filter_by(external_payment_ref="pay_neg").first().valor == 0
        assert Payment.query.filter_by(external_payment_ref="pay_txt").first().valor == 0

    def test_missing_payment_id_is_noop(self, store):
        payload = _payment_event()
        del payload["payment"]

        route_event("CONFIRMED", payload, store)

        assert Payment.query.count() == 0


class TestStatusTransitions:
    """Subscription reactivation rules on CONFIRMED."""

    def test_cancelada_is_never_reactivated(self, store, caplog):
        """cancelada + CONFIRMED -> stays cancelada."""
        _subscription("sub_a", status="cancelada")

        with caplog.at_level(logging.INFO):
            route_event("CONFIRMED", _payment_event(), store)

        sub = Subscription.query.filter_by(external_ref="sub_a").first()
        assert sub.status == "cancelada"
        assert "skip_update_status" in caplog.text
        assert "assinatura_cancelada" in caplog.text

    def test_expirada_is_reactivated(self, store):
        """expirada + CONFIRMED -> ativa."""
        _subscription("sub_a", status="expirada")

        route_event("CONFIRMED", _payment_event(), store)

        sub = Subscription.query.filter_by(external_ref="sub_a").first()
        assert sub.status == "ativa"

    def test_ativa_is_not_updated(self, store):
        """ativa + CONFIRMED -> no update call against assinaturas."""
        _subscription("sub_a", status="ativa")
        store.update = MagicMock(wraps=store.update)

        route_event("CONFIRMED", _payment_event(), store)

        subscription_updates = [
            c for c in store.update.call_args_list if c.args[0] == SUBSCRIPTIONS
        ]
        assert subscription_updates == []
        assert Subscription.query.filter_by(external_ref="sub_a").first().status == "ativa"

    @pytest.mark.parametrize("current,target,allowed", [
        ("expirada", "ativa", True),
        (None, "ativa", True),
        ("desconhecido", "ativa", True),
        ("ativa", "ativa", False),
        ("cancelada", "ativa", False),
        ("ativa", "suspensa", False),
    ])
    def test_can_transition(self, current, target, allowed):
        assert can_transition(current, target) is allowed


class TestAuditRow:
    """Router's own webhook-event row when called directly."""

    def test_direct_call_records_processed_row(self, store):
        route_event(
            "SUBSCRIPTION_CREATED",
            {"id": "evt_direct", "subscription": {"id": "sub_d"}},
            store,
        )

        row = WebhookEvent.query.filter_by(event_id="evt_direct").first()
        assert row.status == "processed"
        assert row.event_type == "SUBSCRIPTION_CREATED"
        assert row.processing_time_ms is not None

    def test_direct_call_failure_marks_row_failed_and_raises(self, store):
        failing = MagicMock(side_effect=RuntimeError("db exploded"))

        with patch.dict(HANDLERS, {"SUBSCRIPTION_CREATED": failing}):
            with pytest.raises(RuntimeError, match="db exploded"):
                route_event(
                    "SUBSCRIPTION_CREATED",
                    {"id": "evt_boom", "subscription": {"id": "sub_x"}},
                    store,
                )

        row = WebhookEvent.query.filter_by(event_id="evt_boom").first()
        assert row.status == "failed"
        assert row.last_error == "db exploded"

    def test_payload_without_id_gets_generated_event_id(self, store):
        route_event("SUBSCRIPTION_CREATED", {"subscription": {"id": "sub_g"}}, store)

        row = WebhookEvent.query.first()
        assert row.event_id.startswith("SUBSCRIPTION_CREATED-")

    def test_existing_row_is_left_to_caller(self, store, make_webhook_row):
        """Row already inserted by the ingestor -> router does not finalize it."""
        make_webhook_row("evt_s", payload={"id": "evt_s", "subscription": {"id": "sub_s"}})

        route_event(
            "SUBSCRIPTION_CREATED",
            {"id": "evt_s", "subscription": {"id": "sub_s"}},
            store,
        )

        row = WebhookEvent.query.filter_by(event_id="evt_s").first()
        assert row.status == "pending"
        assert Subscription.query.filter_by(external_ref="sub_s").count() == 1


class TestNormalization:
    """Pure helpers."""

    @pytest.mark.parametrize("raw,expected", [
        ("credit_card", "cartao"),
        ("CREDIT_CARD", "cartao"),
        ("card", "cartao"),
        ("pix", "pix"),
        ("bank_slip", "boleto"),
        ("boleto", "boleto"),
        ("debit_card", "cartao"),
        (None, "cartao"),
    ])
    def test_normalize_method(self, raw, expected):
        assert normalize_method(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        ("10.50", Decimal("10.50")),
        (99, Decimal("99")),
        (12.5, Decimal("12.5")),
        (-3, Decimal("0")),
        ("abc", Decimal("0")),
        (None, Decimal("0")),
        ("NaN", Decimal("0")),
    ])
    def test_to_non_negative_amount(self, raw, expected):
        assert to_non_negative_amount(raw) == expected

    def test_add_one_month_clamps_to_month_end(self):
        assert add_one_month(date(2026, 1, 31)) == date(2026, 2, 28)
        assert add_one_month(date(2026, 12, 15)) == date(2027, 1, 15)
        assert add_one_month(date(2028, 1, 30)) == date(2028, 2, 29)


class TestParseEvent:
    """Typed payload variants."""

    def test_subscription_created_variant(self):
        event = parse_event("subscription_created", {
            "id": "evt_1", "subscription": {"id": "sub_a"}, "planId": "p",
        })
        assert isinstance(event, SubscriptionCreated)
        assert event.subscription_id == "sub_a"
        assert event.plan_id == "p"
        assert event.customer_id is None

    def test_payment_variant_keeps_alias_type(self):
        event = parse_event("PAYMENT_RECEIVED", _payment_event(event_type="PAYMENT_RECEIVED"))
        assert isinstance(event, PaymentConfirmed)
        assert event.event_type == "PAYMENT_RECEIVED"
        assert event.payment_id == "pay_1"

    def test_unrecognized_variant(self):
        event = parse_event("PAYMENT_OVERDUE", {"id": "evt_9"})
        assert isinstance(event, UnrecognizedEvent)
        assert event.event_type == "PAYMENT_OVERDUE"
