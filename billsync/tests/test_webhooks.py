"""
Webhook processor tests.

Events are signed with the same HMAC scheme Stripe uses, so signature checks
go through stripe.WebhookSignature.
"""
import json
from datetime import datetime, timezone

import pytest

from billsync.core.metrics import webhook_events_total
from billsync.features.billing.gateway import GatewayError, WebhookPayloadError, WebhookSignatureError
from billsync.features.billing.webhooks import WebhookProcessor
from billsync.tests.mocks import (
    WEBHOOK_SECRET,
    CountingStore,
    FakeGateway,
    make_event,
    make_subscription,
    sign_payload,
)

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def setup():
    gateway = FakeGateway()
    gateway.add_customer("cus_1", email="alice@example.com", metadata={"firebase_uid": "u1"})
    gateway.add_customer("cus_team", email="owner@example.com", metadata={"firebase_uid": "u2", "team_id": "t1"})
    gateway.add_customer("cus_anon", email="anon@example.com", metadata={})
    gateway.add_customer("cus_gone", metadata={"firebase_uid": "u3"}, deleted=True)
    store = CountingStore()
    processor = WebhookProcessor(gateway, store, WEBHOOK_SECRET, clock=lambda: NOW)
    return processor, gateway, store


def deliver(processor, payload, secret=WEBHOOK_SECRET):
    return processor.process(payload, sign_payload(payload, secret))


def test_subscription_created_writes_individual_document(setup):
    processor, _, store = setup
    payload = make_event("customer.subscription.created", make_subscription())

    outcome = deliver(processor, payload)

    assert outcome.outcome == "processed"
    assert outcome.event_id == "evt_1"
    doc = store.get("users/u1/subscription/current")
    assert doc["status"] == "active"
    assert doc["currentPeriodStart"] == "2023-11-14T22:13:20Z"
    assert doc["priceId"] == "price_pro"
    assert "quantity" not in doc
    assert webhook_events_total.value({"event_type": "customer.subscription.created", "outcome": "processed"}) == 1


def test_trialing_basic_subscription_without_cancellation(setup):
    processor, _, store = setup
    sub = make_subscription(status="trialing", price_id="price_basic", start_date=1700000000)
    sub.pop("cancel_at")

    deliver(processor, make_event("customer.subscription.created", sub))

    doc = store.get("users/u1/subscription/current")
    assert doc["status"] == "trialing"
    assert doc["currentPeriodStart"] == "2023-11-14T22:13:20Z"
    assert "cancelAt" in doc and doc["cancelAt"] is None
    assert doc["priceId"] == "price_basic"


def test_missing_signature_rejected_without_writes(setup):
    processor, _, store = setup
    payload = make_event("customer.subscription.created", make_subscription())

    with pytest.raises(WebhookSignatureError):
        processor.process(payload, None)
    assert store.writes == 0


def test_wrong_secret_rejected_without_writes(setup):
    processor, gateway, store = setup
    payload = make_event("customer.subscription.created", make_subscription())

    with pytest.raises(WebhookSignatureError):
        deliver(processor, payload, secret="whsec_other")
    assert store.writes == 0
    assert "retrieve_customer" not in gateway.call_names()


def test_tampered_body_rejected(setup):
    processor, _, store = setup
    payload = make_event("customer.subscription.created", make_subscription())
    signature = sign_payload(payload)
    tampered = payload.replace(b"active", b"trialing")

    with pytest.raises(WebhookSignatureError):
        processor.process(tampered, signature)
    assert store.writes == 0


def test_signed_garbage_is_payload_error(setup):
    processor, _, store = setup
    with pytest.raises(WebhookPayloadError):
        deliver(processor, b"not json")
    with pytest.raises(WebhookPayloadError):
        deliver(processor, json.dumps({"type": "invoice.payment_succeeded"}).encode())
    assert store.writes == 0


def test_redelivery_converges(setup):
    processor, _, store = setup
    payload = make_event("customer.subscription.updated", make_subscription(status="past_due"))

    deliver(processor, payload)
    first = store.get("users/u1/subscription/current")
    deliver(processor, payload)

    assert store.get("users/u1/subscription/current") == first
    assert store.paths() == ["users/u1/subscription/current"]


def test_subscription_deleted_records_canceled(setup):
    processor, _, store = setup
    deliver(processor, make_event("customer.subscription.created", make_subscription()))
    deliver(processor, make_event("customer.subscription.deleted", make_subscription(status="canceled"), event_id="evt_2"))

    assert store.get("users/u1/subscription/current")["status"] == "canceled"


def test_team_customer_writes_team_document(setup):
    processor, _, store = setup
    payload = make_event("customer.subscription.created", make_subscription(customer="cus_team", quantity=4))

    outcome = deliver(processor, payload)

    assert outcome.subject.kind == "team"
    assert store.get("teams/t1/subscription/current")["quantity"] == 4
    assert store.get("users/u2/subscription/current") is None


def test_payment_succeeded_and_idempotent(setup):
    processor, _, store = setup
    invoice = {"id": "in_1", "customer": "cus_1", "amount_paid": 999, "amount_due": 999}
    payload = make_event("invoice.payment_succeeded", invoice)

    deliver(processor, payload)
    deliver(processor, payload)

    assert [p for p in store.paths() if "/payments/" in p] == ["users/u1/payments/in_1"]
    doc = store.get("users/u1/payments/in_1")
    assert doc["amount"] == 999
    assert doc["status"] == "succeeded"
    assert doc["paidAt"] == "2024-01-01T00:00:00Z"


def test_payment_failed_uses_amount_due(setup):
    processor, _, store = setup
    invoice = {"id": "in_2", "customer": "cus_team", "amount_paid": 0, "amount_due": 4200}

    deliver(processor, make_event("invoice.payment_failed", invoice))

    doc = store.get("teams/t1/payments/in_2")
    assert doc["amount"] == 4200
    assert doc["status"] == "failed"
    assert "failedAt" in doc


def test_unknown_event_acknowledged(setup):
    processor, gateway, store = setup

    outcome = deliver(processor, make_event("charge.refunded", {"id": "ch_1", "customer": "cus_1"}))

    assert outcome.outcome == "ignored"
    assert store.writes == 0
    assert "retrieve_customer" not in gateway.call_names()


@pytest.mark.parametrize("customer", ["cus_anon", "cus_gone", None])
def test_unattributable_events_dropped(setup, customer):
    processor, _, store = setup

    outcome = deliver(processor, make_event("customer.subscription.updated", make_subscription(customer=customer)))

    assert outcome.outcome == "dropped"
    assert store.writes == 0


def test_invoice_without_id_dropped(setup):
    processor, _, store = setup

    outcome = deliver(processor, make_event("invoice.payment_succeeded", {"customer": "cus_1", "amount_paid": 5}))

    assert outcome.outcome == "dropped"
    assert store.writes == 0


def test_gateway_failure_propagates(setup):
    processor, gateway, store = setup
    gateway.fail_customer_lookup = True

    with pytest.raises(GatewayError):
        deliver(processor, make_event("customer.subscription.updated", make_subscription()))
    assert store.writes == 0


def test_last_delivered_wins_without_guard(setup):
    processor, _, store = setup
    newer = make_event("customer.subscription.updated", make_subscription(status="canceled"), event_id="evt_new", created=1700000200)
    older = make_event("customer.subscription.updated", make_subscription(status="active"), event_id="evt_old", created=1700000100)

    deliver(processor, newer)
    deliver(processor, older)

    assert store.get("users/u1/subscription/current")["status"] == "active"


def test_ordering_guard_skips_older_events(setup):
    _, gateway, store = setup
    processor = WebhookProcessor(gateway, store, WEBHOOK_SECRET, ordering_guard=True, clock=lambda: NOW)
    newer = make_event("customer.subscription.updated", make_subscription(status="canceled"), event_id="evt_new", created=1700000200)
    older = make_event("customer.subscription.updated", make_subscription(status="active"), event_id="evt_old", created=1700000100)

    assert deliver(processor, newer).outcome == "processed"
    outcome = deliver(processor, older)

    assert outcome.outcome == "stale"
    doc = store.get("users/u1/subscription/current")
    assert doc["status"] == "canceled"
    assert doc["lastEventId"] == "evt_new"


def test_ordering_guard_applies_same_or_newer(setup):
    _, gateway, store = setup
    processor = WebhookProcessor(gateway, store, WEBHOOK_SECRET, ordering_guard=True, clock=lambda: NOW)

    deliver(processor, make_event("customer.subscription.updated", make_subscription(status="trialing"), event_id="evt_a", created=1700000100))
    deliver(processor, make_event("customer.subscription.updated", make_subscription(status="active"), event_id="evt_b", created=1700000100))

    assert store.get("users/u1/subscription/current")["status"] == "active"
