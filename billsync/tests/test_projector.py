from datetime import datetime, timezone

from billsync.features.billing.projector import project_payment, project_subscription
from billsync.features.billing.subjects import IndividualSubject, TeamSubject
from billsync.features.store.memory import InMemoryDocumentStore
from billsync.models.billing import PaymentStatus
from billsync.tests.mocks import make_subscription

NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_individual_subscription_document():
    store = InMemoryDocumentStore()
    sub = make_subscription(status="active", cancel_at=1702592000, cancel_at_period_end=True)

    project_subscription(store, sub, IndividualSubject(user_id="u1"), NOW)

    doc = store.get("users/u1/subscription/current")
    assert doc["gatewaySubscriptionId"] == "sub_1"
    assert doc["gatewayCustomerId"] == "cus_1"
    assert doc["status"] == "active"
    assert doc["currentPeriodStart"] == "2023-11-14T22:13:20Z"
    assert doc["cancelAt"] == "2023-12-14T22:13:20Z"
    assert doc["cancelAtPeriodEnd"] is True
    assert doc["priceId"] == "price_pro"
    assert doc["trialEnd"] is None
    assert doc["updatedAt"] == "2024-01-02T03:04:05Z"
    assert "quantity" not in doc


def test_start_falls_back_to_created():
    store = InMemoryDocumentStore()
    sub = make_subscription(start_date=None, created=1700000000)

    project_subscription(store, sub, IndividualSubject(user_id="u1"), NOW)

    assert store.get("users/u1/subscription/current")["currentPeriodStart"] == "2023-11-14T22:13:20Z"


def test_trial_end_only_while_trialing():
    store = InMemoryDocumentStore()
    subject = IndividualSubject(user_id="u1")

    project_subscription(store, make_subscription(status="trialing", trial_end=1701000000), subject, NOW)
    assert store.get("users/u1/subscription/current")["trialEnd"] == "2023-11-26T12:00:00Z"

    project_subscription(store, make_subscription(status="active", trial_end=1701000000), subject, NOW)
    assert store.get("users/u1/subscription/current")["trialEnd"] is None


def test_team_subscription_carries_quantity():
    store = InMemoryDocumentStore()
    project_subscription(store, make_subscription(quantity=5), TeamSubject(team_id="t1", user_id="u1"), NOW)

    doc = store.get("teams/t1/subscription/current")
    assert doc["quantity"] == 5
    assert store.get("users/u1/subscription/current") is None


def test_team_quantity_defaults_to_zero():
    store = InMemoryDocumentStore()
    sub = make_subscription()
    sub["items"]["data"][0]["quantity"] = None

    project_subscription(store, sub, TeamSubject(team_id="t1", user_id="u1"), NOW)

    assert store.get("teams/t1/subscription/current")["quantity"] == 0


def test_event_metadata_recorded():
    store = InMemoryDocumentStore()
    event = {"id": "evt_9", "created": 1700000500}

    project_subscription(store, make_subscription(), IndividualSubject(user_id="u1"), NOW, event)

    doc = store.get("users/u1/subscription/current")
    assert doc["lastEventId"] == "evt_9"
    assert doc["lastEventCreated"] == 1700000500


def test_succeeded_payment():
    store = InMemoryDocumentStore()
    invoice = {"id": "in_1", "amount_paid": 1500, "amount_due": 1500, "currency": "usd"}

    project_payment(store, invoice, IndividualSubject(user_id="u1"), PaymentStatus.SUCCEEDED, NOW)

    assert store.get("users/u1/payments/in_1") == {
        "invoiceId": "in_1",
        "amount": 1500,
        "status": "succeeded",
        "currency": "usd",
        "paidAt": "2024-01-02T03:04:05Z",
    }


def test_failed_payment_uses_amount_due():
    store = InMemoryDocumentStore()
    invoice = {"id": "in_2", "amount_paid": 0, "amount_due": 2500}

    project_payment(store, invoice, TeamSubject(team_id="t1", user_id="u1"), PaymentStatus.FAILED, NOW)

    doc = store.get("teams/t1/payments/in_2")
    assert doc["amount"] == 2500
    assert doc["status"] == "failed"
    assert doc["failedAt"] == "2024-01-02T03:04:05Z"
    assert "paidAt" not in doc
