"""
Webhook event processing.

1. Verify the signature against the raw body (nothing is parsed before this)
2. Parse the event envelope
3. Resolve the owning subject from the gateway customer's metadata
4. Project the domain object into the store

Delivery is at-least-once; every projection is a full replacement keyed by
subject (subscriptions) or invoice id (payments), so redelivery converges.
"""
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from billsync.core.logging import log_event
from billsync.core.metrics import webhook_events_total
from billsync.features.billing.gateway import GatewayClient, WebhookPayloadError
from billsync.features.billing.projector import project_payment, project_subscription
from billsync.features.billing.subjects import Subject, subject_from_metadata, subscription_path
from billsync.features.store.interface import DocumentStore
from billsync.models.billing import PaymentStatus, utc_now

SUBSCRIPTION_EVENTS = frozenset({
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
})

PAYMENT_EVENTS = {
    "invoice.payment_succeeded": PaymentStatus.SUCCEEDED,
    "invoice.payment_failed": PaymentStatus.FAILED,
}

# Outcomes
PROCESSED = "processed"
IGNORED = "ignored"
DROPPED = "dropped"
STALE = "stale"


@dataclass
class WebhookOutcome:
    """What happened to one delivered event."""
    event_id: str
    event_type: str
    outcome: str
    subject: Optional[Subject] = None
    reason: Optional[str] = None


def parse_event(payload: bytes) -> Dict[str, Any]:
    """Parse a verified payload into an event dict."""
    try:
        event = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as e:
        raise WebhookPayloadError(f"Invalid JSON payload: {e}") from e
    if not isinstance(event, dict):
        raise WebhookPayloadError("Event payload must be a JSON object")
    if not event.get("id") or not event.get("type"):
        raise WebhookPayloadError("Event is missing id or type")
    return event


class WebhookProcessor:
    def __init__(
        self,
        gateway: GatewayClient,
        store: DocumentStore,
        webhook_secret: str,
        ordering_guard: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.gateway = gateway
        self.store = store
        self.webhook_secret = webhook_secret
        self.ordering_guard = ordering_guard
        self.clock = clock

    def process(self, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        """
        Verify, parse and apply one webhook delivery.

        Raises:
            WebhookSignatureError: Missing or invalid signature (no writes)
            WebhookPayloadError: Body is not a well-formed event
            GatewayError: Customer lookup failed; the gateway should redeliver
        """
        self.gateway.verify_webhook(payload, signature, self.webhook_secret)
        event = parse_event(payload)

        event_type = event["type"]
        obj = (event.get("data") or {}).get("object") or {}

        if event_type in SUBSCRIPTION_EVENTS:
            outcome = self._handle_subscription(event, obj)
        elif event_type in PAYMENT_EVENTS:
            outcome = self._handle_payment(event, obj, PAYMENT_EVENTS[event_type])
        else:
            outcome = WebhookOutcome(event["id"], event_type, IGNORED, reason="unhandled_type")

        webhook_events_total.inc({"event_type": event_type, "outcome": outcome.outcome})
        fields = {"outcome": outcome.outcome}
        if outcome.reason:
            fields["reason"] = outcome.reason
        log_event(
            "warning" if outcome.outcome == DROPPED else "info",
            "webhook.event",
            event_id=outcome.event_id,
            event_type=outcome.event_type,
            subject_kind=outcome.subject.kind if outcome.subject else None,
            subject_id=outcome.subject.subject_id if outcome.subject else None,
            extra=fields,
        )
        return outcome

    def _resolve_subject(self, customer_id: Optional[str]) -> tuple[Optional[Subject], Optional[str]]:
        if not customer_id:
            return None, "missing_customer"
        customer = self.gateway.retrieve_customer(customer_id)
        if customer.deleted:
            return None, "customer_deleted"
        subject = subject_from_metadata(customer.metadata)
        if subject is None:
            return None, "missing_user_metadata"
        return subject, None

    def _handle_subscription(self, event: Dict[str, Any], subscription: Dict[str, Any]) -> WebhookOutcome:
        subject, reason = self._resolve_subject(subscription.get("customer"))
        if subject is None:
            return WebhookOutcome(event["id"], event["type"], DROPPED, reason=reason)

        now = self.clock()
        if not self.ordering_guard:
            project_subscription(self.store, subscription, subject, now, event)
            return WebhookOutcome(event["id"], event["type"], PROCESSED, subject)

        with self.store.transaction() as txn:
            current = txn.get(subscription_path(subject))
            stored_created = (current or {}).get("lastEventCreated")
            created = event.get("created")
            if stored_created is not None and created is not None and int(created) < int(stored_created):
                return WebhookOutcome(event["id"], event["type"], STALE, subject, reason="older_than_stored")
            project_subscription(txn, subscription, subject, now, event)
        return WebhookOutcome(event["id"], event["type"], PROCESSED, subject)

    def _handle_payment(self, event: Dict[str, Any], invoice: Dict[str, Any], status: PaymentStatus) -> WebhookOutcome:
        if not invoice.get("id"):
            return WebhookOutcome(event["id"], event["type"], DROPPED, reason="missing_invoice_id")
        subject, reason = self._resolve_subject(invoice.get("customer"))
        if subject is None:
            return WebhookOutcome(event["id"], event["type"], DROPPED, reason=reason)
        project_payment(self.store, invoice, subject, status, self.clock())
        return WebhookOutcome(event["id"], event["type"], PROCESSED, subject)
