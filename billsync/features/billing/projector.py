"""
Projection of gateway objects into subscription and payment documents.

Both projections are single-document full replacements, so applying the same
gateway object twice leaves the store unchanged apart from the timestamps.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from billsync.features.billing.subjects import (
    Subject,
    TeamSubject,
    payment_path,
    subscription_path,
)
from billsync.features.store.interface import DocumentStore, DocumentTransaction
from billsync.models.billing import (
    Payment,
    PaymentStatus,
    Subscription,
    SubscriptionStatus,
    from_timestamp,
)


def _first_item(subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def subscription_from_gateway(
    subscription: Dict[str, Any],
    subject: Subject,
    now: datetime,
    event: Optional[Dict[str, Any]] = None,
) -> Subscription:
    """Map a gateway subscription object to the Subscription document model."""
    item = _first_item(subscription)
    status = subscription.get("status")
    start_ts = subscription.get("start_date") or subscription.get("created")

    quantity = None
    if isinstance(subject, TeamSubject):
        quantity = item.get("quantity") or 0

    trial_end = None
    if status == SubscriptionStatus.TRIALING.value:
        trial_end = from_timestamp(subscription.get("trial_end"))

    return Subscription(
        gateway_subscription_id=subscription.get("id"),
        gateway_customer_id=subscription.get("customer"),
        status=status,
        current_period_start=from_timestamp(start_ts),
        cancel_at=from_timestamp(subscription.get("cancel_at")),
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end", False)),
        price_id=(item.get("price") or {}).get("id"),
        quantity=quantity,
        trial_end=trial_end,
        updated_at=now,
        last_event_created=event.get("created") if event else None,
        last_event_id=event.get("id") if event else None,
    )


def project_subscription(
    store: DocumentStore | DocumentTransaction,
    subscription: Dict[str, Any],
    subject: Subject,
    now: datetime,
    event: Optional[Dict[str, Any]] = None,
) -> Subscription:
    """Write the subject's subscription document, replacing whatever was there."""
    record = subscription_from_gateway(subscription, subject, now, event)
    store.set(subscription_path(subject), record.to_document())
    return record


def project_payment(
    store: DocumentStore,
    invoice: Dict[str, Any],
    subject: Subject,
    status: PaymentStatus,
    now: datetime,
) -> Payment:
    """
    Write the payment document for an invoice, keyed by invoice id.

    Succeeded payments record `amount_paid` and `paidAt`; failed ones record
    `amount_due` and `failedAt`.
    """
    if status == PaymentStatus.SUCCEEDED:
        record = Payment(
            invoice_id=invoice["id"],
            amount=int(invoice.get("amount_paid") or 0),
            status=status,
            currency=invoice.get("currency"),
            paid_at=now,
        )
    else:
        record = Payment(
            invoice_id=invoice["id"],
            amount=int(invoice.get("amount_due") or 0),
            status=status,
            currency=invoice.get("currency"),
            failed_at=now,
        )
    store.set(payment_path(subject, record.invoice_id), record.to_document())
    return record
