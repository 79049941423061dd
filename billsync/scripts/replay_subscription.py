#!/usr/bin/env python3
"""
Re-project a Stripe subscription into the document store.

Usage:
    python -m billsync.scripts.replay_subscription sub_123 [--dry-run]

Fetches the subscription and its customer from Stripe, resolves the subject
from the customer metadata and writes the subscription document with the same
projection the webhook path uses. Writes need a durable store
(DOCUMENT_STORE=sql); with the in-memory store only --dry-run is accepted.
"""
import argparse
import json
import os
from typing import Dict, Optional

from billsync.core.config import Settings, settings
from billsync.core.logging import configure_logging, log_event
from billsync.features.billing.gateway import GatewayClient
from billsync.features.billing.projector import project_subscription, subscription_from_gateway
from billsync.features.billing.stripe_gateway import StripeGateway
from billsync.features.billing.subjects import subject_from_metadata, subscription_path
from billsync.features.store.factory import build_document_store
from billsync.features.store.interface import DocumentStore
from billsync.models.billing import utc_now


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def replay_subscription(
    gateway: GatewayClient,
    store: DocumentStore,
    subscription_id: str,
    *,
    dry_run: bool = False,
) -> Dict:
    report = {"subscription_id": subscription_id, "dry_run": dry_run, "written": False}

    subscription = gateway.retrieve_subscription(subscription_id)
    customer_id = subscription.get("customer")
    if not customer_id:
        report["error"] = "missing_customer"
        return report

    customer = gateway.retrieve_customer(customer_id)
    subject = None if customer.deleted else subject_from_metadata(customer.metadata)
    if subject is None:
        report["error"] = "unattributable_customer"
        return report

    report["path"] = subscription_path(subject)
    now = utc_now()
    if dry_run:
        report["document"] = subscription_from_gateway(subscription, subject, now).to_document()
        return report

    record = project_subscription(store, subscription, subject, now)
    report["document"] = record.to_document()
    report["written"] = True
    log_event(
        "info",
        "replay.subscription",
        subject_kind=subject.kind,
        subject_id=subject.subject_id,
        extra={"subscription_id": subscription_id},
    )
    return report


def main(argv=None, cfg: Optional[Settings] = None) -> int:
    cfg = cfg or settings
    parser = argparse.ArgumentParser(description="Re-project a Stripe subscription into the document store.")
    parser.add_argument("subscription_id", help="Stripe subscription id (sub_...)")
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="Show the document without writing it.")
    parser.set_defaults(dry_run=_parse_bool(os.getenv("BILLSYNC_REPLAY_DRY_RUN"), False))
    args = parser.parse_args(argv)

    configure_logging(cfg.ENV)
    if not cfg.STRIPE_SECRET_KEY:
        print("ERROR: STRIPE_SECRET_KEY is not configured")
        return 1
    if not args.dry_run and cfg.DOCUMENT_STORE != "sql":
        # The in-memory store dies with this process
        print("ERROR: replay writes need DOCUMENT_STORE=sql; use --dry-run to preview")
        return 1

    gateway = StripeGateway(cfg.STRIPE_SECRET_KEY)
    store = build_document_store(cfg)
    report = replay_subscription(gateway, store, args.subscription_id, dry_run=args.dry_run)
    print(json.dumps(report, indent=2, default=str))
    return 0 if "error" not in report else 1


if __name__ == "__main__":
    raise SystemExit(main())
