"""
Stripe gateway implementation.

Implements GatewayClient using the Stripe SDK. Every call passes this
client's API key explicitly; nothing is written to the module-level
`stripe.api_key`, so several clients (live, test) can coexist in one process.
"""
import json
from typing import Dict, Any, List, Optional

import stripe

from billsync.features.billing.gateway import (
    GatewayCustomer,
    GatewayError,
    GatewayPrice,
    GatewaySession,
    WebhookPayloadError,
    WebhookSignatureError,
)
from billsync.features.billing.subjects import USER_METADATA_KEY


def _plain(obj) -> Dict[str, Any]:
    """StripeObject to a plain dict (its str() is the JSON rendering)."""
    if obj is None:
        return {}
    if isinstance(obj, dict) and not isinstance(obj, stripe.StripeObject):
        return obj
    return json.loads(str(obj))


def _customer_from_stripe(obj) -> GatewayCustomer:
    data = _plain(obj)
    return GatewayCustomer(
        id=data["id"],
        email=data.get("email"),
        metadata=dict(data.get("metadata") or {}),
        deleted=bool(data.get("deleted", False)),
    )


class StripeGateway:
    """Stripe implementation of GatewayClient."""

    def __init__(self, secret_key: str, webhook_tolerance: int = 300):
        if not secret_key:
            raise GatewayError("STRIPE_SECRET_KEY not configured")
        self.secret_key = secret_key
        self.webhook_tolerance = webhook_tolerance

    def retrieve_price(self, price_id: str) -> GatewayPrice:
        try:
            price = _plain(stripe.Price.retrieve(price_id, api_key=self.secret_key))
        except stripe.StripeError as e:
            raise GatewayError(f"Invalid price ID: {price_id}") from e
        recurring = price.get("recurring") or {}
        return GatewayPrice(
            id=price["id"],
            trial_period_days=int(recurring.get("trial_period_days") or 0),
        )

    def list_customers_by_email(self, email: str, limit: int = 1) -> List[GatewayCustomer]:
        try:
            result = stripe.Customer.list(email=email, limit=limit, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe customer lookup failed: {e}") from e
        return [_customer_from_stripe(c) for c in _plain(result).get("data", [])]

    def find_customer_by_user(self, user_id: str) -> Optional[GatewayCustomer]:
        query = f"metadata['{USER_METADATA_KEY}']:'{user_id}'"
        try:
            result = stripe.Customer.search(query=query, limit=1, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe customer search failed: {e}") from e
        data = _plain(result).get("data", [])
        return _customer_from_stripe(data[0]) if data else None

    def retrieve_customer(self, customer_id: str) -> GatewayCustomer:
        try:
            customer = stripe.Customer.retrieve(customer_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe customer retrieval failed: {e}") from e
        return _customer_from_stripe(customer)

    def create_customer(self, email: str, metadata: Dict[str, str]) -> GatewayCustomer:
        try:
            customer = stripe.Customer.create(email=email, metadata=metadata, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe customer creation failed: {e}") from e
        return _customer_from_stripe(customer)

    def update_customer_metadata(self, customer_id: str, metadata: Dict[str, str]) -> GatewayCustomer:
        # Stripe merges metadata keys on update
        try:
            customer = stripe.Customer.modify(customer_id, metadata=metadata, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe customer update failed: {e}") from e
        return _customer_from_stripe(customer)

    def create_subscription(self, customer_id: str, price_id: str, quantity: int = 1) -> Dict[str, Any]:
        try:
            subscription = stripe.Subscription.create(
                customer=customer_id,
                items=[{"price": price_id, "quantity": quantity}],
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe subscription creation failed: {e}") from e
        return _plain(subscription)

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        try:
            subscription = stripe.Subscription.retrieve(subscription_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe subscription retrieval failed: {e}") from e
        return _plain(subscription)

    def list_subscriptions(self, customer_id: str, limit: int = 1) -> List[Dict[str, Any]]:
        try:
            result = stripe.Subscription.list(
                customer=customer_id, status="all", limit=limit, api_key=self.secret_key
            )
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe subscription listing failed: {e}") from e
        return list(_plain(result).get("data", []))

    def create_checkout_session(self, params: Dict[str, Any]) -> GatewaySession:
        try:
            session = stripe.checkout.Session.create(api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe checkout session creation failed: {e}") from e
        data = _plain(session)
        return GatewaySession(id=data["id"], url=data.get("url") or "")

    def create_portal_session(self, customer_id: str, return_url: str) -> GatewaySession:
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe portal session creation failed: {e}") from e
        data = _plain(session)
        return GatewaySession(id=data["id"], url=data.get("url") or "")

    def verify_webhook(self, payload: bytes, signature: Optional[str], secret: str) -> None:
        if not secret:
            raise WebhookSignatureError("STRIPE_WEBHOOK_SECRET not configured")
        if not signature:
            raise WebhookSignatureError("Missing stripe-signature header")
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise WebhookPayloadError(f"Invalid payload encoding: {e}") from e
        try:
            stripe.WebhookSignature.verify_header(text, signature, secret, self.webhook_tolerance)
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Invalid signature: {e}") from e
