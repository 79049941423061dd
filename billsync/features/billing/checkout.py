"""
Checkout session builder.

Decides trial and payment-collection policy before asking the gateway to start
a purchase, for individuals and for teams. Also hosts the two other
customer-facing gateway flows: the billing portal and the team customer sync.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from billsync.core.errors import NotFoundError, ValidationError
from billsync.core.logging import log_event
from billsync.core.metrics import checkout_sessions_total
from billsync.features.billing.gateway import GatewayClient, GatewayCustomer
from billsync.features.billing.subjects import (
    TEAM_METADATA_KEY,
    USER_METADATA_KEY,
    IndividualSubject,
    subscription_path,
)
from billsync.features.store.interface import DocumentStore


@dataclass
class CheckoutSubject:
    """Who is buying: a user, optionally on behalf of a team."""
    user_id: str
    email: str
    team_id: Optional[str] = None

    @property
    def is_team(self) -> bool:
        return self.team_id is not None


@dataclass
class CheckoutSessionResult:
    session_id: str
    url: str

    def to_dict(self) -> Dict[str, str]:
        return {"sessionId": self.session_id, "url": self.url}


def _flag(value: bool) -> str:
    return "true" if value else "false"


class CheckoutSessionBuilder:
    def __init__(
        self,
        gateway: GatewayClient,
        trials_enabled: bool = True,
        base_url: str = "http://localhost:3000",
        store: Optional[DocumentStore] = None,
    ):
        self.gateway = gateway
        self.trials_enabled = trials_enabled
        self.base_url = base_url.rstrip("/")
        self.store = store

    def build(
        self,
        subject: CheckoutSubject,
        price_id: str,
        quantity: Optional[int] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        trial_enabled: bool = True,
        require_payment_method: bool = True,
    ) -> CheckoutSessionResult:
        """
        Create a subscription checkout session.

        Args:
            subject: Purchasing user, with team_id for team purchases
            price_id: Gateway price to subscribe to
            quantity: Seat count (team purchases only, must be positive)
            trial_enabled: Caller's trial request; ignored when trials are globally off
            require_payment_method: Collect a card up front, or only when required

        Raises:
            ValidationError: Missing or invalid input (no gateway calls made)
            GatewayError: Price lookup or session creation failed
        """
        self._validate(subject, price_id, quantity)

        metadata = {USER_METADATA_KEY: subject.user_id}
        if subject.is_team:
            metadata[TEAM_METADATA_KEY] = subject.team_id
        customer = self._ensure_customer(subject.email, metadata)

        # Global switch wins over the caller's request
        trial_requested = trial_enabled and self.trials_enabled
        trial_days = 0
        if trial_requested:
            trial_days = self.gateway.retrieve_price(price_id).trial_period_days
        has_trial_period = trial_days > 0
        apply_trial = trial_requested and has_trial_period

        if subject.is_team:
            default_success = f"{self.base_url}/team?success=true"
        else:
            default_success = f"{self.base_url}/settings?success=true"

        params: Dict[str, Any] = {
            "customer": customer.id,
            "mode": "subscription",
            "line_items": [{
                "price": price_id,
                "quantity": quantity if subject.is_team else 1,
            }],
            "success_url": success_url or default_success,
            "cancel_url": cancel_url or f"{self.base_url}/pricing?canceled=true",
            "metadata": {
                **metadata,
                "trial_enabled": _flag(trial_requested),
                "trial_days": str(trial_days),
                "has_trial_period": _flag(has_trial_period),
            },
        }

        if require_payment_method:
            params["payment_method_collection"] = "always"
            if apply_trial:
                params["subscription_data"] = {"trial_period_days": trial_days}
        else:
            params["payment_method_collection"] = "if_required"
            if apply_trial:
                params["subscription_data"] = {
                    "trial_period_days": trial_days,
                    "trial_settings": {
                        "end_behavior": {"missing_payment_method": "cancel"},
                    },
                }

        session = self.gateway.create_checkout_session(params)

        kind = "team" if subject.is_team else "user"
        checkout_sessions_total.inc({"kind": kind, "trial": _flag(apply_trial)})
        log_event(
            "info",
            "checkout.session_created",
            subject_kind=kind,
            subject_id=subject.team_id if subject.is_team else subject.user_id,
            extra={"trial_days": trial_days if apply_trial else 0},
        )
        return CheckoutSessionResult(session_id=session.id, url=session.url)

    def _validate(self, subject: CheckoutSubject, price_id: str, quantity: Optional[int]) -> None:
        if not subject.user_id or not subject.email or not price_id:
            raise ValidationError("Missing required parameters")
        if subject.is_team:
            if not subject.team_id:
                raise ValidationError("Missing required parameters")
            if quantity is None or quantity < 1:
                raise ValidationError("Quantity must be a positive integer")

    def _ensure_customer(self, email: str, metadata: Dict[str, str]) -> GatewayCustomer:
        """
        Find the customer by email or create it.

        Existing customers only get the metadata keys they lack; values that
        are already set are never overwritten.
        """
        existing = self.gateway.list_customers_by_email(email, limit=1)
        if not existing:
            return self.gateway.create_customer(email, metadata)

        customer = existing[0]
        missing = {k: v for k, v in metadata.items() if not customer.metadata.get(k)}
        if missing:
            customer = self.gateway.update_customer_metadata(customer.id, missing)
        return customer

    def create_portal_session(self, user_id: str, return_url: Optional[str] = None) -> str:
        """
        Create a billing portal session and return its URL.

        Raises:
            ValidationError: No user id
            NotFoundError: The user never became a gateway customer
        """
        if not user_id:
            raise ValidationError("User ID is required")

        customer_id = None
        if self.store is not None:
            doc = self.store.get(subscription_path(IndividualSubject(user_id=user_id)))
            customer_id = (doc or {}).get("gatewayCustomerId")
        if not customer_id:
            customer = self.gateway.find_customer_by_user(user_id)
            customer_id = customer.id if customer else None
        if not customer_id:
            raise NotFoundError("No billing customer found for user")

        session = self.gateway.create_portal_session(
            customer_id, return_url or f"{self.base_url}/settings"
        )
        return session.url

    def sync_team_customer(self, email: str, user_id: str, team_id: str) -> GatewayCustomer:
        """Tag the user's gateway customer with the team, creating it if needed."""
        if not email or not user_id or not team_id:
            raise ValidationError("Missing required parameters")

        existing = self.gateway.list_customers_by_email(email, limit=1)
        if existing:
            customer = self.gateway.update_customer_metadata(
                existing[0].id, {**existing[0].metadata, TEAM_METADATA_KEY: team_id}
            )
        else:
            customer = self.gateway.create_customer(
                email, {USER_METADATA_KEY: user_id, TEAM_METADATA_KEY: team_id}
            )
        log_event("info", "checkout.team_customer_synced", subject_kind="team", subject_id=team_id)
        return customer
