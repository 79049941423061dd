"""
Payment gateway protocol.

Defines the interface the billing core needs from the payment gateway
(Stripe). Core code depends only on these response shapes, so the gateway can
be faked in tests without touching the network.
"""
from typing import Protocol, Dict, Any, List, Optional
from dataclasses import dataclass, field


@dataclass
class GatewayCustomer:
    """A gateway customer and the metadata that ties it to a subject."""
    id: str
    email: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    deleted: bool = False


@dataclass
class GatewayPrice:
    """A gateway price and its trial configuration."""
    id: str
    trial_period_days: int = 0

    @property
    def has_trial_period(self) -> bool:
        return self.trial_period_days > 0


@dataclass
class GatewaySession:
    """A checkout or portal session the user is redirected to."""
    id: str
    url: str


class GatewayClient(Protocol):
    """
    Protocol for the payment gateway.

    Subscriptions and invoices are passed around as plain dicts in the
    gateway's own wire shape (snake_case keys, epoch-second timestamps).
    """

    def retrieve_price(self, price_id: str) -> GatewayPrice:
        """
        Retrieve a price.

        Raises:
            GatewayError: If the price does not exist or the call fails
        """
        ...

    def list_customers_by_email(self, email: str, limit: int = 1) -> List[GatewayCustomer]:
        ...

    def find_customer_by_user(self, user_id: str) -> Optional[GatewayCustomer]:
        """Find the customer whose metadata carries this user id."""
        ...

    def retrieve_customer(self, customer_id: str) -> GatewayCustomer:
        ...

    def create_customer(self, email: str, metadata: Dict[str, str]) -> GatewayCustomer:
        ...

    def update_customer_metadata(self, customer_id: str, metadata: Dict[str, str]) -> GatewayCustomer:
        """Merge `metadata` into the customer's metadata."""
        ...

    def create_subscription(self, customer_id: str, price_id: str, quantity: int = 1) -> Dict[str, Any]:
        ...

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        ...

    def list_subscriptions(self, customer_id: str, limit: int = 1) -> List[Dict[str, Any]]:
        """Newest first, all statuses."""
        ...

    def create_checkout_session(self, params: Dict[str, Any]) -> GatewaySession:
        ...

    def create_portal_session(self, customer_id: str, return_url: str) -> GatewaySession:
        ...

    def verify_webhook(self, payload: bytes, signature: Optional[str], secret: str) -> None:
        """
        Check the signature header against the raw payload.

        Raises:
            WebhookSignatureError: If the header is missing or does not match
        """
        ...


class GatewayError(Exception):
    """Base exception for gateway errors."""
    pass


class WebhookSignatureError(GatewayError):
    """The webhook signature is missing or invalid."""
    pass


class WebhookPayloadError(GatewayError):
    """The webhook payload is not a well-formed event."""
    pass
