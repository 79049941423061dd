"""
Billing and team documents.

Documents are stored with camelCase keys; the models accept either the
camelCase alias or the snake_case field name.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def from_timestamp(ts: Optional[int]) -> Optional[datetime]:
    """Gateway epoch seconds to an aware UTC datetime (None passes through)."""
    if ts is None:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


class SubscriptionStatus(str, Enum):
    """Gateway subscription statuses, plus the internal `inactive` placeholder."""
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"
    INACTIVE = "inactive"


VALID_STATUSES = frozenset({SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value})


class PaymentStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TeamRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class _Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Subscription(_Document):
    """Projected gateway subscription for one subject."""
    # status mirrors the gateway verbatim, unknown values included
    status: str
    gateway_subscription_id: Optional[str] = None
    gateway_customer_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    cancel_at: Optional[datetime] = None
    cancel_at_period_end: bool = False
    price_id: Optional[str] = None
    quantity: Optional[int] = None
    trial_end: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    last_event_created: Optional[int] = None
    last_event_id: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.status in VALID_STATUSES

    def to_document(self) -> dict:
        doc = super().to_document()
        # quantity only exists on team subscriptions
        if self.quantity is None:
            doc.pop("quantity", None)
        if self.created_at is None:
            doc.pop("createdAt", None)
        return doc


class Payment(_Document):
    """One gateway invoice outcome, keyed by invoice id."""
    invoice_id: str
    amount: int
    status: PaymentStatus
    currency: Optional[str] = None
    paid_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SeatAssignment(_Document):
    assigned_at: datetime
    assigned_by: str
    is_active: bool


class TeamMember(_Document):
    id: str
    email: str = ""
    role: TeamRole
    joined_at: Optional[datetime] = None
    invited_by: Optional[str] = None
    seat_assignment: Optional[SeatAssignment] = None

    @property
    def has_seat(self) -> bool:
        return bool(self.seat_assignment and self.seat_assignment.is_active)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Team(_Document):
    id: str
    name: str
    description: str = ""
    owner_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
