"""
Subscription resolver.

Computes a user's effective subscription at read time:

1. The individual subscription document, returned even when it is not valid
2. Otherwise the subscription of the team the user owns
3. Otherwise nothing

An individual document always shadows the team one. Any failure resolves to
"no valid subscription"; this read path never raises.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from billsync.features.billing.gateway import GatewayClient
from billsync.features.billing.projector import subscription_from_gateway
from billsync.features.billing.subjects import IndividualSubject, subscription_path
from billsync.features.store.interface import DocumentStore
from billsync.features.teams.service import TeamService
from billsync.models.billing import Subscription, utc_now

logger = logging.getLogger("billsync")


@dataclass
class EntitlementResult:
    has_valid_subscription: bool
    subscription: Optional[Subscription] = None

    def to_dict(self) -> dict:
        return {
            "hasValidSubscription": self.has_valid_subscription,
            "subscription": self.subscription.to_document() if self.subscription else None,
        }


class SubscriptionResolver:
    def __init__(
        self,
        store: DocumentStore,
        teams: TeamService,
        gateway: Optional[GatewayClient] = None,
    ):
        self.store = store
        self.teams = teams
        self.gateway = gateway

    def resolve(self, user_id: str) -> EntitlementResult:
        if not user_id:
            return EntitlementResult(False, None)
        try:
            subscription = self._individual(user_id) or self._team(user_id)
        except Exception:
            logger.exception("Subscription resolution failed", extra={"subject_id": user_id})
            return EntitlementResult(False, None)
        if subscription is None:
            return EntitlementResult(False, None)
        return EntitlementResult(subscription.is_valid, subscription)

    def _individual(self, user_id: str) -> Optional[Subscription]:
        subject = IndividualSubject(user_id=user_id)
        doc = self.store.get(subscription_path(subject))
        if doc is not None:
            return Subscription.model_validate(doc)
        if self.gateway is None:
            return None

        customer = self.gateway.find_customer_by_user(user_id)
        if customer is None:
            return None
        subscriptions = self.gateway.list_subscriptions(customer.id, limit=1)
        if not subscriptions:
            return None
        # Read-through only; the webhook path owns writes
        return subscription_from_gateway(subscriptions[0], subject, utc_now())

    def _team(self, user_id: str) -> Optional[Subscription]:
        team = self.teams.get_owned_team(user_id)
        if team is None:
            return None
        return self.teams.get_team_subscription(team.id)
