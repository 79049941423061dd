"""
Billing API routes.

- POST /api/billing/webhook: Stripe webhook deliveries
- POST /api/billing/checkout: Individual checkout session
- POST /api/billing/team-checkout: Team checkout session (admins and owners)
- POST /api/billing/portal: Customer portal session
- POST /api/billing/sync-team: Tag the user's Stripe customer with a team
- GET  /api/subscriptions/{userId}: Effective subscription
- GET  /api/subscriptions/{userId}/status: Effective subscription and validity
"""
from typing import Optional

from fastapi import APIRouter, Header, Request
from starlette.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from billsync.core.errors import AppError, BillingDisabledError, PermissionError
from billsync.features.billing.checkout import CheckoutSessionBuilder, CheckoutSubject
from billsync.features.billing.gateway import (
    GatewayError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from billsync.features.billing.webhooks import WebhookProcessor
from billsync.features.entitlements.resolver import SubscriptionResolver
from billsync.features.teams.service import TeamService


router = APIRouter(prefix="/api/billing", tags=["billing"])
subscriptions_router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CheckoutRequest(_CamelModel):
    """Request to create an individual checkout session."""
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    price_id: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None
    trial_enabled: bool = True
    require_payment_method: bool = True


class TeamCheckoutRequest(CheckoutRequest):
    """Request to create a team checkout session."""
    team_id: Optional[str] = None
    quantity: Optional[int] = None


class PortalRequest(_CamelModel):
    user_id: Optional[str] = None
    return_url: Optional[str] = None


class SyncTeamRequest(_CamelModel):
    user_email: Optional[str] = None
    user_id: Optional[str] = None
    team_id: Optional[str] = None


def _webhook_processor(request: Request) -> WebhookProcessor:
    processor = getattr(request.app.state, "webhook_processor", None)
    if processor is None:
        raise BillingDisabledError("Stripe is not configured. Set STRIPE_SECRET_KEY environment variable.")
    return processor


def _checkout_builder(request: Request) -> CheckoutSessionBuilder:
    builder = getattr(request.app.state, "checkout_builder", None)
    if builder is None:
        raise BillingDisabledError("Stripe is not configured. Set STRIPE_SECRET_KEY environment variable.")
    return builder


def _gateway_failure(exc: GatewayError) -> AppError:
    return AppError(str(exc), code="gateway_error", status_code=500)


@router.post("/webhook")
async def handle_webhook(request: Request, stripe_signature: Optional[str] = Header(None)):
    """
    Handle Stripe webhook events.

    The signature is checked against the raw body before anything is parsed.
    Processing (Stripe customer lookup, store writes) runs in the threadpool.

    Returns:
        {"received": true, "event_id": ..., "outcome": ...}

    Errors:
        400: Invalid signature or payload
        500: Processing failed (Stripe redelivers)
        503: Billing disabled
    """
    processor = _webhook_processor(request)
    body = await request.body()

    try:
        outcome = await run_in_threadpool(processor.process, body, stripe_signature)
    except WebhookSignatureError as e:
        raise AppError(str(e), code="invalid_signature", status_code=400)
    except WebhookPayloadError as e:
        raise AppError(str(e), code="invalid_payload", status_code=400)
    except GatewayError as e:
        raise _gateway_failure(e)

    return {"received": True, "event_id": outcome.event_id, "outcome": outcome.outcome}


@router.post("/checkout")
def create_checkout(body: CheckoutRequest, request: Request):
    """Create a checkout session for an individual subscription."""
    builder = _checkout_builder(request)
    try:
        result = builder.build(
            CheckoutSubject(user_id=body.user_id or "", email=body.user_email or ""),
            body.price_id or "",
            success_url=body.success_url,
            cancel_url=body.cancel_url,
            trial_enabled=body.trial_enabled,
            require_payment_method=body.require_payment_method,
        )
    except GatewayError as e:
        raise _gateway_failure(e)
    return result.to_dict()


@router.post("/team-checkout")
def create_team_checkout(body: TeamCheckoutRequest, request: Request):
    """
    Create a checkout session for a team subscription.

    Errors:
        400: Missing parameters or non-positive quantity
        403: Caller is not an admin or owner of the team
    """
    builder = _checkout_builder(request)
    teams: TeamService = request.app.state.teams

    subject = CheckoutSubject(
        user_id=body.user_id or "",
        email=body.user_email or "",
        team_id=body.team_id or "",
    )
    if subject.user_id and subject.team_id:
        access = teams.verify_team_access(subject.team_id, subject.user_id, required_role="admin")
        if not access.authorized:
            raise PermissionError("Only team owners and admins can purchase seats")

    try:
        result = builder.build(
            subject,
            body.price_id or "",
            quantity=body.quantity,
            success_url=body.success_url,
            cancel_url=body.cancel_url,
            trial_enabled=body.trial_enabled,
            require_payment_method=body.require_payment_method,
        )
    except GatewayError as e:
        raise _gateway_failure(e)
    return result.to_dict()


@router.post("/portal")
def create_portal(body: PortalRequest, request: Request):
    """
    Create a customer portal session.

    Errors:
        404: The user never checked out
    """
    builder = _checkout_builder(request)
    try:
        url = builder.create_portal_session(body.user_id or "", body.return_url)
    except GatewayError as e:
        raise _gateway_failure(e)
    return {"url": url}


@router.post("/sync-team")
def sync_team(body: SyncTeamRequest, request: Request):
    builder = _checkout_builder(request)
    try:
        builder.sync_team_customer(body.user_email or "", body.user_id or "", body.team_id or "")
    except GatewayError as e:
        raise _gateway_failure(e)
    return {"success": True}


@subscriptions_router.get("/{user_id}")
def get_subscription(user_id: str, request: Request):
    """Effective subscription document for the user, or null."""
    resolver: SubscriptionResolver = request.app.state.resolver
    result = resolver.resolve(user_id)
    return result.subscription.to_document() if result.subscription else None


@subscriptions_router.get("/{user_id}/status")
def get_subscription_status(user_id: str, request: Request):
    resolver: SubscriptionResolver = request.app.state.resolver
    return resolver.resolve(user_id).to_dict()
