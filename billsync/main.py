import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load env from billsync/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

# Import after dotenv is loaded
from billsync.core.config import Settings, settings, validate_config
from billsync.core.logging import configure_logging
from billsync.core.middleware.request_context import RequestContextMiddleware
from billsync.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from billsync.api import billing, health, teams
from billsync.features.billing.checkout import CheckoutSessionBuilder
from billsync.features.billing.gateway import GatewayClient
from billsync.features.billing.stripe_gateway import StripeGateway
from billsync.features.billing.webhooks import WebhookProcessor
from billsync.features.entitlements.resolver import SubscriptionResolver
from billsync.features.store.factory import build_document_store
from billsync.features.store.interface import DocumentStore
from billsync.features.teams.seats import SeatAssignmentManager
from billsync.features.teams.service import TeamService


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("billsync")
    logger.info("Starting billsync...")
    try:
        yield
    finally:
        logging.getLogger("billsync").info("Stopping billsync...")


def create_app(
    settings_obj: Optional[Settings] = None,
    store: Optional[DocumentStore] = None,
    gateway: Optional[GatewayClient] = None,
) -> FastAPI:
    """
    Build the application and its clients.

    Clients are constructed once here and shared through app.state. Without a
    gateway (no STRIPE_SECRET_KEY and none injected) the billing endpoints
    answer 503 billing_disabled.
    """
    cfg = settings_obj or settings
    configure_logging(cfg.ENV)
    validate_config(strict=cfg.CONFIG_STRICT, settings_obj=cfg)

    if store is None:
        store = build_document_store(cfg)
    if gateway is None and cfg.STRIPE_SECRET_KEY:
        gateway = StripeGateway(cfg.STRIPE_SECRET_KEY, webhook_tolerance=cfg.STRIPE_WEBHOOK_TOLERANCE_SECONDS)

    app = FastAPI(title="billsync", lifespan=lifespan)

    team_service = TeamService(store)
    app.state.settings = cfg
    app.state.store = store
    app.state.gateway = gateway
    app.state.teams = team_service
    app.state.seats = SeatAssignmentManager(store)
    app.state.resolver = SubscriptionResolver(
        store,
        team_service,
        gateway=gateway if cfg.RESOLVER_GATEWAY_FALLBACK else None,
    )
    app.state.webhook_processor = None
    app.state.checkout_builder = None
    if gateway is not None:
        app.state.webhook_processor = WebhookProcessor(
            gateway,
            store,
            cfg.STRIPE_WEBHOOK_SECRET or "",
            ordering_guard=cfg.WEBHOOK_ORDERING_GUARD,
        )
        app.state.checkout_builder = CheckoutSessionBuilder(
            gateway,
            trials_enabled=cfg.TRIALS_ENABLED,
            base_url=cfg.BASE_URL,
            store=store,
        )

    app.add_middleware(RequestContextMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(billing.router)
    app.include_router(billing.subscriptions_router)
    app.include_router(teams.router)
    app.include_router(health.router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("billsync.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
