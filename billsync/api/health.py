"""
Operational endpoints: liveness, readiness and Prometheus metrics.

No secrets are exposed.
"""

import logging

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from billsync.core.database import check_connection
from billsync.core.metrics import METRICS
from billsync.features.store.sql import SqlDocumentStore

logger = logging.getLogger("billsync")

router = APIRouter(tags=["ops"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz(request: Request):
    """Readiness check: document store reachable, billing configured."""
    store = getattr(request.app.state, "store", None)
    if store is None:
        return JSONResponse(status_code=503, content={"status": "error", "detail": "store not initialized"})

    if isinstance(store, SqlDocumentStore) and not check_connection():
        logger.error("[readyz] database unreachable")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    billing = getattr(request.app.state, "gateway", None) is not None
    return {"status": "ok", "billing_enabled": billing}


@router.get("/metrics")
def metrics_endpoint():
    """Webhook, checkout, seat and HTTP counters in Prometheus text format."""
    return Response(content=METRICS.export_prometheus(), media_type="text/plain; version=0.0.4")
