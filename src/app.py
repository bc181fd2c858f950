"""Delivery FastAPI application.

Single-domain web server that processes commands synchronously via HTTP.
Every request runs inside the delivery domain context.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

import os
from contextlib import asynccontextmanager

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV controls which config overlay is applied:
#   - "test"       → event_processing = "sync"  (lifecycle handlers fire on commit)
#   - "production" → event_processing = "async" (handlers fire via Engine)
from delivery.domain import delivery  # noqa: E402
from delivery.utils.logging import add_context, clear_context  # noqa: E402
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

delivery.init()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the offer expiry monitor unless an external scheduler sweeps offers."""
    from delivery.dispatch.monitor import OfferExpiryMonitor

    monitor = None
    if os.environ.get("DELIVERY_OFFER_MONITOR", "on") != "off":
        monitor = OfferExpiryMonitor(delivery)
        monitor.start()
    yield
    if monitor is not None:
        monitor.stop()


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Delivery API",
    description="Order lifecycle: orders, refunds, dispatch, inventory and SLA",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the delivery domain context for each request and tag its log lines."""
    clear_context()
    add_context(
        http_method=request.method,
        http_path=request.url.path,
        actor_id=request.headers.get("x-actor-id"),
    )
    with delivery.domain_context():
        response = await call_next(request)
    return response


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from delivery.api import (  # noqa: E402
    dispatch_router,
    inventory_router,
    order_router,
    payment_router,
    refund_router,
    register_error_handlers,
    rider_router,
    sla_router,
)

register_error_handlers(app)
app.include_router(order_router)
app.include_router(refund_router)
app.include_router(payment_router)
app.include_router(dispatch_router)
app.include_router(rider_router)
app.include_router(inventory_router)
app.include_router(sla_router)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(content={"status": "ok", "domain": delivery.name})
