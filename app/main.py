# app/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app import models  # noqa: F401 - registers every table on Base.metadata
from app.core.config import get_settings
from app.core.logging_config import configure_logging
from app.core.security import require_auth
from app.routes import health, import_jobs, sync, webhooks
from app.routes import websockets as websocket_router
from app.services.registry import build_registry

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    # One registry per process; nothing below reaches for module-level singletons
    if getattr(app.state, "registry", None) is None:
        app.state.registry = build_registry(settings)
    registry = app.state.registry

    await registry.startup()
    logger.info(f"Order sync engine started ({settings.ENVIRONMENT})")
    try:
        yield  # This is where the app runs
    finally:
        await registry.shutdown()
        logger.info("Order sync engine stopped")


app = FastAPI(
    title="Order Sync Engine",
    lifespan=lifespan
)


# Add middleware to handle HTTPS behind proxy
@app.middleware("http")
async def proxy_headers_middleware(request: Request, call_next):
    forwarded_proto = request.headers.get("x-forwarded-proto")
    if forwarded_proto == "https":
        request.scope["scheme"] = "https"
    response = await call_next(request)
    return response


# Include routers with authentication
app.include_router(sync.router, dependencies=[require_auth()])
app.include_router(import_jobs.router, dependencies=[require_auth()])
app.include_router(webhooks.router)  # Webhooks are authenticated by signature, not Basic auth
app.include_router(websocket_router.router)
app.include_router(health.router)  # Health check should be accessible without auth
