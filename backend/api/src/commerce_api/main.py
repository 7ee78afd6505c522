"""FastAPI application exposing the commerce core.

This package provides REST endpoints for:
- Health checks
- Payment provider webhooks
- Orders, refunds and return requests
- Stock levels and warehouse transfers

Authentication is handled upstream; the caller's role and reference
arrive in the X-Actor-Role and X-Actor-Id headers.
"""

import os
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from commerce_api import __version__
from commerce_api.exceptions import register_exception_handlers
from commerce_api.middleware.correlation import CorrelationIdMiddleware
from commerce_api.routes.health import router as health_router
from commerce_api.routes.inventory import router as inventory_router
from commerce_api.routes.orders import router as orders_router
from commerce_api.routes.returns import router as returns_router
from commerce_api.routes.webhooks import router as webhooks_router
from commerce_core.utils.logging import configure_logging, get_logger

configure_logging(os.environ.get("LOG_LEVEL", "INFO"))
logger = get_logger(__name__)

DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"

app = FastAPI(
    title="Commerce Core API",
    description="REST API for orders, payments, refunds and inventory",
    version=__version__,
)

# Admin console origins, comma separated
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.environ.get("CORS_ALLOW_ORIGINS", DEFAULT_CORS_ORIGINS).split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

register_exception_handlers(app)

# Include routers under /api prefix
app.include_router(health_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")
app.include_router(orders_router, prefix="/api")
app.include_router(returns_router, prefix="/api")
app.include_router(inventory_router, prefix="/api")


@app.get("/api/ping")
async def ping() -> dict[str, Any]:
    """Root health check endpoint at /api/ping."""
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "service": "commerce-api",
    }


# Lambda handler - Mangum wraps FastAPI for AWS Lambda + API Gateway
handler = Mangum(app, lifespan="off")


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = True) -> None:
    """Run the FastAPI server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to listen on (default: 8080)
        reload: Enable hot reload for development (default: True)
    """
    import uvicorn

    logger.info("Starting commerce API on %s:%d (reload=%s)", host, port, reload)
    if reload:
        # Use string reference for reload mode (uvicorn requirement)
        uvicorn.run(
            "commerce_api.main:app",
            host=host,
            port=port,
            reload=True,
            reload_dirs=["api/src", "core/src"],
        )
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
