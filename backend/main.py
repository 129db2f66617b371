"""
FastAPI application entry point for the store connection service.

Tenant-scoped routes require a JWT carrying the tenant. OAuth callbacks and
the Zid install entry point are public and provider-initiated.
"""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storelink.api.routes import health
from storelink.api.routes import stores
from storelink.integrations.registry import ProviderRegistry
from storelink.platform.secrets import SecretRedactingFilter, validate_encryption_configured
from storelink.services.oauth_state import OAuthStateIssuer
from storelink.workers.enrichment_queue import BackgroundWorkQueue

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(SecretRedactingFilter())
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting store connection API")

    if not validate_encryption_configured():
        logger.warning("STORE_ENCRYPTION_KEY is not set, tokens use a development key")

    if not os.getenv("API_BASE_URL"):
        logger.warning("API_BASE_URL is not set, Zid webhook registration will fail")

    state_issuer = OAuthStateIssuer.from_env()
    providers = ProviderRegistry.from_env()
    work_queue = BackgroundWorkQueue()
    await work_queue.start()

    app.state.state_issuer = state_issuer
    app.state.providers = providers
    app.state.work_queue = work_queue

    logger.info(
        "Store services ready",
        extra={"providers": providers.configured_platforms()},
    )

    yield

    logger.info("Shutting down store connection API")
    await work_queue.stop()
    await providers.close()


app = FastAPI(
    title="Store Connection API",
    description="Store credential and identity lifecycle for connected e-commerce platforms",
    version="1.0.0",
    lifespan=lifespan
)

cors_origins = os.getenv("CORS_ORIGINS", os.getenv("FRONTEND_URL", "http://localhost:3000")).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Health route (no authentication)
app.include_router(health.router)

# Store connection routes (JWT, except OAuth callback and install)
app.include_router(stores.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("ENV", "development") == "development",
    )
