"""
Health check endpoint.

Reports configuration readiness without touching provider APIs.
"""

import logging

from fastapi import APIRouter, Request

from storelink.platform.cache import RedisClient
from storelink.platform.secrets import validate_encryption_configured

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request):
    providers = getattr(request.app.state, "providers", None)
    work_queue = getattr(request.app.state, "work_queue", None)
    return {
        "status": "ok",
        "encryption_configured": validate_encryption_configured(),
        "shared_state_store": RedisClient().available,
        "providers": providers.configured_platforms() if providers else [],
        "background_queue_running": bool(work_queue and work_queue.running),
    }
