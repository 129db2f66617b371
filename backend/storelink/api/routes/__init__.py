# API routes
from storelink.api.routes import health
from storelink.api.routes import stores

__all__ = ["health", "stores"]
