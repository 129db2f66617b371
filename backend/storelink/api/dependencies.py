"""
Shared FastAPI dependencies for store routes.

Long-lived collaborators (provider adapters, OAuth state issuer, background
queue) are created once in the application lifespan and kept on app.state.
"""

import logging

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from storelink.database.session import get_db_session
from storelink.services.store_connection_service import StoreConnectionService

logger = logging.getLogger(__name__)


def get_connection_service(
    request: Request,
    db: Session = Depends(get_db_session),
) -> StoreConnectionService:
    state = request.app.state
    providers = getattr(state, "providers", None)
    state_issuer = getattr(state, "state_issuer", None)
    if providers is None or state_issuer is None:
        logger.error("Store services not initialized")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Store services not initialized",
        )

    return StoreConnectionService(
        db_session=db,
        providers=providers,
        state_issuer=state_issuer,
        work_queue=getattr(state, "work_queue", None),
    )
