from __future__ import annotations

import logging

from fastapi import HTTPException, Request, status

from src.db.client import DataClient

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def get_data_client(request: Request) -> DataClient:
    """
    Return the DataClient built at startup and stored on app.state.

    Raises:
        HTTPException: 503 Service Unavailable if the data client was not configured.
    """
    client = getattr(request.app.state, "data_client", None)
    if client is None:
        logger.warning("Data client requested but not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Data client is not configured.",
        )
    return client
