"""Shared FastAPI dependencies for the push routes."""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request, status

from marvellous_push.notifications.service import PushDispatchService

logger = logging.getLogger(__name__)


def get_dispatch_service(request: Request) -> PushDispatchService:
  """Return the dispatch pipeline built during startup."""
  service = getattr(request.app.state, "dispatch_service", None)
  if service is None:
    logger.error("Dispatch service requested before application startup completed")
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Push dispatch is not ready.")
  return service
