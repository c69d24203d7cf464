"""Shared-secret authentication for service-to-service push routes."""

from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from marvellous_push.config import Settings, get_settings

logger = logging.getLogger(__name__)


async def require_dispatch_secret(
  settings: Annotated[Settings, Depends(get_settings)], authorization: str | None = Header(default=None), x_marvellous_push_secret: str | None = Header(default=None)
) -> None:
  """Accept either `Authorization: Bearer <secret>` or the dedicated header."""
  # Deny by default: an unset secret never means open access.
  if not settings.push_dispatch_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Push authentication is not configured.")

  expected_auth = f"Bearer {settings.push_dispatch_secret}"
  header_valid = secrets.compare_digest((x_marvellous_push_secret or "").encode(), settings.push_dispatch_secret.encode())
  bearer_valid = secrets.compare_digest((authorization or "").encode(), expected_auth.encode())
  if not header_valid and not bearer_valid:
    logger.warning("Rejected push request with missing or invalid secret")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid push secret.", headers={"WWW-Authenticate": "Bearer"})
