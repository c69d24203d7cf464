"""Removal of subscriptions the provider reports as dead."""

from __future__ import annotations

import logging
from typing import Protocol

from marvellous_push.notifications.contracts import ReconciliationError, truncate_endpoint

logger = logging.getLogger(__name__)


class SubscriptionDeleter(Protocol):
  async def delete_for_recipient_endpoint(self, *, recipient_id: str, endpoint: str) -> int: ...


class StaleSubscriptionReconciler:
  """Delete stale subscriptions without ever failing the surrounding batch."""

  def __init__(self, *, repository: SubscriptionDeleter) -> None:
    self._repository = repository

  async def remove(self, recipient_id: str, delivery_endpoint: str) -> bool:
    """Delete the exact pair. Returns False when the delete itself failed."""
    try:
      deleted = await self._repository.delete_for_recipient_endpoint(recipient_id=recipient_id, endpoint=delivery_endpoint)
    except Exception as exc:  # noqa: BLE001
      error = ReconciliationError(f"Failed deleting stale subscription: {exc}")
      logger.error("Stale subscription delete failed recipient_id=%s endpoint=%s error=%s", recipient_id, truncate_endpoint(delivery_endpoint), error, exc_info=True)
      return False

    if deleted:
      logger.info("Removed stale subscription recipient_id=%s endpoint=%s", recipient_id, truncate_endpoint(delivery_endpoint))
    else:
      # Another batch got there first.
      logger.debug("Stale subscription already absent recipient_id=%s endpoint=%s", recipient_id, truncate_endpoint(delivery_endpoint))
    return True
