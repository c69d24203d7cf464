"""Push notification dispatch for one caller request."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Protocol

from marvellous_push.notifications.contracts import DispatchOutcome, InvalidRequestError, NotificationRequest, Subscription, TokenMinter
from marvellous_push.notifications.dispatcher import Dispatcher

logger = logging.getLogger(__name__)

NO_SUBSCRIPTIONS_MESSAGE = "No registered devices for the requested recipients."


class SubscriptionReader(Protocol):
  async def get_subscriptions(self, recipient_ids: Iterable[str]) -> list[Subscription]: ...


class PushDispatchService:
  """Read subscriptions, mint one token, fan out, and report per-device results."""

  def __init__(self, *, repository: SubscriptionReader, minter: TokenMinter, dispatcher: Dispatcher) -> None:
    self._repository = repository
    self._minter = minter
    self._dispatcher = dispatcher

  async def dispatch(self, request: NotificationRequest) -> DispatchOutcome:
    """
    Run one batch.

    Store and credential failures propagate before any send so the caller
    gets either a complete result list or none at all. Per-device failures
    are reported in the results and never raise.
    """
    _validate(request)

    subscriptions = await self._repository.get_subscriptions(request.recipient_ids)
    if not subscriptions:
      logger.info("No subscriptions for recipients=%d; nothing to send", len(request.recipient_ids))
      return DispatchOutcome(message=NO_SUBSCRIPTIONS_MESSAGE, results=[])

    # One token for the whole batch; failure here aborts before any send.
    token = await self._minter.mint_token()

    logger.info("Dispatching push recipients=%d subscriptions=%d", len(request.recipient_ids), len(subscriptions))
    results = await self._dispatcher.send_all(subscriptions, token, request.title, request.body, request.data)
    sent = sum(1 for result in results if result.success)
    return DispatchOutcome(message=f"Sent {sent} of {len(results)} notifications.", results=results)


def _validate(request: NotificationRequest) -> None:
  if not request.recipient_ids or not any(recipient_id.strip() for recipient_id in request.recipient_ids):
    raise InvalidRequestError("recipient_ids must contain at least one identifier.")
  if not request.title.strip() or not request.body.strip():
    raise InvalidRequestError("Title and body are required for notifications.")
