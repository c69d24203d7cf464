"""Fan-out of one notification to many subscriptions."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from marvellous_push.notifications.contracts import (
  TOKEN_EXTRACTION_FAILED,
  BearerToken,
  DeliveryState,
  DispatchResult,
  ProviderSendError,
  PushSender,
  Subscription,
  TokenExtractionError,
  truncate_endpoint,
)
from marvellous_push.notifications.push_sender import describe_provider_error, is_unregistered_response
from marvellous_push.notifications.reconciler import StaleSubscriptionReconciler
from marvellous_push.notifications.token_extractor import extract_token

logger = logging.getLogger(__name__)


class Dispatcher:
  """Send to every subscription once, concurrently, and keep results in input order."""

  def __init__(self, *, sender: PushSender, reconciler: StaleSubscriptionReconciler, max_concurrency: int = 10) -> None:
    if max_concurrency <= 0:
      raise ValueError("max_concurrency must be a positive integer.")
    self._sender = sender
    self._reconciler = reconciler
    self._max_concurrency = max_concurrency

  async def send_all(self, subscriptions: list[Subscription], token: BearerToken, title: str, body: str, data: dict[str, Any]) -> list[DispatchResult]:
    """Return exactly one result per subscription, in the same order."""
    if not subscriptions:
      return []

    semaphore = asyncio.Semaphore(self._max_concurrency)

    async def _bounded(subscription: Subscription) -> DispatchResult:
      async with semaphore:
        return await self._send_one(subscription, token=token, title=title, body=body, data=data)

    # gather preserves argument order, which keeps result attribution 1:1.
    results = await asyncio.gather(*(_bounded(subscription) for subscription in subscriptions))
    sent = sum(1 for result in results if result.success)
    logger.info("Dispatch batch finished sent=%d failed=%d", sent, len(results) - sent)
    return list(results)

  async def _send_one(self, subscription: Subscription, *, token: BearerToken, title: str, body: str, data: dict[str, Any]) -> DispatchResult:
    display_endpoint = truncate_endpoint(subscription.endpoint)

    device_token = extract_token(subscription.endpoint)
    if device_token is None:
      error = TokenExtractionError(f"No device token in endpoint {display_endpoint}")
      logger.warning("Skipping subscription recipient_id=%s: %s", subscription.recipient_id, error)
      return DispatchResult(recipient_id=subscription.recipient_id, delivery_endpoint=display_endpoint, success=False, provider_status_code=None, error_detail=TOKEN_EXTRACTION_FAILED, state=DeliveryState.SEND_FAILED)

    try:
      response = await self._sender.send(device_token=device_token, bearer=token, title=title, body=body, data=data)
    except ProviderSendError as exc:
      logger.error("Push send failed recipient_id=%s endpoint=%s error=%s", subscription.recipient_id, display_endpoint, exc)
      return DispatchResult(recipient_id=subscription.recipient_id, delivery_endpoint=display_endpoint, success=False, provider_status_code=exc.status_code, error_detail=str(exc), state=DeliveryState.SEND_FAILED)
    except Exception as exc:  # noqa: BLE001
      # One broken send must not take the other subscriptions down with it.
      logger.error("Push send crashed recipient_id=%s endpoint=%s", subscription.recipient_id, display_endpoint, exc_info=True)
      return DispatchResult(recipient_id=subscription.recipient_id, delivery_endpoint=display_endpoint, success=False, provider_status_code=None, error_detail=f"{type(exc).__name__}: {exc}", state=DeliveryState.SEND_FAILED)

    if 200 <= response.status_code < 300:
      logger.debug("Push sent recipient_id=%s endpoint=%s", subscription.recipient_id, display_endpoint)
      return DispatchResult(recipient_id=subscription.recipient_id, delivery_endpoint=display_endpoint, success=True, provider_status_code=response.status_code, state=DeliveryState.SENT_OK)

    error_detail = describe_provider_error(response.body)
    if is_unregistered_response(response.status_code, response.body):
      logger.warning("Provider reports unregistered token recipient_id=%s endpoint=%s status=%s", subscription.recipient_id, display_endpoint, response.status_code)
      reconciled = await self._reconciler.remove(subscription.recipient_id, subscription.endpoint)
      state = DeliveryState.SEND_FAILED_AND_RECONCILED if reconciled else DeliveryState.SEND_FAILED
      return DispatchResult(recipient_id=subscription.recipient_id, delivery_endpoint=display_endpoint, success=False, provider_status_code=response.status_code, error_detail=error_detail, state=state)

    logger.error("Push rejected recipient_id=%s endpoint=%s status=%s detail=%s", subscription.recipient_id, display_endpoint, response.status_code, error_detail)
    return DispatchResult(recipient_id=subscription.recipient_id, delivery_endpoint=display_endpoint, success=False, provider_status_code=response.status_code, error_detail=error_detail, state=DeliveryState.SEND_FAILED)
