from __future__ import annotations

import asyncio
import datetime
from typing import Any
from unittest.mock import AsyncMock

import pytest

from marvellous_push.notifications.contracts import TOKEN_EXTRACTION_FAILED, BearerToken, DeliveryState, ProviderResponse, ProviderSendError, Subscription
from marvellous_push.notifications.dispatcher import Dispatcher

_BEARER = BearerToken(value="ya29.test-token", expiry=datetime.datetime.now(datetime.UTC) + datetime.timedelta(hours=1))
_UNREGISTERED = {"error": {"code": 404, "status": "NOT_FOUND", "message": "gone", "details": [{"@type": "type.googleapis.com/google.firebase.fcm.v1.FcmError", "errorCode": "UNREGISTERED"}]}}


class _ScriptedSender:
  """Reply per device token; unknown tokens succeed."""

  def __init__(self, replies: dict[str, Any] | None = None, *, delay: float = 0.0) -> None:
    self.replies = replies or {}
    self.delay = delay
    self.sent: list[str] = []
    self.in_flight = 0
    self.max_in_flight = 0

  async def send(self, *, device_token: str, bearer: BearerToken, title: str, body: str, data: dict[str, Any]) -> ProviderResponse:
    self.in_flight += 1
    self.max_in_flight = max(self.max_in_flight, self.in_flight)
    try:
      await asyncio.sleep(self.delay)
      self.sent.append(device_token)
      reply = self.replies.get(device_token)
      if isinstance(reply, BaseException):
        raise reply
      if reply is None:
        return ProviderResponse(status_code=200, body={"name": f"messages/{device_token}"})
      return reply
    finally:
      self.in_flight -= 1


def _reconciler(result: bool = True) -> AsyncMock:
  reconciler = AsyncMock()
  reconciler.remove.return_value = result
  return reconciler


def _sub(recipient_id: str, token: str) -> Subscription:
  return Subscription(recipient_id=recipient_id, endpoint=f"https://fcm.googleapis.com/fcm/send/{token}")


@pytest.mark.anyio
async def test_send_all_returns_one_result_per_subscription_in_order() -> None:
  sender = _ScriptedSender()
  dispatcher = Dispatcher(sender=sender, reconciler=_reconciler())
  subscriptions = [_sub("u1", "tok-a"), _sub("u1", "tok-b"), _sub("u2", "tok-c")]

  results = await dispatcher.send_all(subscriptions, _BEARER, "t", "b", {})

  assert [result.recipient_id for result in results] == ["u1", "u1", "u2"]
  assert all(result.success for result in results)
  assert all(result.state is DeliveryState.SENT_OK for result in results)
  for subscription, result in zip(subscriptions, results, strict=True):
    assert subscription.endpoint.startswith(result.delivery_endpoint.removesuffix("..."))


@pytest.mark.anyio
async def test_send_all_with_no_subscriptions_sends_nothing() -> None:
  sender = _ScriptedSender()
  dispatcher = Dispatcher(sender=sender, reconciler=_reconciler())

  assert await dispatcher.send_all([], _BEARER, "t", "b", {}) == []
  assert sender.sent == []


@pytest.mark.anyio
async def test_unregistered_token_is_reconciled() -> None:
  sender = _ScriptedSender({"tok-dead": ProviderResponse(status_code=404, body=_UNREGISTERED)})
  reconciler = _reconciler()
  dispatcher = Dispatcher(sender=sender, reconciler=reconciler)
  dead = _sub("u1", "tok-dead")

  results = await dispatcher.send_all([dead, _sub("u1", "tok-live")], _BEARER, "t", "b", {})

  assert results[0].success is False
  assert results[0].provider_status_code == 404
  assert results[0].state is DeliveryState.SEND_FAILED_AND_RECONCILED
  assert results[1].success is True
  reconciler.remove.assert_awaited_once_with("u1", dead.endpoint)


@pytest.mark.anyio
async def test_failed_reconciliation_leaves_plain_failure_state() -> None:
  sender = _ScriptedSender({"tok-dead": ProviderResponse(status_code=404, body=_UNREGISTERED)})
  dispatcher = Dispatcher(sender=sender, reconciler=_reconciler(result=False))

  results = await dispatcher.send_all([_sub("u1", "tok-dead")], _BEARER, "t", "b", {})

  assert results[0].state is DeliveryState.SEND_FAILED


@pytest.mark.anyio
async def test_other_provider_errors_do_not_reconcile() -> None:
  server_error = ProviderResponse(status_code=503, body={"error": {"code": 503, "status": "UNAVAILABLE", "message": "try later"}})
  sender = _ScriptedSender({"tok-a": server_error})
  reconciler = _reconciler()
  dispatcher = Dispatcher(sender=sender, reconciler=reconciler)

  results = await dispatcher.send_all([_sub("u1", "tok-a")], _BEARER, "t", "b", {})

  assert results[0].success is False
  assert results[0].error_detail == "UNAVAILABLE: try later"
  reconciler.remove.assert_not_awaited()


@pytest.mark.anyio
async def test_endpoint_without_token_yields_extraction_failure_result() -> None:
  sender = _ScriptedSender()
  dispatcher = Dispatcher(sender=sender, reconciler=_reconciler())
  subscription = Subscription(recipient_id="u1", endpoint="https://fcm.googleapis.com/fcm/send")

  results = await dispatcher.send_all([subscription], _BEARER, "t", "b", {})

  assert results[0].success is False
  assert results[0].error_detail == TOKEN_EXTRACTION_FAILED
  assert sender.sent == []


@pytest.mark.anyio
async def test_raw_token_endpoint_is_sent_as_is() -> None:
  raw = "legacy-raw-registration-token-0123456789"
  sender = _ScriptedSender()
  dispatcher = Dispatcher(sender=sender, reconciler=_reconciler())

  results = await dispatcher.send_all([Subscription(recipient_id="u1", endpoint=raw)], _BEARER, "t", "b", {})

  assert results[0].success is True
  assert sender.sent == [raw]


@pytest.mark.anyio
async def test_sender_exceptions_become_failure_results() -> None:
  sender = _ScriptedSender({"tok-a": ProviderSendError("FCM request failed: ReadTimeout", status_code=None), "tok-b": RuntimeError("boom")})
  dispatcher = Dispatcher(sender=sender, reconciler=_reconciler())

  results = await dispatcher.send_all([_sub("u1", "tok-a"), _sub("u1", "tok-b"), _sub("u2", "tok-c")], _BEARER, "t", "b", {})

  assert [result.success for result in results] == [False, False, True]
  assert results[0].error_detail == "FCM request failed: ReadTimeout"
  assert results[1].error_detail == "RuntimeError: boom"


@pytest.mark.anyio
async def test_send_all_respects_concurrency_bound() -> None:
  sender = _ScriptedSender(delay=0.01)
  dispatcher = Dispatcher(sender=sender, reconciler=_reconciler(), max_concurrency=2)

  await dispatcher.send_all([_sub("u1", f"tok-{index}") for index in range(6)], _BEARER, "t", "b", {})

  assert sender.max_in_flight == 2
  assert len(sender.sent) == 6


def test_dispatcher_rejects_non_positive_concurrency() -> None:
  with pytest.raises(ValueError):
    Dispatcher(sender=_ScriptedSender(), reconciler=_reconciler(), max_concurrency=0)
