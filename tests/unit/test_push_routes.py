from __future__ import annotations

import datetime
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from marvellous_push.api.deps import get_dispatch_service
from marvellous_push.config import get_settings
from marvellous_push.main import app
from marvellous_push.notifications.contracts import (
  CredentialError,
  DeliveryState,
  DispatchOutcome,
  DispatchResult,
  InvalidRequestError,
  NotificationRequest,
  Subscription,
  SubscriptionStoreError,
)


class _RepoStub:
  def __init__(self) -> None:
    self.upsert = AsyncMock()
    self.delete_for_recipient_endpoint = AsyncMock(return_value=1)
    self.get_subscriptions = AsyncMock(return_value=[])


class _ServiceStub:
  def __init__(self, outcome: DispatchOutcome | None = None, error: Exception | None = None) -> None:
    self.outcome = outcome or DispatchOutcome(message="No registered devices for the requested recipients.", results=[])
    self.error = error
    self.requests: list[NotificationRequest] = []

  async def dispatch(self, request: NotificationRequest) -> DispatchOutcome:
    self.requests.append(request)
    if self.error is not None:
      raise self.error
    return self.outcome


def _client_with_service(service: _ServiceStub) -> TestClient:
  app.dependency_overrides[get_dispatch_service] = lambda: service
  return TestClient(app)


def test_push_routes_require_secret() -> None:
  client = _client_with_service(_ServiceStub())

  try:
    response = client.post("/v1/push/send", json={"recipient_ids": ["u1"], "title": "t", "body": "b"})
    assert response.status_code == 401
    response = client.post("/v1/push/send", json={"recipient_ids": ["u1"], "title": "t", "body": "b"}, headers={"X-Marvellous-Push-Secret": "wrong"})
    assert response.status_code == 401
  finally:
    app.dependency_overrides.clear()


def test_push_routes_accept_dedicated_secret_header(auth_headers) -> None:
  client = _client_with_service(_ServiceStub())
  secret = auth_headers["Authorization"].removeprefix("Bearer ")

  try:
    response = client.post("/v1/push/send", json={"recipient_ids": ["u1"], "title": "t", "body": "b"}, headers={"X-Marvellous-Push-Secret": secret})
    assert response.status_code == 200
  finally:
    app.dependency_overrides.clear()


def test_push_routes_refuse_when_secret_unconfigured(settings_factory, auth_headers) -> None:
  app.dependency_overrides[get_settings] = lambda: settings_factory(push_dispatch_secret=None)
  client = _client_with_service(_ServiceStub())

  try:
    response = client.post("/v1/push/send", json={"recipient_ids": ["u1"], "title": "t", "body": "b"}, headers=auth_headers)
    assert response.status_code == 403
  finally:
    app.dependency_overrides.clear()


def test_send_returns_results_for_completed_batch(auth_headers) -> None:
  result = DispatchResult(recipient_id="u1", delivery_endpoint="https://fcm.googleapis.com/fcm/send/tok", success=True, provider_status_code=200, state=DeliveryState.SENT_OK)
  service = _ServiceStub(DispatchOutcome(message="Sent 1 of 1 notifications.", results=[result]))
  client = _client_with_service(service)

  try:
    response = client.post("/v1/push/send", json={"recipient_ids": ["u1", "u1", " u2 "], "title": " Shift ", "body": "Moved", "data": {"url": "/shifts"}}, headers=auth_headers)
    assert response.status_code == 200
    payload = response.json()
    assert payload["message"] == "Sent 1 of 1 notifications."
    assert payload["results"] == [result.to_payload()]
    request = service.requests[0]
    assert request.recipient_ids == frozenset({"u1", "u2"})
    assert request.title == "Shift"
    assert request.data == {"url": "/shifts"}
  finally:
    app.dependency_overrides.clear()


def test_send_accepts_legacy_user_ids_field(auth_headers) -> None:
  service = _ServiceStub()
  client = _client_with_service(service)

  try:
    response = client.post("/v1/push/send", json={"userIds": ["u1"], "title": "t", "body": "b"}, headers=auth_headers)
    assert response.status_code == 200
    assert service.requests[0].recipient_ids == frozenset({"u1"})
  finally:
    app.dependency_overrides.clear()


def test_send_with_no_subscriptions_is_not_an_error(auth_headers) -> None:
  client = _client_with_service(_ServiceStub())

  try:
    response = client.post("/v1/push/send", json={"recipient_ids": ["u1"], "title": "t", "body": "b"}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json() == {"message": "No registered devices for the requested recipients.", "results": []}
  finally:
    app.dependency_overrides.clear()


def test_send_rejects_empty_recipient_ids(auth_headers) -> None:
  service = _ServiceStub()
  client = _client_with_service(service)

  try:
    response = client.post("/v1/push/send", json={"recipient_ids": [], "title": "t", "body": "b"}, headers=auth_headers)
    assert response.status_code == 400
    response = client.post("/v1/push/send", json={"recipient_ids": ["  "], "title": "t", "body": "b"}, headers=auth_headers)
    assert response.status_code == 400
    assert service.requests == []
  finally:
    app.dependency_overrides.clear()


def test_send_rejects_unparseable_json(auth_headers) -> None:
  client = _client_with_service(_ServiceStub())

  try:
    response = client.post("/v1/push/send", content=b"{not json", headers={**auth_headers, "Content-Type": "application/json"})
    assert response.status_code == 400
    assert "input" not in response.text
  finally:
    app.dependency_overrides.clear()


def test_send_maps_credential_failure_to_500(auth_headers) -> None:
  client = _client_with_service(_ServiceStub(error=CredentialError("No service account credential configured.")))

  try:
    response = client.post("/v1/push/send", json={"recipient_ids": ["u1"], "title": "t", "body": "b"}, headers=auth_headers)
    assert response.status_code == 500
    assert response.json()["detail"] == "CredentialError: No service account credential configured."
  finally:
    app.dependency_overrides.clear()


def test_send_maps_store_failure_to_500(auth_headers) -> None:
  client = _client_with_service(_ServiceStub(error=SubscriptionStoreError("Subscription store is unreachable.")))

  try:
    response = client.post("/v1/push/send", json={"recipient_ids": ["u1"], "title": "t", "body": "b"}, headers=auth_headers)
    assert response.status_code == 500
  finally:
    app.dependency_overrides.clear()


def test_send_maps_invalid_request_to_400(auth_headers) -> None:
  client = _client_with_service(_ServiceStub(error=InvalidRequestError("recipient_ids must contain at least one identifier.")))

  try:
    response = client.post("/v1/push/send", json={"recipient_ids": ["u1"], "title": "t", "body": "b"}, headers=auth_headers)
    assert response.status_code == 400
  finally:
    app.dependency_overrides.clear()


def test_subscribe_rejects_non_https(auth_headers) -> None:
  client = TestClient(app)
  response = client.post("/v1/push/subscribe", json={"recipient_id": "u1", "endpoint": "http://fcm.googleapis.com/fcm/send/abc"}, headers=auth_headers)
  assert response.status_code == 400


def test_subscribe_rejects_unknown_host(auth_headers) -> None:
  client = TestClient(app)
  response = client.post("/v1/push/subscribe", json={"recipient_id": "u1", "endpoint": "https://example.com/push/abc"}, headers=auth_headers)
  assert response.status_code == 400


def test_subscribe_rejects_non_fcm_push_services(monkeypatch, auth_headers) -> None:
  repo = _RepoStub()
  monkeypatch.setattr("marvellous_push.api.routes.push.PushSubscriptionRepository", lambda: repo)
  client = TestClient(app)

  for endpoint in ("https://updates.push.services.mozilla.com/wpush/v2/gAAAAABkZ3xy", "https://web.push.apple.com/QGuQyavXutnMsmDTp9"):
    response = client.post("/v1/push/subscribe", json={"recipient_id": "u1", "endpoint": endpoint}, headers=auth_headers)
    assert response.status_code == 400

  repo.upsert.assert_not_awaited()


def test_subscribe_accepts_valid_payload(monkeypatch, auth_headers) -> None:
  repo = _RepoStub()
  monkeypatch.setattr("marvellous_push.api.routes.push.PushSubscriptionRepository", lambda: repo)
  client = TestClient(app)

  response = client.post("/v1/push/subscribe", json={"recipient_id": "u1", "endpoint": "https://fcm.googleapis.com/fcm/send/abc"}, headers={**auth_headers, "user-agent": "marvellous-test-agent"})

  assert response.status_code == 204
  repo.upsert.assert_awaited_once()
  entry = repo.upsert.await_args.args[0]
  assert entry.recipient_id == "u1"
  assert entry.endpoint == "https://fcm.googleapis.com/fcm/send/abc"
  assert entry.user_agent == "marvellous-test-agent"


def test_subscribe_accepts_raw_registration_token(monkeypatch, auth_headers) -> None:
  repo = _RepoStub()
  monkeypatch.setattr("marvellous_push.api.routes.push.PushSubscriptionRepository", lambda: repo)
  client = TestClient(app)

  response = client.post("/v1/push/subscribe", json={"recipientId": "u1", "endpoint": "dQw4w9WgXcQ:APA91bFakeLegacyToken"}, headers=auth_headers)

  assert response.status_code == 204
  assert repo.upsert.await_args.args[0].endpoint == "dQw4w9WgXcQ:APA91bFakeLegacyToken"


def test_subscribe_truncates_user_agent(monkeypatch, auth_headers) -> None:
  repo = _RepoStub()
  monkeypatch.setattr("marvellous_push.api.routes.push.PushSubscriptionRepository", lambda: repo)
  client = TestClient(app)

  response = client.post("/v1/push/subscribe", json={"recipient_id": "u1", "endpoint": "https://fcm.googleapis.com/fcm/send/abc"}, headers={**auth_headers, "user-agent": "a" * 700})

  assert response.status_code == 204
  assert len(repo.upsert.await_args.args[0].user_agent) == 512


def test_subscribe_store_failure_returns_500(monkeypatch, auth_headers) -> None:
  repo = _RepoStub()
  repo.upsert.side_effect = SubscriptionStoreError("Subscription store is not configured (MARVELLOUS_PG_DSN is missing).")
  monkeypatch.setattr("marvellous_push.api.routes.push.PushSubscriptionRepository", lambda: repo)
  client = TestClient(app)

  response = client.post("/v1/push/subscribe", json={"recipient_id": "u1", "endpoint": "https://fcm.googleapis.com/fcm/send/abc"}, headers=auth_headers)

  assert response.status_code == 500
  assert response.json()["detail"] == "Internal Server Error"


def test_unsubscribe_is_idempotent(monkeypatch, auth_headers) -> None:
  repo = _RepoStub()
  repo.delete_for_recipient_endpoint.side_effect = [1, 0]
  monkeypatch.setattr("marvellous_push.api.routes.push.PushSubscriptionRepository", lambda: repo)
  client = TestClient(app)
  payload = {"recipient_id": "u1", "endpoint": "https://fcm.googleapis.com/fcm/send/abc"}

  assert client.request("DELETE", "/v1/push/unsubscribe", json=payload, headers=auth_headers).status_code == 204
  assert client.request("DELETE", "/v1/push/unsubscribe", json=payload, headers=auth_headers).status_code == 204
  repo.delete_for_recipient_endpoint.assert_awaited_with(recipient_id="u1", endpoint="https://fcm.googleapis.com/fcm/send/abc")


def test_list_subscriptions_truncates_endpoints(monkeypatch, auth_headers) -> None:
  repo = _RepoStub()
  endpoint = "https://fcm.googleapis.com/fcm/send/" + "x" * 100
  created_at = datetime.datetime(2026, 3, 1, 9, 30, tzinfo=datetime.UTC)
  repo.get_subscriptions.return_value = [Subscription(recipient_id="u1", endpoint=endpoint, created_at=created_at, user_agent="Firefox")]
  monkeypatch.setattr("marvellous_push.api.routes.push.PushSubscriptionRepository", lambda: repo)
  client = TestClient(app)

  response = client.get("/v1/push/subscriptions/u1", headers=auth_headers)

  assert response.status_code == 200
  item = response.json()[0]
  assert item["endpoint"] == endpoint[:48] + "..."
  assert item["user_agent"] == "Firefox"
  assert item["created_at"] == "2026-03-01T09:30:00+00:00"
  repo.get_subscriptions.assert_awaited_once_with(["u1"])


def test_health_check_is_public() -> None:
  response = TestClient(app).get("/health")
  assert response.status_code == 200
  assert response.json()["status"] == "ok"
