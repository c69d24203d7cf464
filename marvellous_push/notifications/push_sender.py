"""FCM HTTP v1 message construction and delivery."""

from __future__ import annotations

import json
import logging
import urllib.parse
from dataclasses import dataclass
from typing import Any

import httpx

from marvellous_push.notifications.contracts import BearerToken, ProviderResponse, ProviderSendError

logger = logging.getLogger(__name__)

_FCM_ERROR_TYPE = "type.googleapis.com/google.firebase.fcm.v1.FcmError"
_BAD_REQUEST_TYPE = "type.googleapis.com/google.rpc.BadRequest"
_UNREGISTERED_CODES = {"UNREGISTERED"}
_TOKEN_FIELD = "message.token"


@dataclass(frozen=True)
class MessageDefaults:
  """Presentation hints applied when the caller's data does not override them."""

  icon: str = "/marvellous-logo-black.png"
  badge: str = "/favicon.ico"
  link: str = "/"
  tag: str = "marvellous-notification"
  require_interaction: bool = True
  app_base_url: str | None = None


def _stringify_data(data: dict[str, Any]) -> dict[str, str]:
  """FCM data maps only carry strings."""
  flattened: dict[str, str] = {}
  for key, value in data.items():
    if value is None:
      continue
    if isinstance(value, str):
      flattened[str(key)] = value
    elif isinstance(value, bool | int | float):
      flattened[str(key)] = json.dumps(value)
    else:
      flattened[str(key)] = json.dumps(value, separators=(",", ":"), sort_keys=True, default=str)
  return flattened


def _coerce_bool(value: Any, default: bool) -> bool:
  """Read a flag from request data; strings like "false" or "0" count as false."""
  if value is None:
    return default
  if isinstance(value, str):
    return value.strip().lower() in {"1", "true", "yes", "on"}
  return bool(value)


def _absolute_https_link(link: str, base_url: str | None) -> str | None:
  """Return an https URL usable as fcm_options.link, or None when there is none."""
  candidate = urllib.parse.urljoin(base_url, link) if base_url else link
  parsed = urllib.parse.urlparse(candidate)
  if parsed.scheme == "https" and parsed.netloc:
    return candidate
  return None


def build_fcm_message(*, device_token: str, title: str, body: str, data: dict[str, Any], defaults: MessageDefaults) -> dict[str, Any]:
  """Build the `messages:send` request body for one device."""
  link = str(data.get("url") or defaults.link)
  payload_data = _stringify_data(data)
  payload_data.setdefault("url", link)
  payload_data.setdefault("click_action", link)

  webpush_notification: dict[str, Any] = {
    "icon": str(data.get("icon") or defaults.icon),
    "badge": str(data.get("badge") or defaults.badge),
    "tag": str(data.get("tag") or defaults.tag),
    "requireInteraction": _coerce_bool(data.get("require_interaction"), defaults.require_interaction),
  }
  webpush: dict[str, Any] = {"notification": webpush_notification}

  # FCM rejects non-https links; relative links stay in data for the service worker.
  absolute_link = _absolute_https_link(link, defaults.app_base_url)
  if absolute_link:
    webpush["fcm_options"] = {"link": absolute_link}

  return {"message": {"token": device_token, "notification": {"title": title, "body": body}, "data": payload_data, "webpush": webpush}}


def is_unregistered_response(status_code: int, body: Any) -> bool:
  """
  Decide from FCM's structured error whether the device token is dead.

  Only UNREGISTERED error codes, or INVALID_ARGUMENT errors that point at
  `message.token`, qualify. Other 400s (bad custom data) keep the subscription.
  """
  if not 400 <= status_code < 500:
    return False
  if not isinstance(body, dict) or not isinstance(body.get("error"), dict):
    return False

  error = body["error"]
  for detail in error.get("details") or []:
    if not isinstance(detail, dict):
      continue
    detail_type = detail.get("@type")
    if detail_type == _FCM_ERROR_TYPE and detail.get("errorCode") in _UNREGISTERED_CODES:
      return True
    if detail_type == _BAD_REQUEST_TYPE:
      for violation in detail.get("fieldViolations") or []:
        if isinstance(violation, dict) and violation.get("field") == _TOKEN_FIELD:
          return True

  return status_code == 404 and error.get("status") == "NOT_FOUND"


def describe_provider_error(body: Any) -> str:
  if isinstance(body, dict) and isinstance(body.get("error"), dict):
    error = body["error"]
    status = error.get("status") or "UNKNOWN"
    message = error.get("message") or ""
    return f"{status}: {message}" if message else str(status)
  if isinstance(body, str) and body:
    return body[:200]
  return "provider returned no error detail"


class FcmHttpSender:
  """httpx-backed sender for the FCM HTTP v1 API."""

  def __init__(self, *, project_id: str, http_client: httpx.AsyncClient, api_base_url: str = "https://fcm.googleapis.com", defaults: MessageDefaults | None = None, timeout_seconds: float = 10.0) -> None:
    self._url = f"{api_base_url.rstrip('/')}/v1/projects/{project_id}/messages:send"
    self._http_client = http_client
    self._defaults = defaults or MessageDefaults()
    self._timeout_seconds = timeout_seconds

  @property
  def url(self) -> str:
    return self._url

  async def send(self, *, device_token: str, bearer: BearerToken, title: str, body: str, data: dict[str, Any]) -> ProviderResponse:
    """Send once. Non-2xx replies are returned, transport failures raise ProviderSendError."""
    message = build_fcm_message(device_token=device_token, title=title, body=body, data=data, defaults=self._defaults)
    headers = {"Authorization": f"Bearer {bearer.value}", "Content-Type": "application/json; charset=UTF-8"}

    try:
      response = await self._http_client.post(self._url, json=message, headers=headers, timeout=self._timeout_seconds)
    except httpx.RequestError as exc:
      raise ProviderSendError(f"FCM request failed: {type(exc).__name__}", status_code=None) from exc

    try:
      reply: Any = response.json()
    except ValueError:
      reply = response.text

    return ProviderResponse(status_code=response.status_code, body=reply)
