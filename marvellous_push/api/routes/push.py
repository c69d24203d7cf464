"""Routes for push subscription lifecycle and notification dispatch."""

from __future__ import annotations

import logging
import re
import urllib.parse
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_core import PydanticCustomError

from marvellous_push.api.deps import get_dispatch_service
from marvellous_push.core.security import require_dispatch_secret
from marvellous_push.notifications.contracts import InvalidRequestError, NotificationRequest, Subscription, truncate_endpoint
from marvellous_push.notifications.push_subscription_repo import PushSubscriptionRepository
from marvellous_push.notifications.service import PushDispatchService

logger = logging.getLogger(__name__)

# Only FCM endpoints can be delivered by the FCM HTTP v1 sender.
_ALLOWED_PUSH_HOSTS = {"fcm.googleapis.com"}
# Bare FCM registration tokens stored by older clients.
_RAW_TOKEN_RE = re.compile(r"^[A-Za-z0-9_:\-]{20,4096}$")

router = APIRouter(dependencies=[Depends(require_dispatch_secret)])


def _validate_endpoint(value: str) -> str:
  normalized = value.strip()
  if _RAW_TOKEN_RE.fullmatch(normalized):
    return normalized

  parsed = urllib.parse.urlparse(normalized)
  if parsed.scheme.lower() != "https":
    raise PydanticCustomError("push_endpoint_https", "endpoint must use https or be a raw registration token.")

  host = (parsed.hostname or "").lower()
  if host not in _ALLOWED_PUSH_HOSTS:
    raise PydanticCustomError("push_endpoint_host", "endpoint host is not allowed.")

  return normalized


def _validate_recipient_id(value: str) -> str:
  normalized = value.strip()
  if not normalized:
    raise PydanticCustomError("push_recipient_blank", "recipient_id must not be blank.")
  return normalized


class PushSubscribeRequest(BaseModel):
  """Registration of one device for one recipient."""

  recipient_id: str = Field(min_length=1, max_length=256, alias="recipientId")
  endpoint: str = Field(min_length=1, max_length=4096)
  model_config = ConfigDict(extra="forbid", populate_by_name=True)

  @field_validator("recipient_id")
  @classmethod
  def validate_recipient_id(cls, value: str) -> str:
    return _validate_recipient_id(value)

  @field_validator("endpoint")
  @classmethod
  def validate_endpoint(cls, value: str) -> str:
    return _validate_endpoint(value)


class PushUnsubscribeRequest(BaseModel):
  """Removal of one device; any stored endpoint shape is accepted."""

  recipient_id: str = Field(min_length=1, max_length=256, alias="recipientId")
  endpoint: str = Field(min_length=1, max_length=4096)
  model_config = ConfigDict(extra="forbid", populate_by_name=True)

  @field_validator("recipient_id")
  @classmethod
  def validate_recipient_id(cls, value: str) -> str:
    return _validate_recipient_id(value)

  @field_validator("endpoint")
  @classmethod
  def validate_endpoint(cls, value: str) -> str:
    return value.strip()


class SendNotificationRequest(BaseModel):
  """Dispatch body; `userIds` is accepted for older clients."""

  recipient_ids: list[str] = Field(alias="userIds", max_length=1000)
  title: str = Field(max_length=512)
  body: str = Field(max_length=4096)
  data: dict[str, Any] | None = None
  model_config = ConfigDict(extra="forbid", populate_by_name=True)

  @field_validator("recipient_ids")
  @classmethod
  def validate_recipient_ids(cls, value: list[str]) -> list[str]:
    """Drop blanks and duplicates; an empty result is a bad request."""
    cleaned = list(dict.fromkeys(item.strip() for item in value if item and item.strip()))
    if not cleaned:
      raise PydanticCustomError("push_recipients_empty", "recipient_ids must contain at least one identifier.")
    return cleaned

  @field_validator("title", "body")
  @classmethod
  def validate_text(cls, value: str) -> str:
    normalized = value.strip()
    if not normalized:
      raise PydanticCustomError("push_text_blank", "title and body are required.")
    return normalized


class DispatchResultPayload(BaseModel):
  recipient_id: str
  delivery_endpoint: str
  success: bool
  provider_status_code: int | None
  error_detail: str | None
  state: str


class SendNotificationResponse(BaseModel):
  message: str
  results: list[DispatchResultPayload]


class SubscriptionPayload(BaseModel):
  recipient_id: str
  endpoint: str
  user_agent: str | None
  created_at: str | None


@router.post("/send", response_model=SendNotificationResponse)
async def send_notification(payload: SendNotificationRequest, service: PushDispatchService = Depends(get_dispatch_service)) -> dict[str, Any]:  # noqa: B008
  """Send one notification to every registered device of the recipients."""
  request = NotificationRequest(recipient_ids=frozenset(payload.recipient_ids), title=payload.title, body=payload.body, data=dict(payload.data or {}))
  outcome = await service.dispatch(request)
  return {"message": outcome.message, "results": [result.to_payload() for result in outcome.results]}


@router.post("/subscribe", status_code=status.HTTP_204_NO_CONTENT)
async def subscribe_to_push(payload: PushSubscribeRequest, response: Response, user_agent: str | None = Header(default=None)) -> Response:
  """Register (or re-home) a device endpoint."""
  normalized_user_agent = None
  if user_agent:
    # Clamp to keep rows small while keeping device context.
    normalized_user_agent = user_agent.strip()[:512] or None

  try:
    await PushSubscriptionRepository().upsert(Subscription(recipient_id=payload.recipient_id, endpoint=payload.endpoint, user_agent=normalized_user_agent))
  except Exception as exc:  # noqa: BLE001
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save push subscription") from exc

  logger.info("Registered push endpoint recipient_id=%s endpoint=%s", payload.recipient_id, truncate_endpoint(payload.endpoint))
  response.status_code = status.HTTP_204_NO_CONTENT
  return response


@router.delete("/unsubscribe", status_code=status.HTTP_204_NO_CONTENT)
async def unsubscribe_from_push(payload: PushUnsubscribeRequest, response: Response) -> Response:
  """Delete a recipient's device endpoint; repeating the call is harmless."""
  try:
    await PushSubscriptionRepository().delete_for_recipient_endpoint(recipient_id=payload.recipient_id, endpoint=payload.endpoint)
  except Exception as exc:  # noqa: BLE001
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to delete push subscription") from exc

  response.status_code = status.HTTP_204_NO_CONTENT
  return response


@router.get("/subscriptions/{recipient_id}", response_model=list[SubscriptionPayload])
async def list_subscriptions(recipient_id: str) -> list[dict[str, Any]]:
  """List a recipient's registered devices with endpoints shortened for display."""
  try:
    subscriptions = await PushSubscriptionRepository().get_subscriptions([recipient_id])
  except InvalidRequestError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
  except Exception as exc:  # noqa: BLE001
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to load push subscriptions") from exc

  return [
    {"recipient_id": item.recipient_id, "endpoint": truncate_endpoint(item.endpoint), "user_agent": item.user_agent, "created_at": item.created_at.isoformat() if item.created_at else None}
    for item in subscriptions
  ]
