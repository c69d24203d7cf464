"""Contracts for push notification dispatch."""

from __future__ import annotations

import datetime
import enum
from dataclasses import dataclass, field
from typing import Any, Protocol

ENDPOINT_DISPLAY_CHARS = 48

TOKEN_EXTRACTION_FAILED = "token_extraction_failed"


@dataclass(frozen=True)
class Subscription:
  """A registered delivery endpoint owned by a recipient."""

  recipient_id: str
  endpoint: str
  created_at: datetime.datetime | None = None
  user_agent: str | None = None


@dataclass(frozen=True)
class ServiceCredential:
  """Service-account material used to mint provider bearer tokens."""

  issuer_identity: str
  signing_key: str = field(repr=False)
  token_endpoint_url: str
  project_id: str
  private_key_id: str | None = None


@dataclass(frozen=True)
class BearerToken:
  """Short-lived provider access token; held in memory only."""

  value: str = field(repr=False)
  expiry: datetime.datetime

  def expires_within(self, seconds: float, *, now: datetime.datetime | None = None) -> bool:
    current = now or datetime.datetime.now(datetime.UTC)
    return self.expiry - current <= datetime.timedelta(seconds=seconds)


@dataclass(frozen=True)
class NotificationRequest:
  """Caller input for one dispatch batch."""

  recipient_ids: frozenset[str]
  title: str
  body: str
  data: dict[str, Any] = field(default_factory=dict)


class DeliveryState(enum.StrEnum):
  """Terminal per-subscription states within one dispatch call."""

  SENT_OK = "sent_ok"
  SEND_FAILED = "send_failed"
  SEND_FAILED_AND_RECONCILED = "send_failed_and_reconciled"


@dataclass(frozen=True)
class DispatchResult:
  """Outcome of one send attempt for one subscription."""

  recipient_id: str
  delivery_endpoint: str
  success: bool
  provider_status_code: int | None
  error_detail: str | None = None
  state: DeliveryState = DeliveryState.SEND_FAILED

  def to_payload(self) -> dict[str, Any]:
    return {
      "recipient_id": self.recipient_id,
      "delivery_endpoint": self.delivery_endpoint,
      "success": self.success,
      "provider_status_code": self.provider_status_code,
      "error_detail": self.error_detail,
      "state": self.state.value,
    }


@dataclass(frozen=True)
class DispatchOutcome:
  """Aggregate returned to the HTTP caller for a completed batch."""

  message: str
  results: list[DispatchResult]


@dataclass(frozen=True)
class ProviderResponse:
  """Raw provider reply for a single send call."""

  status_code: int
  body: Any


def truncate_endpoint(endpoint: str, limit: int = ENDPOINT_DISPLAY_CHARS) -> str:
  """Shorten an endpoint for logs and responses; the prefix is kept intact."""
  if len(endpoint) <= limit:
    return endpoint
  return f"{endpoint[:limit]}..."


class NotificationError(Exception):
  """Base class for all notification dispatch failures."""


class InvalidRequestError(NotificationError):
  """Caller input is malformed or empty; nothing was attempted."""


class CredentialError(NotificationError):
  """The stored service credential is missing or malformed."""


class ProviderAuthError(NotificationError):
  """The provider token endpoint rejected or did not answer the assertion exchange."""


class SubscriptionStoreError(NotificationError):
  """The subscription store could not be read."""


class TokenExtractionError(NotificationError):
  """No device token could be derived from a stored endpoint."""


class ProviderSendError(NotificationError):
  """A provider send call did not succeed."""

  def __init__(self, message: str, *, status_code: int | None, unregistered: bool = False) -> None:
    super().__init__(message)
    self.status_code = status_code
    self.unregistered = unregistered


class ReconciliationError(NotificationError):
  """Deleting a stale subscription failed."""


class TokenMinter(Protocol):
  """Produces bearer tokens for the push provider."""

  async def mint_token(self) -> BearerToken:
    """Return a valid bearer token or raise CredentialError/ProviderAuthError."""


class PushSender(Protocol):
  """Delivery contract for one provider send call."""

  async def send(self, *, device_token: str, bearer: BearerToken, title: str, body: str, data: dict[str, Any]) -> ProviderResponse:
    """Issue the send call and return the provider reply without raising on non-2xx."""
