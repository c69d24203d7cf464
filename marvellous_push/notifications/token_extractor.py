"""Derive raw FCM registration tokens from stored delivery endpoints."""

from __future__ import annotations

import logging
import urllib.parse

from marvellous_push.notifications.contracts import truncate_endpoint

logger = logging.getLogger(__name__)

_FCM_PATH_MARKER = "fcm"
_FCM_SEND_SEGMENT = "send"


def extract_token(endpoint: str | None) -> str | None:
  """
  Return the device token for an endpoint.

  `https://fcm.googleapis.com/fcm/send/<token>` (or any `.../fcm/.../<token>`
  path) yields `<token>`. Endpoints of any other shape are returned unchanged,
  since legacy rows hold the raw token directly. `None` means nothing usable.
  """
  if endpoint is None:
    return None

  candidate = endpoint.strip()
  if not candidate:
    logger.warning("Empty delivery endpoint; no token to extract")
    return None

  parsed = urllib.parse.urlparse(candidate)
  segments = parsed.path.split("/") if parsed.scheme and parsed.netloc else []
  if _FCM_PATH_MARKER in segments:
    marker_index = segments.index(_FCM_PATH_MARKER)
    tail = [segment for segment in segments[marker_index + 1 :] if segment]
    # `/fcm/send` alone carries the route name, not a token.
    token = tail[-1] if tail and tail != [_FCM_SEND_SEGMENT] else ""
    if not token:
      logger.warning("FCM endpoint has no token segment endpoint=%s", truncate_endpoint(candidate))
      return None
    return urllib.parse.unquote(token)

  logger.warning("Delivery endpoint does not match the FCM shape; using it as a raw token endpoint=%s", truncate_endpoint(candidate))
  return candidate
