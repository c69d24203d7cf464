import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

import httpx
from fastapi import FastAPI

from marvellous_push.core.database import dispose_engine
from marvellous_push.core.logging import initialize_logging
from marvellous_push.notifications.contracts import CredentialError, ServiceCredential
from marvellous_push.notifications.credentials import load_credential_from_settings
from marvellous_push.notifications.factory import build_dispatch_service
from marvellous_push.realtime.change_feed import PgNotifyChangeSource, SharedChangeFeed


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging, the service credential and the dispatch pipeline."""
  from marvellous_push.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("marvellous_push.core.lifespan")

  try:
    initialize_logging(settings)
  except RuntimeError:
    # Console logging still works without the file handler.
    logger.warning("File logging setup failed; continuing with default handlers.", exc_info=True)

  # Loaded once; a missing or broken credential turns every dispatch into a 500.
  credential: ServiceCredential | None
  try:
    credential = load_credential_from_settings(settings)
  except CredentialError as exc:
    credential = None
    logger.error("Service credential unavailable; push dispatch will fail until it is configured: %s", exc)

  http_client = httpx.AsyncClient(trust_env=False, timeout=settings.push_send_timeout_seconds)
  app.state.dispatch_service = build_dispatch_service(settings, credential=credential, http_client=http_client)

  # Published on app.state for realtime consumers; nothing connects until the first subscribe.
  change_feed: SharedChangeFeed | None = None
  if settings.pg_dsn and settings.realtime_channels:
    source = PgNotifyChangeSource(dsn=settings.pg_dsn, channels=settings.realtime_channels, connect_timeout=settings.pg_connect_timeout)
    change_feed = SharedChangeFeed(source=source, max_attempts=settings.realtime_connect_max_attempts, base_delay=settings.realtime_connect_base_delay_seconds)
  app.state.change_feed = change_feed

  logger.info("Startup complete environment=%s database=%s credential=%s", settings.environment, _redact_dsn(settings.pg_dsn), "loaded" if credential else "missing")

  try:
    yield
  finally:
    if change_feed is not None:
      await change_feed.aclose()
    await http_client.aclose()
    await dispose_engine()
    logger.info("Shutdown complete")


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{host}{port}{path}"
