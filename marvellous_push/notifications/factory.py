"""Factory helpers for the push dispatch service."""

from __future__ import annotations

import httpx

from marvellous_push.config import Settings
from marvellous_push.notifications.contracts import ServiceCredential
from marvellous_push.notifications.credentials import CredentialMinter
from marvellous_push.notifications.dispatcher import Dispatcher
from marvellous_push.notifications.push_sender import FcmHttpSender, MessageDefaults
from marvellous_push.notifications.push_subscription_repo import PushSubscriptionRepository
from marvellous_push.notifications.reconciler import StaleSubscriptionReconciler
from marvellous_push.notifications.service import PushDispatchService

UNCONFIGURED_PROJECT = "unconfigured"


def build_message_defaults(settings: Settings) -> MessageDefaults:
  return MessageDefaults(icon=settings.push_default_icon, badge=settings.push_default_badge, link=settings.push_default_link, app_base_url=settings.push_app_base_url)


def build_dispatch_service(settings: Settings, *, credential: ServiceCredential | None, http_client: httpx.AsyncClient, repository: PushSubscriptionRepository | None = None) -> PushDispatchService:
  """Wire the dispatch pipeline from configuration and the startup credential."""
  repository = repository or PushSubscriptionRepository()

  # Without a credential the minter raises before any send, so the URL is never hit.
  project_id = (credential.project_id if credential else None) or settings.firebase_project_id or UNCONFIGURED_PROJECT
  minter = CredentialMinter(credential=credential, http_client=http_client, timeout_seconds=settings.push_send_timeout_seconds, cache_tokens=settings.push_token_cache_enabled)
  sender = FcmHttpSender(project_id=project_id, http_client=http_client, api_base_url=settings.fcm_api_base_url, defaults=build_message_defaults(settings), timeout_seconds=settings.push_send_timeout_seconds)
  reconciler = StaleSubscriptionReconciler(repository=repository)
  dispatcher = Dispatcher(sender=sender, reconciler=reconciler, max_concurrency=settings.push_send_concurrency)
  return PushDispatchService(repository=repository, minter=minter, dispatcher=dispatcher)
