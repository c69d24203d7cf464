"""Service-account loading and bearer token minting for FCM."""

from __future__ import annotations

import asyncio
import datetime
import json
import logging
import time
from pathlib import Path
from typing import Any

import httpx
from firebase_admin import credentials
from google.auth import crypt, jwt

from marvellous_push.config import FCM_MESSAGING_SCOPE, Settings
from marvellous_push.notifications.contracts import BearerToken, CredentialError, ProviderAuthError, ServiceCredential

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
JWT_BEARER_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME_SECONDS = 3600
# Refresh a cached token this long before it actually expires.
TOKEN_REFRESH_MARGIN_SECONDS = 300


def parse_service_account(info: dict[str, Any], *, project_id_override: str | None = None) -> ServiceCredential:
  """Validate a service-account document and keep only what minting needs."""
  try:
    # Certificate enforces type=service_account and a parseable private key.
    certificate = credentials.Certificate(info)
  except (ValueError, KeyError, TypeError) as exc:
    raise CredentialError(f"Service account credential is malformed: {exc}") from exc

  project_id = project_id_override or certificate.project_id
  if not project_id:
    raise CredentialError("Service account credential has no project_id and FIREBASE_PROJECT_ID is not set.")

  return ServiceCredential(
    issuer_identity=certificate.service_account_email,
    signing_key=info["private_key"],
    token_endpoint_url=info.get("token_uri") or DEFAULT_TOKEN_ENDPOINT,
    project_id=project_id,
    private_key_id=info.get("private_key_id"),
  )


def load_service_credential(*, raw_json: str | None, json_path: str | None, project_id_override: str | None = None) -> ServiceCredential:
  """Load the service account from inline JSON or a file path, inline first."""
  if raw_json:
    source = "inline secret"
    text = raw_json
  elif json_path:
    source = json_path
    try:
      text = Path(json_path).read_text(encoding="utf-8")
    except OSError as exc:
      raise CredentialError(f"Service account file could not be read: {exc}") from exc
  else:
    raise CredentialError("No service account credential configured.")

  try:
    info = json.loads(text)
  except json.JSONDecodeError as exc:
    raise CredentialError(f"Service account credential from {source} is not valid JSON.") from exc

  if not isinstance(info, dict):
    raise CredentialError(f"Service account credential from {source} must be a JSON object.")

  credential = parse_service_account(info, project_id_override=project_id_override)
  logger.info("Loaded service credential from %s issuer=%s project=%s", source, credential.issuer_identity, credential.project_id)
  return credential


def load_credential_from_settings(settings: Settings) -> ServiceCredential:
  return load_service_credential(raw_json=settings.firebase_service_account_json, json_path=settings.firebase_service_account_json_path, project_id_override=settings.firebase_project_id)


class CredentialMinter:
  """Exchange a signed JWT assertion for an FCM bearer token."""

  def __init__(self, *, credential: ServiceCredential | None, http_client: httpx.AsyncClient | None = None, timeout_seconds: float = 10.0, cache_tokens: bool = True) -> None:
    self._credential = credential
    self._http_client = http_client
    self._timeout_seconds = timeout_seconds
    self._cache_tokens = cache_tokens
    self._cached: BearerToken | None = None
    self._lock = asyncio.Lock()

  @property
  def project_id(self) -> str | None:
    return self._credential.project_id if self._credential else None

  async def mint_token(self) -> BearerToken:
    """Return a bearer token, reusing a cached one while it is comfortably valid."""
    credential = self._require_credential()
    if not self._cache_tokens:
      return await self._exchange(credential)

    async with self._lock:
      if self._cached is not None and not self._cached.expires_within(TOKEN_REFRESH_MARGIN_SECONDS):
        return self._cached
      self._cached = await self._exchange(credential)
      return self._cached

  def build_assertion(self, *, now: int | None = None) -> str:
    """Sign the JWT assertion presented to the token endpoint."""
    credential = self._require_credential()
    issued_at = int(time.time()) if now is None else now
    payload = {
      "iss": credential.issuer_identity,
      "scope": FCM_MESSAGING_SCOPE,
      "aud": credential.token_endpoint_url,
      "iat": issued_at,
      "exp": issued_at + ASSERTION_LIFETIME_SECONDS,
    }
    try:
      signer = crypt.RSASigner.from_string(credential.signing_key, key_id=credential.private_key_id)
    except (ValueError, TypeError) as exc:
      raise CredentialError(f"Service account signing key is malformed: {exc}") from exc

    return jwt.encode(signer, payload).decode("utf-8")

  def _require_credential(self) -> ServiceCredential:
    if self._credential is None:
      raise CredentialError("No service account credential configured.")
    return self._credential

  async def _exchange(self, credential: ServiceCredential) -> BearerToken:
    assertion = self.build_assertion()
    form = {"grant_type": JWT_BEARER_GRANT_TYPE, "assertion": assertion}

    try:
      if self._http_client is not None:
        response = await self._http_client.post(credential.token_endpoint_url, data=form, timeout=self._timeout_seconds)
      else:
        async with httpx.AsyncClient(trust_env=False) as client:
          response = await client.post(credential.token_endpoint_url, data=form, timeout=self._timeout_seconds)
    except httpx.RequestError as exc:
      logger.error("Token endpoint unreachable url=%s error=%s", credential.token_endpoint_url, exc)
      raise ProviderAuthError(f"Token endpoint unreachable: {exc}") from exc

    if response.status_code != 200:
      detail = _oauth_error_detail(response)
      logger.error("Token exchange rejected status=%s detail=%s", response.status_code, detail)
      raise ProviderAuthError(f"Token exchange rejected (status={response.status_code}): {detail}")

    try:
      body = response.json()
      access_token = str(body["access_token"])
      expires_in = int(body.get("expires_in", ASSERTION_LIFETIME_SECONDS))
    except (ValueError, KeyError, TypeError) as exc:
      raise ProviderAuthError("Token endpoint returned an unexpected payload.") from exc

    expiry = datetime.datetime.now(datetime.UTC) + datetime.timedelta(seconds=expires_in)
    logger.info("Minted provider bearer token issuer=%s expires_in=%ss", credential.issuer_identity, expires_in)
    return BearerToken(value=access_token, expiry=expiry)


def _oauth_error_detail(response: httpx.Response) -> str:
  try:
    body = response.json()
  except ValueError:
    return response.text[:200]
  if isinstance(body, dict):
    error = body.get("error")
    description = body.get("error_description")
    if error and description:
      return f"{error}: {description}"
    if error:
      return str(error)
  return str(body)[:200]
