"""Test configuration for importing the application package."""

from __future__ import annotations

import dataclasses
import os

# Settings are read at import time by the app module.
os.environ.setdefault("MARVELLOUS_ALLOWED_ORIGINS", "http://localhost:5173")
os.environ.setdefault("MARVELLOUS_PUSH_DISPATCH_SECRET", "test-dispatch-secret")
os.environ.pop("MARVELLOUS_PG_DSN", None)
os.environ.pop("DATABASE_URL", None)

from collections.abc import Callable  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
from cryptography.hazmat.primitives import serialization  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import rsa  # noqa: E402

from marvellous_push.config import Settings, get_settings  # noqa: E402

DISPATCH_SECRET = os.environ["MARVELLOUS_PUSH_DISPATCH_SECRET"]


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture(scope="session")
def rsa_private_key_pem() -> str:
  """Throwaway signing key generated per test session."""
  key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
  return key.private_bytes(encoding=serialization.Encoding.PEM, format=serialization.PrivateFormat.PKCS8, encryption_algorithm=serialization.NoEncryption()).decode("utf-8")


@pytest.fixture
def service_account_info(rsa_private_key_pem: str) -> dict[str, Any]:
  return {
    "type": "service_account",
    "project_id": "marvellous-test",
    "private_key_id": "test-key-id",
    "private_key": rsa_private_key_pem,
    "client_email": "push-sender@marvellous-test.iam.gserviceaccount.com",
    "client_id": "1234567890",
    "token_uri": "https://oauth2.googleapis.com/token",
  }


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
  def _build(**overrides: Any) -> Settings:
    return dataclasses.replace(get_settings(), **overrides)

  return _build


@pytest.fixture
def auth_headers() -> dict[str, str]:
  return {"Authorization": f"Bearer {DISPATCH_SECRET}"}
