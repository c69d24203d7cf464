"""Send a test notification through a running push server."""

from __future__ import annotations

import argparse
import logging
import os
import sys

import httpx

from marvellous_push.utils.env import default_env_path, load_env_file

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
logger = logging.getLogger("send_test_notification")


def main() -> int:
  parser = argparse.ArgumentParser(description="Dispatch a test push to one or more recipients.")
  parser.add_argument("recipient_ids", nargs="+", help="Recipient identifiers to notify.")
  parser.add_argument("--base-url", default="http://localhost:8002", help="Push server base URL (default: http://localhost:8002).")
  parser.add_argument("--title", default="Test notification", help="Notification title.")
  parser.add_argument("--body", default="Push notifications are working.", help="Notification body.")
  parser.add_argument("--url", default="/", help="Click-through path stored in the data map.")
  args = parser.parse_args()

  load_env_file(default_env_path(), override=False)
  secret = os.getenv("MARVELLOUS_PUSH_DISPATCH_SECRET")
  if not secret:
    logger.error("MARVELLOUS_PUSH_DISPATCH_SECRET is not set.")
    return 2

  payload = {"recipient_ids": args.recipient_ids, "title": args.title, "body": args.body, "data": {"url": args.url}}
  try:
    response = httpx.post(f"{args.base_url.rstrip('/')}/v1/push/send", json=payload, headers={"Authorization": f"Bearer {secret}"}, timeout=30.0)
  except httpx.RequestError as exc:
    logger.error("Push server unreachable: %s", exc)
    return 1

  if response.status_code != 200:
    logger.error("Dispatch failed status=%s body=%s", response.status_code, response.text[:500])
    return 1

  body = response.json()
  logger.info("%s", body["message"])
  for result in body["results"]:
    logger.info("%s %s %s %s", result["recipient_id"], result["state"], result["provider_status_code"], result["delivery_endpoint"])
  return 0


if __name__ == "__main__":
  sys.exit(main())
