import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("entrypoint")


def main() -> None:
  """Launch the notification server; migrations run in a separate deploy step."""
  logger.info("Starting push server (run alembic upgrade head in deploy pipeline)...")
  port = os.getenv("PORT", "8002")
  # exec so uvicorn receives SIGTERM directly.
  args = ["uvicorn", "marvellous_push.main:app", "--host", "0.0.0.0", "--port", port, "--no-server-header"]
  os.execvp("uvicorn", args)


if __name__ == "__main__":
  main()
