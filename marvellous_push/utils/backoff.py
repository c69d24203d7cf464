"""Bounded exponential backoff for idempotent async operations."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


class BackoffExhaustedError(RuntimeError):
  """Raised when every attempt of a retried operation has failed."""

  def __init__(self, operation_name: str, attempts: int, last_error: BaseException) -> None:
    super().__init__(f"{operation_name} failed after {attempts} attempts: {last_error}")
    self.operation_name = operation_name
    self.attempts = attempts
    self.last_error = last_error


def compute_delay(attempt: int, *, base_delay: float, max_delay: float, jitter: bool) -> float:
  """Return the sleep before retrying after the given (1-based) failed attempt."""
  delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
  if jitter:
    # +/-25% keeps concurrent reconnects from lining up.
    spread = delay * 0.25
    delay += random.uniform(-spread, spread)
  return max(delay, 0.0)


async def with_backoff(
  operation: Callable[[], Awaitable[T]],
  *,
  max_attempts: int,
  base_delay: float,
  max_delay: float = 30.0,
  jitter: bool = True,
  operation_name: str = "operation",
  retry_on: tuple[type[BaseException], ...] = (Exception,),
  sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
  """
  Run an idempotent operation, retrying failures with exponential backoff.

  Args:
    operation: Zero-argument coroutine factory; called once per attempt.
    max_attempts: Total attempts including the first one.
    base_delay: Delay in seconds after the first failure; doubles each time.
    max_delay: Upper bound for a single delay.
    jitter: Randomize each delay by +/-25%.
    operation_name: Label used in logs and in the terminal error.
    retry_on: Exception types worth retrying; anything else propagates at once.
    sleep: Awaitable sleep, injectable for tests.

  Raises:
    BackoffExhaustedError: after max_attempts failures, chained to the last one.
  """
  if max_attempts <= 0:
    raise ValueError("max_attempts must be a positive integer.")

  last_error: BaseException | None = None
  for attempt in range(1, max_attempts + 1):
    try:
      result = await operation()
      if attempt > 1:
        logger.info("Operation succeeded after retry operation=%s attempt=%d/%d", operation_name, attempt, max_attempts)
      return result
    except retry_on as exc:
      last_error = exc
      logger.warning("Operation failed operation=%s attempt=%d/%d error=%s", operation_name, attempt, max_attempts, exc)
      if attempt >= max_attempts:
        break
      delay = compute_delay(attempt, base_delay=base_delay, max_delay=max_delay, jitter=jitter)
      logger.info("Retrying operation=%s after %.2fs", operation_name, delay)
      await sleep(delay)

  assert last_error is not None
  logger.error("Operation gave up operation=%s attempts=%d", operation_name, max_attempts)
  raise BackoffExhaustedError(operation_name, max_attempts, last_error) from last_error
